"""
Module: church_ledger.models.business_record
Responsibility: The business fact (donation, bill, payroll run...) persisted
    by PostingService in the same database transaction as its ledger
    postings.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - record_id is unique.
    - A business record is committed if and only if its journal transaction
      is committed; both are written inside one session_scope().
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import JSON, BigInteger, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from church_ledger.db.base import Base, UUIDString
from church_ledger.db.types import UTCDateTime


class BusinessRecord(Base):
    """Persisted business event, linked to its journal transaction."""

    __tablename__ = "business_records"

    __table_args__ = (
        UniqueConstraint("record_id", name="uq_business_record_id"),
        Index("idx_business_record_transaction", "transaction_id"),
        Index("idx_business_record_kind", "kind"),
    )

    record_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    kind: Mapped[str] = mapped_column(String(50), nullable=False)

    # Total in minor units
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)

    # Fund, category, vendor or period depending on kind
    label: Mapped[str | None] = mapped_column(String(255), nullable=True)

    fund: Mapped[str | None] = mapped_column(String(100), nullable=True)

    actor: Mapped[str] = mapped_column(String(255), nullable=False)

    occurred_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    details: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    transaction_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    def __repr__(self) -> str:
        return f"<BusinessRecord {self.kind} {self.record_id}>"

"""
Module: church_ledger.models.audit_record
Responsibility: ORM persistence for the tamper-evident audit log.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - Append-only: no UPDATE or DELETE (db/immutability.py).
    - hash = H(actor | action | related_transaction_id | payload_hash |
      prev_hash), validated by AuditLog.validate_chain().
    - seq is unique and monotonic (SequenceService).

Audit relevance:
    This IS the audit trail.  Every posting, reversal and implicit account
    creation produces a record here, cross-referenced by transaction id.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, BigInteger, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from church_ledger.db.base import Base, UUIDString
from church_ledger.db.types import UTCDateTime


class AuditAction(str, Enum):
    """
    Standard audit actions.

    ``AuditRecord.action`` is free text; these are the values the ledger
    itself writes.
    """

    EVENT_POSTED = "event_posted"
    EVENT_REJECTED = "event_rejected"
    TRANSACTION_REVERSED = "transaction_reversed"
    ACCOUNT_REGISTERED = "account_registered"
    ACCOUNT_AUTO_CREATED = "account_auto_created"


class AuditRecord(Base):
    """
    Audit log entry with hash chain linkage.

    Guarantees:
        - prev_hash is None only for the first record.
    """

    __tablename__ = "audit_log"

    __table_args__ = (
        Index("idx_audit_related_transaction", "related_transaction_id"),
        Index("idx_audit_action", "action"),
        Index("idx_audit_occurred", "occurred_at"),
    )

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)

    actor: Mapped[str] = mapped_column(String(255), nullable=False)

    action: Mapped[str] = mapped_column(String(100), nullable=False)

    occurred_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    # No foreign key; audit records are written after the posting commits
    related_transaction_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )

    payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)

    hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return f"<AuditRecord {self.seq} {self.action} by {self.actor}>"


"""
Module: church_ledger.models.journal
Responsibility: ORM persistence for journal transactions and their posting
    lines -- the single source of financial truth.  Balances are never
    stored; they are sums over these rows.
Architecture position: Kernel > Models.  May import from db/ and
    domain/values.py only.

Invariants enforced:
    - idempotency_key is unique: one committed transaction per key.
    - seq is unique and monotonic (allocated by SequenceService).
    - reversal_of_id is unique: a transaction is reversed at most once.
    - amount > 0 on every line (ck_entry_amount_positive); direction carries
      the sign.
    - Rows are append-only (db/immutability.py).

Failure modes:
    - IntegrityError on a duplicate idempotency key or a second reversal of
      the same transaction; LedgerStore maps it to a typed error.
    - ImmutabilityViolation on any UPDATE/DELETE.
"""

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from church_ledger.db.base import Base, UUIDString
from church_ledger.db.types import UTCDateTime
from church_ledger.domain.values import Direction

if TYPE_CHECKING:
    from church_ledger.models.account import Account


class JournalTransaction(Base):
    """
    A batch of two or more lines posted atomically.

    Contract:
        All lines share this transaction's posted_at and reference_id and
        become visible together at commit.  sum(debits) == sum(credits) is
        checked by LedgerStore before the flush.
    """

    __tablename__ = "journal_transactions"

    __table_args__ = (
        UniqueConstraint("idempotency_key", name="uq_transaction_idempotency"),
        UniqueConstraint("seq", name="uq_transaction_seq"),
        UniqueConstraint("reversal_of_id", name="uq_transaction_reversal_of"),
        Index("idx_transaction_reference", "reference_id"),
        Index("idx_transaction_posted_at", "posted_at"),
    )

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False)

    # Business record the transaction derives from
    reference_id: Mapped[str] = mapped_column(String(100), nullable=False)

    # donation, expense, bill, ..., reversal
    event_kind: Mapped[str] = mapped_column(String(50), nullable=False)

    idempotency_key: Mapped[str] = mapped_column(String(300), nullable=False)

    actor: Mapped[str] = mapped_column(String(255), nullable=False)

    posted_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    # Set on reversals, pointing at the transaction being reversed
    reversal_of_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("journal_transactions.id"),
        nullable=True,
    )

    description: Mapped[str] = mapped_column(String(500), nullable=False, default="")

    entries: Mapped[list["JournalEntry"]] = relationship(
        back_populates="transaction",
        cascade="all",
        lazy="selectin",
        order_by="JournalEntry.line_seq",
    )

    def __repr__(self) -> str:
        return f"<JournalTransaction {self.seq} {self.event_kind} ref={self.reference_id}>"


class JournalEntry(Base):
    """
    Individual debit or credit line.

    Guarantees:
        - amount is a positive integer count of currency minor units.
        - line_seq gives a deterministic order within the transaction.
    """

    __tablename__ = "ledger_entries"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_entry_amount_positive"),
        Index("idx_entry_transaction", "transaction_id"),
        Index("idx_entry_account_posted", "account_id", "posted_at"),
        Index("idx_entry_reference", "reference_id"),
    )

    transaction_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("journal_transactions.id"),
        nullable=False,
    )

    account_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("accounts.id"),
        nullable=False,
    )

    direction: Mapped[Direction] = mapped_column(String(10), nullable=False)

    # Minor units, always positive
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)

    description: Mapped[str] = mapped_column(String(500), nullable=False, default="")

    reference_id: Mapped[str] = mapped_column(String(100), nullable=False)

    # Restricted-fund tag for fund reporting
    fund: Mapped[str | None] = mapped_column(String(100), nullable=True)

    posted_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    line_seq: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    transaction: Mapped["JournalTransaction"] = relationship(back_populates="entries")

    account: Mapped["Account"] = relationship(back_populates="entries", lazy="joined")

    def __repr__(self) -> str:
        return f"<JournalEntry {self.direction} {self.amount} acct={self.account_id}>"

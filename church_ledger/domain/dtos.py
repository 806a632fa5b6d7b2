"""
Data transfer objects passed between the builder, the services and callers.

Responsibility:
    Frozen dataclasses only.  ORM rows never leave a session scope; services
    convert them into the records defined here before returning.

Architecture position:
    Kernel > Domain.  Pure, no I/O.
"""

from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import Any, Mapping
from uuid import UUID

from church_ledger.domain.values import AccountType, Direction, NormalBalance


# ---------------------------------------------------------------------------
# Drafts (builder output, no ids or timestamps yet)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LineDraft:
    """
    One side of a posting before it is stored.

    ``account_id`` is filled once the posting service has resolved
    ``account_name`` through the registry.  Reversal lines arrive with it
    already set.
    """

    account_name: str
    account_type: AccountType
    direction: Direction
    amount: Decimal
    description: str = ""
    fund: str | None = None
    account_id: UUID | None = None


@dataclass(frozen=True)
class TransactionDraft:
    """A balanced set of line drafts destined for one journal transaction."""

    event_kind: str
    reference_id: str
    description: str
    lines: tuple[LineDraft, ...]
    reversal_of_id: UUID | None = None

    @property
    def total_debits(self) -> Decimal:
        return sum(
            (line.amount for line in self.lines if line.direction == Direction.DEBIT),
            Decimal("0"),
        )

    @property
    def total_credits(self) -> Decimal:
        return sum(
            (line.amount for line in self.lines if line.direction == Direction.CREDIT),
            Decimal("0"),
        )

    @property
    def is_balanced(self) -> bool:
        return self.total_debits == self.total_credits

    def account_requirements(self) -> dict[str, AccountType]:
        """Unresolved account names with their declared types, in line order."""
        required: dict[str, AccountType] = {}
        for line in self.lines:
            if line.account_id is None:
                required.setdefault(line.account_name, line.account_type)
        return required

    def with_account_ids(self, account_ids: Mapping[str, UUID]) -> "TransactionDraft":
        """Return a copy whose unresolved lines carry ids from ``account_ids``."""
        lines = tuple(
            line
            if line.account_id is not None
            else replace(line, account_id=account_ids[line.account_name])
            for line in self.lines
        )
        return replace(self, lines=lines)


# ---------------------------------------------------------------------------
# Committed records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AccountView:
    """Read-only view of a registered account."""

    id: UUID
    code: str
    name: str
    account_type: AccountType
    normal_balance: NormalBalance
    is_active: bool
    auto_created: bool


@dataclass(frozen=True)
class LedgerEntryRecord:
    """One committed posting line."""

    id: UUID
    transaction_id: UUID
    account_id: UUID
    account_name: str
    account_type: AccountType
    direction: Direction
    amount: Decimal
    description: str
    reference_id: str
    fund: str | None
    posted_at: datetime
    line_seq: int

    @property
    def signed_amount(self) -> Decimal:
        """Debits positive, credits negative."""
        return self.amount if self.direction == Direction.DEBIT else -self.amount


@dataclass(frozen=True)
class JournalTransactionRecord:
    """A committed journal transaction and its lines in line order."""

    id: UUID
    seq: int
    reference_id: str
    event_kind: str
    idempotency_key: str
    actor: str
    posted_at: datetime
    reversal_of_id: UUID | None
    description: str
    entries: tuple[LedgerEntryRecord, ...]

    @property
    def is_reversal(self) -> bool:
        return self.reversal_of_id is not None

    @property
    def total_debits(self) -> Decimal:
        return sum(
            (e.amount for e in self.entries if e.direction == Direction.DEBIT),
            Decimal("0"),
        )

    @property
    def total_credits(self) -> Decimal:
        return sum(
            (e.amount for e in self.entries if e.direction == Direction.CREDIT),
            Decimal("0"),
        )

    @property
    def is_balanced(self) -> bool:
        return self.total_debits == self.total_credits


@dataclass(frozen=True)
class AuditRecordView:
    """One link of the audit hash chain."""

    id: UUID
    seq: int
    actor: str
    action: str
    occurred_at: datetime
    related_transaction_id: UUID | None
    payload: dict[str, Any]
    payload_hash: str
    prev_hash: str | None
    hash: str


# ---------------------------------------------------------------------------
# Service results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PostingResult:
    """
    Outcome of ``PostingService.post_event``.

    A PostingResult exists only when the ledger transaction is committed;
    every failure to post is an exception.  ``audit_error`` is set when the
    transaction committed but its audit record could not be written.
    """

    business_record_id: UUID
    transaction_id: UUID
    replayed: bool = False
    audit_record_id: UUID | None = None
    audit_error: str | None = None
    created_accounts: tuple[str, ...] = ()

    @classmethod
    def posted(
        cls,
        business_record_id: UUID,
        transaction_id: UUID,
        created_accounts: tuple[str, ...] = (),
    ) -> "PostingResult":
        return cls(
            business_record_id=business_record_id,
            transaction_id=transaction_id,
            created_accounts=created_accounts,
        )

    @classmethod
    def already_posted(
        cls,
        business_record_id: UUID,
        transaction_id: UUID,
        audit_record_id: UUID | None,
    ) -> "PostingResult":
        return cls(
            business_record_id=business_record_id,
            transaction_id=transaction_id,
            replayed=True,
            audit_record_id=audit_record_id,
        )

    @property
    def audit_recorded(self) -> bool:
        return self.audit_record_id is not None


@dataclass(frozen=True)
class ReversalResult:
    """Outcome of ``PostingService.reverse_transaction``."""

    transaction_id: UUID
    reversal_of_id: UUID
    audit_record_id: UUID | None = None
    audit_error: str | None = None

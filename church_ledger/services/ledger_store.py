"""
LedgerStore -- append-only journal persistence and derived balances.

Responsibility:
    Persists balanced transaction drafts as immutable journal transactions
    and answers balance and drill-down queries by summing committed lines.
    There is no stored balance anywhere.

Architecture position:
    Kernel > Services.  Session-bound; flushes, never commits.  Called by
    PostingService for writes and by reporting code for reads.

Invariants enforced:
    - sum(debits) == sum(credits) is checked before anything is flushed
      (UnbalancedTransaction).
    - All lines of a transaction get one posted_at and are flushed in one
      unit; the caller's commit makes them visible together.
    - One committed transaction per idempotency key (UNIQUE constraint plus
      a pre-check; a lost race surfaces as DuplicateIdempotencyKey).
    - Balances are derived from immutable lines, so concurrent postings to
      one account cannot lose updates.

Failure modes:
    - UnbalancedTransaction, MalformedEvent, UnknownAccount for bad drafts.
    - DuplicateIdempotencyKey, TransactionAlreadyReversed on key or
      reversal conflicts.
    - StoreUnavailable on any other database error.

Balance convention:
    Debit-normal accounts (assets, expenses) report debits - credits;
    credit-normal accounts (liabilities, equity, income) report
    credits - debits.  A positive balance is the account's normal state.
"""

from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import case, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from church_ledger.domain.clock import Clock
from church_ledger.domain.dtos import (
    JournalTransactionRecord,
    LedgerEntryRecord,
    TransactionDraft,
)
from church_ledger.domain.values import (
    DEFAULT_MINOR_UNIT_EXPONENT,
    AccountType,
    Direction,
    NormalBalance,
    from_minor_units,
    to_minor_units,
)
from church_ledger.exceptions import (
    DuplicateIdempotencyKey,
    MalformedEvent,
    StoreUnavailable,
    TransactionAlreadyReversed,
    UnbalancedTransaction,
    UnknownAccount,
)
from church_ledger.logging_config import get_logger
from church_ledger.models.account import Account
from church_ledger.models.journal import JournalEntry, JournalTransaction
from church_ledger.services.base import BaseService
from church_ledger.services.sequence_service import SequenceService

logger = get_logger("services.ledger_store")


class LedgerStore(BaseService):
    """
    Append-only store of journal transactions.

    Contract:
        ``append`` takes a draft whose lines all carry ``account_id``.
        Read methods return frozen records, never ORM rows.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        minor_unit_exponent: int = DEFAULT_MINOR_UNIT_EXPONENT,
    ):
        super().__init__(session, clock)
        self._exponent = minor_unit_exponent
        self._sequences = SequenceService(session)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def append(
        self,
        draft: TransactionDraft,
        actor: str,
        idempotency_key: str,
        transaction_id: UUID | None = None,
    ) -> JournalTransactionRecord:
        """
        Persist ``draft`` as one journal transaction.

        Preconditions:
            - Every line has ``account_id`` set.
        Postconditions:
            - The transaction and all its lines are flushed with one
              posted_at and a fresh seq; nothing is flushed on failure.
        """
        if len(draft.lines) < 2:
            raise MalformedEvent(
                "a transaction needs at least two lines",
                reference_id=draft.reference_id,
            )
        if not draft.is_balanced:
            raise UnbalancedTransaction(
                str(draft.total_debits), str(draft.total_credits), draft.reference_id
            )
        for line in draft.lines:
            if line.account_id is None:
                raise UnknownAccount(line.account_name)

        try:
            existing = self._transaction_by_key(idempotency_key)
            if existing is not None:
                raise DuplicateIdempotencyKey(idempotency_key, str(existing.id))

            savepoint = self._session.begin_nested()
            try:
                seq = self._sequences.next_value(SequenceService.JOURNAL_TRANSACTION)
                posted_at = self._clock.now()
                transaction = JournalTransaction(
                    id=transaction_id or uuid4(),
                    seq=seq,
                    reference_id=draft.reference_id,
                    event_kind=draft.event_kind,
                    idempotency_key=idempotency_key,
                    actor=actor,
                    posted_at=posted_at,
                    reversal_of_id=draft.reversal_of_id,
                    description=draft.description[:500],
                )
                transaction.entries = [
                    JournalEntry(
                        account_id=line.account_id,
                        direction=line.direction.value,
                        amount=to_minor_units(line.amount, self._exponent),
                        description=line.description[:500],
                        reference_id=draft.reference_id,
                        fund=line.fund,
                        posted_at=posted_at,
                        line_seq=index,
                    )
                    for index, line in enumerate(draft.lines)
                ]
                self._session.add(transaction)
                self._session.flush()
                savepoint.commit()
            except IntegrityError as exc:
                savepoint.rollback()
                self._raise_conflict(idempotency_key, draft, exc)
        except SQLAlchemyError as exc:
            logger.error(
                "ledger_append_failed",
                extra={"idempotency_key": idempotency_key, "error": str(exc)},
            )
            raise StoreUnavailable("append", str(exc)) from exc

        logger.info(
            "transaction_appended",
            extra={
                "transaction_id": str(transaction.id),
                "seq": seq,
                "event_kind": draft.event_kind,
                "reference_id": draft.reference_id,
                "line_count": len(draft.lines),
                "total": str(draft.total_debits),
            },
        )
        return self._to_record(transaction)

    def _raise_conflict(
        self, idempotency_key: str, draft: TransactionDraft, exc: IntegrityError
    ) -> None:
        """Translate a unique-constraint race into the typed error it means."""
        existing = self._transaction_by_key(idempotency_key)
        if existing is not None:
            raise DuplicateIdempotencyKey(idempotency_key, str(existing.id)) from exc
        if draft.reversal_of_id is not None:
            reversal = self._reversal_row(draft.reversal_of_id)
            if reversal is not None:
                raise TransactionAlreadyReversed(
                    str(draft.reversal_of_id), str(reversal.id)
                ) from exc
        raise StoreUnavailable("append", str(exc)) from exc

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def balance_of(self, account_id: UUID, as_of: datetime | None = None) -> Decimal:
        """
        Signed balance of one account over lines with posted_at <= as_of.

        An account without lines has a zero balance.  An id that is not in
        the registry raises UnknownAccount.
        """
        account = self._session.get(Account, account_id)
        if account is None:
            raise UnknownAccount(str(account_id))

        debit_total = func.coalesce(
            func.sum(case((JournalEntry.direction == Direction.DEBIT.value, JournalEntry.amount), else_=0)),
            0,
        )
        credit_total = func.coalesce(
            func.sum(case((JournalEntry.direction == Direction.CREDIT.value, JournalEntry.amount), else_=0)),
            0,
        )
        query = select(debit_total, credit_total).where(JournalEntry.account_id == account_id)
        if as_of is not None:
            query = query.where(JournalEntry.posted_at <= _as_utc(as_of))

        try:
            debits, credits = self._session.execute(query).one()
        except SQLAlchemyError as exc:
            raise StoreUnavailable("balance_of", str(exc)) from exc

        if account.normal_balance == NormalBalance.DEBIT.value:
            units = int(debits) - int(credits)
        else:
            units = int(credits) - int(debits)
        return from_minor_units(units, self._exponent)

    def entries_for(self, reference_id: str) -> list[LedgerEntryRecord]:
        """Every line posted for a business record, ordered by (seq, line_seq)."""
        query = (
            select(JournalEntry)
            .join(JournalTransaction, JournalEntry.transaction_id == JournalTransaction.id)
            .where(JournalEntry.reference_id == str(reference_id))
            .order_by(JournalTransaction.seq, JournalEntry.line_seq)
        )
        try:
            rows = self._session.execute(query).scalars().all()
        except SQLAlchemyError as exc:
            raise StoreUnavailable("entries_for", str(exc)) from exc
        return [self._to_entry_record(row) for row in rows]

    def get_transaction(self, transaction_id: UUID) -> JournalTransactionRecord | None:
        row = self._session.get(JournalTransaction, transaction_id)
        return self._to_record(row) if row is not None else None

    def find_by_idempotency_key(self, idempotency_key: str) -> JournalTransactionRecord | None:
        row = self._transaction_by_key(idempotency_key)
        return self._to_record(row) if row is not None else None

    def find_reversal_of(self, transaction_id: UUID) -> JournalTransactionRecord | None:
        row = self._reversal_row(transaction_id)
        return self._to_record(row) if row is not None else None

    def transactions(self) -> list[JournalTransactionRecord]:
        """All transactions in seq order."""
        rows = self._session.execute(
            select(JournalTransaction).order_by(JournalTransaction.seq)
        ).scalars().all()
        return [self._to_record(row) for row in rows]

    def unbalanced_transactions(self) -> list[UUID]:
        """
        Integrity check: ids of committed transactions whose lines do not
        balance.  Always empty unless rows were written around the store.
        """
        signed = func.sum(
            case(
                (JournalEntry.direction == Direction.DEBIT.value, JournalEntry.amount),
                else_=-JournalEntry.amount,
            )
        )
        query = (
            select(JournalEntry.transaction_id)
            .group_by(JournalEntry.transaction_id)
            .having(signed != 0)
        )
        return list(self._session.execute(query).scalars())

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _transaction_by_key(self, idempotency_key: str) -> JournalTransaction | None:
        return self._session.execute(
            select(JournalTransaction).where(
                JournalTransaction.idempotency_key == idempotency_key
            )
        ).scalar_one_or_none()

    def _reversal_row(self, transaction_id: UUID) -> JournalTransaction | None:
        return self._session.execute(
            select(JournalTransaction).where(
                JournalTransaction.reversal_of_id == transaction_id
            )
        ).scalar_one_or_none()

    def _to_entry_record(self, row: JournalEntry) -> LedgerEntryRecord:
        return LedgerEntryRecord(
            id=row.id,
            transaction_id=row.transaction_id,
            account_id=row.account_id,
            account_name=row.account.name,
            account_type=AccountType(row.account.account_type),
            direction=Direction(row.direction),
            amount=from_minor_units(row.amount, self._exponent),
            description=row.description,
            reference_id=row.reference_id,
            fund=row.fund,
            posted_at=row.posted_at,
            line_seq=row.line_seq,
        )

    def _to_record(self, row: JournalTransaction) -> JournalTransactionRecord:
        return JournalTransactionRecord(
            id=row.id,
            seq=row.seq,
            reference_id=row.reference_id,
            event_kind=row.event_kind,
            idempotency_key=row.idempotency_key,
            actor=row.actor,
            posted_at=row.posted_at,
            reversal_of_id=row.reversal_of_id,
            description=row.description,
            entries=tuple(
                self._to_entry_record(entry)
                for entry in sorted(row.entries, key=lambda e: e.line_seq)
            ),
        )


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        raise ValueError(f"as_of must be timezone-aware: {moment!r}")
    return moment.astimezone(timezone.utc)

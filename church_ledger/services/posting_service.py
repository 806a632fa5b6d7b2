"""
PostingService -- the single entry point business modules post through.

Responsibility:
    Turns a business event into a committed business record plus its
    balanced journal transaction, and reverses committed transactions.
    Owns the transaction boundary; the services it composes only flush.

Architecture position:
    Kernel > Services -- imperative shell.  Composes the journal builder,
    AccountRegistry, LedgerStore and AuditLog.  Constructed explicitly with
    a LedgerDatabase, a LedgerConfig and a Clock; there is no module-level
    instance.

Posting algorithm (post_event):
    1. Build the draft (pure).  Bad amounts and malformed events are
       rejected here, before any write.
    2. Take the in-process lock for the idempotency key.  If the key is
       already committed, return the original result with replayed=True.
    3. In ONE database transaction: resolve every account, write the
       business record, append the journal transaction.  Commit.
    4. Write the audit record(s) in a second, best-effort transaction.

Invariants enforced:
    - The business record is committed if and only if its journal
      transaction is committed.
    - Exactly one journal transaction per idempotency key.  A concurrent
      writer that loses the UNIQUE race gets the winner's result.
    - Posted lines are never mutated; corrections are reversals, at most one
      per transaction, and a reversal cannot itself be reversed.
    - An audit failure never rolls back a committed posting; it is logged
      at ERROR and reported on the result.

Failure modes:
    - RejectedEvent (and subclasses): validation failed; nothing written.
      Account errors reach the caller as the __cause__ of a RejectedEvent.
    - PostingFailed: storage failed; everything was rolled back.  Safe to
      retry with the same event.
    - TransactionNotFound, TransactionAlreadyReversed, ReversalOfReversal
      from reverse_transaction.
"""

from __future__ import annotations

from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from church_ledger.db.engine import LedgerDatabase
from church_ledger.domain.clock import Clock, SystemClock
from church_ledger.domain.dtos import PostingResult, ReversalResult, TransactionDraft
from church_ledger.domain.events import BusinessEvent
from church_ledger.domain.journal_builder import (
    MAX_ACTOR_LENGTH,
    build_drafts,
    build_reversal,
    check_actor,
)
from church_ledger.domain.values import to_minor_units
from church_ledger.exceptions import (
    AccountError,
    DuplicateIdempotencyKey,
    LedgerError,
    MalformedEvent,
    PostingFailed,
    RejectedEvent,
    ReversalOfReversal,
    StorageError,
    TransactionAlreadyReversed,
    TransactionNotFound,
)
from church_ledger.logging_config import LogContext, get_logger
from church_ledger.models.audit_record import AuditAction
from church_ledger.models.business_record import BusinessRecord
from church_ledger.services.account_registry import AccountRegistry
from church_ledger.services.audit_log import AuditLog
from church_ledger.services.ledger_store import LedgerStore
from church_ledger.utils.hashing import to_json_safe
from church_ledger.utils.idempotency import KeyedLocks, reversal_idempotency_key

if TYPE_CHECKING:
    from church_config.schema import LedgerConfig

logger = get_logger("services.posting")


class PostingService:
    """
    Posts business events and reversals to the ledger.

    Contract:
        ``post_event`` returns a PostingResult only when the journal
        transaction is committed.  Every failure to post is an exception.

    Guarantees:
        - Thread-safe: one instance may be shared by worker threads.  Each
          call opens its own session(s).
        - Postings with the same idempotency key are serialized in-process.

    Non-goals:
        - Does NOT retry storage failures; see ``post_with_retry``.
        - Does NOT edit business records owned by business modules.
    """

    def __init__(
        self,
        db: LedgerDatabase,
        config: LedgerConfig,
        clock: Clock | None = None,
    ):
        self._db = db
        self._config = config
        self._clock = clock or SystemClock()
        self._locks = KeyedLocks()

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def load_chart(self, actor: str = "system") -> list[str]:
        """
        Register the configured chart of accounts (idempotent).

        Returns the codes of the accounts that were created.
        """
        with self._db.session_scope() as session:
            registry = AccountRegistry(session, self._clock, actor=actor)
            created = registry.load_chart(self._config.chart, actor=actor)
            codes = [account.code for account in created]
            if codes:
                AuditLog(session, self._clock).record(
                    actor,
                    AuditAction.ACCOUNT_REGISTERED,
                    payload={"accounts": codes, "config_checksum": self._config.checksum},
                )
        return codes

    # ------------------------------------------------------------------
    # Posting
    # ------------------------------------------------------------------

    def post_event(self, event: BusinessEvent) -> PostingResult:
        """
        Post one business event.

        Preconditions:
            - The configured chart has been loaded, unless auto-vivify is on.
        Postconditions:
            - On return, the business record and the journal transaction are
              committed together (or were committed by an earlier call with
              the same idempotency key: ``replayed=True``).

        Raises:
            RejectedEvent: validation failed, nothing written.
            PostingFailed: storage failed, nothing written.
        """
        key = event.effective_idempotency_key
        with LogContext.bind(
            actor=event.actor,
            reference_id=event.reference_id,
            idempotency_key=key,
        ):
            logger.info("posting_started", extra={"event_kind": event.kind})

            try:
                draft = build_drafts(
                    event,
                    self._config.system_accounts,
                    self._config.minor_unit_exponent,
                )
            except RejectedEvent as exc:
                self._record_rejection(event, exc)
                raise

            with self._locks.hold(key):
                replay = self._replay(key)
                if replay is not None:
                    return replay

                try:
                    transaction_id, created_accounts = self._commit(event, draft, key)
                except DuplicateIdempotencyKey:
                    replay = self._replay(key)
                    if replay is None:
                        raise
                    return replay
                except RejectedEvent as exc:
                    self._record_rejection(event, exc)
                    raise

            with LogContext.bind(transaction_id=str(transaction_id)):
                logger.info(
                    "posting_committed",
                    extra={
                        "event_kind": event.kind,
                        "total": str(draft.total_debits),
                        "line_count": len(draft.lines),
                    },
                )
                audit_id, audit_error = self._audit_posting(
                    event, draft, transaction_id, created_accounts
                )

        return PostingResult(
            business_record_id=event.record_id,
            transaction_id=transaction_id,
            audit_record_id=audit_id,
            audit_error=audit_error,
            created_accounts=tuple(view.name for view in created_accounts),
        )

    def _commit(
        self, event: BusinessEvent, draft: TransactionDraft, key: str
    ) -> tuple[UUID, list]:
        """Write the business record and the journal transaction atomically."""
        transaction_id = uuid4()
        try:
            with self._db.session_scope() as session:
                registry = AccountRegistry(
                    session,
                    self._clock,
                    auto_vivify=self._config.posting_policy.auto_vivify_accounts,
                    actor=event.actor,
                )
                resolved = self._resolve_accounts(registry, draft)
                store = LedgerStore(session, self._clock, self._config.minor_unit_exponent)

                # Another process may have committed this key since the replay check.
                committed = store.find_by_idempotency_key(key)
                if committed is not None:
                    raise DuplicateIdempotencyKey(key, str(committed.id))

                existing = session.execute(
                    select(BusinessRecord).where(BusinessRecord.record_id == event.record_id)
                ).scalar_one_or_none()
                if existing is not None:
                    raise MalformedEvent(
                        f"business record {event.record_id} is already posted "
                        f"as transaction {existing.transaction_id}",
                        reference_id=event.reference_id,
                    )

                session.add(
                    BusinessRecord(
                        record_id=event.record_id,
                        kind=event.kind,
                        amount=to_minor_units(
                            draft.total_debits, self._config.minor_unit_exponent
                        ),
                        label=event.label,
                        fund=draft.lines[0].fund,
                        actor=event.actor,
                        occurred_at=event.occurred_at or self._clock.now(),
                        details=to_json_safe(event.details()),
                        transaction_id=transaction_id,
                    )
                )
                session.flush()

                store.append(
                    resolved,
                    actor=event.actor,
                    idempotency_key=key,
                    transaction_id=transaction_id,
                )
                created_accounts = list(registry.created)
        except (RejectedEvent, DuplicateIdempotencyKey):
            raise
        except (StorageError, SQLAlchemyError) as exc:
            logger.error(
                "posting_failed",
                extra={"event_kind": event.kind, "error": str(exc)},
            )
            raise PostingFailed(key, str(exc)) from exc

        return transaction_id, created_accounts

    def _resolve_accounts(
        self, registry: AccountRegistry, draft: TransactionDraft
    ) -> TransactionDraft:
        account_ids: dict[str, UUID] = {}
        for name, declared_type in draft.account_requirements().items():
            try:
                account_ids[name] = registry.resolve(name, declared_type).id
            except AccountError as exc:
                raise RejectedEvent(str(exc), reference_id=draft.reference_id) from exc
        return draft.with_account_ids(account_ids)

    def _replay(self, key: str) -> PostingResult | None:
        """Result of the transaction already committed under ``key``, if any."""
        with self._db.session_scope() as session:
            transaction = LedgerStore(session, self._clock).find_by_idempotency_key(key)
            if transaction is None:
                return None
            business_record_id = session.execute(
                select(BusinessRecord.record_id).where(
                    BusinessRecord.transaction_id == transaction.id
                )
            ).scalar_one_or_none()
            audit_id = next(
                (
                    record.id
                    for record in AuditLog(session, self._clock).records_for_transaction(
                        transaction.id
                    )
                    if record.action == AuditAction.EVENT_POSTED.value
                ),
                None,
            )

        logger.info(
            "posting_replayed",
            extra={"transaction_id": str(transaction.id)},
        )
        return PostingResult.already_posted(
            business_record_id=business_record_id or UUID(transaction.reference_id),
            transaction_id=transaction.id,
            audit_record_id=audit_id,
        )

    # ------------------------------------------------------------------
    # Reversal
    # ------------------------------------------------------------------

    def reverse_transaction(
        self, transaction_id: UUID, reason: str, actor: str
    ) -> ReversalResult:
        """
        Post the mirror image of a committed transaction.

        The original is never touched.  A second reversal of the same
        transaction raises TransactionAlreadyReversed.
        A blank or oversized actor raises MalformedEvent before anything is
        read.
        """
        check_actor(actor, str(transaction_id))
        key = reversal_idempotency_key(transaction_id)
        with LogContext.bind(actor=actor, transaction_id=str(transaction_id)):
            with self._locks.hold(key):
                try:
                    with self._db.session_scope() as session:
                        store = LedgerStore(
                            session, self._clock, self._config.minor_unit_exponent
                        )
                        original = store.get_transaction(transaction_id)
                        if original is None:
                            raise TransactionNotFound(str(transaction_id))
                        if original.is_reversal:
                            raise ReversalOfReversal(str(transaction_id))
                        existing = store.find_reversal_of(transaction_id)
                        if existing is not None:
                            raise TransactionAlreadyReversed(
                                str(transaction_id), str(existing.id)
                            )

                        reversal = store.append(
                            build_reversal(original, reason),
                            actor=actor,
                            idempotency_key=key,
                        )
                except DuplicateIdempotencyKey as exc:
                    raise TransactionAlreadyReversed(
                        str(transaction_id), exc.existing_transaction_id
                    ) from exc
                except StorageError as exc:
                    raise PostingFailed(key, str(exc)) from exc
                except SQLAlchemyError as exc:
                    raise PostingFailed(key, str(exc)) from exc

            logger.info(
                "transaction_reversed",
                extra={
                    "reversal_id": str(reversal.id),
                    "reason": reason,
                },
            )
            audit_id, audit_error = self._best_effort_audit(
                actor,
                AuditAction.TRANSACTION_REVERSED,
                reversal.id,
                {
                    "reversal_of_id": transaction_id,
                    "reference_id": original.reference_id,
                    "reason": reason,
                    "total": reversal.total_debits,
                },
            )

        return ReversalResult(
            transaction_id=reversal.id,
            reversal_of_id=transaction_id,
            audit_record_id=audit_id,
            audit_error=audit_error,
        )

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    def _audit_posting(
        self,
        event: BusinessEvent,
        draft: TransactionDraft,
        transaction_id: UUID,
        created_accounts: list,
    ) -> tuple[UUID | None, str | None]:
        payload = {
            "event_kind": event.kind,
            "business_record_id": event.record_id,
            "reference_id": event.reference_id,
            "total": draft.total_debits,
            "lines": [
                {
                    "account": line.account_name,
                    "direction": line.direction,
                    "amount": line.amount,
                }
                for line in draft.lines
            ],
        }
        try:
            with self._db.session_scope() as session:
                audit = AuditLog(session, self._clock)
                for view in created_accounts:
                    audit.record(
                        event.actor,
                        AuditAction.ACCOUNT_AUTO_CREATED,
                        related_transaction_id=transaction_id,
                        payload={
                            "account_id": view.id,
                            "code": view.code,
                            "name": view.name,
                            "account_type": view.account_type,
                        },
                    )
                record = audit.record(
                    event.actor,
                    AuditAction.EVENT_POSTED,
                    related_transaction_id=transaction_id,
                    payload=payload,
                )
        except (LedgerError, SQLAlchemyError) as exc:
            logger.error("audit_record_failed", extra={"error": str(exc)})
            return None, str(exc)
        return record.id, None

    def _best_effort_audit(
        self,
        actor: str,
        action: AuditAction,
        transaction_id: UUID | None,
        payload: dict,
    ) -> tuple[UUID | None, str | None]:
        try:
            with self._db.session_scope() as session:
                record = AuditLog(session, self._clock).record(
                    actor, action, related_transaction_id=transaction_id, payload=payload
                )
        except (LedgerError, SQLAlchemyError) as exc:
            logger.error(
                "audit_record_failed",
                extra={"action": action.value, "error": str(exc)},
            )
            return None, str(exc)
        return record.id, None

    def _record_rejection(self, event: BusinessEvent, exc: RejectedEvent) -> None:
        logger.warning(
            "posting_rejected",
            extra={"event_kind": event.kind, "code": exc.code, "reason": exc.reason},
        )
        self._best_effort_audit(
            (event.actor or "unknown")[:MAX_ACTOR_LENGTH],
            AuditAction.EVENT_REJECTED,
            None,
            {
                "event_kind": event.kind,
                "business_record_id": event.record_id,
                "code": exc.code,
                "reason": exc.reason,
            },
        )

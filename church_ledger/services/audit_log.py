"""
AuditLog -- write-once, hash-chained record of who did what.

Responsibility:
    Appends audit records (actor, action, optional transaction link, JSON
    payload) and validates the hash chain on demand.

Architecture position:
    Kernel > Services.  Session-bound; flushes, never commits.
    PostingService writes audit records in their own session after the
    posting has committed, so an audit failure cannot undo a posting.

Invariants enforced:
    - Append-only (db/immutability.py).
    - hash = H(actor | action | related_transaction_id | payload_hash |
      prev_hash); prev_hash is the previous record's hash (None for the
      first).
    - seq comes from SequenceService.  The counter row lock is taken before
      the previous hash is read, so concurrent writers cannot fork the chain.

Failure modes:
    - StoreUnavailable when the record cannot be written.
    - AuditChainBroken from validate_chain() on any mismatch.
"""

from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from church_ledger.domain.dtos import AuditRecordView
from church_ledger.exceptions import AuditChainBroken, StoreUnavailable
from church_ledger.logging_config import get_logger
from church_ledger.models.audit_record import AuditAction, AuditRecord
from church_ledger.services.base import BaseService
from church_ledger.services.sequence_service import SequenceService
from church_ledger.utils.hashing import hash_audit_record, hash_payload, to_json_safe

logger = get_logger("services.audit_log")


def _to_view(row: AuditRecord) -> AuditRecordView:
    return AuditRecordView(
        id=row.id,
        seq=row.seq,
        actor=row.actor,
        action=row.action,
        occurred_at=row.occurred_at,
        related_transaction_id=row.related_transaction_id,
        payload=dict(row.payload or {}),
        payload_hash=row.payload_hash,
        prev_hash=row.prev_hash,
        hash=row.hash,
    )


class AuditLog(BaseService):
    """Hash-chained audit log."""

    def record(
        self,
        actor: str,
        action: AuditAction | str,
        related_transaction_id: UUID | None = None,
        payload: dict[str, Any] | None = None,
    ) -> AuditRecordView:
        """Append one audit record and return it."""
        action_value = action.value if isinstance(action, AuditAction) else str(action)
        payload_data = to_json_safe(payload)
        payload_hash = hash_payload(payload_data)

        try:
            seq = SequenceService(self._session).next_value(SequenceService.AUDIT_RECORD)
            prev_hash = self._last_hash()
            occurred_at = self._clock.now()
            record_hash = hash_audit_record(
                seq=seq,
                occurred_at=occurred_at,
                actor=actor,
                action=action_value,
                related_transaction_id=(
                    str(related_transaction_id) if related_transaction_id else None
                ),
                payload_hash=payload_hash,
                prev_hash=prev_hash,
            )
            row = AuditRecord(
                seq=seq,
                actor=actor,
                action=action_value,
                occurred_at=occurred_at,
                related_transaction_id=related_transaction_id,
                payload=payload_data,
                payload_hash=payload_hash,
                prev_hash=prev_hash,
                hash=record_hash,
            )
            self._session.add(row)
            self._session.flush()
        except SQLAlchemyError as exc:
            raise StoreUnavailable("audit_record", str(exc)) from exc

        logger.info(
            "audit_record_created",
            extra={
                "audit_seq": seq,
                "action": action_value,
                "related_transaction_id": (
                    str(related_transaction_id) if related_transaction_id else None
                ),
            },
        )
        return _to_view(row)

    def records_for_transaction(self, transaction_id: UUID) -> list[AuditRecordView]:
        rows = self._session.execute(
            select(AuditRecord)
            .where(AuditRecord.related_transaction_id == transaction_id)
            .order_by(AuditRecord.seq)
        ).scalars().all()
        return [_to_view(row) for row in rows]

    def records(self, limit: int | None = None) -> list[AuditRecordView]:
        """All records in chain order (oldest first)."""
        query = select(AuditRecord).order_by(AuditRecord.seq)
        if limit is not None:
            query = query.limit(limit)
        return [_to_view(row) for row in self._session.execute(query).scalars().all()]

    def validate_chain(self) -> bool:
        """
        Recompute every hash and check every link.

        Returns True for a valid (or empty) chain.

        Raises:
            AuditChainBroken: at the first record that does not match.
        """
        rows = self._session.execute(
            select(AuditRecord).order_by(AuditRecord.seq)
        ).scalars().all()

        prev_hash: str | None = None
        for row in rows:
            if row.prev_hash != prev_hash:
                logger.critical("audit_chain_broken", extra={"audit_seq": row.seq})
                raise AuditChainBroken(row.seq, prev_hash or "GENESIS", row.prev_hash or "GENESIS")

            payload_hash = hash_payload(row.payload or {})
            expected = hash_audit_record(
                seq=row.seq,
                occurred_at=row.occurred_at,
                actor=row.actor,
                action=row.action,
                related_transaction_id=(
                    str(row.related_transaction_id) if row.related_transaction_id else None
                ),
                payload_hash=payload_hash,
                prev_hash=row.prev_hash,
            )
            if payload_hash != row.payload_hash or expected != row.hash:
                logger.critical("audit_chain_broken", extra={"audit_seq": row.seq})
                raise AuditChainBroken(row.seq, expected, row.hash)
            prev_hash = row.hash

        logger.info("audit_chain_valid", extra={"record_count": len(rows)})
        return True

    def _last_hash(self) -> str | None:
        return self._session.execute(
            select(AuditRecord.hash).order_by(AuditRecord.seq.desc()).limit(1)
        ).scalar_one_or_none()

"""
Audit hash chain: linkage, recomputation and tamper detection.
"""

from datetime import timedelta

import pytest
from sqlalchemy import select

from church_ledger.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from church_ledger.exceptions import AuditChainBroken
from church_ledger.models.audit_record import AuditAction, AuditRecord
from church_ledger.services.audit_log import AuditLog


@pytest.fixture
def tampering():
    """Disable immutability listeners for the duration of one test."""
    unregister_immutability_listeners()
    yield
    register_immutability_listeners()


def _record_three(db):
    with db.session_scope() as session:
        audit = AuditLog(session)
        for n in range(3):
            audit.record("clerk", AuditAction.EVENT_POSTED, payload={"n": n})


def _validate(db):
    with db.session_scope() as session:
        return AuditLog(session).validate_chain()


class TestChain:
    def test_empty_chain_is_valid(self, db):
        assert _validate(db) is True

    def test_records_link_to_predecessor(self, db):
        _record_three(db)
        with db.session_scope() as session:
            records = AuditLog(session).records()

        assert [r.seq for r in records] == [1, 2, 3]
        assert records[0].prev_hash is None
        assert records[1].prev_hash == records[0].hash
        assert records[2].prev_hash == records[1].hash
        assert _validate(db) is True

    def test_identical_payloads_hash_differently(self, db):
        with db.session_scope() as session:
            audit = AuditLog(session)
            first = audit.record("clerk", "manual_note", payload={"text": "same"})
            second = audit.record("clerk", "manual_note", payload={"text": "same"})

        assert first.payload_hash == second.payload_hash
        assert first.hash != second.hash

    def test_posting_writes_a_valid_chain(self, posting_service, make_donation, make_expense, db):
        posting_service.post_event(make_donation())
        posting_service.post_event(make_expense())
        assert _validate(db) is True

    def test_limit(self, db):
        _record_three(db)
        with db.session_scope() as session:
            assert [r.seq for r in AuditLog(session).records(limit=2)] == [1, 2]


class TestTamperDetection:
    def test_edited_payload_is_detected(self, db, tampering, captured_logs):
        _record_three(db)
        with db.session_scope() as session:
            row = session.execute(select(AuditRecord).where(AuditRecord.seq == 2)).scalar_one()
            row.payload = {"n": 99}

        with pytest.raises(AuditChainBroken) as exc_info:
            _validate(db)
        assert exc_info.value.seq == 2
        assert any(
            r["message"] == "audit_chain_broken" and r["level"] == "CRITICAL"
            for r in captured_logs()
        )

    def test_rewritten_hash_breaks_the_next_link(self, db, tampering):
        _record_three(db)
        with db.session_scope() as session:
            row = session.execute(select(AuditRecord).where(AuditRecord.seq == 2)).scalar_one()
            row.payload = {"n": 99}
            row.payload_hash = "0" * 64
            row.hash = "f" * 64

        with pytest.raises(AuditChainBroken) as exc_info:
            _validate(db)
        assert exc_info.value.seq == 2

    def test_deleted_record_is_detected(self, db, tampering):
        _record_three(db)
        with db.session_scope() as session:
            row = session.execute(select(AuditRecord).where(AuditRecord.seq == 2)).scalar_one()
            session.delete(row)

        with pytest.raises(AuditChainBroken) as exc_info:
            _validate(db)
        assert exc_info.value.seq == 3

    def test_redated_record_is_detected(self, db, tampering):
        _record_three(db)
        with db.session_scope() as session:
            row = session.execute(select(AuditRecord).where(AuditRecord.seq == 2)).scalar_one()
            row.occurred_at = row.occurred_at - timedelta(days=30)

        with pytest.raises(AuditChainBroken) as exc_info:
            _validate(db)
        assert exc_info.value.seq == 2

"""
Idempotency keys, keyed locks and deterministic hashing.
"""

import threading
import time
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import UUID

import pytest

from church_ledger.domain.events import Donation, PayrollLine, PayrollRun
from church_ledger.utils.hashing import (
    canonicalize_json,
    hash_audit_record,
    hash_payload,
    to_json_safe,
)
from church_ledger.utils.idempotency import (
    KeyedLocks,
    generate_idempotency_key,
    reversal_idempotency_key,
)

RECORD_ID = UUID("550e8400-e29b-41d4-a716-446655440000")
MOMENT = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


class TestIdempotencyKeys:
    def test_default_key_is_kind_and_record_id(self):
        donation = Donation(actor="a", amount="1", fund="Missions", record_id=RECORD_ID)
        assert donation.effective_idempotency_key == f"donation:{RECORD_ID}"

    def test_explicit_key_wins(self):
        donation = Donation(actor="a", amount="1", fund="Missions", idempotency_key="form-77")
        assert donation.effective_idempotency_key == "form-77"

    def test_generated_record_ids_differ(self):
        first = Donation(actor="a", amount="1", fund="Missions")
        second = Donation(actor="a", amount="1", fund="Missions")
        assert first.effective_idempotency_key != second.effective_idempotency_key

    def test_helpers(self):
        assert generate_idempotency_key("bill", "x") == "bill:x"
        assert reversal_idempotency_key(RECORD_ID) == f"reversal:{RECORD_ID}"

    def test_payroll_details_are_json_safe(self):
        run = PayrollRun(actor="a", lines=(PayrollLine("Alice", Decimal("10.00")),))
        assert to_json_safe(run.details()) == {
            "lines": [{"amount": "10.00", "employee": "Alice"}],
            "period": None,
        }


class TestKeyedLocks:
    def test_same_key_is_serialized(self):
        locks = KeyedLocks()
        inside = []
        overlaps = []

        def worker():
            with locks.hold("k"):
                if inside:
                    overlaps.append(True)
                inside.append(True)
                time.sleep(0.01)
                inside.pop()

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert overlaps == []

    def test_different_keys_do_not_block(self):
        locks = KeyedLocks()
        with locks.hold("a"):
            acquired = threading.Event()

            def other():
                with locks.hold("b"):
                    acquired.set()

            t = threading.Thread(target=other)
            t.start()
            assert acquired.wait(timeout=2)
            t.join()

    def test_unused_locks_are_dropped(self):
        locks = KeyedLocks()
        with locks.hold("a"):
            assert len(locks) == 1
        assert len(locks) == 0


class TestHashing:
    def test_canonical_json_is_key_order_independent(self):
        assert canonicalize_json({"b": 1, "a": 2}) == canonicalize_json({"a": 2, "b": 1})

    def test_decimal_normalization(self):
        assert hash_payload({"amount": Decimal("10.50")}) == hash_payload({"amount": Decimal("10.5")})

    def test_audit_hash_depends_on_previous(self):
        payload_hash = hash_payload({"x": 1})
        first = hash_audit_record(1, MOMENT, "a", "event_posted", None, payload_hash, None)
        second = hash_audit_record(2, MOMENT, "a", "event_posted", None, payload_hash, first)
        assert first != second
        assert len(first) == 64

    def test_audit_hash_depends_on_every_field(self):
        base = (1, MOMENT, "a", "event_posted", "t1", "p", "prev")
        reference = hash_audit_record(*base)
        changes = {0: 2, 1: MOMENT + timedelta(microseconds=1)}
        for index in range(len(base)):
            changed = list(base)
            changed[index] = changes.get(index, f"{base[index]}x")
            assert hash_audit_record(*changed) != reference

    def test_audit_hash_uses_utc_instant(self):
        nairobi = timezone(timedelta(hours=3))
        args = ("a", "event_posted", None, "p", None)
        assert hash_audit_record(1, MOMENT, *args) == hash_audit_record(
            1, MOMENT.astimezone(nairobi), *args
        )

    def test_audit_hash_rejects_naive_timestamp(self):
        with pytest.raises(ValueError):
            hash_audit_record(1, MOMENT.replace(tzinfo=None), "a", "x", None, "p", None)

"""
LedgerStore: append validation, derived balances and drill-down.
"""

from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from church_ledger.domain.dtos import LineDraft, TransactionDraft
from church_ledger.domain.values import AccountType, Direction
from church_ledger.exceptions import (
    DuplicateIdempotencyKey,
    MalformedEvent,
    UnbalancedTransaction,
    UnknownAccount,
)
from church_ledger.services.account_registry import AccountRegistry
from church_ledger.services.ledger_store import LedgerStore


@pytest.fixture
def registry(session, ledger_config):
    registry = AccountRegistry(session)
    registry.load_chart(ledger_config.chart)
    return registry


@pytest.fixture
def store(session, deterministic_clock):
    return LedgerStore(session, deterministic_clock)


def _draft(registry, debit, credit, amount, reference_id="rec-1", credit_amount=None):
    debit_account = registry.resolve(debit)
    credit_account = registry.resolve(credit)
    return TransactionDraft(
        event_kind="donation",
        reference_id=reference_id,
        description="test posting",
        lines=(
            LineDraft(
                account_name=debit_account.name,
                account_type=AccountType(debit_account.account_type),
                direction=Direction.DEBIT,
                amount=Decimal(amount),
                account_id=debit_account.id,
            ),
            LineDraft(
                account_name=credit_account.name,
                account_type=AccountType(credit_account.account_type),
                direction=Direction.CREDIT,
                amount=Decimal(credit_amount or amount),
                account_id=credit_account.id,
            ),
        ),
    )


class TestAppend:
    def test_lines_share_posted_at_and_seq_increases(self, registry, store, deterministic_clock):
        first = store.append(
            _draft(registry, "Cash", "Tithes & Offering Income", "10.00"), "clerk", "k1"
        )
        deterministic_clock.advance(60)
        second = store.append(
            _draft(registry, "Cash", "Missions Income", "5.00", "rec-2"), "clerk", "k2"
        )

        assert second.seq == first.seq + 1
        assert {e.posted_at for e in first.entries} == {first.posted_at}
        assert first.posted_at == deterministic_clock.now() - timedelta(seconds=60)
        assert [e.line_seq for e in first.entries] == [0, 1]

    def test_unbalanced_draft_is_rejected(self, registry, store):
        draft = _draft(registry, "Cash", "Missions Income", "10.00", credit_amount="9.99")

        with pytest.raises(UnbalancedTransaction):
            store.append(draft, "clerk", "k1")
        assert store.transactions() == []

    def test_single_line_draft_is_rejected(self, registry, store):
        draft = _draft(registry, "Cash", "Missions Income", "10.00")
        one_line = TransactionDraft(
            event_kind=draft.event_kind,
            reference_id=draft.reference_id,
            description=draft.description,
            lines=draft.lines[:1],
        )

        with pytest.raises(MalformedEvent):
            store.append(one_line, "clerk", "k1")

    def test_unresolved_line_is_rejected(self, registry, store):
        draft = _draft(registry, "Cash", "Missions Income", "10.00")
        unresolved = TransactionDraft(
            event_kind=draft.event_kind,
            reference_id=draft.reference_id,
            description=draft.description,
            lines=(draft.lines[0], LineDraft(
                account_name="Missions Income",
                account_type=AccountType.INCOME,
                direction=Direction.CREDIT,
                amount=Decimal("10.00"),
            )),
        )

        with pytest.raises(UnknownAccount):
            store.append(unresolved, "clerk", "k1")

    def test_idempotency_key_is_unique(self, registry, store):
        first = store.append(_draft(registry, "Cash", "Missions Income", "1.00"), "clerk", "k1")

        with pytest.raises(DuplicateIdempotencyKey) as exc_info:
            store.append(_draft(registry, "Cash", "Missions Income", "1.00", "rec-2"), "clerk", "k1")
        assert exc_info.value.existing_transaction_id == str(first.id)

    def test_caller_supplied_transaction_id(self, registry, store):
        wanted = uuid4()
        record = store.append(
            _draft(registry, "Cash", "Missions Income", "1.00"), "clerk", "k1", transaction_id=wanted
        )
        assert record.id == wanted
        assert store.find_by_idempotency_key("k1").id == wanted


class TestBalances:
    def test_balances_follow_normal_side(self, registry, store):
        store.append(_draft(registry, "Cash", "Tithes & Offering Income", "100.00"), "clerk", "k1")
        store.append(_draft(registry, "Utilities Expense", "Cash", "30.00", "rec-2"), "clerk", "k2")

        assert store.balance_of(registry.find("Cash").id) == Decimal("70.00")
        assert store.balance_of(registry.find("Tithes & Offering Income").id) == Decimal("100.00")
        assert store.balance_of(registry.find("Utilities Expense").id) == Decimal("30.00")

    def test_untouched_account_is_zero(self, registry, store):
        assert store.balance_of(registry.find("Rent Expense").id) == Decimal("0")

    def test_as_of_excludes_later_lines(self, registry, store, deterministic_clock):
        store.append(_draft(registry, "Cash", "Missions Income", "10.00"), "clerk", "k1")
        cutoff = deterministic_clock.now()
        deterministic_clock.advance(3600)
        store.append(_draft(registry, "Cash", "Missions Income", "15.00", "rec-2"), "clerk", "k2")

        cash = registry.find("Cash").id
        assert store.balance_of(cash, as_of=cutoff) == Decimal("10.00")
        assert store.balance_of(cash, as_of=cutoff - timedelta(seconds=1)) == Decimal("0")
        assert store.balance_of(cash) == Decimal("25.00")

    def test_naive_as_of_is_rejected(self, registry, store, deterministic_clock):
        with pytest.raises(ValueError):
            store.balance_of(registry.find("Cash").id, as_of=deterministic_clock.now().replace(tzinfo=None))

    def test_unregistered_account_id(self, store):
        with pytest.raises(UnknownAccount):
            store.balance_of(uuid4())


class TestDrillDown:
    def test_entries_for_reference(self, registry, store):
        store.append(_draft(registry, "Cash", "Missions Income", "10.00", "rec-1"), "clerk", "k1")
        store.append(_draft(registry, "Cash", "Welfare Income", "20.00", "rec-2"), "clerk", "k2")

        entries = store.entries_for("rec-1")
        assert [(e.account_name, e.direction) for e in entries] == [
            ("Cash", Direction.DEBIT),
            ("Missions Income", Direction.CREDIT),
        ]
        assert store.entries_for("no-such-record") == []

    def test_no_unbalanced_transactions(self, registry, store):
        store.append(_draft(registry, "Cash", "Missions Income", "10.00"), "clerk", "k1")
        assert store.unbalanced_transactions() == []

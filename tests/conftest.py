"""
Pytest fixtures for the church ledger test suite.

Provides:
- An in-memory SQLite LedgerDatabase per test (tables created, chart loaded)
- A DeterministicClock shared by every service under test
- The default LedgerConfig and a ready PostingService
- Event factories and a JSON log capture fixture

Concurrency tests build their own file-backed database (see
tests/concurrency); in-memory SQLite shares one connection across threads.
"""

import json
import logging
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal
from io import StringIO

import pytest

from church_config import get_active_config
from church_ledger.db.engine import LedgerDatabase
from church_ledger.domain.clock import DeterministicClock
from church_ledger.domain.events import (
    Bill,
    BillPayment,
    Donation,
    Expense,
    Invoice,
    InvoiceCollection,
    PayrollLine,
    PayrollRun,
)
from church_ledger.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from church_ledger.services.account_registry import AccountRegistry
from church_ledger.services.ledger_store import LedgerStore
from church_ledger.services.posting_service import PostingService

TEST_ACTOR = "treasurer@example.org"


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture church_ledger logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, posting_service):
            posting_service.post_event(...)
            logs = captured_logs()
            assert any(r["message"] == "posting_committed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    handler.setLevel(logging.DEBUG)
    root = logging.getLogger("church_ledger")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Core fixtures
# =============================================================================


@pytest.fixture
def test_actor() -> str:
    return TEST_ACTOR


@pytest.fixture
def deterministic_clock() -> DeterministicClock:
    return DeterministicClock(datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def ledger_config():
    return get_active_config()


@pytest.fixture
def auto_vivify_config(ledger_config):
    return replace(
        ledger_config,
        posting_policy=replace(ledger_config.posting_policy, auto_vivify_accounts=True),
    )


@pytest.fixture
def db():
    """Fresh in-memory database with all tables."""
    database = LedgerDatabase("sqlite://")
    database.create_tables()
    yield database
    database.dispose()


@pytest.fixture
def posting_service(db, ledger_config, deterministic_clock) -> PostingService:
    """PostingService over the default chart of accounts."""
    service = PostingService(db, ledger_config, deterministic_clock)
    service.load_chart()
    return service


@pytest.fixture
def session(db):
    """
    A session for direct service tests.  Committed on teardown.

    Do not combine with posting_service calls inside one test: the in-memory
    database has a single connection.
    """
    with db.session_scope() as s:
        yield s


@pytest.fixture
def balance(db, ledger_config):
    """balance("Cash") -> Decimal, read in its own session."""

    def _balance(name: str, as_of: datetime | None = None) -> Decimal:
        with db.session_scope() as s:
            account = AccountRegistry(s).find(name)
            assert account is not None, f"no account named {name!r}"
            return LedgerStore(s, minor_unit_exponent=ledger_config.minor_unit_exponent).balance_of(
                account.id, as_of
            )

    return _balance


# =============================================================================
# Event factories
# =============================================================================


@pytest.fixture
def make_donation():
    def _make(amount="100.00", fund="Tithes & Offering", **kwargs) -> Donation:
        kwargs.setdefault("actor", TEST_ACTOR)
        return Donation(amount=amount, fund=fund, **kwargs)

    return _make


@pytest.fixture
def make_expense():
    def _make(amount="50.00", category="Utilities", **kwargs) -> Expense:
        kwargs.setdefault("actor", TEST_ACTOR)
        return Expense(amount=amount, category=category, **kwargs)

    return _make


@pytest.fixture
def make_bill():
    def _make(amount="300.00", category="Rent", **kwargs) -> Bill:
        kwargs.setdefault("actor", TEST_ACTOR)
        return Bill(amount=amount, category=category, **kwargs)

    return _make


@pytest.fixture
def make_bill_payment():
    def _make(amount="300.00", **kwargs) -> BillPayment:
        kwargs.setdefault("actor", TEST_ACTOR)
        return BillPayment(amount=amount, **kwargs)

    return _make


@pytest.fixture
def make_invoice():
    def _make(amount="200.00", **kwargs) -> Invoice:
        kwargs.setdefault("actor", TEST_ACTOR)
        return Invoice(amount=amount, **kwargs)

    return _make


@pytest.fixture
def make_invoice_collection():
    def _make(amount="200.00", **kwargs) -> InvoiceCollection:
        kwargs.setdefault("actor", TEST_ACTOR)
        return InvoiceCollection(amount=amount, **kwargs)

    return _make


@pytest.fixture
def make_payroll_run():
    def _make(lines=(("Alice", "1000.00"), ("Bob", "2000.00")), **kwargs) -> PayrollRun:
        kwargs.setdefault("actor", TEST_ACTOR)
        return PayrollRun(
            lines=tuple(PayrollLine(employee=e, amount=a) for e, a in lines),
            **kwargs,
        )

    return _make

"""
church-ledger command line.

Operator commands for a ledger database:

    church-ledger init-db          create tables and load the chart of accounts
    church-ledger accounts         list accounts with their current balances
    church-ledger trial-balance    print the trial balance (optionally --as-of)
    church-ledger verify           check the audit hash chain and that every
                                   journal transaction balances

The database URL comes from --database-url, then CHURCH_LEDGER_DATABASE_URL,
then a SQLite file in the working directory.
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy.exc import SQLAlchemyError

from church_config import get_active_config
from church_ledger.db.engine import LedgerDatabase
from church_ledger.exceptions import AuditChainBroken, LedgerError
from church_ledger.logging_config import configure_logging
from church_ledger.selectors.reporting_selector import ReportingSelector
from church_ledger.services.account_registry import AccountRegistry, to_account_view
from church_ledger.services.audit_log import AuditLog
from church_ledger.services.ledger_store import LedgerStore
from church_ledger.services.posting_service import PostingService

DATABASE_URL_ENV = "CHURCH_LEDGER_DATABASE_URL"
DEFAULT_DATABASE_URL = "sqlite:///church_ledger.db"

W = 72
AMT_W = 16


def _fmt(amount: Decimal, exponent: int) -> str:
    return f"{amount:,.{exponent}f}"


def _parse_as_of(value: str) -> datetime:
    """ISO date or datetime; naive values are taken as UTC end of day/instant."""
    moment = datetime.fromisoformat(value)
    if len(value) == 10:
        moment = moment.replace(hour=23, minute=59, second=59, microsecond=999999)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="church-ledger",
        description="Church double-entry ledger administration",
    )
    parser.add_argument(
        "--database-url",
        default=os.environ.get(DATABASE_URL_ENV, DEFAULT_DATABASE_URL),
        help=f"SQLAlchemy database URL (default: ${DATABASE_URL_ENV} or {DEFAULT_DATABASE_URL})",
    )
    parser.add_argument("--config", default=None, help="Ledger configuration YAML file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Emit JSON logs to stderr")

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("init-db", help="Create tables and load the chart of accounts")
    sub.add_parser("accounts", help="List accounts and balances")
    tb = sub.add_parser("trial-balance", help="Print the trial balance")
    tb.add_argument("--as-of", type=_parse_as_of, default=None, help="ISO date or datetime")
    sub.add_parser("verify", help="Verify audit chain and ledger balance")
    return parser


def cmd_init_db(db: LedgerDatabase, config) -> int:
    db.create_tables()
    created = PostingService(db, config).load_chart(actor="cli")
    print(f"  Database ready. {len(created)} account(s) created from the chart.")
    return 0


def cmd_accounts(db: LedgerDatabase, config) -> int:
    with db.session_scope() as session:
        store = LedgerStore(session, minor_unit_exponent=config.minor_unit_exponent)
        accounts = AccountRegistry(session).list_accounts()
        print(f"  {'Code':<8}{'Account':<36}{'Type':<11}{'Balance':>{AMT_W}}")
        print(f"  {'-' * (W - 2)}")
        for account in accounts:
            view = to_account_view(account)
            flags = "" if view.is_active else " (inactive)"
            if view.auto_created:
                flags += " *"
            balance = store.balance_of(view.id)
            print(
                f"  {view.code:<8}{(view.name + flags)[:35]:<36}"
                f"{view.account_type.value:<11}"
                f"{_fmt(balance, config.minor_unit_exponent):>{AMT_W}}"
            )
    return 0


def cmd_trial_balance(db: LedgerDatabase, config, as_of: datetime | None) -> int:
    with db.session_scope() as session:
        tb = ReportingSelector(session, config.minor_unit_exponent).trial_balance(as_of)

    label_w = W - 2 * AMT_W - 2
    places = config.minor_unit_exponent
    heading = f"As of {as_of.isoformat()}" if as_of else "All postings"
    print(f"  TRIAL BALANCE  ({heading}, {config.currency})")
    print(f"  {'Account':<{label_w}}{'Debit':>{AMT_W}}{'Credit':>{AMT_W}}")
    print(f"  {'-' * (W - 2)}")
    for row in tb.rows:
        dr = _fmt(row.debit_total, places) if row.debit_total else ""
        cr = _fmt(row.credit_total, places) if row.credit_total else ""
        label = f"{row.account_code}  {row.account_name}"[: label_w - 1]
        print(f"  {label:<{label_w}}{dr:>{AMT_W}}{cr:>{AMT_W}}")
    print(f"  {'-' * (W - 2)}")
    debits, credits = _fmt(tb.total_debits, places), _fmt(tb.total_credits, places)
    print(f"  {'TOTALS':<{label_w}}{debits:>{AMT_W}}{credits:>{AMT_W}}")
    print(f"  Debits = Credits: {'OK' if tb.is_balanced else 'FAIL'}")
    return 0 if tb.is_balanced else 1


def cmd_verify(db: LedgerDatabase, config) -> int:
    ok = True
    with db.session_scope() as session:
        try:
            AuditLog(session).validate_chain()
            print("  Audit chain: OK")
        except AuditChainBroken as exc:
            print(f"  Audit chain: BROKEN at seq {exc.seq}")
            ok = False

        unbalanced = LedgerStore(session).unbalanced_transactions()
        if unbalanced:
            print(f"  Ledger balance: FAIL ({len(unbalanced)} unbalanced transaction(s))")
            for transaction_id in unbalanced:
                print(f"    {transaction_id}")
            ok = False
        else:
            print("  Ledger balance: OK")
    return 0 if ok else 1


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(level=logging.DEBUG if args.verbose else logging.WARNING)

    try:
        config = get_active_config(args.config)
    except (OSError, ValueError) as exc:
        print(f"  ERROR: configuration: {exc}", file=sys.stderr)
        return 2

    db = LedgerDatabase(args.database_url)
    try:
        if args.command == "init-db":
            return cmd_init_db(db, config)
        if args.command == "accounts":
            return cmd_accounts(db, config)
        if args.command == "trial-balance":
            return cmd_trial_balance(db, config, args.as_of)
        return cmd_verify(db, config)
    except (LedgerError, SQLAlchemyError) as exc:
        print(f"  ERROR: {exc}", file=sys.stderr)
        return 1
    finally:
        db.dispose()


if __name__ == "__main__":
    sys.exit(main())

"""
ORM-level immutability enforcement for posted ledger data.

===============================================================================
WHY THIS EXISTS
===============================================================================

A posted journal transaction is a financial fact.  It is never edited and
never deleted; a mistake is corrected by posting an offsetting reversal that
leaves a visible trail.  The audit log is held to the same rule.

SQLAlchemy fires events before UPDATE/DELETE statements reach the database.
The listeners below intercept them:

    session.flush()
         |
         v
    [before_update] --> _reject_update() --> ImmutabilityViolation
         |
         v
    [before_delete] --> _reject_delete() --> ImmutabilityViolation
         |
         v
    SQL sent to database (only if checks pass)

The flush aborts and the caller's transaction is rolled back by
LedgerDatabase.session_scope().

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity               | Rule
---------------------|-----------------------------------------------------
JournalTransaction   | Never updated, never deleted
JournalEntry         | Never updated, never deleted
AuditRecord          | Never updated, never deleted
Account              | account_type / normal_balance / code frozen once the
                     | account has ledger entries; never deleted once used

Bulk ``session.execute(update(...))`` bypasses ORM events and is not used by
any ledger code path.

===============================================================================
USAGE
===============================================================================

LedgerDatabase registers the listeners on construction.  Registration is
idempotent.  To disable them (TESTS ONLY):

    from church_ledger.db.immutability import unregister_immutability_listeners
    unregister_immutability_listeners()
"""

from sqlalchemy import event, select

from church_ledger.exceptions import ImmutabilityViolation
from church_ledger.logging_config import get_logger

logger = get_logger("db.immutability")

ACCOUNT_STRUCTURAL_FIELDS = frozenset({"account_type", "normal_balance", "code"})


def _blocked(entity_type: str, entity_id, operation: str) -> ImmutabilityViolation:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
        },
    )
    return ImmutabilityViolation(
        entity_type=entity_type,
        entity_id=str(entity_id),
        operation=operation,
    )


def _reject_update(mapper, connection, target):
    raise _blocked(type(target).__name__, target.id, "UPDATE")


def _reject_delete(mapper, connection, target):
    raise _blocked(type(target).__name__, target.id, "DELETE")


def _account_has_entries(connection, account_id) -> bool:
    from church_ledger.models.journal import JournalEntry

    row = connection.execute(
        select(JournalEntry.id).where(JournalEntry.account_id == account_id).limit(1)
    ).first()
    return row is not None


def _check_account_update(mapper, connection, target):
    """Structural fields are frozen once the account carries entries."""
    from sqlalchemy import inspect

    state = inspect(target)
    changed = {
        attr.key
        for attr in state.attrs
        if attr.key in ACCOUNT_STRUCTURAL_FIELDS and attr.history.has_changes()
    }
    if changed and _account_has_entries(connection, target.id):
        raise _blocked("Account", target.id, f"UPDATE {','.join(sorted(changed))}")


def _check_account_delete(mapper, connection, target):
    if _account_has_entries(connection, target.id):
        raise _blocked("Account", target.id, "DELETE")


def _listeners():
    from church_ledger.models.account import Account
    from church_ledger.models.audit_record import AuditRecord
    from church_ledger.models.journal import JournalEntry, JournalTransaction

    return (
        (JournalTransaction, "before_update", _reject_update),
        (JournalTransaction, "before_delete", _reject_delete),
        (JournalEntry, "before_update", _reject_update),
        (JournalEntry, "before_delete", _reject_delete),
        (AuditRecord, "before_update", _reject_update),
        (AuditRecord, "before_delete", _reject_delete),
        (Account, "before_update", _check_account_update),
        (Account, "before_delete", _check_account_delete),
    )


def register_immutability_listeners() -> None:
    """Register all immutability listeners (idempotent)."""
    for target, name, fn in _listeners():
        if not event.contains(target, name, fn):
            event.listen(target, name, fn)


def unregister_immutability_listeners() -> None:
    """
    Remove immutability listeners.

    WARNING: Only use this in tests that intentionally tamper with rows to
    verify detection (e.g. audit chain validation).
    """
    for target, name, fn in _listeners():
        if event.contains(target, name, fn):
            event.remove(target, name, fn)

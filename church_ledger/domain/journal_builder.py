"""
Journal entry builder -- business event to balanced transaction draft.

Responsibility:
    Maps each business event kind to its fixed debit/credit pattern.  Every
    rule emits symmetric pairs of equal amounts, so the output is balanced by
    construction; ``build_drafts`` still asserts it before returning.

Architecture position:
    Kernel > Domain.  Pure function, no I/O, no ids, no timestamps.  Account
    names are resolved to ids later by the posting service.

Posting rules:

    Event               | Debit                      | Credit
    --------------------|----------------------------|--------------------------
    Donation            | Cash                       | <Fund> Income
    Expense             | <Category> Expense         | Cash
    Bill                | <Category> Expense         | Accounts Payable
    BillPayment         | Accounts Payable           | Cash
    Invoice             | Accounts Receivable        | Service Revenue
    InvoiceCollection   | Cash                       | Accounts Receivable
    PayrollRun          | Salaries Expense (per line)| Cash (per line)
    Reversal            | mirror of every original line, opposite direction

Failure modes:
    - InvalidAmount: zero, negative, float, non-finite or over-precise amount.
    - InvalidAmount: a payroll run whose total would not fit storage.
    - MalformedEvent: missing actor, blank fund/category, empty payroll run,
      unsupported event type, or a field longer than its storage column.
"""

from dataclasses import dataclass
from typing import Callable

from church_ledger.domain.dtos import (
    JournalTransactionRecord,
    LineDraft,
    TransactionDraft,
)
from church_ledger.domain.events import (
    Bill,
    BillPayment,
    BusinessEvent,
    Donation,
    Expense,
    Invoice,
    InvoiceCollection,
    PayrollRun,
)
from church_ledger.domain.values import (
    DEFAULT_MINOR_UNIT_EXPONENT,
    MAX_MINOR_UNITS,
    AccountType,
    Direction,
    parse_amount,
    to_minor_units,
)
from church_ledger.exceptions import InvalidAmount, MalformedEvent, UnbalancedTransaction

REVERSAL_KIND = "reversal"

# Column widths the draft and its business record are written to.
MAX_ACTOR_LENGTH = 255
MAX_FUND_LENGTH = 100
MAX_ACCOUNT_NAME_LENGTH = 255
MAX_LABEL_LENGTH = 255
MAX_IDEMPOTENCY_KEY_LENGTH = 300


@dataclass(frozen=True)
class AccountNames:
    """
    Names of the system accounts the rules post to.

    ``church_config.schema.SystemAccounts`` exposes the same attributes and
    can be passed wherever an AccountNames is expected.
    """

    cash: str = "Cash"
    accounts_payable: str = "Accounts Payable"
    accounts_receivable: str = "Accounts Receivable"
    service_revenue: str = "Service Revenue"
    salaries_expense: str = "Salaries Expense"
    income_suffix: str = "Income"
    expense_suffix: str = "Expense"


def _collapse(label: str) -> str:
    return " ".join(label.split())


def _with_suffix(label: str, suffix: str) -> str:
    """'Building Fund' -> 'Building Fund Income'; already-suffixed labels pass."""
    label = _collapse(label)
    folded = label.casefold()
    if folded == suffix.casefold() or folded.endswith(" " + suffix.casefold()):
        return label
    return f"{label} {suffix}"


def income_account_name(fund: str, names: AccountNames) -> str:
    return _with_suffix(fund, names.income_suffix)


def expense_account_name(category: str, names: AccountNames) -> str:
    return _with_suffix(category, names.expense_suffix)


def _require_label(value: str | None, field_name: str, event: BusinessEvent) -> str:
    if value is None or not str(value).strip():
        raise MalformedEvent(
            f"{event.kind} requires a non-empty {field_name}",
            reference_id=event.reference_id,
        )
    return str(value)


def _check_length(value: str, limit: int, field_name: str, reference_id: str | None) -> str:
    if len(value) > limit:
        raise MalformedEvent(
            f"{field_name} is longer than {limit} characters",
            reference_id=reference_id,
        )
    return value


def check_actor(actor: str | None, reference_id: str | None = None) -> str:
    """Reject a blank actor or one too long to store."""
    if not actor or not actor.strip():
        raise MalformedEvent("event has no actor", reference_id=reference_id)
    return _check_length(actor, MAX_ACTOR_LENGTH, "actor", reference_id)


def fund_tag(fund: str | None) -> str | None:
    """Canonical fund tag: inner whitespace collapsed, blank means untagged."""
    if fund is None or not str(fund).strip():
        return None
    return _collapse(str(fund))


def _event_fund(event: BusinessEvent) -> str | None:
    tag = fund_tag(getattr(event, "fund", None))
    if tag is None:
        return None
    return _check_length(tag, MAX_FUND_LENGTH, "fund", event.reference_id)


def _pair(
    debit: tuple[str, AccountType],
    credit: tuple[str, AccountType],
    amount,
    description: str,
    fund: str | None,
) -> tuple[LineDraft, LineDraft]:
    return (
        LineDraft(
            account_name=debit[0],
            account_type=debit[1],
            direction=Direction.DEBIT,
            amount=amount,
            description=description,
            fund=fund,
        ),
        LineDraft(
            account_name=credit[0],
            account_type=credit[1],
            direction=Direction.CREDIT,
            amount=amount,
            description=description,
            fund=fund,
        ),
    )


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------


def _donation(event: Donation, names: AccountNames, exponent: int):
    fund = _require_label(event.fund, "fund", event)
    amount = parse_amount(event.amount, exponent)
    tag = _event_fund(event)
    description = event.description or f"Donation to {tag}"
    return description, _pair(
        (names.cash, AccountType.ASSET),
        (income_account_name(fund, names), AccountType.INCOME),
        amount,
        description,
        tag,
    )


def _expense(event: Expense, names: AccountNames, exponent: int):
    category = _require_label(event.category, "category", event)
    amount = parse_amount(event.amount, exponent)
    description = event.description or f"{_collapse(category)} expense"
    return description, _pair(
        (expense_account_name(category, names), AccountType.EXPENSE),
        (names.cash, AccountType.ASSET),
        amount,
        description,
        _event_fund(event),
    )


def _bill(event: Bill, names: AccountNames, exponent: int):
    category = _require_label(event.category, "category", event)
    amount = parse_amount(event.amount, exponent)
    description = event.description or f"{_collapse(category)} bill recorded"
    return description, _pair(
        (expense_account_name(category, names), AccountType.EXPENSE),
        (names.accounts_payable, AccountType.LIABILITY),
        amount,
        description,
        _event_fund(event),
    )


def _bill_payment(event: BillPayment, names: AccountNames, exponent: int):
    amount = parse_amount(event.amount, exponent)
    description = event.description or "Bill payment"
    return description, _pair(
        (names.accounts_payable, AccountType.LIABILITY),
        (names.cash, AccountType.ASSET),
        amount,
        description,
        _event_fund(event),
    )


def _invoice(event: Invoice, names: AccountNames, exponent: int):
    amount = parse_amount(event.amount, exponent)
    description = event.description or "Invoice issued"
    return description, _pair(
        (names.accounts_receivable, AccountType.ASSET),
        (names.service_revenue, AccountType.INCOME),
        amount,
        description,
        _event_fund(event),
    )


def _invoice_collection(event: InvoiceCollection, names: AccountNames, exponent: int):
    amount = parse_amount(event.amount, exponent)
    description = event.description or "Invoice payment collected"
    return description, _pair(
        (names.cash, AccountType.ASSET),
        (names.accounts_receivable, AccountType.ASSET),
        amount,
        description,
        _event_fund(event),
    )


def _payroll_run(event: PayrollRun, names: AccountNames, exponent: int):
    if not event.lines:
        raise MalformedEvent(
            "payroll run has no employee lines", reference_id=event.reference_id
        )
    lines: list[LineDraft] = []
    tag = _event_fund(event)
    for payroll_line in event.lines:
        employee = _require_label(payroll_line.employee, "employee", event)
        amount = parse_amount(payroll_line.amount, exponent)
        lines.extend(
            _pair(
                (names.salaries_expense, AccountType.EXPENSE),
                (names.cash, AccountType.ASSET),
                amount,
                f"Salary: {_collapse(employee)}",
                tag,
            )
        )
    description = event.description or (
        f"Payroll {event.period}" if event.period else "Payroll run"
    )
    return description, tuple(lines)


_RULES: dict[type, Callable] = {
    Donation: _donation,
    Expense: _expense,
    Bill: _bill,
    BillPayment: _bill_payment,
    Invoice: _invoice,
    InvoiceCollection: _invoice_collection,
    PayrollRun: _payroll_run,
}


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def build_drafts(
    event: BusinessEvent,
    names: AccountNames | None = None,
    exponent: int = DEFAULT_MINOR_UNIT_EXPONENT,
) -> TransactionDraft:
    """
    Derive the balanced transaction draft for a business event.

    Postconditions:
        - At least two lines.
        - total_debits == total_credits.
        - Every amount is positive and quantized to ``exponent`` places.

    Raises:
        InvalidAmount, MalformedEvent (both RejectedEvent).  Text fields
        longer than their storage columns raise MalformedEvent rather than
        failing at the database.
    """
    names = names or AccountNames()
    rule = _RULES.get(type(event))
    if rule is None:
        raise MalformedEvent(
            f"unsupported event type {type(event).__name__}",
            reference_id=getattr(event, "reference_id", None),
        )
    check_actor(event.actor, event.reference_id)
    if event.idempotency_key is not None:
        _check_length(
            event.idempotency_key,
            MAX_IDEMPOTENCY_KEY_LENGTH,
            "idempotency key",
            event.reference_id,
        )
    if event.label is not None:
        _check_length(event.label, MAX_LABEL_LENGTH, "label", event.reference_id)

    description, lines = rule(event, names, exponent)
    for line in lines:
        _check_length(
            line.account_name,
            MAX_ACCOUNT_NAME_LENGTH,
            "account name",
            event.reference_id,
        )
    draft = TransactionDraft(
        event_kind=event.kind,
        reference_id=event.reference_id,
        description=description,
        lines=tuple(lines),
    )
    if not draft.is_balanced:
        raise UnbalancedTransaction(
            str(draft.total_debits), str(draft.total_credits), draft.reference_id
        )
    if to_minor_units(draft.total_debits, exponent) > MAX_MINOR_UNITS:
        raise InvalidAmount(
            str(draft.total_debits), "total exceeds the largest storable amount"
        )
    return draft


def build_reversal(
    original: JournalTransactionRecord, reason: str | None = None
) -> TransactionDraft:
    """
    Mirror a committed transaction: same accounts and amounts, opposite
    directions, same reference id, linked through ``reversal_of_id``.
    """
    description = f"Reversal of {original.description}"
    if reason:
        description = f"{description} ({reason})"
    lines = tuple(
        LineDraft(
            account_name=entry.account_name,
            account_type=entry.account_type,
            direction=entry.direction.opposite(),
            amount=entry.amount,
            description=f"Reversal: {entry.description}",
            fund=entry.fund,
            account_id=entry.account_id,
        )
        for entry in original.entries
    )
    return TransactionDraft(
        event_kind=REVERSAL_KIND,
        reference_id=original.reference_id,
        description=description[:500],
        lines=lines,
        reversal_of_id=original.id,
    )

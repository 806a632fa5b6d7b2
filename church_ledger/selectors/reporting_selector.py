"""
Module: church_ledger.selectors.reporting_selector
Responsibility: Read-only financial statements for the church: trial
    balance, statement of activities (income vs. expenses, optionally per
    fund), statement of financial position, cash flow, and budget vs.
    actual spend per expense category.
Architecture position: Kernel > Selectors.  May import from models/,
    domain/ and selectors/base.py.

Invariants enforced:
    - No stored balances.  Every figure is a sum over committed ledger
      lines at query time, so a report always agrees with
      LedgerStore.balance_of for the same cut-off.
    - Reversals are ordinary lines; a reversed posting nets to zero in
      every report that includes both transactions.

Failure modes:
    - ValueError for naive datetimes or an end before the start.
    - ValueError for a negative or non-numeric budget allocation.
    - Empty reports (all totals zero) when nothing is posted.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from uuid import UUID

from sqlalchemy import case, func, select

from church_ledger.domain.journal_builder import (
    AccountNames,
    expense_account_name,
    fund_tag,
)
from church_ledger.domain.values import (
    AccountType,
    Direction,
    NormalBalance,
    from_minor_units,
)
from church_ledger.models.account import Account, account_lookup_key
from church_ledger.models.journal import JournalEntry, JournalTransaction
from church_ledger.selectors.base import BaseSelector

ZERO = Decimal("0")


@dataclass(frozen=True)
class TrialBalanceRow:
    """One account's debit and credit totals."""

    account_id: UUID
    account_code: str
    account_name: str
    account_type: AccountType
    debit_total: Decimal
    credit_total: Decimal

    @property
    def balance(self) -> Decimal:
        """Balance on the account's normal side."""
        if self.account_type.normal_balance == NormalBalance.DEBIT:
            return self.debit_total - self.credit_total
        return self.credit_total - self.debit_total


@dataclass(frozen=True)
class TrialBalance:
    as_of: datetime | None
    rows: tuple[TrialBalanceRow, ...]

    @property
    def total_debits(self) -> Decimal:
        return sum((row.debit_total for row in self.rows), ZERO)

    @property
    def total_credits(self) -> Decimal:
        return sum((row.credit_total for row in self.rows), ZERO)

    @property
    def is_balanced(self) -> bool:
        return self.total_debits == self.total_credits


@dataclass(frozen=True)
class StatementLine:
    account_code: str
    account_name: str
    amount: Decimal


@dataclass(frozen=True)
class StatementOfActivities:
    """Income and expenses for a period; the net change in net assets."""

    start: datetime
    end: datetime
    fund: str | None
    income: tuple[StatementLine, ...]
    expenses: tuple[StatementLine, ...]

    @property
    def total_income(self) -> Decimal:
        return sum((line.amount for line in self.income), ZERO)

    @property
    def total_expenses(self) -> Decimal:
        return sum((line.amount for line in self.expenses), ZERO)

    @property
    def net_change(self) -> Decimal:
        return self.total_income - self.total_expenses


@dataclass(frozen=True)
class StatementOfFinancialPosition:
    """
    Assets, liabilities and net assets at a point in time.

    Income and expense accounts are not closed into equity, so their net
    is shown as ``current_surplus`` and counted as part of net assets.
    """

    as_of: datetime | None
    assets: tuple[StatementLine, ...]
    liabilities: tuple[StatementLine, ...]
    equity: tuple[StatementLine, ...]
    current_surplus: Decimal

    @property
    def total_assets(self) -> Decimal:
        return sum((line.amount for line in self.assets), ZERO)

    @property
    def total_liabilities(self) -> Decimal:
        return sum((line.amount for line in self.liabilities), ZERO)

    @property
    def total_net_assets(self) -> Decimal:
        return sum((line.amount for line in self.equity), ZERO) + self.current_surplus

    @property
    def is_balanced(self) -> bool:
        return self.total_assets == self.total_liabilities + self.total_net_assets


@dataclass(frozen=True)
class CashFlowLine:
    """Cash received and paid by one kind of business event."""

    source: str
    inflow: Decimal
    outflow: Decimal

    @property
    def net(self) -> Decimal:
        return self.inflow - self.outflow


@dataclass(frozen=True)
class CashFlowStatement:
    """
    Movements on the cash account for a period, grouped by event kind.

    Reversals are their own source, so a reversed donation shows as an
    inflow under ``donation`` and an equal outflow under ``reversal``.
    """

    start: datetime
    end: datetime
    fund: str | None
    cash_account: str
    sources: tuple[CashFlowLine, ...]

    @property
    def total_inflows(self) -> Decimal:
        return sum((line.inflow for line in self.sources), ZERO)

    @property
    def total_outflows(self) -> Decimal:
        return sum((line.outflow for line in self.sources), ZERO)

    @property
    def net_change(self) -> Decimal:
        return self.total_inflows - self.total_outflows


class BudgetPeriod(str, Enum):
    """Window a budget allocation covers, ending at the report date."""

    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    ANNUALLY = "annually"
    ALL_TIME = "all_time"

    def start_for(self, as_of: datetime) -> datetime | None:
        """First instant (UTC) of the period containing ``as_of``; None for ALL_TIME."""
        if self is BudgetPeriod.ALL_TIME:
            return None
        if self is BudgetPeriod.MONTHLY:
            month = as_of.month
        elif self is BudgetPeriod.QUARTERLY:
            month = 3 * ((as_of.month - 1) // 3) + 1
        else:
            month = 1
        return as_of.replace(month=month, day=1, hour=0, minute=0, second=0, microsecond=0)


@dataclass(frozen=True)
class BudgetStatus:
    """Spend on one expense category against its allocation."""

    category: str
    account_name: str
    period: BudgetPeriod
    period_start: datetime | None
    as_of: datetime
    allocated: Decimal
    spent: Decimal

    @property
    def remaining(self) -> Decimal:
        return self.allocated - self.spent

    @property
    def percent_used(self) -> Decimal:
        """Share of the allocation spent; 0 when nothing was allocated."""
        if self.allocated <= 0:
            return ZERO
        return self.spent * 100 / self.allocated

    @property
    def is_over_budget(self) -> bool:
        return self.spent > self.allocated


class ReportingSelector(BaseSelector):
    """
    Financial statements derived from committed ledger lines.

    Guarantees:
        - Rows are ordered by account code.
        - Amounts are Decimals at the configured minor-unit precision.
    """

    def trial_balance(self, as_of: datetime | None = None) -> TrialBalance:
        """Debit and credit totals per account over lines posted up to ``as_of``."""
        rows = tuple(
            TrialBalanceRow(
                account_id=row.account_id,
                account_code=row.code,
                account_name=row.name,
                account_type=AccountType(row.account_type),
                debit_total=from_minor_units(row.debit_total, self.minor_unit_exponent),
                credit_total=from_minor_units(row.credit_total, self.minor_unit_exponent),
            )
            for row in self._account_totals(end=_as_utc(as_of, "as_of"))
        )
        return TrialBalance(as_of=as_of, rows=rows)

    def statement_of_activities(
        self,
        start: datetime,
        end: datetime,
        fund: str | None = None,
    ) -> StatementOfActivities:
        """
        Income and expense totals for lines with start <= posted_at <= end.

        When ``fund`` is given only lines tagged with that fund count; the
        filter is whitespace-collapsed the same way posted tags are.
        """
        start_utc, end_utc = _period(start, end)
        fund = fund_tag(fund)

        income: list[StatementLine] = []
        expenses: list[StatementLine] = []
        for row in self._account_totals(
            start=start_utc,
            end=end_utc,
            fund=fund,
            account_types=(AccountType.INCOME, AccountType.EXPENSE),
        ):
            account_type = AccountType(row.account_type)
            line = self._statement_line(row, account_type)
            if account_type == AccountType.INCOME:
                income.append(line)
            else:
                expenses.append(line)

        return StatementOfActivities(
            start=start,
            end=end,
            fund=fund,
            income=tuple(income),
            expenses=tuple(expenses),
        )

    def statement_of_financial_position(
        self, as_of: datetime | None = None
    ) -> StatementOfFinancialPosition:
        """Balance sheet over every line posted up to ``as_of``."""
        sections: dict[AccountType, list[StatementLine]] = {t: [] for t in AccountType}
        for row in self._account_totals(end=_as_utc(as_of, "as_of")):
            account_type = AccountType(row.account_type)
            sections[account_type].append(self._statement_line(row, account_type))

        surplus = sum(
            (line.amount for line in sections[AccountType.INCOME]), ZERO
        ) - sum((line.amount for line in sections[AccountType.EXPENSE]), ZERO)

        return StatementOfFinancialPosition(
            as_of=as_of,
            assets=tuple(sections[AccountType.ASSET]),
            liabilities=tuple(sections[AccountType.LIABILITY]),
            equity=tuple(sections[AccountType.EQUITY]),
            current_surplus=surplus,
        )

    def cash_flow(
        self,
        start: datetime,
        end: datetime,
        fund: str | None = None,
        cash_account: str = "Cash",
    ) -> CashFlowStatement:
        """
        Debits (inflows) and credits (outflows) on ``cash_account`` for lines
        with start <= posted_at <= end, one row per event kind.

        When ``fund`` is given only lines tagged with that fund count.
        """
        start_utc, end_utc = _period(start, end)
        fund = fund_tag(fund)
        debit_sum, credit_sum = _direction_sums()

        query = (
            select(JournalTransaction.event_kind, debit_sum, credit_sum)
            .join(JournalTransaction, JournalEntry.transaction_id == JournalTransaction.id)
            .join(Account, JournalEntry.account_id == Account.id)
            .where(Account.lookup_key == account_lookup_key(cash_account))
            .where(JournalEntry.posted_at >= start_utc)
            .where(JournalEntry.posted_at <= end_utc)
            .group_by(JournalTransaction.event_kind)
            .order_by(JournalTransaction.event_kind)
        )
        if fund is not None:
            query = query.where(JournalEntry.fund == fund)

        sources = tuple(
            CashFlowLine(
                source=row.event_kind,
                inflow=from_minor_units(row.debit_total, self.minor_unit_exponent),
                outflow=from_minor_units(row.credit_total, self.minor_unit_exponent),
            )
            for row in self.session.execute(query).all()
        )
        return CashFlowStatement(
            start=start,
            end=end,
            fund=fund,
            cash_account=cash_account,
            sources=sources,
        )

    def budget_vs_actual(
        self,
        category: str,
        allocated: Decimal | int | str,
        period: BudgetPeriod | str,
        as_of: datetime,
        names: AccountNames | None = None,
    ) -> BudgetStatus:
        """
        Net debits on the ``<Category> Expense`` account from the start of
        ``period`` up to ``as_of``, against ``allocated``.

        Bills count when recorded, not when paid.  Periods are calendar
        periods in UTC.

        Raises:
            ValueError: naive ``as_of``, blank category, unknown period, or
                an allocation that is negative or not an exact number.
        """
        if not category or not category.strip():
            raise ValueError("category must not be blank")
        period = BudgetPeriod(period)
        budget = _allocation(allocated)
        as_of_utc = _as_utc(as_of, "as_of")
        period_start = period.start_for(as_of_utc)
        account_name = expense_account_name(category, names or AccountNames())

        spent = ZERO
        for row in self._account_totals(
            start=period_start,
            end=as_of_utc,
            lookup_key=account_lookup_key(account_name),
        ):
            spent += self._statement_line(row, AccountType.EXPENSE).amount

        return BudgetStatus(
            category=" ".join(category.split()),
            account_name=account_name,
            period=period,
            period_start=period_start,
            as_of=as_of,
            allocated=budget,
            spent=spent,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _statement_line(self, row, account_type: AccountType) -> StatementLine:
        if account_type.normal_balance == NormalBalance.DEBIT:
            units = row.debit_total - row.credit_total
        else:
            units = row.credit_total - row.debit_total
        return StatementLine(
            account_code=row.code,
            account_name=row.name,
            amount=from_minor_units(units, self.minor_unit_exponent),
        )

    def _account_totals(
        self,
        start: datetime | None = None,
        end: datetime | None = None,
        fund: str | None = None,
        account_types: tuple[AccountType, ...] | None = None,
        lookup_key: str | None = None,
    ):
        debit_sum, credit_sum = _direction_sums()

        query = (
            select(
                JournalEntry.account_id,
                Account.code,
                Account.name,
                Account.account_type,
                debit_sum,
                credit_sum,
            )
            .join(Account, JournalEntry.account_id == Account.id)
            .group_by(
                JournalEntry.account_id,
                Account.code,
                Account.name,
                Account.account_type,
            )
            .order_by(Account.code)
        )
        if start is not None:
            query = query.where(JournalEntry.posted_at >= start)
        if end is not None:
            query = query.where(JournalEntry.posted_at <= end)
        if fund is not None:
            query = query.where(JournalEntry.fund == fund)
        if account_types is not None:
            query = query.where(Account.account_type.in_([t.value for t in account_types]))
        if lookup_key is not None:
            query = query.where(Account.lookup_key == lookup_key)

        return self.session.execute(query).all()


def _as_utc(moment: datetime | None, name: str) -> datetime | None:
    if moment is None:
        return None
    if moment.tzinfo is None:
        raise ValueError(f"{name} must be timezone-aware: {moment!r}")
    return moment.astimezone(timezone.utc)


def _period(start: datetime, end: datetime) -> tuple[datetime, datetime]:
    start_utc = _as_utc(start, "start")
    end_utc = _as_utc(end, "end")
    if end_utc < start_utc:
        raise ValueError("end must not be before start")
    return start_utc, end_utc


def _direction_sums():
    debit_sum = func.coalesce(
        func.sum(case((JournalEntry.direction == Direction.DEBIT.value, JournalEntry.amount), else_=0)),
        0,
    ).label("debit_total")
    credit_sum = func.coalesce(
        func.sum(case((JournalEntry.direction == Direction.CREDIT.value, JournalEntry.amount), else_=0)),
        0,
    ).label("credit_total")
    return debit_sum, credit_sum


def _allocation(value) -> Decimal:
    if isinstance(value, (bool, float)):
        raise ValueError(f"allocation must be Decimal, int or str, not {type(value).__name__}")
    try:
        amount = Decimal(value.strip() if isinstance(value, str) else value)
    except (InvalidOperation, TypeError, ValueError):
        raise ValueError(f"allocation is not a number: {value!r}") from None
    if not amount.is_finite() or amount < 0:
        raise ValueError(f"allocation must be a non-negative amount: {value!r}")
    return amount

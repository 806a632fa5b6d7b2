"""
ReportingSelector: trial balance, statement of activities, statement of
financial position, cash flow and budget vs. actuals, all derived from
posted lines.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from church_ledger.selectors import BudgetPeriod, ReportingSelector

DAY = 86400


@pytest.fixture
def report(db, ledger_config):
    def _run(method, *args, **kwargs):
        with db.session_scope() as session:
            selector = ReportingSelector(session, ledger_config.minor_unit_exponent)
            return getattr(selector, method)(*args, **kwargs)

    return _run


@pytest.fixture
def month_of_activity(
    posting_service, deterministic_clock, make_donation, make_expense, make_bill
):
    """
    Day 0: tithes 1,000 and building fund 500.
    Day 1: utilities 200 charged to the building fund.
    Day 2: rent bill 300 (unpaid).
    """
    start = deterministic_clock.now()
    posting_service.post_event(make_donation(amount="1000.00"))
    posting_service.post_event(make_donation(amount="500.00", fund="Building Fund"))
    deterministic_clock.advance(DAY)
    posting_service.post_event(make_expense(amount="200.00", fund="Building Fund"))
    deterministic_clock.advance(DAY)
    posting_service.post_event(make_bill(amount="300.00"))
    return start


class TestTrialBalance:
    def test_empty_ledger(self, posting_service, report):
        tb = report("trial_balance")
        assert tb.rows == ()
        assert tb.is_balanced

    def test_totals_balance(self, month_of_activity, report):
        tb = report("trial_balance")

        assert tb.is_balanced
        assert tb.total_debits == Decimal("2000.00")
        assert [row.account_code for row in tb.rows] == sorted(r.account_code for r in tb.rows)
        cash = next(row for row in tb.rows if row.account_name == "Cash")
        assert cash.debit_total == Decimal("1500.00")
        assert cash.credit_total == Decimal("200.00")
        assert cash.balance == Decimal("1300.00")

    def test_as_of_cutoff(self, month_of_activity, report):
        tb = report("trial_balance", as_of=month_of_activity)

        assert tb.is_balanced
        assert tb.total_debits == Decimal("1500.00")
        assert "Rent Expense" not in [row.account_name for row in tb.rows]

    def test_agrees_with_account_balances(self, month_of_activity, report, balance):
        for row in report("trial_balance").rows:
            assert row.balance == balance(row.account_name)


class TestStatementOfActivities:
    def test_whole_period(self, month_of_activity, report):
        soa = report(
            "statement_of_activities", month_of_activity, month_of_activity + timedelta(days=3)
        )

        assert soa.total_income == Decimal("1500.00")
        assert soa.total_expenses == Decimal("500.00")
        assert soa.net_change == Decimal("1000.00")
        assert [line.account_name for line in soa.expenses] == [
            "Utilities Expense",
            "Rent Expense",
        ]

    def test_period_bounds_are_inclusive(self, month_of_activity, report):
        day_one = month_of_activity + timedelta(days=1)
        soa = report("statement_of_activities", day_one, day_one)

        assert soa.total_income == Decimal("0")
        assert soa.total_expenses == Decimal("200.00")

    def test_fund_filter(self, month_of_activity, report):
        soa = report(
            "statement_of_activities",
            month_of_activity,
            month_of_activity + timedelta(days=3),
            fund="Building Fund",
        )

        assert [(line.account_name, line.amount) for line in soa.income] == [
            ("Building Fund Income", Decimal("500.00"))
        ]
        assert soa.total_expenses == Decimal("200.00")
        assert soa.net_change == Decimal("300.00")

    def test_fund_filter_ignores_spacing_differences(
        self, month_of_activity, posting_service, make_expense, report
    ):
        posting_service.post_event(make_expense(amount="50.00", fund="Building  Fund"))

        soa = report(
            "statement_of_activities",
            month_of_activity,
            month_of_activity + timedelta(days=3),
            fund=" Building Fund ",
        )

        assert soa.fund == "Building Fund"
        assert soa.total_expenses == Decimal("250.00")

    def test_reversed_posting_nets_to_zero(
        self, posting_service, make_expense, report, deterministic_clock
    ):
        start = deterministic_clock.now()
        posted = posting_service.post_event(make_expense(amount="80.00"))
        posting_service.reverse_transaction(posted.transaction_id, "duplicate receipt", "auditor")

        soa = report("statement_of_activities", start, start + timedelta(days=1))
        assert soa.total_expenses == Decimal("0")

    def test_rejects_bad_ranges(self, month_of_activity, report):
        with pytest.raises(ValueError):
            report("statement_of_activities", month_of_activity, month_of_activity - timedelta(days=1))
        with pytest.raises(ValueError):
            report(
                "statement_of_activities",
                month_of_activity.replace(tzinfo=None),
                month_of_activity.replace(tzinfo=None),
            )


class TestStatementOfFinancialPosition:
    def test_balances(self, month_of_activity, report):
        sofp = report("statement_of_financial_position")

        assert sofp.total_assets == Decimal("1300.00")
        assert sofp.total_liabilities == Decimal("300.00")
        assert sofp.current_surplus == Decimal("1000.00")
        assert sofp.total_net_assets == Decimal("1000.00")
        assert sofp.is_balanced

    def test_paid_bill_clears_the_liability(
        self, month_of_activity, posting_service, make_bill_payment, report
    ):
        posting_service.post_event(make_bill_payment(amount="300.00"))
        sofp = report("statement_of_financial_position")

        assert sofp.total_liabilities == Decimal("0")
        assert sofp.total_assets == Decimal("1000.00")
        assert sofp.is_balanced


class TestCashFlow:
    def test_inflows_and_outflows_by_source(self, month_of_activity, report, balance):
        cf = report("cash_flow", month_of_activity, month_of_activity + timedelta(days=3))

        assert [(line.source, line.inflow, line.outflow) for line in cf.sources] == [
            ("donation", Decimal("1500.00"), Decimal("0")),
            ("expense", Decimal("0"), Decimal("200.00")),
        ]
        assert cf.total_inflows == Decimal("1500.00")
        assert cf.total_outflows == Decimal("200.00")
        assert cf.net_change == balance("Cash")

    def test_unpaid_bill_moves_no_cash(self, month_of_activity, report):
        day_two = month_of_activity + timedelta(days=2)
        cf = report("cash_flow", day_two, day_two)

        assert cf.sources == ()
        assert cf.net_change == Decimal("0")

    def test_bill_payment_is_an_outflow(
        self, month_of_activity, posting_service, make_bill_payment, report
    ):
        posting_service.post_event(make_bill_payment(amount="300.00"))
        cf = report("cash_flow", month_of_activity, month_of_activity + timedelta(days=3))

        payments = next(line for line in cf.sources if line.source == "bill_payment")
        assert payments.outflow == Decimal("300.00")
        assert cf.net_change == Decimal("1000.00")

    def test_fund_filter(self, month_of_activity, report):
        cf = report(
            "cash_flow",
            month_of_activity,
            month_of_activity + timedelta(days=3),
            fund="Building   Fund",
        )

        assert cf.fund == "Building Fund"
        assert cf.total_inflows == Decimal("500.00")
        assert cf.total_outflows == Decimal("200.00")

    def test_reversal_is_its_own_source(
        self, posting_service, make_donation, report, deterministic_clock
    ):
        start = deterministic_clock.now()
        posted = posting_service.post_event(make_donation(amount="75.00"))
        posting_service.reverse_transaction(posted.transaction_id, "bounced cheque", "auditor")

        cf = report("cash_flow", start, start + timedelta(days=1))
        assert {line.source: line.net for line in cf.sources} == {
            "donation": Decimal("75.00"),
            "reversal": Decimal("-75.00"),
        }
        assert cf.net_change == Decimal("0")

    def test_rejects_bad_ranges(self, month_of_activity, report):
        with pytest.raises(ValueError):
            report("cash_flow", month_of_activity, month_of_activity - timedelta(days=1))


class TestBudgetPeriod:
    @pytest.mark.parametrize(
        "period, expected",
        [
            (BudgetPeriod.MONTHLY, datetime(2024, 8, 1, tzinfo=timezone.utc)),
            (BudgetPeriod.QUARTERLY, datetime(2024, 7, 1, tzinfo=timezone.utc)),
            (BudgetPeriod.ANNUALLY, datetime(2024, 1, 1, tzinfo=timezone.utc)),
            (BudgetPeriod.ALL_TIME, None),
        ],
    )
    def test_period_start(self, period, expected):
        assert period.start_for(datetime(2024, 8, 15, 13, 45, tzinfo=timezone.utc)) == expected


class TestBudgetVsActual:
    def test_over_budget(self, month_of_activity, report):
        status = report(
            "budget_vs_actual",
            "Utilities",
            Decimal("150.00"),
            BudgetPeriod.MONTHLY,
            month_of_activity + timedelta(days=3),
        )

        assert status.account_name == "Utilities Expense"
        assert status.period_start == datetime(2024, 3, 1, tzinfo=timezone.utc)
        assert status.spent == Decimal("200.00")
        assert status.remaining == Decimal("-50.00")
        assert status.is_over_budget
        assert round(status.percent_used, 2) == Decimal("133.33")

    def test_bills_count_when_recorded(self, month_of_activity, report):
        status = report(
            "budget_vs_actual", "Rent", "1000", "monthly", month_of_activity + timedelta(days=3)
        )

        assert status.period is BudgetPeriod.MONTHLY
        assert status.spent == Decimal("300.00")
        assert status.remaining == Decimal("700.00")
        assert not status.is_over_budget
        assert status.percent_used == Decimal("30")

    @pytest.mark.parametrize(
        "period, as_of, spent",
        [
            (BudgetPeriod.MONTHLY, datetime(2024, 4, 10, tzinfo=timezone.utc), "0"),
            (BudgetPeriod.QUARTERLY, datetime(2024, 3, 31, tzinfo=timezone.utc), "200.00"),
            (BudgetPeriod.QUARTERLY, datetime(2024, 4, 10, tzinfo=timezone.utc), "0"),
            (BudgetPeriod.ANNUALLY, datetime(2024, 12, 31, tzinfo=timezone.utc), "200.00"),
            (BudgetPeriod.ALL_TIME, datetime(2030, 1, 1, tzinfo=timezone.utc), "200.00"),
        ],
    )
    def test_period_window(self, month_of_activity, report, period, as_of, spent):
        status = report("budget_vs_actual", "Utilities", 500, period, as_of)
        assert status.spent == Decimal(spent)

    def test_periods_are_calendar_periods_in_utc(self, month_of_activity, report):
        # 01:00 on 1 April in UTC+3 is still 31 March in UTC
        as_of = datetime(2024, 4, 1, 1, 0, tzinfo=timezone(timedelta(hours=3)))
        status = report("budget_vs_actual", "Utilities", 500, BudgetPeriod.MONTHLY, as_of)

        assert status.period_start == datetime(2024, 3, 1, tzinfo=timezone.utc)
        assert status.spent == Decimal("200.00")

    def test_spend_after_as_of_is_excluded(self, month_of_activity, report):
        status = report(
            "budget_vs_actual", "Utilities", 500, BudgetPeriod.MONTHLY, month_of_activity
        )
        assert status.spent == Decimal("0")

    def test_reversal_returns_the_spend(
        self, posting_service, make_expense, report, deterministic_clock
    ):
        posted = posting_service.post_event(make_expense(amount="80.00", category="Utilities"))
        posting_service.reverse_transaction(posted.transaction_id, "duplicate receipt", "auditor")

        status = report(
            "budget_vs_actual", "Utilities", 100, BudgetPeriod.MONTHLY, deterministic_clock.now()
        )
        assert status.spent == Decimal("0")
        assert status.remaining == Decimal("100")

    def test_unused_category_has_no_spend(self, month_of_activity, report):
        status = report(
            "budget_vs_actual", "Youth  Camp", 0, BudgetPeriod.ANNUALLY, month_of_activity
        )

        assert status.category == "Youth Camp"
        assert status.account_name == "Youth Camp Expense"
        assert status.spent == Decimal("0")
        assert status.percent_used == Decimal("0")
        assert not status.is_over_budget

    @pytest.mark.parametrize(
        "category, allocated, period",
        [
            ("Utilities", "-1", BudgetPeriod.MONTHLY),
            ("Utilities", 10.5, BudgetPeriod.MONTHLY),
            ("Utilities", "lots", BudgetPeriod.MONTHLY),
            ("Utilities", "100", "weekly"),
            ("  ", "100", BudgetPeriod.MONTHLY),
        ],
    )
    def test_rejects_bad_arguments(self, month_of_activity, report, category, allocated, period):
        with pytest.raises(ValueError):
            report("budget_vs_actual", category, allocated, period, month_of_activity)

    def test_rejects_naive_as_of(self, month_of_activity, report):
        with pytest.raises(ValueError):
            report(
                "budget_vs_actual",
                "Utilities",
                100,
                BudgetPeriod.MONTHLY,
                month_of_activity.replace(tzinfo=None),
            )

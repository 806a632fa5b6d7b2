"""
End-to-end posting scenarios for the church's core business events.

Each scenario posts through PostingService against the default chart and
checks balances derived from the committed ledger lines.
"""

from decimal import Decimal

from church_ledger.domain.values import Direction
from church_ledger.services.ledger_store import LedgerStore


class TestScenarios:
    def test_a_donation_increases_cash_and_fund_income(
        self, posting_service, make_donation, balance
    ):
        result = posting_service.post_event(make_donation(amount="5000", fund="Tithes & Offering"))

        assert not result.replayed
        assert balance("Cash") == Decimal("5000.00")
        assert balance("Tithes & Offering Income") == Decimal("5000.00")

    def test_b_expense_decreases_cash_and_increases_expense(
        self, posting_service, make_expense, balance
    ):
        posting_service.post_event(make_expense(amount="1200", category="Utilities"))

        assert balance("Cash") == Decimal("-1200.00")
        assert balance("Utilities Expense") == Decimal("1200.00")

    def test_c_bill_then_payment(self, posting_service, make_bill, make_bill_payment, balance):
        cash_before = balance("Cash")
        payable_before = balance("Accounts Payable")

        bill = make_bill(amount="3000", category="Utilities")
        posting_service.post_event(bill)
        assert balance("Accounts Payable") == payable_before + Decimal("3000")
        assert balance("Utilities Expense") == Decimal("3000.00")

        posting_service.post_event(make_bill_payment(amount="3000", bill_id=bill.record_id))
        assert balance("Accounts Payable") == payable_before
        assert balance("Cash") == cash_before - Decimal("3000")

    def test_d_payroll_run_is_one_transaction(
        self, posting_service, make_payroll_run, balance, db
    ):
        result = posting_service.post_event(
            make_payroll_run(lines=(("Alice", "2000"), ("Bob", "2500")))
        )

        with db.session_scope() as session:
            transaction = LedgerStore(session).get_transaction(result.transaction_id)

        assert len(transaction.entries) == 4
        debits = [e for e in transaction.entries if e.direction == Direction.DEBIT]
        credits = [e for e in transaction.entries if e.direction == Direction.CREDIT]
        assert {e.account_name for e in debits} == {"Salaries Expense"}
        assert {e.account_name for e in credits} == {"Cash"}
        assert len({e.posted_at for e in transaction.entries}) == 1
        assert balance("Cash") == Decimal("-4500.00")
        assert balance("Salaries Expense") == Decimal("4500.00")

    def test_e_reversal_restores_pre_donation_balances(
        self, posting_service, make_donation, balance, test_actor
    ):
        cash_before = balance("Cash")
        income_before = balance("Tithes & Offering Income")
        posted = posting_service.post_event(make_donation(amount="5000"))

        posting_service.reverse_transaction(posted.transaction_id, "entered twice", test_actor)

        assert balance("Cash") == cash_before
        assert balance("Tithes & Offering Income") == income_before

    def test_invoice_then_collection(
        self, posting_service, make_invoice, make_invoice_collection, balance
    ):
        invoice = make_invoice(amount="750", customer="Hall hire")
        posting_service.post_event(invoice)
        assert balance("Accounts Receivable") == Decimal("750.00")
        assert balance("Service Revenue") == Decimal("750.00")

        posting_service.post_event(
            make_invoice_collection(amount="750", invoice_id=invoice.record_id)
        )
        assert balance("Accounts Receivable") == Decimal("0")
        assert balance("Cash") == Decimal("750.00")

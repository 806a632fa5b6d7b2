"""
LedgerConfig schema.

Defines the human-authored configuration for one church ledger: currency,
posting policy, the names of the system accounts the journal builder posts
to, and the chart of accounts.  YAML is parsed into these types by the
loader; the kernel consumes them as plain attribute holders.
"""

from __future__ import annotations

from dataclasses import dataclass

# ---------------------------------------------------------------------------
# Chart of accounts
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AccountDef:
    """One account of the configured chart."""

    code: str
    name: str
    account_type: str  # asset, liability, equity, income, expense


# ---------------------------------------------------------------------------
# Posting behaviour
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PostingPolicy:
    """
    Switches that change how postings resolve accounts.

    auto_vivify_accounts: create an unknown account of the declared type on
        first use instead of rejecting the event.  Off by default; every
        account created this way is logged and audited.
    """

    auto_vivify_accounts: bool = False


@dataclass(frozen=True)
class SystemAccounts:
    """Names of the fixed accounts used by the posting rules."""

    cash: str = "Cash"
    accounts_payable: str = "Accounts Payable"
    accounts_receivable: str = "Accounts Receivable"
    service_revenue: str = "Service Revenue"
    salaries_expense: str = "Salaries Expense"
    income_suffix: str = "Income"
    expense_suffix: str = "Expense"


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LedgerConfig:
    """
    Root configuration object.

    ``checksum`` is the SHA-256 of the source YAML data and identifies the
    configuration in logs and audit payloads.
    """

    organization: str
    currency: str
    minor_unit_exponent: int
    posting_policy: PostingPolicy
    system_accounts: SystemAccounts
    chart: tuple[AccountDef, ...]
    checksum: str = ""

    def account_def(self, code: str) -> AccountDef | None:
        for definition in self.chart:
            if definition.code == code:
                return definition
        return None

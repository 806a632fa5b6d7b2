"""Read-only query selectors over the committed ledger."""

from church_ledger.selectors.base import BaseSelector
from church_ledger.selectors.reporting_selector import (
    BudgetPeriod,
    BudgetStatus,
    CashFlowStatement,
    ReportingSelector,
)

__all__ = [
    "BaseSelector",
    "BudgetPeriod",
    "BudgetStatus",
    "CashFlowStatement",
    "ReportingSelector",
]

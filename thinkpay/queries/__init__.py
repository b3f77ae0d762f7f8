"""Read-side analytics package."""

from thinkpay.queries.analytics import (
    BudgetSummary,
    DailySpend,
    LedgerAnalytics,
    VaultSpend,
)

__all__ = ["BudgetSummary", "DailySpend", "LedgerAnalytics", "VaultSpend"]

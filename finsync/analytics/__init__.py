"""Analytics over store snapshots."""

from finsync.analytics.aggregations import (
    CategoryTotal,
    FinancialTotals,
    MonthlyTotals,
    category_breakdown,
    days_remaining,
    goal_progress,
    month_label,
    monthly_breakdown,
    summarize_totals,
)

__all__ = [
    # Models
    "CategoryTotal",
    "FinancialTotals",
    "MonthlyTotals",
    # Functions
    "category_breakdown",
    "days_remaining",
    "goal_progress",
    "month_label",
    "monthly_breakdown",
    "summarize_totals",
]

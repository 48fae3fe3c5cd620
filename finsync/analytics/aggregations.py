"""
Analytics Aggregations

Pure functions over store snapshots. Nothing here talks to the
backend - callers pass in `store.snapshot()` and render the result.

DESIGN DECISION: Expenses are reported as positive magnitudes.
Stored amounts are signed (expenses negative), but every chart and
summary the user sees talks about "how much was spent", so the sign
is dropped at this boundary and nowhere else.
"""

import datetime as dt
from collections import defaultdict
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional

from pydantic import BaseModel, Field

from finsync.models.records import Goal, Transaction, TransactionType


class FinancialTotals(BaseModel):
    """Headline numbers for the dashboard."""

    income: Decimal = Decimal("0")
    expenses: Decimal = Field(
        default=Decimal("0"),
        description="Total spent, as a positive amount"
    )
    transaction_count: int = 0

    @property
    def net(self) -> Decimal:
        return self.income - self.expenses


class MonthlyTotals(BaseModel):
    """Income and expenses for one calendar month."""

    month: str = Field(description="Label like 'Mar 2024'")
    year: int
    month_number: int = Field(ge=1, le=12)
    income: Decimal = Decimal("0")
    expenses: Decimal = Decimal("0")

    @property
    def net(self) -> Decimal:
        return self.income - self.expenses


class CategoryTotal(BaseModel):
    """Spending in one category."""

    category: str
    amount: Decimal


def summarize_totals(transactions: Iterable[Transaction]) -> FinancialTotals:
    income = Decimal("0")
    expenses = Decimal("0")
    count = 0
    for t in transactions:
        count += 1
        if t.type == TransactionType.INCOME:
            income += t.magnitude
        else:
            expenses += t.magnitude
    return FinancialTotals(income=income, expenses=expenses, transaction_count=count)


def month_label(day: dt.date) -> str:
    """'Mon YYYY' label used to key monthly breakdowns."""
    return day.strftime("%b %Y")


def monthly_breakdown(transactions: Iterable[Transaction]) -> list[MonthlyTotals]:
    """
    Income and expenses per month, oldest month first.

    Months without transactions are not filled in.
    """
    buckets: dict[tuple[int, int], dict[str, Decimal]] = defaultdict(
        lambda: {"income": Decimal("0"), "expenses": Decimal("0")}
    )
    for t in transactions:
        key = (t.date.year, t.date.month)
        side = "income" if t.type == TransactionType.INCOME else "expenses"
        buckets[key][side] += t.magnitude

    return [
        MonthlyTotals(
            month=month_label(dt.date(year, month, 1)),
            year=year,
            month_number=month,
            income=totals["income"],
            expenses=totals["expenses"],
        )
        for (year, month), totals in sorted(buckets.items())
    ]


def category_breakdown(
    transactions: Iterable[Transaction],
    kind: TransactionType = TransactionType.EXPENSE,
) -> list[CategoryTotal]:
    """Totals per category for one transaction type, largest first."""
    totals: dict[str, Decimal] = defaultdict(Decimal)
    for t in transactions:
        if t.type != kind:
            continue
        totals[t.category or "Uncategorized"] += t.magnitude

    ranked = sorted(totals.items(), key=lambda item: (-item[1], item[0]))
    return [CategoryTotal(category=name, amount=amount) for name, amount in ranked]


def goal_progress(goal: Goal) -> int:
    """Percent of the target reached, rounded and capped at 100."""
    if goal.target <= 0:
        return 0
    percent = (goal.current / goal.target) * 100
    return min(int(percent.quantize(Decimal("1"), rounding=ROUND_HALF_UP)), 100)


def days_remaining(goal: Goal, today: Optional[dt.date] = None) -> int:
    """Days until the deadline; negative once it has passed."""
    today = today or dt.date.today()
    return (goal.deadline - today).days

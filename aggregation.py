"""Pure summary computations over expense and income records.

Nothing in this module touches the database. Callers fetch rows (or grouped
sums) through the services and hand them over here. All money values are
integer cents; percentages are floats, or ``None`` when the denominator is
zero and the value is therefore undefined.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Iterable, Mapping, Optional, Protocol


BUDGET_WARNING_PERCENT = 75.0
BUDGET_CRITICAL_PERCENT = 90.0
NEAR_LIMIT_RATIO = 0.9


class CategorizedAmount(Protocol):
    category: object
    amount_cents: int


def _category_key(category: object) -> str:
    return getattr(category, "value", category)  # type: ignore[return-value]


def category_totals(expenses: Iterable[CategorizedAmount]) -> dict[str, int]:
    totals: dict[str, int] = {}
    for expense in expenses:
        key = _category_key(expense.category)
        totals[key] = totals.get(key, 0) + expense.amount_cents
    return totals


def percent_of(part: int, whole: int) -> Optional[float]:
    if whole == 0:
        return None
    return part / whole * 100


@dataclass(frozen=True)
class CategoryShare:
    category: str
    amount_cents: int
    percentage: Optional[float]


def category_breakdown(totals: Mapping[str, int]) -> list[CategoryShare]:
    total = sum(totals.values())
    rows = sorted(totals.items(), key=lambda item: (-item[1], item[0]))
    return [
        CategoryShare(
            category=name, amount_cents=amount, percentage=percent_of(amount, total)
        )
        for name, amount in rows
    ]


class BudgetStatus(str, Enum):
    on_track = "on_track"
    warning = "warning"
    critical = "critical"


@dataclass(frozen=True)
class BudgetProgress:
    limit_cents: int
    spent_cents: int
    remaining_cents: int
    percentage: Optional[float]
    status: BudgetStatus


def budget_progress(limit_cents: int, spent_cents: int) -> BudgetProgress:
    percentage = percent_of(spent_cents, limit_cents)
    if percentage is None:
        status = BudgetStatus.critical if spent_cents > 0 else BudgetStatus.on_track
    elif percentage >= BUDGET_CRITICAL_PERCENT:
        status = BudgetStatus.critical
    elif percentage >= BUDGET_WARNING_PERCENT:
        status = BudgetStatus.warning
    else:
        status = BudgetStatus.on_track
    return BudgetProgress(
        limit_cents=limit_cents,
        spent_cents=spent_cents,
        remaining_cents=limit_cents - spent_cents,
        percentage=percentage,
        status=status,
    )


@dataclass(frozen=True)
class TrendPoint:
    year: int
    month: int
    label: str
    amount_cents: int


def month_label(month: date) -> str:
    return month.strftime("%b %Y")


def monthly_trend(
    months: list[date], totals: Mapping[tuple[int, int], int]
) -> list[TrendPoint]:
    """One point per month in ``months``; months missing from ``totals`` are 0."""
    return [
        TrendPoint(
            year=month.year,
            month=month.month,
            label=month_label(month),
            amount_cents=int(totals.get((month.year, month.month), 0)),
        )
        for month in months
    ]


class HealthStatus(str, Enum):
    no_income = "no_income"
    overspending = "overspending"
    near_limit = "near_limit"
    healthy = "healthy"


HEALTH_MESSAGES = {
    HealthStatus.no_income: "No income recorded in this period",
    HealthStatus.overspending: "You're spending more than you earn",
    HealthStatus.near_limit: "You're close to spending all your income",
    HealthStatus.healthy: "Good financial health - you're saving money",
}


@dataclass(frozen=True)
class FinancialHealth:
    income_cents: int
    expense_cents: int
    net_cents: int
    spending_ratio: Optional[float]
    status: HealthStatus

    @property
    def spending_percentage(self) -> Optional[float]:
        if self.spending_ratio is None:
            return None
        return self.spending_ratio * 100

    @property
    def gauge_percentage(self) -> Optional[float]:
        percentage = self.spending_percentage
        if percentage is None:
            return None
        return min(percentage, 100.0)

    @property
    def message(self) -> str:
        return HEALTH_MESSAGES[self.status]


def financial_health(income_cents: int, expense_cents: int) -> FinancialHealth:
    if income_cents == 0:
        ratio = None
        status = HealthStatus.no_income
    else:
        ratio = expense_cents / income_cents
        if expense_cents > income_cents:
            status = HealthStatus.overspending
        elif ratio > NEAR_LIMIT_RATIO:
            status = HealthStatus.near_limit
        else:
            status = HealthStatus.healthy
    return FinancialHealth(
        income_cents=income_cents,
        expense_cents=expense_cents,
        net_cents=income_cents - expense_cents,
        spending_ratio=ratio,
        status=status,
    )

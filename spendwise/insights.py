from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional, Sequence

from spendwise.aggregation import (
    HUNDRED,
    ZERO,
    CategoryTotal,
    ExpenseSummary,
    MonthlyTotal,
    round_half_up,
)
from spendwise.categories import Category

TOP_CATEGORY_LIMIT = 3
SAVINGS_RATE = Decimal("0.20")
INCREASE_TOLERANCE = Decimal("1.1")
NEW_SPENDING_CHANGE = 100

TREND_INCREASING = "increasing"
TREND_DECREASING = "decreasing"
TREND_STABLE = "stable"


@dataclass(frozen=True)
class SavingsOpportunity:
    # None means there is no spending to trim yet.
    category: Optional[Category]
    potential: int


@dataclass(frozen=True)
class TopCategory:
    category: Optional[Category]
    amount: Decimal
    percentage: int


@dataclass(frozen=True)
class InsightReport:
    top_categories: List[CategoryTotal]
    top_category: TopCategory
    monthly_trend: str
    month_over_month_change: int
    savings_opportunity: SavingsOpportunity


def top_categories(
    category_totals: Sequence[CategoryTotal], limit: int = TOP_CATEGORY_LIMIT
) -> List[CategoryTotal]:
    return list(category_totals[:limit])


def top_category(category_totals: Sequence[CategoryTotal]) -> TopCategory:
    if not category_totals:
        return TopCategory(category=None, amount=ZERO, percentage=0)
    first = category_totals[0]
    return TopCategory(
        category=first.category, amount=first.amount, percentage=first.percentage
    )


def monthly_trend(monthly_totals: Sequence[MonthlyTotal]) -> str:
    """Classify the latest month against the one before it.

    Any drop counts as decreasing, while a rise has to exceed 10% before it
    counts as increasing.
    """
    if len(monthly_totals) < 2:
        return TREND_STABLE
    latest, previous = _latest_pair(monthly_totals)
    if latest < previous:
        return TREND_DECREASING
    if latest > previous * INCREASE_TOLERANCE:
        return TREND_INCREASING
    return TREND_STABLE


def month_over_month_change(monthly_totals: Sequence[MonthlyTotal]) -> int:
    if len(monthly_totals) < 2:
        return 0
    latest, previous = _latest_pair(monthly_totals)
    if previous == ZERO:
        return NEW_SPENDING_CHANGE if latest != ZERO else 0
    return round_half_up((latest - previous) / previous * HUNDRED)


def savings_opportunity(
    category_totals: Sequence[CategoryTotal], rate: Decimal = SAVINGS_RATE
) -> SavingsOpportunity:
    if not category_totals:
        return SavingsOpportunity(category=None, potential=0)
    first = category_totals[0]
    return SavingsOpportunity(
        category=first.category, potential=round_half_up(first.amount * rate)
    )


def build_insights(summary: ExpenseSummary) -> InsightReport:
    return InsightReport(
        top_categories=top_categories(summary.category_totals),
        top_category=top_category(summary.category_totals),
        monthly_trend=monthly_trend(summary.monthly_totals),
        month_over_month_change=month_over_month_change(summary.monthly_totals),
        savings_opportunity=savings_opportunity(summary.category_totals),
    )


def _latest_pair(monthly_totals: Sequence[MonthlyTotal]) -> tuple[Decimal, Decimal]:
    # Series are chronological, so the most recent month is last.
    return monthly_totals[-1].amount, monthly_totals[-2].amount

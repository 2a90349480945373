from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import ROUND_FLOOR, Decimal, InvalidOperation
from typing import Iterable, List, Optional, Union

from spendwise.categories import Category, category_color

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
HUNDRED = Decimal("100")
DEFAULT_WINDOW_MONTHS = 6
SUPPORTED_WINDOWS = (3, 6, 12)

DateLike = Union[date, datetime]


@dataclass(frozen=True)
class Transaction:
    id: str
    amount: Decimal
    category: Category
    date: DateLike
    description: str = ""


@dataclass(frozen=True)
class CategoryTotal:
    category: Category
    amount: Decimal
    percentage: int
    color: str


@dataclass(frozen=True)
class MonthlyTotal:
    month: str
    amount: Decimal
    year: int
    month_number: int


@dataclass(frozen=True)
class ExpenseSummary:
    total_expenses: Decimal
    category_totals: List[CategoryTotal]
    monthly_totals: List[MonthlyTotal]
    months: int
    window_start: date


def aggregate_expenses(
    transactions: Iterable[Transaction],
    months: int = DEFAULT_WINDOW_MONTHS,
    now: Optional[DateLike] = None,
) -> ExpenseSummary:
    """Fold a transaction snapshot into totals for the trailing window.

    Every supplied transaction counts toward the grand total and the category
    totals. Only transactions whose calendar month lies inside the window show
    up in the monthly series; the series always has exactly ``months``
    entries in chronological order.
    """
    if months < 1:
        raise ValueError("months must be at least 1.")
    reference = now if now is not None else datetime.now()
    items = list(transactions)

    total = ZERO
    by_category: dict[Category, Decimal] = {}
    for txn in items:
        amount = as_decimal(txn.amount)
        total += amount
        by_category[txn.category] = by_category.get(txn.category, ZERO) + amount

    category_totals = [
        CategoryTotal(
            category=category,
            amount=amount,
            percentage=percentage_of(amount, total),
            color=category_color(category),
        )
        for category, amount in sorted(
            by_category.items(), key=lambda item: item[1], reverse=True
        )
    ]

    window = iter_window(reference, months)
    monthly: dict[tuple[int, int], Decimal] = {
        (value.year, value.month): ZERO for value in window
    }
    for txn in items:
        key = (txn.date.year, txn.date.month)
        if key in monthly:
            monthly[key] += as_decimal(txn.amount)

    monthly_totals = [
        MonthlyTotal(
            month=month_label(value),
            amount=monthly[(value.year, value.month)],
            year=value.year,
            month_number=value.month,
        )
        for value in window
    ]

    return ExpenseSummary(
        total_expenses=total,
        category_totals=category_totals,
        monthly_totals=monthly_totals,
        months=months,
        window_start=window[0],
    )


def percentage_of(part: Decimal, whole: Decimal) -> int:
    if whole == ZERO:
        return 0
    return round_half_up(part / whole * HUNDRED)


def round_half_up(value: Decimal) -> int:
    # Matches Math.round: halves go toward positive infinity, so -2.5 -> -2.
    return int((value + Decimal("0.5")).to_integral_value(rounding=ROUND_FLOOR))


def month_start(value: DateLike) -> date:
    return date(value.year, value.month, 1)


def shift_month(value: date, months: int) -> date:
    month_index = (value.year * 12 + value.month - 1) + months
    year = month_index // 12
    month = month_index % 12 + 1
    return date(year, month, 1)


def window_start(now: DateLike, months: int) -> date:
    return shift_month(month_start(now), -(months - 1))


def iter_window(now: DateLike, months: int) -> List[date]:
    first = window_start(now, months)
    return [shift_month(first, offset) for offset in range(months)]


def month_label(value: DateLike) -> str:
    return month_start(value).strftime("%b %Y")


def coerce_amount(value: Union[Decimal, int, float, str, None]) -> Decimal:
    """Best-effort conversion of a stored amount to ``Decimal``.

    Missing, malformed or non-finite values become zero so they cannot poison
    sums and percentages downstream.
    """
    if value is None:
        logger.warning("Missing amount coerced to 0.")
        return ZERO
    if isinstance(value, Decimal):
        amount = value
    else:
        try:
            amount = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            logger.warning("Malformed amount %r coerced to 0.", value)
            return ZERO
    if not amount.is_finite():
        logger.warning("Non-finite amount %r coerced to 0.", value)
        return ZERO
    return amount


def as_decimal(amount: Union[Decimal, int, float, str]) -> Decimal:
    if isinstance(amount, Decimal):
        return amount
    return Decimal(str(amount))

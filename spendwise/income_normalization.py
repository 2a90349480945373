from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, List

from spendwise.aggregation import ZERO, as_decimal

MONTHLY_FACTORS: dict[str, Decimal] = {
    "monthly": Decimal("1"),
    "weekly": Decimal("4.33"),
    "daily": Decimal("30.42"),
}
ANNUAL_FACTORS: dict[str, Decimal] = {
    "monthly": Decimal("12"),
    "annual": Decimal("1"),
    "weekly": Decimal("52"),
    "daily": Decimal("365"),
}
MONTHS_PER_YEAR = Decimal("12")


class IncomeFrequency:
    values = {"daily", "weekly", "monthly", "annual"}
    aliases = {"yearly": "annual", "annually": "annual"}

    @classmethod
    def validate(cls, value: str) -> str:
        normalized = "".join(ch for ch in value.strip().lower() if ch.isalnum())
        normalized = cls.aliases.get(normalized, normalized)
        if normalized not in cls.values:
            raise ValueError("Frequency must be daily, weekly, monthly, or annual.")
        return normalized


@dataclass(frozen=True)
class IncomeStream:
    id: str
    source: str
    amount: Decimal
    frequency: str = "monthly"


@dataclass(frozen=True)
class NormalizedIncome:
    stream: IncomeStream
    monthly: Decimal
    annual: Decimal


@dataclass(frozen=True)
class IncomeSummary:
    monthly_total: Decimal
    annual_total: Decimal
    streams: List[NormalizedIncome]


def monthly_equivalent(stream: IncomeStream) -> Decimal:
    frequency = IncomeFrequency.validate(stream.frequency)
    amount = _validated_amount(stream)
    if frequency == "annual":
        return amount / MONTHS_PER_YEAR
    return amount * MONTHLY_FACTORS[frequency]


def annual_equivalent(stream: IncomeStream) -> Decimal:
    frequency = IncomeFrequency.validate(stream.frequency)
    return _validated_amount(stream) * ANNUAL_FACTORS[frequency]


def normalize_income(streams: Iterable[IncomeStream]) -> IncomeSummary:
    """Put every income stream on a common monthly and annual basis.

    The weekly and daily factors are the fixed approximations 4.33 weeks and
    30.42 days per month, so totals are not calendar exact.
    """
    rows: List[NormalizedIncome] = []
    monthly_total = ZERO
    annual_total = ZERO
    for stream in streams:
        monthly = monthly_equivalent(stream)
        annual = annual_equivalent(stream)
        monthly_total += monthly
        annual_total += annual
        rows.append(NormalizedIncome(stream=stream, monthly=monthly, annual=annual))
    return IncomeSummary(
        monthly_total=monthly_total,
        annual_total=annual_total,
        streams=rows,
    )


def _validated_amount(stream: IncomeStream) -> Decimal:
    amount = as_decimal(stream.amount)
    if amount < ZERO:
        raise ValueError("Income amount must not be negative.")
    return amount

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, List, Optional

from spendwise.aggregation import ZERO, Transaction, as_decimal, percentage_of
from spendwise.categories import Category

MONTHS_PER_YEAR = Decimal("12")
CRITICAL_THRESHOLD = 90
WARNING_THRESHOLD = 75


class BudgetPeriod:
    values = {"monthly", "annual"}

    @classmethod
    def validate(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in cls.values:
            raise ValueError("Invalid budget period.")
        return normalized


@dataclass(frozen=True)
class BudgetGoal:
    id: str
    category: Category
    amount: Decimal
    period: str = "monthly"

    @property
    def monthly_amount(self) -> Decimal:
        if self.period == "annual":
            return self.amount / MONTHS_PER_YEAR
        return self.amount


@dataclass(frozen=True)
class GoalProgress:
    goal: BudgetGoal
    spent: Decimal
    percentage_used: int
    remaining: Decimal
    tier: str


@dataclass(frozen=True)
class BudgetEvaluation:
    total_budget: Decimal
    total_expenses: Decimal
    budget_used_percentage: int
    remaining_budget: Decimal
    goals: List[GoalProgress]


def evaluate_budget(
    goals: Iterable[BudgetGoal],
    transactions: Iterable[Transaction],
    total_expenses: Optional[Decimal] = None,
    normalize_periods: bool = False,
) -> BudgetEvaluation:
    """Compare window spending against the user's budget goals.

    Goal targets are summed as stored unless ``normalize_periods`` is set, in
    which case annual targets count as their monthly share. Goals sharing a
    category are evaluated independently and each sees the whole category
    spend.
    """
    goal_items = list(goals)
    txn_items = list(transactions)
    for goal in goal_items:
        if goal.amount <= ZERO:
            raise ValueError("goal.amount must be greater than zero.")

    if total_expenses is None:
        total_expenses = _sum_expenses(txn_items)

    total_budget = ZERO
    for goal in goal_items:
        total_budget += goal.monthly_amount if normalize_periods else goal.amount

    if total_budget > ZERO:
        used = min(percentage_of(total_expenses, total_budget), 100)
    else:
        used = 0
    remaining_budget = max(total_budget - total_expenses, ZERO)

    progress = [_evaluate_goal(goal, txn_items) for goal in goal_items]

    return BudgetEvaluation(
        total_budget=total_budget,
        total_expenses=total_expenses,
        budget_used_percentage=used,
        remaining_budget=remaining_budget,
        goals=progress,
    )


def progress_tier(percentage: int) -> str:
    if percentage > CRITICAL_THRESHOLD:
        return "critical"
    if percentage > WARNING_THRESHOLD:
        return "warning"
    return "normal"


def _evaluate_goal(goal: BudgetGoal, transactions: List[Transaction]) -> GoalProgress:
    spent = _sum_expenses(transactions, category=goal.category)
    percentage = percentage_of(spent, goal.amount)
    return GoalProgress(
        goal=goal,
        spent=spent,
        percentage_used=percentage,
        remaining=goal.amount - spent,
        tier=progress_tier(percentage),
    )


def _sum_expenses(
    transactions: Iterable[Transaction],
    *,
    category: Optional[Category] = None,
) -> Decimal:
    total = ZERO
    for txn in transactions:
        if category is not None and txn.category != category:
            continue
        total += as_decimal(txn.amount)
    return total
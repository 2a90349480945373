from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, Iterable, List, Optional, Protocol

from sqlalchemy.exc import SQLAlchemyError

from spendwise.aggregation import (
    DEFAULT_WINDOW_MONTHS,
    ExpenseSummary,
    Transaction,
    aggregate_expenses,
    window_start,
)
from spendwise.budget_engine import BudgetEvaluation, BudgetGoal, evaluate_budget
from spendwise.income_normalization import IncomeStream, IncomeSummary, normalize_income
from spendwise.insights import InsightReport, build_insights

logger = logging.getLogger(__name__)

FETCH_FAILED_NOTICE = "We couldn't load your data. Please try again."


class FetchError(RuntimeError):
    """Raised when the repository cannot return records."""


@dataclass(frozen=True)
class SessionContext:
    user_id: int


class FinanceRepository(Protocol):
    def fetch_expenses(self, user_id: int, since: date) -> List[Transaction]:
        ...

    def fetch_budget_goals(self, user_id: int) -> List[BudgetGoal]:
        ...

    def fetch_income_streams(self, user_id: int) -> List[IncomeStream]:
        ...


@dataclass(frozen=True)
class DashboardSnapshot:
    months: int
    expenses: List[Transaction]
    summary: ExpenseSummary
    budget: BudgetEvaluation
    insights: InsightReport
    income: IncomeSummary
    notice: Optional[str] = None


def build_dashboard(
    expenses: Iterable[Transaction],
    goals: Iterable[BudgetGoal],
    streams: Iterable[IncomeStream],
    months: int = DEFAULT_WINDOW_MONTHS,
    now: Optional[datetime] = None,
    notice: Optional[str] = None,
) -> DashboardSnapshot:
    expense_items = list(expenses)
    summary = aggregate_expenses(expense_items, months=months, now=now)
    budget = evaluate_budget(
        goals, expense_items, total_expenses=summary.total_expenses
    )
    return DashboardSnapshot(
        months=months,
        expenses=expense_items,
        summary=summary,
        budget=budget,
        insights=build_insights(summary),
        income=normalize_income(streams),
        notice=notice,
    )


class DashboardLoader:
    """Fetch-then-aggregate pipeline for one signed-in user.

    Each call to :meth:`load` starts a new fetch generation. A response that
    comes back after a newer load has started is dropped instead of replacing
    the newer data, so quick window toggles cannot show stale numbers.
    """

    def __init__(
        self,
        repository: FinanceRepository,
        session: SessionContext,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.repository = repository
        self.session = session
        self.clock = clock
        self.current: Optional[DashboardSnapshot] = None
        self._generation = 0

    @property
    def generation(self) -> int:
        return self._generation

    async def load(self, months: int = DEFAULT_WINDOW_MONTHS) -> Optional[DashboardSnapshot]:
        if months < 1:
            raise ValueError("months must be at least 1.")
        self._generation += 1
        generation = self._generation
        now = self.clock()

        try:
            expenses, goals, streams = await asyncio.to_thread(
                self._fetch, window_start(now, months)
            )
        except (FetchError, SQLAlchemyError) as exc:
            logger.warning(
                "Dashboard fetch failed for user %s: %s", self.session.user_id, exc
            )
            expenses, goals, streams = [], [], []
            notice = FETCH_FAILED_NOTICE
        else:
            notice = None

        if generation != self._generation:
            logger.debug(
                "Discarding stale dashboard response (generation %s, current %s).",
                generation,
                self._generation,
            )
            return None

        snapshot = build_dashboard(
            expenses, goals, streams, months=months, now=now, notice=notice
        )
        self.current = snapshot
        return snapshot

    def _fetch(self, since: date):
        user_id = self.session.user_id
        expenses = self.repository.fetch_expenses(user_id, since)
        goals = self.repository.fetch_budget_goals(user_id)
        streams = self.repository.fetch_income_streams(user_id)
        return expenses, goals, streams

import asyncio
import threading
import unittest
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool

from spendwise.aggregation import Transaction
from spendwise.budget_engine import BudgetGoal
from spendwise.categories import Category
from spendwise.dashboard import (
    FETCH_FAILED_NOTICE,
    DashboardLoader,
    FetchError,
    SessionContext,
    build_dashboard,
)
from spendwise.database import (
    SqlFinanceRepository,
    budget_goals,
    create_db_engine,
    income_streams,
    init_db,
    users,
)
from spendwise.income_normalization import IncomeStream

NOW = datetime(2024, 2, 15, 9, 30)


class FakeRepository:
    def __init__(self, expenses=None, goals=None, streams=None, error=None) -> None:
        self.expenses = expenses or []
        self.goals = goals or []
        self.streams = streams or []
        self.error = error
        self.calls: list[tuple[int, date]] = []

    def fetch_expenses(self, user_id: int, since: date):
        self.calls.append((user_id, since))
        if self.error is not None:
            raise self.error
        return [txn for txn in self.expenses if txn.date.date() >= since]

    def fetch_budget_goals(self, user_id: int):
        return list(self.goals)

    def fetch_income_streams(self, user_id: int):
        return list(self.streams)


class BlockingRepository(FakeRepository):
    """Holds the first expense fetch open until the test releases it."""

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self.first_started = threading.Event()
        self.release_first = threading.Event()

    def fetch_expenses(self, user_id: int, since: date):
        is_first = not self.calls
        result = super().fetch_expenses(user_id, since)
        if is_first:
            self.first_started.set()
            self.release_first.wait(timeout=5)
        return result


def sample_expenses() -> list:
    return [
        Transaction(
            id="3",
            amount=Decimal("300"),
            category=Category.HOUSING,
            date=datetime(2024, 2, 5),
            description="Rent top-up",
        ),
        Transaction(
            id="2",
            amount=Decimal("100"),
            category=Category.FOOD,
            date=datetime(2024, 1, 12),
            description="Groceries",
        ),
        Transaction(
            id="1",
            amount=Decimal("500"),
            category=Category.HOUSING,
            date=datetime(2024, 1, 10),
            description="Rent",
        ),
    ]


class BuildDashboardTests(unittest.TestCase):
    def test_composes_all_engines(self) -> None:
        goals = [BudgetGoal(id="g1", category=Category.HOUSING, amount=Decimal("1000"))]
        streams = [
            IncomeStream(id="s1", source="Salary", amount=Decimal("2000"), frequency="monthly")
        ]

        snapshot = build_dashboard(sample_expenses(), goals, streams, months=2, now=NOW)

        self.assertEqual(snapshot.summary.total_expenses, Decimal("900"))
        self.assertEqual(snapshot.budget.total_budget, Decimal("1000"))
        self.assertEqual(snapshot.budget.budget_used_percentage, 90)
        self.assertEqual(snapshot.budget.goals[0].spent, Decimal("800"))
        self.assertEqual(snapshot.insights.monthly_trend, "decreasing")
        self.assertEqual(snapshot.insights.month_over_month_change, -50)
        self.assertEqual(snapshot.income.annual_total, Decimal("24000"))
        self.assertIsNone(snapshot.notice)


class DashboardLoaderTests(unittest.IsolatedAsyncioTestCase):
    async def test_load_fetches_from_window_start(self) -> None:
        repository = FakeRepository(expenses=sample_expenses())
        loader = DashboardLoader(repository, SessionContext(user_id=7), clock=lambda: NOW)

        snapshot = await loader.load(2)

        self.assertEqual(repository.calls, [(7, date(2024, 1, 1))])
        self.assertEqual(snapshot.summary.total_expenses, Decimal("900"))
        self.assertIs(loader.current, snapshot)

    async def test_fetch_failure_degrades_to_empty_snapshot(self) -> None:
        for error in (FetchError("backend down"), SQLAlchemyError("connection lost")):
            with self.subTest(error=type(error).__name__):
                loader = DashboardLoader(
                    FakeRepository(error=error), SessionContext(user_id=1), clock=lambda: NOW
                )

                with self.assertLogs("spendwise.dashboard", level="WARNING"):
                    snapshot = await loader.load(3)

                self.assertEqual(snapshot.notice, FETCH_FAILED_NOTICE)
                self.assertEqual(snapshot.summary.total_expenses, Decimal("0"))
                self.assertEqual(len(snapshot.summary.monthly_totals), 3)
                self.assertEqual(snapshot.budget.budget_used_percentage, 0)

    async def test_stale_response_is_discarded(self) -> None:
        repository = BlockingRepository(expenses=sample_expenses())
        loader = DashboardLoader(repository, SessionContext(user_id=1), clock=lambda: NOW)

        first_task = asyncio.create_task(loader.load(6))
        started = await asyncio.to_thread(repository.first_started.wait, 5)
        self.assertTrue(started)

        second = await loader.load(3)
        repository.release_first.set()
        first = await first_task

        self.assertIsNone(first)
        self.assertIs(loader.current, second)
        self.assertEqual(loader.current.months, 3)
        self.assertEqual(loader.generation, 2)

    async def test_rejects_non_positive_window(self) -> None:
        loader = DashboardLoader(FakeRepository(), SessionContext(user_id=1), clock=lambda: NOW)

        with self.assertRaises(ValueError):
            await loader.load(0)


class StoredRecordLoaderTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.engine = create_db_engine("sqlite://", poolclass=StaticPool)
        init_db(self.engine)
        with self.engine.begin() as conn:
            conn.execute(insert(users).values(id=1, email="a@example.com", hashed_password="x"))
        self.repository = SqlFinanceRepository(self.engine)
        self.repository.create_expense(
            1, Decimal("120"), "Groceries", Category.FOOD, datetime(2024, 2, 3)
        )

    def tearDown(self) -> None:
        self.engine.dispose()

    async def assert_degrades(self) -> None:
        loader = DashboardLoader(self.repository, SessionContext(user_id=1), clock=lambda: NOW)

        with self.assertLogs("spendwise.dashboard", level="WARNING"):
            snapshot = await loader.load(3)

        self.assertEqual(snapshot.notice, FETCH_FAILED_NOTICE)
        self.assertEqual(snapshot.summary.total_expenses, Decimal("0"))
        self.assertEqual(snapshot.budget.total_budget, Decimal("0"))
        self.assertEqual(snapshot.income.monthly_total, Decimal("0"))
        self.assertIs(loader.current, snapshot)

    async def test_zero_target_goal_degrades_to_notice(self) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                insert(budget_goals).values(
                    id="g0", user_id=1, category="food", amount=Decimal("0"), period="monthly"
                )
            )

        await self.assert_degrades()

    async def test_unknown_income_frequency_degrades_to_notice(self) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                insert(income_streams).values(
                    id="s0",
                    user_id=1,
                    source="Consulting",
                    amount=Decimal("900"),
                    frequency="quarterly",
                )
            )

        await self.assert_degrades()

    async def test_valid_rows_load_normally(self) -> None:
        self.repository.create_budget_goal(1, Category.FOOD, Decimal("400"), "monthly")
        self.repository.create_income_stream(1, "Salary", Decimal("3000"), "monthly")
        loader = DashboardLoader(self.repository, SessionContext(user_id=1), clock=lambda: NOW)

        snapshot = await loader.load(3)

        self.assertIsNone(snapshot.notice)
        self.assertEqual(snapshot.summary.total_expenses, Decimal("120"))
        self.assertEqual(snapshot.budget.budget_used_percentage, 30)
        self.assertEqual(snapshot.income.monthly_total, Decimal("3000"))


if __name__ == "__main__":
    unittest.main()

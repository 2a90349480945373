from __future__ import annotations

import uuid
from datetime import date, datetime, time
from decimal import Decimal
from typing import List

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    create_engine,
    func,
    insert,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from spendwise.aggregation import Transaction, coerce_amount
from spendwise.budget_engine import BudgetGoal, BudgetPeriod
from spendwise.categories import Category, parse_category
from spendwise.dashboard import FetchError
from spendwise.income_normalization import IncomeFrequency, IncomeStream

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), unique=True, nullable=False),
    Column("hashed_password", String(255), nullable=False),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

user_settings = Table(
    "user_settings",
    metadata,
    Column("user_id", Integer, ForeignKey("users.id"), primary_key=True),
    Column("currency", String(3), nullable=False),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    Column("updated_at", DateTime, nullable=False, server_default=func.now()),
)

expenses = Table(
    "expenses",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("amount", Numeric(12, 2), nullable=False),
    Column("description", String(500), nullable=False),
    Column("category", String(50), nullable=False),
    Column("date", DateTime, nullable=False),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

budget_goals = Table(
    "budget_goals",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("category", String(50), nullable=False),
    Column("amount", Numeric(12, 2), nullable=False),
    Column("period", String(20), nullable=False, server_default="monthly"),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

income_streams = Table(
    "income_streams",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("source", String(255), nullable=False),
    Column("amount", Numeric(12, 2), nullable=False),
    Column("frequency", String(20), nullable=False, server_default="monthly"),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)


def create_db_engine(database_url: str, **kwargs) -> Engine:
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
    return create_engine(database_url, connect_args=connect_args, **kwargs)


def init_db(engine: Engine) -> None:
    metadata.create_all(engine)


def new_record_id() -> str:
    return uuid.uuid4().hex


class SqlFinanceRepository:
    """Per-user storage for expenses, budget goals and income streams.

    Records are created and deleted but never edited in place.
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def fetch_expenses(self, user_id: int, since: date) -> List[Transaction]:
        since_value = datetime.combine(since, time.min)
        stmt = (
            select(expenses)
            .where(expenses.c.user_id == user_id, expenses.c.date >= since_value)
            .order_by(expenses.c.date.desc(), expenses.c.created_at.desc())
        )
        rows = self._read(stmt)
        try:
            return [
                Transaction(
                    id=row["id"],
                    amount=coerce_amount(row["amount"]),
                    category=parse_category(row["category"]),
                    date=row["date"],
                    description=row["description"],
                )
                for row in rows
            ]
        except ValueError as exc:
            raise FetchError(f"Stored expense is invalid: {exc}") from exc

    def fetch_budget_goals(self, user_id: int) -> List[BudgetGoal]:
        stmt = (
            select(budget_goals)
            .where(budget_goals.c.user_id == user_id)
            .order_by(budget_goals.c.created_at.desc())
        )
        rows = self._read(stmt)
        try:
            return [
                BudgetGoal(
                    id=row["id"],
                    category=parse_category(row["category"]),
                    amount=_goal_amount(row["amount"]),
                    period=BudgetPeriod.validate(row["period"]),
                )
                for row in rows
            ]
        except ValueError as exc:
            raise FetchError(f"Stored budget goal is invalid: {exc}") from exc

    def fetch_income_streams(self, user_id: int) -> List[IncomeStream]:
        stmt = (
            select(income_streams)
            .where(income_streams.c.user_id == user_id)
            .order_by(income_streams.c.created_at.desc())
        )
        rows = self._read(stmt)
        try:
            return [
                IncomeStream(
                    id=row["id"],
                    source=row["source"],
                    amount=_income_amount(row["amount"]),
                    frequency=IncomeFrequency.validate(row["frequency"]),
                )
                for row in rows
            ]
        except ValueError as exc:
            raise FetchError(f"Stored income stream is invalid: {exc}") from exc

    def create_expense(
        self,
        user_id: int,
        amount: Decimal,
        description: str,
        category: Category,
        date: datetime,
    ) -> Transaction:
        record_id = new_record_id()
        with self.engine.begin() as conn:
            conn.execute(
                insert(expenses).values(
                    id=record_id,
                    user_id=user_id,
                    amount=amount,
                    description=description,
                    category=category.value,
                    date=date,
                )
            )
        return Transaction(
            id=record_id,
            amount=amount,
            category=category,
            date=date,
            description=description,
        )

    def delete_expense(self, user_id: int, expense_id: str) -> bool:
        return self._delete(expenses, user_id, expense_id)

    def create_budget_goal(
        self, user_id: int, category: Category, amount: Decimal, period: str
    ) -> BudgetGoal:
        record_id = new_record_id()
        with self.engine.begin() as conn:
            conn.execute(
                insert(budget_goals).values(
                    id=record_id,
                    user_id=user_id,
                    category=category.value,
                    amount=amount,
                    period=period,
                )
            )
        return BudgetGoal(id=record_id, category=category, amount=amount, period=period)

    def delete_budget_goal(self, user_id: int, goal_id: str) -> bool:
        return self._delete(budget_goals, user_id, goal_id)

    def create_income_stream(
        self, user_id: int, source: str, amount: Decimal, frequency: str
    ) -> IncomeStream:
        record_id = new_record_id()
        with self.engine.begin() as conn:
            conn.execute(
                insert(income_streams).values(
                    id=record_id,
                    user_id=user_id,
                    source=source,
                    amount=amount,
                    frequency=frequency,
                )
            )
        return IncomeStream(id=record_id, source=source, amount=amount, frequency=frequency)

    def delete_income_stream(self, user_id: int, stream_id: str) -> bool:
        return self._delete(income_streams, user_id, stream_id)

    def _read(self, stmt) -> list:
        try:
            with self.engine.begin() as conn:
                return conn.execute(stmt).mappings().all()
        except SQLAlchemyError as exc:
            raise FetchError("Failed to read records.") from exc

    def _delete(self, table: Table, user_id: int, record_id: str) -> bool:
        stmt = table.delete().where(table.c.id == record_id, table.c.user_id == user_id)
        with self.engine.begin() as conn:
            result = conn.execute(stmt)
        return result.rowcount > 0


def _goal_amount(value) -> Decimal:
    amount = coerce_amount(value)
    if amount <= 0:
        raise ValueError("goal.amount must be greater than zero.")
    return amount


def _income_amount(value) -> Decimal:
    amount = coerce_amount(value)
    if amount < 0:
        raise ValueError("Income amount must not be negative.")
    return amount

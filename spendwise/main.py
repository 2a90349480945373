import asyncio
import logging
from datetime import datetime
from decimal import Decimal

import bcrypt
from fastapi import FastAPI, Header, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from sqlalchemy import insert, select, update
from sqlalchemy.exc import IntegrityError

from spendwise import config
from spendwise.aggregation import SUPPORTED_WINDOWS, Transaction, window_start
from spendwise.budget_engine import BudgetPeriod
from spendwise.categories import category_color, category_icon, parse_category
from spendwise.dashboard import DashboardLoader, DashboardSnapshot, FetchError, SessionContext
from spendwise.database import (
    SqlFinanceRepository,
    create_db_engine,
    init_db,
    user_settings,
    users,
)
from spendwise.income_normalization import (
    IncomeFrequency,
    annual_equivalent,
    monthly_equivalent,
    normalize_income,
)

logger = logging.getLogger(__name__)

app = FastAPI()

app.add_middleware(
    CORSMiddleware,
    allow_origins=[config.FRONTEND_ORIGIN],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

engine = create_db_engine(config.DATABASE_URL)
repository = SqlFinanceRepository(engine)

RECENT_EXPENSE_COUNT = 5


@app.on_event("startup")
def startup() -> None:
    config.configure_logging()
    init_db(engine)


class CredentialsPayload(BaseModel):
    email: str
    password: str


class UserResponse(BaseModel):
    id: int
    email: str
    created_at: datetime | None = None


class UserSettingsPayload(BaseModel):
    currency: str | None = None


class UserSettingsResponse(BaseModel):
    user_id: int
    currency: str


class ExpensePayload(BaseModel):
    amount: Decimal | None = None
    description: str | None = None
    category: str | None = None
    date: datetime | None = None

    @classmethod
    def validate_payload(cls, payload: "ExpensePayload") -> "ExpensePayload":
        payload.description = payload.description.strip() if payload.description else None
        payload.category = payload.category.strip() if payload.category else None
        if (
            payload.amount is None
            or not payload.description
            or not payload.category
            or payload.date is None
        ):
            raise ValueError("Please fill in all fields.")
        if payload.amount < 0:
            raise ValueError("Amount must not be negative.")
        payload.category = parse_category(payload.category).value
        # Aggregation works on naive local dates.
        payload.date = payload.date.replace(tzinfo=None)
        return payload


class ExpenseResponse(BaseModel):
    id: str
    amount: Decimal
    description: str
    category: str
    date: datetime
    color: str


class BudgetGoalPayload(BaseModel):
    category: str
    amount: Decimal
    period: str = "monthly"

    @classmethod
    def validate_payload(cls, payload: "BudgetGoalPayload") -> "BudgetGoalPayload":
        payload.category = parse_category(payload.category).value
        payload.period = BudgetPeriod.validate(payload.period)
        if payload.amount <= 0:
            raise ValueError("Budget amount must be greater than zero.")
        return payload


class BudgetGoalResponse(BaseModel):
    id: str
    category: str
    amount: Decimal
    period: str


class IncomeStreamPayload(BaseModel):
    source: str
    amount: Decimal
    frequency: str = "monthly"

    @classmethod
    def validate_payload(cls, payload: "IncomeStreamPayload") -> "IncomeStreamPayload":
        payload.source = payload.source.strip()
        if not payload.source:
            raise ValueError("Please enter both source and amount.")
        if payload.amount <= 0:
            raise ValueError("Income amount must be greater than zero.")
        payload.frequency = IncomeFrequency.validate(payload.frequency)
        return payload


class IncomeStreamResponse(BaseModel):
    id: str
    source: str
    amount: Decimal
    frequency: str
    monthly_equivalent: Decimal
    annual_equivalent: Decimal


class IncomeSummaryResponse(BaseModel):
    monthly_total: Decimal
    annual_total: Decimal
    streams: list[IncomeStreamResponse]


class CategoryTotalResponse(BaseModel):
    category: str
    amount: Decimal
    percentage: int
    color: str


class MonthlyTotalResponse(BaseModel):
    month: str
    amount: Decimal


class TopCategoryResponse(BaseModel):
    name: str
    amount: Decimal
    percentage: int


class DashboardResponse(BaseModel):
    months: int
    total_expenses: Decimal
    monthly_change: int
    total_budget: Decimal
    budget_used_percentage: int
    remaining_budget: Decimal
    top_category: TopCategoryResponse
    monthly_totals: list[MonthlyTotalResponse]
    category_totals: list[CategoryTotalResponse]
    recent_expenses: list[ExpenseResponse]
    notice: str | None = None


class SavingsOpportunityResponse(BaseModel):
    category: str
    potential: int


class InsightsResponse(BaseModel):
    months: int
    top_categories: list[CategoryTotalResponse]
    monthly_trend: str
    month_over_month_change: int
    savings_opportunity: SavingsOpportunityResponse
    notice: str | None = None


class GoalProgressResponse(BaseModel):
    id: str
    category: str
    amount: Decimal
    period: str
    spent: Decimal
    percentage_used: int
    remaining: Decimal
    tier: str
    color: str
    icon: str


class BudgetEvaluationResponse(BaseModel):
    months: int
    total_budget: Decimal
    total_expenses: Decimal
    budget_used_percentage: int
    remaining_budget: Decimal
    goals: list[GoalProgressResponse]
    notice: str | None = None


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed_password: str) -> bool:
    return bcrypt.checkpw(password.encode("utf-8"), hashed_password.encode("utf-8"))


def get_session(x_user_id: str | None) -> SessionContext:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing user identity.")
    try:
        user_id = int(x_user_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid user identity.") from exc
    with engine.begin() as conn:
        result = conn.execute(select(users.c.id).where(users.c.id == user_id))
        if not result.first():
            raise HTTPException(status_code=404, detail="User not found.")
    return SessionContext(user_id=user_id)


def validate_window(months: int) -> int:
    if months not in SUPPORTED_WINDOWS:
        raise HTTPException(status_code=400, detail="months must be one of 3, 6, or 12.")
    return months


def ensure_user_settings(conn, user_id: int) -> str:
    currency = conn.execute(
        select(user_settings.c.currency).where(user_settings.c.user_id == user_id)
    ).scalar_one_or_none()
    if currency:
        return currency
    conn.execute(
        insert(user_settings).values(user_id=user_id, currency=config.DEFAULT_CURRENCY)
    )
    return config.DEFAULT_CURRENCY


def expense_response(txn: Transaction) -> ExpenseResponse:
    return ExpenseResponse(
        id=txn.id,
        amount=txn.amount,
        description=txn.description,
        category=txn.category.value,
        date=txn.date,
        color=category_color(txn.category),
    )


def income_stream_response(stream) -> IncomeStreamResponse:
    return IncomeStreamResponse(
        id=stream.id,
        source=stream.source,
        amount=stream.amount,
        frequency=stream.frequency,
        monthly_equivalent=monthly_equivalent(stream),
        annual_equivalent=annual_equivalent(stream),
    )


def category_total_responses(snapshot_totals) -> list[CategoryTotalResponse]:
    return [
        CategoryTotalResponse(
            category=item.category.value,
            amount=item.amount,
            percentage=item.percentage,
            color=item.color,
        )
        for item in snapshot_totals
    ]


async def load_snapshot(session: SessionContext, months: int) -> DashboardSnapshot:
    # A fresh loader per request is never superseded, so load always returns a snapshot.
    loader = DashboardLoader(repository, session)
    return await loader.load(months)


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.post("/auth/signup", response_model=UserResponse)
def signup(payload: CredentialsPayload) -> UserResponse:
    email = payload.email.strip().lower()
    if not email or not payload.password:
        raise HTTPException(status_code=400, detail="Email and password required.")
    hashed_password = hash_password(payload.password)

    stmt = (
        insert(users)
        .values(email=email, hashed_password=hashed_password)
        .returning(users.c.id, users.c.email, users.c.created_at)
    )
    try:
        with engine.begin() as conn:
            row = conn.execute(stmt).mappings().first()
            if row:
                ensure_user_settings(conn, row["id"])
    except IntegrityError as exc:
        raise HTTPException(status_code=409, detail="Email already exists.") from exc

    if not row:
        raise HTTPException(status_code=500, detail="Failed to create user.")
    logger.info("Created user %s", row["id"])
    return UserResponse(id=row["id"], email=row["email"], created_at=row["created_at"])


@app.post("/auth/login", response_model=UserResponse)
def login(payload: CredentialsPayload) -> UserResponse:
    email = payload.email.strip().lower()
    with engine.begin() as conn:
        row = conn.execute(select(users).where(users.c.email == email)).mappings().first()

    if not row or not verify_password(payload.password, row["hashed_password"]):
        raise HTTPException(status_code=401, detail="Invalid credentials.")

    return UserResponse(id=row["id"], email=row["email"], created_at=row["created_at"])


@app.get("/users/me/settings", response_model=UserSettingsResponse)
def get_user_settings(
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> UserSettingsResponse:
    session = get_session(x_user_id)
    with engine.begin() as conn:
        currency = ensure_user_settings(conn, session.user_id)
    return UserSettingsResponse(user_id=session.user_id, currency=currency)


@app.put("/users/me/settings", response_model=UserSettingsResponse)
def update_user_settings(
    payload: UserSettingsPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> UserSettingsResponse:
    session = get_session(x_user_id)
    if payload.currency is None:
        raise HTTPException(status_code=400, detail="Currency required.")
    try:
        currency = config.normalize_currency(payload.currency)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    with engine.begin() as conn:
        ensure_user_settings(conn, session.user_id)
        conn.execute(
            update(user_settings)
            .where(user_settings.c.user_id == session.user_id)
            .values(currency=currency, updated_at=datetime.now())
        )
    return UserSettingsResponse(user_id=session.user_id, currency=currency)


@app.get("/expenses", response_model=list[ExpenseResponse])
def list_expenses(
    months: int = Query(config.DEFAULT_WINDOW_MONTHS),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[ExpenseResponse]:
    session = get_session(x_user_id)
    months = validate_window(months)
    try:
        items = repository.fetch_expenses(
            session.user_id, window_start(datetime.now(), months)
        )
    except FetchError as exc:
        raise HTTPException(status_code=503, detail="Failed to load expenses.") from exc
    return [expense_response(txn) for txn in items]


@app.post("/expenses", response_model=ExpenseResponse)
def create_expense(
    payload: ExpensePayload, x_user_id: str | None = Header(None, alias="x-user-id")
) -> ExpenseResponse:
    session = get_session(x_user_id)
    try:
        payload = ExpensePayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    txn = repository.create_expense(
        session.user_id,
        amount=payload.amount,
        description=payload.description,
        category=parse_category(payload.category),
        date=payload.date,
    )
    return expense_response(txn)


@app.delete("/expenses/{expense_id}")
def delete_expense(
    expense_id: str, x_user_id: str | None = Header(None, alias="x-user-id")
) -> dict:
    session = get_session(x_user_id)
    if not repository.delete_expense(session.user_id, expense_id):
        raise HTTPException(status_code=404, detail="Expense not found.")
    return {"status": "deleted"}


@app.get("/budget/goals", response_model=list[BudgetGoalResponse])
def list_budget_goals(
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[BudgetGoalResponse]:
    session = get_session(x_user_id)
    try:
        goals = repository.fetch_budget_goals(session.user_id)
    except FetchError as exc:
        raise HTTPException(status_code=503, detail="Failed to load budget goals.") from exc
    return [
        BudgetGoalResponse(
            id=goal.id,
            category=goal.category.value,
            amount=goal.amount,
            period=goal.period,
        )
        for goal in goals
    ]


@app.post("/budget/goals", response_model=BudgetGoalResponse)
def create_budget_goal(
    payload: BudgetGoalPayload, x_user_id: str | None = Header(None, alias="x-user-id")
) -> BudgetGoalResponse:
    session = get_session(x_user_id)
    try:
        payload = BudgetGoalPayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    goal = repository.create_budget_goal(
        session.user_id,
        category=parse_category(payload.category),
        amount=payload.amount,
        period=payload.period,
    )
    return BudgetGoalResponse(
        id=goal.id,
        category=goal.category.value,
        amount=goal.amount,
        period=goal.period,
    )


@app.delete("/budget/goals/{goal_id}")
def delete_budget_goal(
    goal_id: str, x_user_id: str | None = Header(None, alias="x-user-id")
) -> dict:
    session = get_session(x_user_id)
    if not repository.delete_budget_goal(session.user_id, goal_id):
        raise HTTPException(status_code=404, detail="Budget goal not found.")
    return {"status": "deleted"}


@app.get("/income/streams", response_model=list[IncomeStreamResponse])
def list_income_streams(
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[IncomeStreamResponse]:
    session = get_session(x_user_id)
    try:
        streams = repository.fetch_income_streams(session.user_id)
    except FetchError as exc:
        raise HTTPException(status_code=503, detail="Failed to fetch income streams.") from exc
    return [income_stream_response(stream) for stream in streams]


@app.post("/income/streams", response_model=IncomeStreamResponse)
def create_income_stream(
    payload: IncomeStreamPayload, x_user_id: str | None = Header(None, alias="x-user-id")
) -> IncomeStreamResponse:
    session = get_session(x_user_id)
    try:
        payload = IncomeStreamPayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    stream = repository.create_income_stream(
        session.user_id,
        source=payload.source,
        amount=payload.amount,
        frequency=payload.frequency,
    )
    return income_stream_response(stream)


@app.delete("/income/streams/{stream_id}")
def delete_income_stream(
    stream_id: str, x_user_id: str | None = Header(None, alias="x-user-id")
) -> dict:
    session = get_session(x_user_id)
    if not repository.delete_income_stream(session.user_id, stream_id):
        raise HTTPException(status_code=404, detail="Income stream not found.")
    return {"status": "deleted"}


@app.get("/income/summary", response_model=IncomeSummaryResponse)
def income_summary(
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> IncomeSummaryResponse:
    session = get_session(x_user_id)
    try:
        streams = repository.fetch_income_streams(session.user_id)
    except FetchError as exc:
        raise HTTPException(status_code=503, detail="Failed to fetch income streams.") from exc
    try:
        summary = normalize_income(streams)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return IncomeSummaryResponse(
        monthly_total=summary.monthly_total,
        annual_total=summary.annual_total,
        streams=[income_stream_response(row.stream) for row in summary.streams],
    )


@app.get("/reports/dashboard", response_model=DashboardResponse)
async def dashboard_report(
    months: int = Query(config.DEFAULT_WINDOW_MONTHS),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> DashboardResponse:
    session = await asyncio.to_thread(get_session, x_user_id)
    snapshot = await load_snapshot(session, validate_window(months))
    summary = snapshot.summary
    top = snapshot.insights.top_category
    return DashboardResponse(
        months=snapshot.months,
        total_expenses=summary.total_expenses,
        monthly_change=snapshot.insights.month_over_month_change,
        total_budget=snapshot.budget.total_budget,
        budget_used_percentage=snapshot.budget.budget_used_percentage,
        remaining_budget=snapshot.budget.remaining_budget,
        top_category=TopCategoryResponse(
            name=top.category.value if top.category else "none",
            amount=top.amount,
            percentage=top.percentage,
        ),
        monthly_totals=[
            MonthlyTotalResponse(month=item.month, amount=item.amount)
            for item in summary.monthly_totals
        ],
        category_totals=category_total_responses(summary.category_totals),
        recent_expenses=[
            expense_response(txn) for txn in snapshot.expenses[:RECENT_EXPENSE_COUNT]
        ],
        notice=snapshot.notice,
    )


@app.get("/reports/insights", response_model=InsightsResponse)
async def insights_report(
    months: int = Query(config.DEFAULT_WINDOW_MONTHS),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> InsightsResponse:
    session = await asyncio.to_thread(get_session, x_user_id)
    snapshot = await load_snapshot(session, validate_window(months))
    insights = snapshot.insights
    savings = insights.savings_opportunity
    return InsightsResponse(
        months=snapshot.months,
        top_categories=category_total_responses(insights.top_categories),
        monthly_trend=insights.monthly_trend,
        month_over_month_change=insights.month_over_month_change,
        savings_opportunity=SavingsOpportunityResponse(
            category=savings.category.value if savings.category else "none",
            potential=savings.potential,
        ),
        notice=snapshot.notice,
    )


@app.get("/budget/evaluate", response_model=BudgetEvaluationResponse)
async def evaluate_budget_goals(
    months: int = Query(config.DEFAULT_WINDOW_MONTHS),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> BudgetEvaluationResponse:
    session = await asyncio.to_thread(get_session, x_user_id)
    snapshot = await load_snapshot(session, validate_window(months))
    budget = snapshot.budget
    return BudgetEvaluationResponse(
        months=snapshot.months,
        total_budget=budget.total_budget,
        total_expenses=budget.total_expenses,
        budget_used_percentage=budget.budget_used_percentage,
        remaining_budget=budget.remaining_budget,
        goals=[
            GoalProgressResponse(
                id=item.goal.id,
                category=item.goal.category.value,
                amount=item.goal.amount,
                period=item.goal.period,
                spent=item.spent,
                percentage_used=item.percentage_used,
                remaining=item.remaining,
                tier=item.tier,
                color=category_color(item.goal.category),
                icon=category_icon(item.goal.category),
            )
            for item in budget.goals
        ],
        notice=snapshot.notice,
    )

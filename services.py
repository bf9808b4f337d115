from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Optional

from sqlalchemy import delete, extract, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from aggregation import (
    BudgetProgress,
    CategoryShare,
    FinancialHealth,
    TrendPoint,
    budget_progress,
    category_breakdown,
    category_totals,
    financial_health,
    monthly_trend,
)
from auth import hash_password, verify_password
from models import Budget, Expense, ExpenseCategory, Income, IncomeSource, User
from periods import Period, month_period, trailing_months
from schemas import BudgetIn, ExpenseIn, IncomeIn, SignupIn
from seed import seed_sample_data


logger = logging.getLogger(__name__)


class RecordNotFound(ValueError):
    pass


class EmailAlreadyRegistered(ValueError):
    pass


class InvalidCredentials(ValueError):
    pass


@dataclass(frozen=True)
class ExpenseFilters:
    category: Optional[ExpenseCategory] = None
    start: Optional[date] = None
    end: Optional[date] = None
    limit: Optional[int] = None


@dataclass(frozen=True)
class IncomeFilters:
    source: Optional[IncomeSource] = None
    start: Optional[date] = None
    end: Optional[date] = None
    limit: Optional[int] = None


class UserService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, user_id: int) -> Optional[User]:
        return self.session.get(User, user_id)

    def signup(self, data: SignupIn, *, today: Optional[date] = None) -> User:
        existing = self.session.scalar(select(User).where(User.email == data.email))
        if existing:
            raise EmailAlreadyRegistered("User already exists")
        name = data.name.strip() if data.name else None
        user = User(
            name=name or None,
            email=data.email,
            password_hash=hash_password(data.password),
        )
        self.session.add(user)
        try:
            self.session.flush()
        except IntegrityError as exc:
            self.session.rollback()
            raise EmailAlreadyRegistered("User already exists") from exc
        counts = seed_sample_data(self.session, user.id, today=today or date.today())
        self.session.commit()
        self.session.refresh(user)
        logger.info(
            f"signup: user_id={user.id} seeded_expenses={counts['expenses']} "
            f"seeded_incomes={counts['incomes']} seeded_budgets={counts['budgets']}"
        )
        return user

    def authenticate(self, email: str, password: str) -> User:
        user = self.session.scalar(
            select(User).where(User.email == email.strip().lower())
        )
        if not user or not verify_password(password, user.password_hash):
            raise InvalidCredentials("Invalid email or password")
        return user


class ExpenseService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def list(self, filters: Optional[ExpenseFilters] = None) -> list[Expense]:
        filters = filters or ExpenseFilters()
        stmt = (
            select(Expense)
            .where(Expense.user_id == self.user_id)
            .order_by(Expense.date.desc(), Expense.id.desc())
        )
        if filters.category:
            stmt = stmt.where(Expense.category == filters.category)
        if filters.start:
            stmt = stmt.where(Expense.date >= filters.start)
        if filters.end:
            stmt = stmt.where(Expense.date <= filters.end)
        if filters.limit:
            stmt = stmt.limit(filters.limit)
        return self.session.scalars(stmt).all()

    def recent(self, limit: int = 10) -> list[Expense]:
        return self.list(ExpenseFilters(limit=limit))

    def get(self, expense_id: int) -> Expense:
        expense = self.session.scalar(
            select(Expense).where(
                Expense.id == expense_id, Expense.user_id == self.user_id
            )
        )
        if not expense:
            raise RecordNotFound("Expense not found")
        return expense

    def create(self, data: ExpenseIn) -> Expense:
        expense = Expense(
            user_id=self.user_id,
            amount_cents=data.amount_cents,
            description=data.description.strip(),
            category=data.category,
            date=data.date,
        )
        self.session.add(expense)
        self.session.commit()
        self.session.refresh(expense)
        return expense

    def update(self, expense_id: int, data: ExpenseIn) -> Expense:
        expense = self.get(expense_id)
        expense.amount_cents = data.amount_cents
        expense.description = data.description.strip()
        expense.category = data.category
        expense.date = data.date
        self.session.commit()
        self.session.refresh(expense)
        return expense

    def delete(self, expense_id: int) -> None:
        result = self.session.execute(
            delete(Expense).where(
                Expense.id == expense_id, Expense.user_id == self.user_id
            )
        )
        if result.rowcount == 0:
            self.session.rollback()
            raise RecordNotFound("Expense not found")
        self.session.commit()


class IncomeService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def list(self, filters: Optional[IncomeFilters] = None) -> list[Income]:
        filters = filters or IncomeFilters()
        stmt = (
            select(Income)
            .where(Income.user_id == self.user_id)
            .order_by(Income.date.desc(), Income.id.desc())
        )
        if filters.source:
            stmt = stmt.where(Income.source == filters.source)
        if filters.start:
            stmt = stmt.where(Income.date >= filters.start)
        if filters.end:
            stmt = stmt.where(Income.date <= filters.end)
        if filters.limit:
            stmt = stmt.limit(filters.limit)
        return self.session.scalars(stmt).all()

    def get(self, income_id: int) -> Income:
        income = self.session.scalar(
            select(Income).where(Income.id == income_id, Income.user_id == self.user_id)
        )
        if not income:
            raise RecordNotFound("Income not found")
        return income

    def create(self, data: IncomeIn) -> Income:
        income = Income(
            user_id=self.user_id,
            amount_cents=data.amount_cents,
            description=data.description.strip(),
            source=data.source,
            date=data.date,
        )
        self.session.add(income)
        self.session.commit()
        self.session.refresh(income)
        return income

    def update(self, income_id: int, data: IncomeIn) -> Income:
        income = self.get(income_id)
        income.amount_cents = data.amount_cents
        income.description = data.description.strip()
        income.source = data.source
        income.date = data.date
        self.session.commit()
        self.session.refresh(income)
        return income

    def delete(self, income_id: int) -> None:
        result = self.session.execute(
            delete(Income).where(Income.id == income_id, Income.user_id == self.user_id)
        )
        if result.rowcount == 0:
            self.session.rollback()
            raise RecordNotFound("Income not found")
        self.session.commit()


@dataclass(frozen=True)
class BudgetView:
    budget: Budget
    progress: BudgetProgress


class BudgetService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def list_for_month(self, year: int, month: int) -> list[Budget]:
        stmt = (
            select(Budget)
            .where(
                Budget.user_id == self.user_id,
                Budget.year == year,
                Budget.month == month,
            )
            .order_by(Budget.category, Budget.id)
        )
        return self.session.scalars(stmt).all()

    def spent_by_category_for_month(self, year: int, month: int) -> dict[str, int]:
        metrics = MetricsService(self.session, self.user_id)
        return metrics.category_totals(month_period(year, month))

    def progress_for_month(self, year: int, month: int) -> list[BudgetView]:
        budgets = self.list_for_month(year, month)
        spent_by_category = self.spent_by_category_for_month(year, month)
        return [
            BudgetView(
                budget=budget,
                progress=budget_progress(
                    budget.limit_cents, spent_by_category.get(budget.category.value, 0)
                ),
            )
            for budget in budgets
        ]

    def _find(self, data: BudgetIn) -> Optional[Budget]:
        stmt = select(Budget).where(
            Budget.user_id == self.user_id,
            Budget.category == data.category,
            Budget.month == data.month,
            Budget.year == data.year,
        )
        return self.session.scalar(stmt)

    def upsert(self, data: BudgetIn) -> Budget:
        existing = self._find(data)
        if existing is None:
            budget = Budget(
                user_id=self.user_id,
                category=data.category,
                limit_cents=data.limit_cents,
                month=data.month,
                year=data.year,
            )
            self.session.add(budget)
            try:
                self.session.commit()
            except IntegrityError:
                # a concurrent request inserted the same category/month first
                self.session.rollback()
                existing = self._find(data)
                if existing is None:
                    raise
                logger.info(
                    f"budget_upsert_retry: user_id={self.user_id} "
                    f"category={data.category.value} month={data.year}-{data.month:02d}"
                )
            else:
                self.session.refresh(budget)
                return budget

        existing.limit_cents = data.limit_cents
        self.session.commit()
        self.session.refresh(existing)
        return existing

    def delete(self, budget_id: int) -> Budget:
        budget = self.session.scalar(
            select(Budget).where(Budget.id == budget_id, Budget.user_id == self.user_id)
        )
        if not budget:
            raise RecordNotFound("Budget not found")
        self.session.delete(budget)
        self.session.commit()
        return budget


class MetricsService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def _expense_total(self, period: Optional[Period] = None) -> int:
        stmt = select(func.coalesce(func.sum(Expense.amount_cents), 0)).where(
            Expense.user_id == self.user_id
        )
        if period:
            stmt = stmt.where(Expense.date.between(period.start, period.end))
        return int(self.session.execute(stmt).scalar_one() or 0)

    def _income_total(self, period: Optional[Period] = None) -> int:
        stmt = select(func.coalesce(func.sum(Income.amount_cents), 0)).where(
            Income.user_id == self.user_id
        )
        if period:
            stmt = stmt.where(Income.date.between(period.start, period.end))
        return int(self.session.execute(stmt).scalar_one() or 0)

    def total_balance(self) -> int:
        return self._income_total() - self._expense_total()

    def expense_total(self, period: Period) -> int:
        return self._expense_total(period)

    def category_totals(self, period: Period) -> dict[str, int]:
        expenses = ExpenseService(self.session, self.user_id).list(
            ExpenseFilters(start=period.start, end=period.end)
        )
        return category_totals(expenses)

    def category_breakdown(self, period: Period) -> list[CategoryShare]:
        return category_breakdown(self.category_totals(period))

    def monthly_trend(
        self, year: int, month: int, months: int = 6
    ) -> list[TrendPoint]:
        window = trailing_months(year, month, months)
        start = window[0]
        end = month_period(year, month).end
        year_col = extract("year", Expense.date).label("year")
        month_col = extract("month", Expense.date).label("month")
        stmt = (
            select(
                year_col,
                month_col,
                func.coalesce(func.sum(Expense.amount_cents), 0).label("total"),
            )
            .where(
                Expense.user_id == self.user_id,
                Expense.date.between(start, end),
            )
            .group_by(year_col, month_col)
        )
        totals: dict[tuple[int, int], int] = {}
        for row in self.session.execute(stmt):
            totals[(int(row.year), int(row.month))] = int(row.total or 0)
        return monthly_trend(window, totals)

    def financial_health(self, period: Period) -> FinancialHealth:
        return financial_health(
            self._income_total(period), self._expense_total(period)
        )

    def dashboard(self, today: date, *, trend_months: int = 6) -> dict[str, object]:
        current = month_period(today.year, today.month)
        return {
            "total_balance_cents": self.total_balance(),
            "monthly_expenses_cents": self.expense_total(current),
            "recent": ExpenseService(self.session, self.user_id).recent(10),
            "spending_by_category": self.category_breakdown(current),
            "monthly_trend": self.monthly_trend(
                today.year, today.month, months=trend_months
            ),
        }

    def report(self, period: Period) -> dict[str, object]:
        incomes = IncomeService(self.session, self.user_id)
        return {
            "period": period,
            "health": self.financial_health(period),
            "category_breakdown": self.category_breakdown(period),
            "recent_income": incomes.list(
                IncomeFilters(start=period.start, end=period.end, limit=5)
            ),
        }

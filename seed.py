from datetime import date

from sqlalchemy.orm import Session

from models import Budget, Expense, ExpenseCategory, Income, IncomeSource


SAMPLE_EXPENSES = [
    (4599, "Grocery shopping", ExpenseCategory.food, date(2024, 12, 15)),
    (2500, "Gas station", ExpenseCategory.transportation, date(2024, 12, 14)),
    (1550, "Coffee shop", ExpenseCategory.food, date(2024, 12, 13)),
    (8999, "Electric bill", ExpenseCategory.utilities, date(2024, 12, 10)),
    (12000, "Internet bill", ExpenseCategory.utilities, date(2024, 12, 8)),
    (3599, "Movie tickets", ExpenseCategory.entertainment, date(2024, 12, 5)),
    (6750, "Restaurant dinner", ExpenseCategory.food, date(2024, 12, 3)),
    (19999, "New shoes", ExpenseCategory.shopping, date(2024, 11, 28)),
    (8500, "Doctor visit", ExpenseCategory.healthcare, date(2024, 11, 25)),
    (4230, "Uber ride", ExpenseCategory.transportation, date(2024, 11, 20)),
]

SAMPLE_INCOMES = [
    (450000, "Monthly Salary", IncomeSource.job, date(2024, 12, 1)),
    (450000, "Monthly Salary", IncomeSource.job, date(2024, 11, 1)),
    (50000, "Freelance Project", IncomeSource.freelance, date(2024, 11, 15)),
]

# budgets are placed in the month the account is created
SAMPLE_BUDGETS = [
    (ExpenseCategory.food, 50000),
    (ExpenseCategory.transportation, 20000),
    (ExpenseCategory.entertainment, 15000),
    (ExpenseCategory.utilities, 30000),
    (ExpenseCategory.shopping, 40000),
    (ExpenseCategory.healthcare, 20000),
]


def seed_sample_data(session: Session, user_id: int, *, today: date) -> dict[str, int]:
    """Add the starter records for a new account. The caller commits."""
    session.add_all(
        Expense(
            user_id=user_id,
            amount_cents=amount,
            description=description,
            category=category,
            date=spent_on,
        )
        for amount, description, category, spent_on in SAMPLE_EXPENSES
    )
    session.add_all(
        Income(
            user_id=user_id,
            amount_cents=amount,
            description=description,
            source=source,
            date=received_on,
        )
        for amount, description, source, received_on in SAMPLE_INCOMES
    )
    session.add_all(
        Budget(
            user_id=user_id,
            category=category,
            limit_cents=limit,
            month=today.month,
            year=today.year,
        )
        for category, limit in SAMPLE_BUDGETS
    )
    session.flush()
    return {
        "expenses": len(SAMPLE_EXPENSES),
        "incomes": len(SAMPLE_INCOMES),
        "budgets": len(SAMPLE_BUDGETS),
    }

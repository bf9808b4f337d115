import logging
from datetime import date
from enum import Enum
from pathlib import Path
from typing import Optional, Type, TypeVar

from fastapi import APIRouter, Depends, FastAPI, Form, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse, Response
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from pydantic import ValidationError
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from aggregation import BudgetProgress, CategoryShare, FinancialHealth, TrendPoint
from auth import ANONYMOUS_USER_ID, SESSION_COOKIE, IdentityResolver, bearer_token
from config import Settings, get_settings
from database import Database
from models import Budget, Expense, ExpenseCategory, Income, IncomeSource, User
from money import cents_to_amount, format_currency
from periods import (
    DEFAULT_TIMEFRAME,
    REPORT_TIMEFRAMES,
    Period,
    resolve_timeframe,
    today_in,
)
from schemas import BudgetIn, ExpenseIn, IncomeIn, InvalidQuery, LoginIn, SignupIn
from services import (
    BudgetService,
    BudgetView,
    EmailAlreadyRegistered,
    ExpenseFilters,
    ExpenseService,
    IncomeFilters,
    IncomeService,
    InvalidCredentials,
    MetricsService,
    RecordNotFound,
    UserService,
)

logger = logging.getLogger(__name__)

BASE_DIR = Path(__file__).resolve().parent

E = TypeVar("E", bound=Enum)


def _load_app_version() -> str:
    try:
        import tomllib
    except Exception:
        return "unknown"
    try:
        with open(BASE_DIR / "pyproject.toml", "rb") as f:
            data = tomllib.load(f)
        return str(data.get("project", {}).get("version", "unknown"))
    except Exception:
        return "unknown"


APP_VERSION = _load_app_version()


def format_percent(value: Optional[float]) -> str:
    if value is None:
        return "n/a"
    return f"{value:.1f}%"


templates = Jinja2Templates(directory=str(BASE_DIR / "templates"))
templates.env.filters["currency"] = format_currency
templates.env.filters["percent"] = format_percent
templates.env.globals["ExpenseCategory"] = ExpenseCategory
templates.env.globals["IncomeSource"] = IncomeSource
templates.env.globals["REPORT_TIMEFRAMES"] = REPORT_TIMEFRAMES


api = APIRouter()
pages = APIRouter()


def get_db(request: Request):
    db = request.app.state.database.session()
    try:
        yield db
    finally:
        db.close()


def get_identity(request: Request) -> IdentityResolver:
    return request.app.state.identity


def get_today(request: Request) -> date:
    return today_in(request.app.state.settings.timezone)


def session_token(request: Request) -> Optional[str]:
    token = bearer_token(request.headers.get("Authorization"))
    return token or request.cookies.get(SESSION_COOKIE)


def optional_user_id(
    request: Request,
    db: Session = Depends(get_db),
    identity: IdentityResolver = Depends(get_identity),
) -> Optional[int]:
    user_id = identity.resolve(session_token(request))
    if user_id is None or UserService(db).get(user_id) is None:
        return None
    return user_id


def current_user_id(user_id: Optional[int] = Depends(optional_user_id)) -> int:
    if user_id is None:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return user_id


# -- query parsing ----------------------------------------------------------


def _date_param(request: Request, name: str) -> Optional[date]:
    raw = (request.query_params.get(name) or "").strip()
    if not raw:
        return None
    try:
        return date.fromisoformat(raw)
    except ValueError as exc:
        raise InvalidQuery(name, "Expected a date in YYYY-MM-DD format") from exc


def _int_param(
    request: Request, name: str, *, minimum: int, maximum: Optional[int] = None
) -> Optional[int]:
    raw = (request.query_params.get(name) or "").strip()
    if not raw:
        return None
    try:
        value = int(raw)
    except ValueError as exc:
        raise InvalidQuery(name, "Expected a whole number") from exc
    if value < minimum or (maximum is not None and value > maximum):
        bounds = f"between {minimum} and {maximum}" if maximum else f">= {minimum}"
        raise InvalidQuery(name, f"Must be {bounds}")
    return value


def _enum_param(request: Request, name: str, enum_cls: Type[E]) -> Optional[E]:
    raw = (request.query_params.get(name) or "").strip()
    if not raw or raw.lower() == "all":
        return None
    for member in enum_cls:
        if member.value.lower() == raw.lower():
            return member
    allowed = ", ".join(member.value for member in enum_cls)
    raise InvalidQuery(name, f"Must be one of {allowed}")


def _date_range(request: Request) -> tuple[Optional[date], Optional[date]]:
    start = _date_param(request, "startDate")
    end = _date_param(request, "endDate")
    if start and end and start > end:
        raise InvalidQuery("startDate", "Start date must be before end date")
    return start, end


def expense_filters_from_request(request: Request) -> ExpenseFilters:
    category = _enum_param(request, "category", ExpenseCategory)
    start, end = _date_range(request)
    limit = _int_param(request, "limit", minimum=1)
    return ExpenseFilters(category=category, start=start, end=end, limit=limit)


def income_filters_from_request(request: Request) -> IncomeFilters:
    source = _enum_param(request, "source", IncomeSource)
    start, end = _date_range(request)
    limit = _int_param(request, "limit", minimum=1)
    return IncomeFilters(source=source, start=start, end=end, limit=limit)


def month_from_request(request: Request, today: date) -> tuple[int, int]:
    month = _int_param(request, "month", minimum=1, maximum=12) or today.month
    year = _int_param(request, "year", minimum=1970, maximum=3000) or today.year
    return year, month


def timeframe_from_request(request: Request, today: date) -> tuple[int, Period]:
    days = _int_param(request, "timeframe", minimum=1) or DEFAULT_TIMEFRAME
    try:
        return days, resolve_timeframe(days, today=today)
    except ValueError as exc:
        raise InvalidQuery("timeframe", str(exc)) from exc


# -- serialization ----------------------------------------------------------


def user_to_dict(user: User) -> dict[str, object]:
    return {"id": user.id, "name": user.name, "email": user.email}


def expense_to_dict(expense: Expense) -> dict[str, object]:
    return {
        "id": expense.id,
        "amount": cents_to_amount(expense.amount_cents),
        "description": expense.description,
        "category": expense.category.value,
        "date": expense.date.isoformat(),
        "user_id": expense.user_id,
        "created_at": expense.created_at.isoformat(),
    }


def income_to_dict(income: Income) -> dict[str, object]:
    return {
        "id": income.id,
        "amount": cents_to_amount(income.amount_cents),
        "description": income.description,
        "source": income.source.value,
        "date": income.date.isoformat(),
        "user_id": income.user_id,
        "created_at": income.created_at.isoformat(),
    }


def budget_to_dict(
    budget: Budget, progress: Optional[BudgetProgress] = None
) -> dict[str, object]:
    data: dict[str, object] = {
        "id": budget.id,
        "category": budget.category.value,
        "limit": cents_to_amount(budget.limit_cents),
        "month": budget.month,
        "year": budget.year,
        "user_id": budget.user_id,
    }
    if progress is not None:
        data.update(
            {
                "spent": cents_to_amount(progress.spent_cents),
                "remaining": cents_to_amount(progress.remaining_cents),
                "percentage": progress.percentage,
                "status": progress.status.value,
            }
        )
    return data


def share_to_dict(share: CategoryShare) -> dict[str, object]:
    return {
        "category": share.category,
        "amount": cents_to_amount(share.amount_cents),
        "percentage": share.percentage,
    }


def trend_to_dict(point: TrendPoint) -> dict[str, object]:
    return {
        "label": point.label,
        "year": point.year,
        "month": point.month,
        "amount": cents_to_amount(point.amount_cents),
    }


def health_to_dict(health: FinancialHealth) -> dict[str, object]:
    return {
        "status": health.status.value,
        "message": health.message,
        "spending_ratio": health.spending_ratio,
        "spending_percentage": health.spending_percentage,
        "gauge_percentage": health.gauge_percentage,
    }


# -- JSON API ---------------------------------------------------------------


@api.post("/signup", status_code=201)
def signup(
    payload: SignupIn,
    db: Session = Depends(get_db),
    today: date = Depends(get_today),
):
    try:
        UserService(db).signup(payload, today=today)
    except EmailAlreadyRegistered as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"message": "User created successfully"}


def _set_session_cookie(
    response: Response, identity: IdentityResolver, user_id: int
) -> str:
    token = identity.issue(user_id)
    response.set_cookie(
        SESSION_COOKIE,
        token,
        max_age=identity.max_age_secs,
        httponly=True,
        samesite="lax",
    )
    return token


@api.post("/login")
def login(
    payload: LoginIn,
    response: Response,
    db: Session = Depends(get_db),
    identity: IdentityResolver = Depends(get_identity),
):
    try:
        user = UserService(db).authenticate(payload.email, payload.password)
    except InvalidCredentials as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc
    token = _set_session_cookie(response, identity, user.id)
    logger.info(f"login: user_id={user.id}")
    return {"token": token, "user": user_to_dict(user)}


@api.post("/logout")
def logout(response: Response):
    response.delete_cookie(SESSION_COOKIE)
    return {"message": "Signed out"}


@api.get("/expenses")
def list_expenses(
    request: Request,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    filters = expense_filters_from_request(request)
    expenses = ExpenseService(db, user_id).list(filters)
    return [expense_to_dict(expense) for expense in expenses]


@api.post("/expenses", status_code=201)
def create_expense(
    payload: ExpenseIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    expense = ExpenseService(db, user_id).create(payload)
    return expense_to_dict(expense)


@api.put("/expenses/{expense_id}")
def update_expense(
    expense_id: int,
    payload: ExpenseIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        expense = ExpenseService(db, user_id).update(expense_id, payload)
    except RecordNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return expense_to_dict(expense)


@api.delete("/expenses/{expense_id}")
def delete_expense(
    expense_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        ExpenseService(db, user_id).delete(expense_id)
    except RecordNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"message": "Expense deleted successfully"}


@api.get("/income")
def list_income(
    request: Request,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    filters = income_filters_from_request(request)
    incomes = IncomeService(db, user_id).list(filters)
    return [income_to_dict(income) for income in incomes]


@api.post("/income", status_code=201)
def create_income(
    payload: IncomeIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    income = IncomeService(db, user_id).create(payload)
    return income_to_dict(income)


@api.put("/income/{income_id}")
def update_income(
    income_id: int,
    payload: IncomeIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        income = IncomeService(db, user_id).update(income_id, payload)
    except RecordNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return income_to_dict(income)


@api.delete("/income/{income_id}")
def delete_income(
    income_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        IncomeService(db, user_id).delete(income_id)
    except RecordNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"message": "Income deleted successfully"}


@api.get("/budgets")
def list_budgets(
    request: Request,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
    today: date = Depends(get_today),
):
    year, month = month_from_request(request, today)
    views = BudgetService(db, user_id).progress_for_month(year, month)
    return [budget_to_dict(view.budget, view.progress) for view in views]


@api.post("/budgets", status_code=201)
def upsert_budget(
    payload: BudgetIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    budget = BudgetService(db, user_id).upsert(payload)
    return budget_to_dict(budget)


@api.delete("/budgets/{budget_id}")
def delete_budget(
    budget_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        BudgetService(db, user_id).delete(budget_id)
    except RecordNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"message": "Budget deleted successfully"}


@api.get("/dashboard")
def dashboard(
    request: Request,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
    today: date = Depends(get_today),
):
    trend_months = request.app.state.settings.trend_months
    data = MetricsService(db, user_id).dashboard(today, trend_months=trend_months)
    return {
        "total_balance": cents_to_amount(data["total_balance_cents"]),
        "monthly_expenses": cents_to_amount(data["monthly_expenses_cents"]),
        "recent_transactions": [expense_to_dict(e) for e in data["recent"]],
        "spending_by_category": [
            share_to_dict(share) for share in data["spending_by_category"]
        ],
        "monthly_trend": [trend_to_dict(point) for point in data["monthly_trend"]],
    }


@api.get("/reports")
def report(
    request: Request,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
    today: date = Depends(get_today),
):
    days, period = timeframe_from_request(request, today)
    data = MetricsService(db, user_id).report(period)
    health: FinancialHealth = data["health"]
    return {
        "timeframe": days,
        "label": REPORT_TIMEFRAMES[days],
        "start": period.start.isoformat(),
        "end": period.end.isoformat(),
        "total_income": cents_to_amount(health.income_cents),
        "total_expenses": cents_to_amount(health.expense_cents),
        "net_income": cents_to_amount(health.net_cents),
        "health": health_to_dict(health),
        "category_breakdown": [
            share_to_dict(share) for share in data["category_breakdown"]
        ],
        "recent_income": [income_to_dict(i) for i in data["recent_income"]],
    }


# -- HTML pages -------------------------------------------------------------


def render(
    request: Request,
    template: str,
    context: dict[str, object],
    *,
    user_id: Optional[int] = None,
    status_code: int = 200,
) -> HTMLResponse:
    identity: IdentityResolver = request.app.state.identity
    ctx: dict[str, object] = {
        "csrf_token": identity.generate_csrf_token(user_id or ANONYMOUS_USER_ID),
        "signed_in": user_id is not None,
        "error": None,
        "form_errors": {},
    }
    ctx.update(context)
    return templates.TemplateResponse(request, template, ctx, status_code=status_code)


def _signin_redirect() -> RedirectResponse:
    return RedirectResponse(url="/app/signin", status_code=303)


def _query_error(exc: InvalidQuery) -> str:
    return f"{exc.field}: {exc.message}"


def _form_errors(exc: ValidationError) -> dict[str, str]:
    return _error_fields(exc.errors())


async def _checked_form(request: Request, user_id: int):
    form = await request.form()
    identity: IdentityResolver = request.app.state.identity
    if not identity.validate_csrf_token(form.get("csrf_token", ""), user_id):
        raise HTTPException(status_code=400, detail="Invalid CSRF token")
    return form


@pages.get("/app/signin", response_class=HTMLResponse)
def signin_page(request: Request):
    return render(request, "signin.html", {})


@pages.post("/app/signin")
def signin_submit(
    request: Request,
    email: str = Form(""),
    password: str = Form(""),
    csrf_token: str = Form(""),
    db: Session = Depends(get_db),
    identity: IdentityResolver = Depends(get_identity),
):
    if not identity.validate_csrf_token(csrf_token):
        raise HTTPException(status_code=400, detail="Invalid CSRF token")
    try:
        user = UserService(db).authenticate(email, password)
    except InvalidCredentials as exc:
        return render(request, "signin.html", {"error": str(exc)}, status_code=401)
    response = RedirectResponse(url="/app", status_code=303)
    _set_session_cookie(response, identity, user.id)
    logger.info(f"signin: user_id={user.id}")
    return response


@pages.post("/app/signout")
def signout_submit(
    csrf_token: str = Form(""),
    user_id: Optional[int] = Depends(optional_user_id),
    identity: IdentityResolver = Depends(get_identity),
):
    if user_id is not None and not identity.validate_csrf_token(csrf_token, user_id):
        raise HTTPException(status_code=400, detail="Invalid CSRF token")
    response = _signin_redirect()
    response.delete_cookie(SESSION_COOKIE)
    return response


@pages.get("/app", response_class=HTMLResponse)
def dashboard_page(
    request: Request,
    user_id: Optional[int] = Depends(optional_user_id),
    db: Session = Depends(get_db),
    today: date = Depends(get_today),
):
    if user_id is None:
        return _signin_redirect()
    trend_months = request.app.state.settings.trend_months
    data = MetricsService(db, user_id).dashboard(today, trend_months=trend_months)
    trend = data["monthly_trend"]
    peak = max((point.amount_cents for point in trend), default=0)
    return render(
        request,
        "dashboard.html",
        {**data, "trend_peak_cents": peak, "today": today},
        user_id=user_id,
    )


def _expenses_context(
    db: Session, user_id: int, filters: ExpenseFilters
) -> dict[str, object]:
    expenses = ExpenseService(db, user_id).list(filters)
    return {
        "expenses": expenses,
        "filters": filters,
        "total_cents": sum(e.amount_cents for e in expenses),
    }


@pages.get("/app/expenses", response_class=HTMLResponse)
def expenses_page(
    request: Request,
    user_id: Optional[int] = Depends(optional_user_id),
    db: Session = Depends(get_db),
):
    if user_id is None:
        return _signin_redirect()
    try:
        filters = expense_filters_from_request(request)
    except InvalidQuery as exc:
        context = _expenses_context(db, user_id, ExpenseFilters())
        context["error"] = _query_error(exc)
        return render(
            request, "expenses.html", context, user_id=user_id, status_code=400
        )
    context = _expenses_context(db, user_id, filters)
    return render(request, "expenses.html", context, user_id=user_id)


@pages.post("/app/expenses")
async def create_expense_form(
    request: Request,
    user_id: Optional[int] = Depends(optional_user_id),
    db: Session = Depends(get_db),
):
    if user_id is None:
        return _signin_redirect()
    form = await _checked_form(request, user_id)
    try:
        data = ExpenseIn.model_validate(dict(form))
    except ValidationError as exc:
        context = _expenses_context(db, user_id, ExpenseFilters())
        context["form_errors"] = _form_errors(exc)
        return render(
            request, "expenses.html", context, user_id=user_id, status_code=400
        )
    ExpenseService(db, user_id).create(data)
    return RedirectResponse(
        url=request.app.url_path_for("expenses_page"), status_code=303
    )


@pages.post("/app/expenses/{expense_id}")
async def update_expense_form(
    expense_id: int,
    request: Request,
    user_id: Optional[int] = Depends(optional_user_id),
    db: Session = Depends(get_db),
):
    if user_id is None:
        return _signin_redirect()
    form = await _checked_form(request, user_id)
    try:
        data = ExpenseIn.model_validate(dict(form))
    except ValidationError as exc:
        context = _expenses_context(db, user_id, ExpenseFilters())
        context["form_errors"] = _form_errors(exc)
        context["editing_id"] = expense_id
        return render(
            request, "expenses.html", context, user_id=user_id, status_code=400
        )
    try:
        ExpenseService(db, user_id).update(expense_id, data)
    except RecordNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return RedirectResponse(
        url=request.app.url_path_for("expenses_page"), status_code=303
    )


@pages.post("/app/expenses/{expense_id}/delete")
async def delete_expense_form(
    expense_id: int,
    request: Request,
    user_id: Optional[int] = Depends(optional_user_id),
    db: Session = Depends(get_db),
):
    if user_id is None:
        return _signin_redirect()
    await _checked_form(request, user_id)
    try:
        ExpenseService(db, user_id).delete(expense_id)
    except RecordNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return RedirectResponse(
        url=request.app.url_path_for("expenses_page"), status_code=303
    )


def _income_context(
    db: Session, user_id: int, filters: IncomeFilters
) -> dict[str, object]:
    incomes = IncomeService(db, user_id).list(filters)
    return {
        "incomes": incomes,
        "filters": filters,
        "total_cents": sum(i.amount_cents for i in incomes),
    }


@pages.get("/app/income", response_class=HTMLResponse)
def income_page(
    request: Request,
    user_id: Optional[int] = Depends(optional_user_id),
    db: Session = Depends(get_db),
):
    if user_id is None:
        return _signin_redirect()
    try:
        filters = income_filters_from_request(request)
    except InvalidQuery as exc:
        context = _income_context(db, user_id, IncomeFilters())
        context["error"] = _query_error(exc)
        return render(request, "income.html", context, user_id=user_id, status_code=400)
    context = _income_context(db, user_id, filters)
    return render(request, "income.html", context, user_id=user_id)


@pages.post("/app/income")
async def create_income_form(
    request: Request,
    user_id: Optional[int] = Depends(optional_user_id),
    db: Session = Depends(get_db),
):
    if user_id is None:
        return _signin_redirect()
    form = await _checked_form(request, user_id)
    try:
        data = IncomeIn.model_validate(dict(form))
    except ValidationError as exc:
        context = _income_context(db, user_id, IncomeFilters())
        context["form_errors"] = _form_errors(exc)
        return render(request, "income.html", context, user_id=user_id, status_code=400)
    IncomeService(db, user_id).create(data)
    return RedirectResponse(
        url=request.app.url_path_for("income_page"), status_code=303
    )


@pages.post("/app/income/{income_id}/delete")
async def delete_income_form(
    income_id: int,
    request: Request,
    user_id: Optional[int] = Depends(optional_user_id),
    db: Session = Depends(get_db),
):
    if user_id is None:
        return _signin_redirect()
    await _checked_form(request, user_id)
    try:
        IncomeService(db, user_id).delete(income_id)
    except RecordNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return RedirectResponse(
        url=request.app.url_path_for("income_page"), status_code=303
    )


def _budgets_context(
    db: Session, user_id: int, year: int, month: int
) -> dict[str, object]:
    views: list[BudgetView] = BudgetService(db, user_id).progress_for_month(
        year, month
    )
    return {
        "year": year,
        "month": month,
        "month_label": date(year, month, 1).strftime("%B %Y"),
        "views": views,
    }


def _budgets_url(request: Request, year: int, month: int) -> str:
    return f"{request.app.url_path_for('budgets_page')}?month={month}&year={year}"


@pages.get("/app/budgets", response_class=HTMLResponse)
def budgets_page(
    request: Request,
    user_id: Optional[int] = Depends(optional_user_id),
    db: Session = Depends(get_db),
    today: date = Depends(get_today),
):
    if user_id is None:
        return _signin_redirect()
    try:
        year, month = month_from_request(request, today)
    except InvalidQuery as exc:
        context = _budgets_context(db, user_id, today.year, today.month)
        context["error"] = _query_error(exc)
        return render(
            request, "budgets.html", context, user_id=user_id, status_code=400
        )
    context = _budgets_context(db, user_id, year, month)
    return render(request, "budgets.html", context, user_id=user_id)


@pages.post("/app/budgets")
async def upsert_budget_form(
    request: Request,
    user_id: Optional[int] = Depends(optional_user_id),
    db: Session = Depends(get_db),
    today: date = Depends(get_today),
):
    if user_id is None:
        return _signin_redirect()
    form = await _checked_form(request, user_id)
    try:
        data = BudgetIn.model_validate(dict(form))
    except ValidationError as exc:
        context = _budgets_context(db, user_id, today.year, today.month)
        context["form_errors"] = _form_errors(exc)
        return render(
            request, "budgets.html", context, user_id=user_id, status_code=400
        )
    BudgetService(db, user_id).upsert(data)
    return RedirectResponse(
        url=_budgets_url(request, data.year, data.month), status_code=303
    )


@pages.post("/app/budgets/{budget_id}/delete")
async def delete_budget_form(
    budget_id: int,
    request: Request,
    user_id: Optional[int] = Depends(optional_user_id),
    db: Session = Depends(get_db),
):
    if user_id is None:
        return _signin_redirect()
    await _checked_form(request, user_id)
    try:
        budget = BudgetService(db, user_id).delete(budget_id)
    except RecordNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return RedirectResponse(
        url=_budgets_url(request, budget.year, budget.month), status_code=303
    )


@pages.get("/app/reports", response_class=HTMLResponse)
def reports_page(
    request: Request,
    user_id: Optional[int] = Depends(optional_user_id),
    db: Session = Depends(get_db),
    today: date = Depends(get_today),
):
    if user_id is None:
        return _signin_redirect()
    error = None
    try:
        days, period = timeframe_from_request(request, today)
    except InvalidQuery as exc:
        error = _query_error(exc)
        days = DEFAULT_TIMEFRAME
        period = resolve_timeframe(days, today=today)
    data = MetricsService(db, user_id).report(period)
    return render(
        request,
        "reports.html",
        {
            **data,
            "timeframe": days,
            "timeframe_label": REPORT_TIMEFRAMES[days],
            "error": error,
        },
        user_id=user_id,
        status_code=400 if error else 200,
    )


# -- error handling ---------------------------------------------------------


def _field_name(loc: tuple) -> str:
    parts = [str(part) for part in loc if part not in ("body", "query", "path")]
    return ".".join(parts) or "body"


def _error_fields(errors) -> dict[str, str]:
    fields: dict[str, str] = {}
    for error in errors:
        field = _field_name(tuple(error.get("loc", ())))
        fields.setdefault(field, error.get("msg", ""))
    return fields


async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"error": "Validation failed", "fields": _error_fields(exc.errors())},
    )


async def invalid_query_handler(request: Request, exc: InvalidQuery) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"error": "Validation failed", "fields": {exc.field: exc.message}},
    )


async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        f"request_failed: method={request.method} path={request.url.path}",
        exc_info=exc,
    )
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(level=getattr(logging, settings.log_level, logging.INFO))

    database = Database(settings)
    if settings.create_schema:
        database.create_schema()

    app = FastAPI(title="Finance Tracker", version=APP_VERSION)
    app.state.settings = settings
    app.state.database = database
    app.state.identity = IdentityResolver(settings)

    app.mount("/static", StaticFiles(directory=str(BASE_DIR / "static")), name="static")
    app.include_router(api)
    app.include_router(pages)

    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(InvalidQuery, invalid_query_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    @app.on_event("shutdown")
    def shutdown_event():
        database.dispose()
        logger.info("Database engine disposed")

    return app


def main():
    import uvicorn

    uvicorn.run("main:create_app", factory=True, host="0.0.0.0", port=8000)


if __name__ == "__main__":
    main()

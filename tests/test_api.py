import re

import pytest
from fastapi.testclient import TestClient

from aggregation import month_label
from config import Settings
from main import create_app
from periods import today_in
from services import MetricsService


def make_app():
    return create_app(
        Settings(
            database_url="sqlite://",
            session_secret="test-secret",
            create_schema=True,
        )
    )


@pytest.fixture
def client():
    with TestClient(make_app()) as c:
        yield c


def signup_and_login(client, email: str = "ada@example.com") -> dict[str, str]:
    resp = client.post(
        "/signup", json={"name": "Ada", "email": email, "password": "secret"}
    )
    assert resp.status_code == 201
    resp = client.post("/login", json={"email": email, "password": "secret"})
    assert resp.status_code == 200
    return {"Authorization": f"Bearer {resp.json()['token']}"}


def test_protected_routes_require_a_session(client) -> None:
    for path in ("/expenses", "/income", "/budgets", "/dashboard", "/reports"):
        resp = client.get(path)
        assert resp.status_code == 401
        assert resp.json() == {"error": "Unauthorized"}

    resp = client.get("/expenses", headers={"Authorization": "Bearer forged"})
    assert resp.status_code == 401


def test_signup_and_login_errors(client) -> None:
    signup_and_login(client)

    resp = client.post(
        "/signup", json={"email": "ada@example.com", "password": "secret"}
    )
    assert resp.status_code == 400
    assert resp.json() == {"error": "User already exists"}

    resp = client.post("/login", json={"email": "ada@example.com", "password": "x"})
    assert resp.status_code == 401
    assert resp.json() == {"error": "Invalid email or password"}

    resp = client.post("/signup", json={"email": "nope", "password": "secret"})
    assert resp.status_code == 400
    assert "email" in resp.json()["fields"]


def test_login_returns_user_and_sets_cookie(client) -> None:
    client.post("/signup", json={"email": "ada@example.com", "password": "secret"})
    resp = client.post(
        "/login", json={"email": "ada@example.com", "password": "secret"}
    )
    body = resp.json()
    assert body["user"]["email"] == "ada@example.com"
    assert "session" in resp.cookies

    # the cookie alone authenticates follow-up requests
    assert client.get("/expenses").status_code == 200

    client.post("/logout")
    client.cookies.clear()
    assert client.get("/expenses").status_code == 401


def test_expense_validation_reports_fields(client) -> None:
    headers = signup_and_login(client)
    resp = client.post(
        "/expenses",
        headers=headers,
        json={"amount": "-5", "description": "", "category": "Rent"},
    )
    assert resp.status_code == 400
    body = resp.json()
    assert body["error"] == "Validation failed"
    assert {"amount", "description", "category", "date"} <= set(body["fields"])

    resp = client.post(
        "/expenses",
        headers=headers,
        json={
            "amount": "1.234",
            "description": "Coffee",
            "category": "Food",
            "date": "2025-01-01",
        },
    )
    assert resp.status_code == 400
    assert "amount" in resp.json()["fields"]


def test_expense_crud_ignores_client_owner(client) -> None:
    headers = signup_and_login(client)
    me = client.post(
        "/login", json={"email": "ada@example.com", "password": "secret"}
    ).json()["user"]

    resp = client.post(
        "/expenses",
        headers=headers,
        json={
            "amount": "45.99",
            "description": "Groceries",
            "category": "Food",
            "date": "2025-01-15",
            "user_id": 999,
            "userId": 999,
        },
    )
    assert resp.status_code == 201
    created = resp.json()
    assert created["user_id"] == me["id"]
    assert created["amount"] == 45.99

    resp = client.put(
        f"/expenses/{created['id']}",
        headers=headers,
        json={
            "amount": 50,
            "description": "Groceries",
            "category": "Food",
            "date": "2025-01-15",
        },
    )
    assert resp.status_code == 200
    assert resp.json()["amount"] == 50.0

    resp = client.delete(f"/expenses/{created['id']}", headers=headers)
    assert resp.status_code == 200
    resp = client.delete(f"/expenses/{created['id']}", headers=headers)
    assert resp.status_code == 404
    assert resp.json() == {"error": "Expense not found"}


def test_other_users_records_are_not_found(client) -> None:
    owner = signup_and_login(client, "owner@example.com")
    intruder = signup_and_login(client, "intruder@example.com")
    expense = client.post(
        "/expenses",
        headers=owner,
        json={
            "amount": "10",
            "description": "Lunch",
            "category": "Food",
            "date": "2025-01-02",
        },
    ).json()

    payload = {
        "amount": "1",
        "description": "Hijacked",
        "category": "Other",
        "date": "2025-01-02",
    }
    resp = client.put(f"/expenses/{expense['id']}", headers=intruder, json=payload)
    assert resp.status_code == 404
    resp = client.delete(f"/expenses/{expense['id']}", headers=intruder)
    assert resp.status_code == 404

    ids = [e["id"] for e in client.get("/expenses", headers=intruder).json()]
    assert expense["id"] not in ids
    mine = client.get("/expenses?category=Food", headers=owner).json()
    assert any(e["description"] == "Lunch" for e in mine)


def test_expense_list_query_parameters(client) -> None:
    headers = signup_and_login(client)

    food = client.get("/expenses?category=food", headers=headers).json()
    assert len(food) == 3
    assert {e["category"] for e in food} == {"Food"}

    november = client.get(
        "/expenses?startDate=2024-11-01&endDate=2024-11-30", headers=headers
    ).json()
    assert [e["description"] for e in november] == [
        "New shoes",
        "Doctor visit",
        "Uber ride",
    ]

    resp = client.get("/expenses?category=Rent", headers=headers)
    assert resp.status_code == 400
    assert "category" in resp.json()["fields"]

    resp = client.get(
        "/expenses?startDate=2024-12-01&endDate=2024-11-01", headers=headers
    )
    assert resp.status_code == 400
    assert "startDate" in resp.json()["fields"]


def test_income_endpoints(client) -> None:
    headers = signup_and_login(client)
    jobs = client.get("/income?source=Job", headers=headers).json()
    assert len(jobs) == 2

    resp = client.post(
        "/income",
        headers=headers,
        json={
            "amount": "250",
            "description": "Dividends",
            "source": "Investment",
            "date": "2025-01-10",
        },
    )
    assert resp.status_code == 201
    assert resp.json()["source"] == "Investment"
    assert len(client.get("/income", headers=headers).json()) == 4


def test_budget_upsert_and_progress(client) -> None:
    headers = signup_and_login(client)
    payload = {"category": "Food", "limit": "200", "month": 1, "year": 2025}
    first = client.post("/budgets", headers=headers, json=payload).json()
    second = client.post(
        "/budgets", headers=headers, json={**payload, "limit": 100}
    ).json()
    assert first["id"] == second["id"]
    assert second["limit"] == 100.0

    client.post(
        "/expenses",
        headers=headers,
        json={
            "amount": "95",
            "description": "Groceries",
            "category": "Food",
            "date": "2025-01-20",
        },
    )
    rows = client.get("/budgets?month=1&year=2025", headers=headers).json()
    assert len(rows) == 1
    assert rows[0]["spent"] == 95.0
    assert rows[0]["remaining"] == 5.0
    assert rows[0]["status"] == "critical"

    resp = client.get("/budgets?month=13", headers=headers)
    assert resp.status_code == 400
    assert "month" in resp.json()["fields"]

    assert client.delete(f"/budgets/{first['id']}", headers=headers).status_code == 200
    assert client.get("/budgets?month=1&year=2025", headers=headers).json() == []


def test_dashboard_shape(client) -> None:
    headers = signup_and_login(client)
    body = client.get("/dashboard", headers=headers).json()

    assert body["total_balance"] == 8772.74
    assert len(body["recent_transactions"]) == 10
    assert len(body["monthly_trend"]) == 6
    assert body["monthly_trend"][-1]["label"] == month_label(today_in("UTC"))
    total = sum(s["amount"] for s in body["spending_by_category"])
    assert round(total, 2) == body["monthly_expenses"]


def test_reports_timeframes(client) -> None:
    headers = signup_and_login(client)
    today = today_in("UTC").isoformat()
    client.post(
        "/income",
        headers=headers,
        json={"amount": "1000", "description": "Pay", "source": "Job", "date": today},
    )
    client.post(
        "/expenses",
        headers=headers,
        json={
            "amount": "950",
            "description": "Rent",
            "category": "Utilities",
            "date": today,
        },
    )

    body = client.get("/reports", headers=headers).json()
    assert body["timeframe"] == 30
    assert body["label"] == "Last 30 days"
    assert body["end"] == today
    assert body["total_income"] == 1000.0
    assert body["net_income"] == 50.0
    assert body["health"]["status"] == "near_limit"
    assert body["category_breakdown"][0]["category"] == "Utilities"

    resp = client.get("/reports?timeframe=14", headers=headers)
    assert resp.status_code == 400
    assert "timeframe" in resp.json()["fields"]


def test_reports_without_income(client) -> None:
    headers = signup_and_login(client)
    body = client.get("/reports?timeframe=7", headers=headers).json()
    assert body["health"]["status"] == "no_income"
    assert body["health"]["spending_ratio"] is None


def test_unexpected_errors_return_generic_body(monkeypatch) -> None:
    def boom(self, *args, **kwargs):
        raise RuntimeError("database on fire")

    monkeypatch.setattr(MetricsService, "dashboard", boom)
    with TestClient(make_app(), raise_server_exceptions=False) as client:
        headers = signup_and_login(client)
        resp = client.get("/dashboard", headers=headers)
    assert resp.status_code == 500
    assert resp.json() == {"error": "Internal server error"}


def test_pages_redirect_to_signin(client) -> None:
    for path in ("/app", "/app/expenses", "/app/reports"):
        resp = client.get(path, follow_redirects=False)
        assert resp.status_code == 303
        assert resp.headers["location"] == "/app/signin"


def test_signin_form_flow(client) -> None:
    client.post("/signup", json={"email": "ada@example.com", "password": "secret"})
    page = client.get("/app/signin")
    assert page.status_code == 200
    token = re.search(r'name="csrf_token" value="([^"]+)"', page.text).group(1)

    resp = client.post(
        "/app/signin",
        data={"email": "ada@example.com", "password": "wrong", "csrf_token": token},
    )
    assert resp.status_code == 401
    assert "Invalid email or password" in resp.text

    resp = client.post(
        "/app/signin",
        data={"email": "ada@example.com", "password": "secret", "csrf_token": ""},
    )
    assert resp.status_code == 400

    resp = client.post(
        "/app/signin",
        data={"email": "ada@example.com", "password": "secret", "csrf_token": token},
        follow_redirects=False,
    )
    assert resp.status_code == 303
    assert resp.headers["location"] == "/app"

    for path in (
        "/app",
        "/app/expenses",
        "/app/income",
        "/app/budgets",
        "/app/reports",
    ):
        assert client.get(path).status_code == 200
    assert "Grocery shopping" in client.get("/app/expenses").text


def test_oversized_amounts_are_validation_errors(client) -> None:
    headers = signup_and_login(client)
    resp = client.post(
        "/expenses",
        headers=headers,
        json={
            "amount": "1e30",
            "description": "Yacht",
            "category": "Shopping",
            "date": "2025-01-01",
        },
    )
    assert resp.status_code == 400
    assert "amount" in resp.json()["fields"]

    resp = client.post(
        "/budgets",
        headers=headers,
        json={"category": "Food", "limit": "1e30", "month": 1, "year": 2025},
    )
    assert resp.status_code == 400
    assert "limit" in resp.json()["fields"]


def test_blank_description_is_rejected(client) -> None:
    headers = signup_and_login(client)
    resp = client.post(
        "/income",
        headers=headers,
        json={
            "amount": "10",
            "description": "   ",
            "source": "Job",
            "date": "2025-01-01",
        },
    )
    assert resp.status_code == 400
    assert "description" in resp.json()["fields"]


def test_date_filters_reject_trailing_text(client) -> None:
    headers = signup_and_login(client)
    resp = client.get("/expenses?startDate=2025-01-01garbage", headers=headers)
    assert resp.status_code == 400
    assert "startDate" in resp.json()["fields"]


def test_dashboard_category_shares_add_up_to_month_total(client) -> None:
    headers = signup_and_login(client)
    today = today_in("UTC").isoformat()
    for amount, category in (("12.34", "Food"), ("5.66", "Food"), ("20", "Other")):
        client.post(
            "/expenses",
            headers=headers,
            json={
                "amount": amount,
                "description": "Spend",
                "category": category,
                "date": today,
            },
        )

    body = client.get("/dashboard", headers=headers).json()
    shares = {s["category"]: s["amount"] for s in body["spending_by_category"]}
    assert shares == {"Food": 18.0, "Other": 20.0}
    assert body["monthly_expenses"] == 38.0
    assert round(sum(shares.values()), 2) == body["monthly_expenses"]


def _page_csrf(client, path: str) -> str:
    page = client.get(path)
    assert page.status_code == 200
    return re.search(r'name="csrf_token" value="([^"]+)"', page.text).group(1)


def _expense_ids(client, description: str) -> list[int]:
    return [
        e["id"]
        for e in client.get("/expenses").json()
        if e["description"] == description
    ]


def test_expense_forms_add_edit_delete(client) -> None:
    signup_and_login(client)
    token = _page_csrf(client, "/app/expenses")
    form = {
        "amount": "12.34",
        "description": "Team lunch",
        "category": "Food",
        "date": "2025-01-05",
        "csrf_token": token,
    }

    resp = client.post("/app/expenses", data=form, follow_redirects=False)
    assert resp.status_code == 303
    assert resp.headers["location"] == "/app/expenses"
    [expense_id] = _expense_ids(client, "Team lunch")

    resp = client.post(
        f"/app/expenses/{expense_id}",
        data={**form, "amount": "20", "category": "Entertainment"},
        follow_redirects=False,
    )
    assert resp.status_code == 303
    edited = [e for e in client.get("/expenses").json() if e["id"] == expense_id]
    assert edited[0]["amount"] == 20.0
    assert edited[0]["category"] == "Entertainment"

    resp = client.post(
        f"/app/expenses/{expense_id}/delete",
        data={"csrf_token": token},
        follow_redirects=False,
    )
    assert resp.status_code == 303
    assert _expense_ids(client, "Team lunch") == []


def test_expense_form_errors_rerender_page(client) -> None:
    signup_and_login(client)
    token = _page_csrf(client, "/app/expenses")

    resp = client.post(
        "/app/expenses",
        data={
            "amount": "",
            "description": "   ",
            "category": "Food",
            "date": "2025-01-05",
            "csrf_token": token,
        },
    )
    assert resp.status_code == 400
    assert "Add Expense" in resp.text
    assert "<strong>amount</strong>" in resp.text
    assert "<strong>description</strong>" in resp.text

    resp = client.post(
        "/app/expenses",
        data={
            "amount": "1",
            "description": "x",
            "category": "Food",
            "date": "2025-01-05",
            "csrf_token": "forged",
        },
    )
    assert resp.status_code == 400
    assert resp.json() == {"error": "Invalid CSRF token"}


def test_expense_form_cannot_touch_other_users_records(client) -> None:
    owner = signup_and_login(client, "owner@example.com")
    expense = client.post(
        "/expenses",
        headers=owner,
        json={
            "amount": "10",
            "description": "Lunch",
            "category": "Food",
            "date": "2025-01-02",
        },
    ).json()

    signup_and_login(client, "intruder@example.com")
    token = _page_csrf(client, "/app/expenses")
    resp = client.post(
        f"/app/expenses/{expense['id']}/delete", data={"csrf_token": token}
    )
    assert resp.status_code == 404
    ids = [e["id"] for e in client.get("/expenses", headers=owner).json()]
    assert expense["id"] in ids


def test_income_forms_add_and_delete(client) -> None:
    signup_and_login(client)
    token = _page_csrf(client, "/app/income")

    resp = client.post(
        "/app/income",
        data={
            "amount": "300",
            "description": "Consulting",
            "source": "Freelance",
            "date": "2025-01-09",
            "csrf_token": token,
        },
        follow_redirects=False,
    )
    assert resp.status_code == 303
    assert resp.headers["location"] == "/app/income"
    incomes = client.get("/income").json()
    matches = [i for i in incomes if i["description"] == "Consulting"]
    assert matches[0]["amount"] == 300.0

    resp = client.post(
        f"/app/income/{matches[0]['id']}/delete",
        data={"csrf_token": token},
        follow_redirects=False,
    )
    assert resp.status_code == 303
    assert all(i["description"] != "Consulting" for i in client.get("/income").json())


def test_budget_form_sets_and_removes_limit(client) -> None:
    signup_and_login(client)
    token = _page_csrf(client, "/app/budgets?month=1&year=2025")
    form = {
        "category": "Food",
        "limit": "250",
        "month": "1",
        "year": "2025",
        "csrf_token": token,
    }

    resp = client.post("/app/budgets", data=form, follow_redirects=False)
    assert resp.status_code == 303
    assert resp.headers["location"] == "/app/budgets?month=1&year=2025"
    client.post("/app/budgets", data={**form, "limit": "300"})

    rows = client.get("/budgets?month=1&year=2025").json()
    assert [(r["category"], r["limit"]) for r in rows] == [("Food", 300.0)]
    assert "Food" in client.get("/app/budgets?month=1&year=2025").text

    resp = client.post(
        f"/app/budgets/{rows[0]['id']}/delete",
        data={"csrf_token": token},
        follow_redirects=False,
    )
    assert resp.status_code == 303
    assert resp.headers["location"] == "/app/budgets?month=1&year=2025"
    assert client.get("/budgets?month=1&year=2025").json() == []


def test_pages_show_query_errors_inline(client) -> None:
    signup_and_login(client)

    resp = client.get("/app/expenses?startDate=not-a-date")
    assert resp.status_code == 400
    assert resp.headers["content-type"].startswith("text/html")
    assert "startDate" in resp.text
    assert "Grocery shopping" in resp.text

    resp = client.get("/app/budgets?month=13")
    assert resp.status_code == 400
    assert "Must be between 1 and 12" in resp.text

    resp = client.get("/app/reports?timeframe=14")
    assert resp.status_code == 400
    assert "Last 30 days" in resp.text

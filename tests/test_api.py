import pytest
from fastapi.testclient import TestClient
from sqlalchemy import inspect
from sqlalchemy.pool import StaticPool

import main
from config import get_settings
from database import Database
from main import app, get_db


@pytest.fixture()
def client():
    database = Database("sqlite://", poolclass=StaticPool).open()
    database.create_all()

    def override_get_db():
        db = database.session()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()
    database.close()


def _register(client, email: str = "ada@example.com") -> dict:
    response = client.post(
        "/api/auth/register",
        json={"name": "Ada", "email": email, "password": "secret-pw"},
    )
    assert response.status_code == 200
    return {"x-auth-token": response.json()["token"]}


def _create_budget(client, headers, **overrides) -> dict:
    payload = {
        "name": "Groceries",
        "category": "Food",
        "amount": 200,
        "period": "monthly",
        "start_date": "2024-01-01",
        "end_date": "2024-01-31",
        "is_recurring": True,
    }
    payload.update(overrides)
    response = client.post("/api/budgets", json=payload, headers=headers)
    assert response.status_code == 200, response.text
    return response.json()


def test_health(client) -> None:
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_register_login_and_current_user(client) -> None:
    headers = _register(client)

    duplicate = client.post(
        "/api/auth/register",
        json={"name": "Ada", "email": "ADA@example.com", "password": "secret-pw"},
    )
    assert duplicate.status_code == 400

    login = client.post(
        "/api/auth/login", json={"email": "ada@example.com", "password": "secret-pw"}
    )
    assert login.status_code == 200
    bearer = {"Authorization": f"Bearer {login.json()['token']}"}

    me = client.get("/api/auth/user", headers=bearer)
    assert me.status_code == 200
    assert me.json()["email"] == "ada@example.com"
    assert "password_hash" not in me.json()
    assert client.get("/api/auth/user", headers=headers).status_code == 200


def test_login_with_wrong_password_is_rejected(client) -> None:
    _register(client)
    response = client.post(
        "/api/auth/login", json={"email": "ada@example.com", "password": "nope-nope"}
    )
    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid credentials"


def test_protected_routes_require_token(client) -> None:
    assert client.get("/api/budgets").status_code == 401
    response = client.get("/api/budgets", headers={"x-auth-token": "forged"})
    assert response.status_code == 401


def test_budget_crud_and_summary(client) -> None:
    headers = _register(client)
    budget = _create_budget(client, headers)
    assert budget["status"] == "active"
    assert budget["amount"] == 200.0

    expense = client.post(
        "/api/expenses",
        json={
            "amount": 50,
            "description": "Market",
            "category": "Food",
            "date": "2024-01-10",
            "budget_id": budget["id"],
        },
        headers=headers,
    )
    assert expense.status_code == 200

    summary = client.get("/api/budgets/summary", headers=headers).json()
    assert len(summary) == 1
    assert summary[0]["total_spent"] == 50.0
    assert summary[0]["remaining"] == 150.0
    assert summary[0]["progress_percentage"] == 25.0

    detail = client.get(f"/api/budgets/{budget['id']}", headers=headers).json()
    assert [e["id"] for e in detail["expenses"]] == [expense.json()["id"]]

    paused = client.post(f"/api/budgets/{budget['id']}/pause", headers=headers)
    assert paused.json()["status"] == "paused"
    assert client.get("/api/budgets", headers=headers).json() == []
    listed = client.get("/api/budgets?status=all", headers=headers).json()
    assert [b["id"] for b in listed] == [budget["id"]]

    deleted = client.delete(f"/api/budgets/{budget['id']}", headers=headers)
    assert deleted.json() == {"msg": "Budget removed"}
    assert client.get(f"/api/budgets/{budget['id']}", headers=headers).status_code == 404

    kept = client.get(f"/api/expenses/{expense.json()['id']}", headers=headers).json()
    assert kept["budget_id"] is None


def test_invalid_budget_is_rejected(client) -> None:
    headers = _register(client)
    response = client.post(
        "/api/budgets",
        json={
            "name": "Broken",
            "category": "Food",
            "amount": 0,
            "start_date": "2024-01-01",
            "end_date": "2024-01-31",
        },
        headers=headers,
    )
    assert response.status_code == 400
    assert response.json()["detail"] == "Amount must be greater than 0"


def test_other_users_budget_is_not_found(client) -> None:
    owner = _register(client)
    budget = _create_budget(client, owner)
    stranger = _register(client, email="bob@example.com")

    assert client.get(f"/api/budgets/{budget['id']}", headers=stranger).status_code == 404
    assert (
        client.delete(f"/api/budgets/{budget['id']}", headers=stranger).status_code
        == 404
    )


def test_create_recurring_requires_api_key(client, monkeypatch) -> None:
    monkeypatch.setattr(get_settings(), "rollover_api_key", "")
    assert client.post("/api/budgets/create-recurring").status_code == 403

    monkeypatch.setattr(get_settings(), "rollover_api_key", "test-key")
    response = client.post(
        "/api/budgets/create-recurring", headers={"x-api-key": "wrong"}
    )
    assert response.status_code == 401


def test_create_recurring_rolls_expired_budgets(client, monkeypatch) -> None:
    monkeypatch.setattr(get_settings(), "rollover_api_key", "test-key")
    headers = _register(client)
    budget = _create_budget(client, headers)

    response = client.post(
        "/api/budgets/create-recurring?as_of=2024-02-01",
        headers={"x-api-key": "test-key"},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["message"] == "Created 1 recurring budgets"
    assert body["failures"] == []
    assert body["budgets"][0]["start_date"] == "2024-02-01"
    assert body["budgets"][0]["end_date"] == "2024-02-29"

    again = client.post(
        "/api/budgets/create-recurring?as_of=2024-02-01",
        headers={"x-api-key": "test-key"},
    ).json()
    assert again["message"] == "Created 0 recurring budgets"

    listed = client.get("/api/budgets?status=completed", headers=headers).json()
    assert [b["id"] for b in listed] == [budget["id"]]


def test_expense_summaries(client) -> None:
    headers = _register(client)
    for amount, category, day in ((10, "Food", "2024-03-02"), (5, "Fun", "2024-03-09")):
        client.post(
            "/api/expenses",
            json={
                "amount": amount,
                "description": "Item",
                "category": category,
                "date": day,
            },
            headers=headers,
        )

    monthly = client.get(
        "/api/expenses/summary/monthly?year=2024&month=3", headers=headers
    ).json()
    assert monthly == {"year": 2024, "month": 3, "total": 15.0}

    by_category = client.get(
        "/api/expenses/summary/category?startDate=2024-03-01&endDate=2024-03-31",
        headers=headers,
    ).json()
    assert by_category == [
        {"category": "Food", "total": 10.0},
        {"category": "Fun", "total": 5.0},
    ]
    assert (
        client.get(
            "/api/expenses/summary/category?startDate=2024-03-01", headers=headers
        ).status_code
        == 400
    )


def test_startup_leaves_schema_to_migrations(monkeypatch) -> None:
    database = Database("sqlite://", poolclass=StaticPool)
    monkeypatch.setattr(main, "get_database", lambda: database)
    monkeypatch.setattr(get_settings(), "scheduler_enabled", False)

    main.startup_event()
    try:
        assert inspect(database.engine).get_table_names() == []
    finally:
        main.shutdown_event()

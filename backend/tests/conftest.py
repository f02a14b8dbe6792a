from typing import Any

import pytest
from fastapi.testclient import TestClient

from finance_api.main import app, persistence
from finance_api.seed import seed_system_categories
from finance_api.store import store


@pytest.fixture(autouse=True)
def clean_store():
    store.reset()
    seed_system_categories(persistence)
    yield
    store.reset()


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


class Api:
    """Small helpers that create fixtures through the HTTP surface."""

    def __init__(self, client: TestClient) -> None:
        self.client = client

    def user(self, email: str = "ana@example.com", name: str = "Ana Souza", password: str = "secret123") -> dict[str, str]:
        res = self.client.post("/auth/register", json={"name": name, "email": email, "password": password})
        assert res.status_code == 201, res.text
        return {"Authorization": f"Bearer {res.json()['accessToken']}"}

    def account(self, headers: dict[str, str], name: str = "Carteira", initial_balance: Any = 0, **extra: Any) -> dict[str, Any]:
        body = {"name": name, "type": "checking", "initialBalance": initial_balance, **extra}
        res = self.client.post("/accounts", json=body, headers=headers)
        assert res.status_code == 201, res.text
        return res.json()

    def category(self, headers: dict[str, str], name: str = "Mercado", type_: str = "expense", **extra: Any) -> dict[str, Any]:
        res = self.client.post("/categories", json={"name": name, "type": type_, **extra}, headers=headers)
        assert res.status_code == 201, res.text
        return res.json()

    def subcategory(self, headers: dict[str, str], category_id: str, name: str = "Feira", **extra: Any) -> dict[str, Any]:
        res = self.client.post("/subcategories", json={"categoryId": category_id, "name": name, **extra}, headers=headers)
        assert res.status_code == 201, res.text
        return res.json()

    def transaction(
        self,
        headers: dict[str, str],
        account_id: str,
        category_id: str,
        type_: str = "expense",
        amount: Any = 100,
        date: str = "2025-01-10",
        **extra: Any,
    ) -> dict[str, Any]:
        body = {"accountId": account_id, "categoryId": category_id, "type": type_, "amount": amount, "date": date, **extra}
        res = self.client.post("/transactions", json=body, headers=headers)
        assert res.status_code == 201, res.text
        return res.json()

    def transfer(
        self,
        headers: dict[str, str],
        from_id: str,
        to_id: str,
        amount: Any = 200,
        date: str = "2025-01-15",
        **extra: Any,
    ) -> dict[str, Any]:
        body = {"fromAccountId": from_id, "toAccountId": to_id, "amount": amount, "date": date, **extra}
        res = self.client.post("/transfers", json=body, headers=headers)
        assert res.status_code == 201, res.text
        return res.json()


@pytest.fixture
def api(client: TestClient) -> Api:
    return Api(client)

from uuid import uuid4

import pytest

from finance_api.errors import ConflictProblem
from finance_api.main import persistence
from finance_api.store import store


def _two_accounts(api):
    headers = api.user()
    source = api.account(headers, name="Conta A", initial_balance=1000)
    target = api.account(headers, name="Conta B", initial_balance=500)
    return headers, source, target


def test_transfer_creates_symmetric_legs(client, api) -> None:
    headers, source, target = _two_accounts(api)
    res = client.post(
        "/transfers",
        json={"fromAccountId": source["id"], "toAccountId": target["id"], "amount": 200, "date": "2025-01-15"},
        headers=headers,
    )
    assert res.status_code == 201
    body = res.json()
    expense, income = body["fromAccount"], body["toAccount"]
    assert expense["type"] == "expense"
    assert income["type"] == "income"
    assert expense["amount"] == 200 and income["amount"] == 200
    assert expense["transferId"] == income["transferId"] == body["id"]
    assert expense["accountId"] == source["id"]
    assert income["accountId"] == target["id"]
    assert expense["categoryId"] == income["categoryId"]

    listed = client.get("/transactions", headers=headers).json()
    assert listed["total"] == 2
    assert {t["categoryName"] for t in listed["data"]} == {"Transferência"}

    balances = {a["id"]: a["currentBalance"] for a in client.get("/accounts", headers=headers).json()}
    assert balances[source["id"]] == 800
    assert balances[target["id"]] == 700


def test_transfer_between_same_account_is_rejected(client, api) -> None:
    headers, source, _ = _two_accounts(api)
    res = client.post(
        "/transfers",
        json={"fromAccountId": source["id"], "toAccountId": source["id"], "amount": 10, "date": "2025-01-15"},
        headers=headers,
    )
    assert res.status_code == 400
    assert res.json()["detail"] == "Source and destination accounts must be different."


def test_transfer_requires_owned_accounts(client, api) -> None:
    headers, source, _ = _two_accounts(api)
    bruno = api.user(email="bruno@example.com", name="Bruno Lima")
    foreign = api.account(bruno, name="Conta Bruno")

    res = client.post(
        "/transfers",
        json={"fromAccountId": source["id"], "toAccountId": foreign["id"], "amount": 10, "date": "2025-01-15"},
        headers=headers,
    )
    assert res.status_code == 403
    assert client.get("/transactions", headers=headers).json()["total"] == 0


def test_transfer_without_system_category_is_not_found(client, api) -> None:
    headers, source, target = _two_accounts(api)
    store.categories.clear()

    res = client.post(
        "/transfers",
        json={"fromAccountId": source["id"], "toAccountId": target["id"], "amount": 10, "date": "2025-01-15"},
        headers=headers,
    )
    assert res.status_code == 404
    assert res.json()["detail"] == "Transfer category not found. Run the system seed."
    assert not store.transactions


def test_updating_shared_fields_mirrors_both_legs(client, api) -> None:
    headers, source, target = _two_accounts(api)
    transfer = api.transfer(headers, source["id"], target["id"], description="Reserva")

    res = client.put(
        f"/transactions/{transfer['toAccount']['id']}",
        json={"amount": 350.75, "date": "2025-01-20", "description": "Reserva mensal", "notes": "ajuste"},
        headers=headers,
    )
    assert res.status_code == 200
    assert res.json()["amount"] == 350.75

    sibling = client.get(f"/transactions/{transfer['fromAccount']['id']}", headers=headers).json()
    assert sibling["amount"] == 350.75
    assert sibling["date"] == "2025-01-20"
    assert sibling["description"] == "Reserva mensal"
    assert sibling["notes"] == "ajuste"
    assert sibling["type"] == "expense"


@pytest.mark.parametrize("field", ["type", "accountId", "categoryId"])
def test_transfer_leg_rejects_structural_changes(client, api, field) -> None:
    headers, source, target = _two_accounts(api)
    other = api.account(headers, name="Conta C")
    category = api.category(headers, name="Mercado", type_="expense")
    transfer = api.transfer(headers, source["id"], target["id"])
    leg = transfer["fromAccount"]

    body = {"type": {"type": "income"}, "accountId": {"accountId": other["id"]}, "categoryId": {"categoryId": category["id"]}}[field]

    res = client.put(f"/transactions/{leg['id']}", json=body, headers=headers)
    assert res.status_code == 400

    for side in ("fromAccount", "toAccount"):
        current = client.get(f"/transactions/{transfer[side]['id']}", headers=headers).json()
        created = transfer[side]
        assert current["type"] == created["type"]
        assert current["accountId"] == created["accountId"]
        assert current["categoryId"] == created["categoryId"]


def test_same_values_for_locked_fields_are_accepted(client, api) -> None:
    headers, source, target = _two_accounts(api)
    transfer = api.transfer(headers, source["id"], target["id"])
    leg = transfer["fromAccount"]

    res = client.put(f"/transactions/{leg['id']}", json={"type": "expense", "amount": 10}, headers=headers)
    assert res.status_code == 200
    assert client.get(f"/transactions/{transfer['toAccount']['id']}", headers=headers).json()["amount"] == 10


def test_deleting_one_leg_removes_the_transfer(client, api) -> None:
    headers, source, target = _two_accounts(api)
    transfer = api.transfer(headers, source["id"], target["id"])

    res = client.delete(f"/transactions/{transfer['toAccount']['id']}", headers=headers)
    assert res.status_code == 200
    assert res.json()["message"] == "Transfer removed successfully."
    assert client.get(f"/transactions/{transfer['fromAccount']['id']}", headers=headers).status_code == 404
    assert client.get("/transactions", headers=headers).json()["total"] == 0


def test_incomplete_transfer_update_is_a_conflict(client, api) -> None:
    headers, source, target = _two_accounts(api)
    transfer = api.transfer(headers, source["id"], target["id"])
    orphan = transfer["fromAccount"]
    del store.transactions[next(k for k in store.transactions if str(k) == transfer["toAccount"]["id"])]

    res = client.put(f"/transactions/{orphan['id']}", json={"amount": 999}, headers=headers)
    assert res.status_code == 409
    assert client.get(f"/transactions/{orphan['id']}", headers=headers).json()["amount"] == 200


def test_update_transfer_legs_requires_both_legs() -> None:
    with pytest.raises(ConflictProblem):
        persistence.update_transfer_legs(uuid4(), {"amount": "1.00"})

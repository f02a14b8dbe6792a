from uuid import uuid4


def test_create_and_get_account(client, api) -> None:
    headers = api.user()
    res = client.post(
        "/accounts",
        json={"name": "Nubank", "type": "checking", "initialBalance": 1000, "color": "#8A05BE", "icon": "bank"},
        headers=headers,
    )
    assert res.status_code == 201
    account = res.json()
    assert account["initialBalance"] == 1000
    assert account["currentBalance"] == 1000
    assert account["type"] == "checking"

    fetched = client.get(f"/accounts/{account['id']}", headers=headers)
    assert fetched.status_code == 200
    assert fetched.json()["name"] == "Nubank"


def test_create_account_rejects_unknown_type_and_bad_color(client, api) -> None:
    headers = api.user()
    assert client.post("/accounts", json={"name": "X", "type": "crypto"}, headers=headers).status_code == 400
    assert client.post("/accounts", json={"name": "X", "type": "cash", "color": "red"}, headers=headers).status_code == 400


def test_current_balance_follows_transactions(client, api) -> None:
    headers = api.user()
    account = api.account(headers, initial_balance=1000)
    salary = api.category(headers, name="Salário", type_="income")
    market = api.category(headers, name="Mercado", type_="expense")
    api.transaction(headers, account["id"], salary["id"], type_="income", amount=250.5)
    api.transaction(headers, account["id"], market["id"], type_="expense", amount=100.25)

    fetched = client.get(f"/accounts/{account['id']}", headers=headers).json()
    assert fetched["currentBalance"] == 1150.25
    assert fetched["initialBalance"] == 1000


def test_list_accounts_only_returns_own_rows(client, api) -> None:
    ana = api.user()
    bruno = api.user(email="bruno@example.com", name="Bruno Lima")
    api.account(ana, name="Conta Ana")
    api.account(bruno, name="Conta Bruno")

    names = [a["name"] for a in client.get("/accounts", headers=ana).json()]
    assert names == ["Conta Ana"]


def test_account_ownership_is_enforced(client, api) -> None:
    ana = api.user()
    bruno = api.user(email="bruno@example.com", name="Bruno Lima")
    account = api.account(ana)

    res = client.get(f"/accounts/{account['id']}", headers=bruno)
    assert res.status_code == 403
    assert res.json()["detail"] == "Access denied to account."
    assert client.put(f"/accounts/{account['id']}", json={"name": "Minha"}, headers=bruno).status_code == 403
    assert client.delete(f"/accounts/{account['id']}", headers=bruno).status_code == 403

    missing = client.get(f"/accounts/{uuid4()}", headers=ana)
    assert missing.status_code == 404
    assert missing.json()["detail"] == "Account not found."


def test_update_account_merges_supplied_fields(client, api) -> None:
    headers = api.user()
    account = api.account(headers, name="Carteira", initial_balance=10, color="#FFF")

    res = client.put(f"/accounts/{account['id']}", json={"name": "Carteira Física"}, headers=headers)
    assert res.status_code == 200
    body = res.json()
    assert body["name"] == "Carteira Física"
    assert body["color"] == "#FFF"
    assert body["initialBalance"] == 10

    empty = client.put(f"/accounts/{account['id']}", json={}, headers=headers)
    assert empty.status_code == 400


def test_delete_account_blocked_while_transactions_exist(client, api) -> None:
    headers = api.user()
    account = api.account(headers)
    category = api.category(headers)
    tx = api.transaction(headers, account["id"], category["id"])

    blocked = client.delete(f"/accounts/{account['id']}", headers=headers)
    assert blocked.status_code == 409
    assert blocked.json()["detail"] == "Account has transactions and cannot be removed."
    assert client.get(f"/accounts/{account['id']}", headers=headers).status_code == 200

    assert client.delete(f"/transactions/{tx['id']}", headers=headers).status_code == 200
    ok = client.delete(f"/accounts/{account['id']}", headers=headers)
    assert ok.status_code == 200
    assert client.get(f"/accounts/{account['id']}", headers=headers).status_code == 404

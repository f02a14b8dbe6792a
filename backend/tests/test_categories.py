from uuid import uuid4


def _system_category(client, headers) -> dict:
    return next(c for c in client.get("/categories", headers=headers).json() if c["system"])


def test_list_categories_includes_system_and_own(client, api) -> None:
    ana = api.user()
    bruno = api.user(email="bruno@example.com", name="Bruno Lima")
    api.category(ana, name="Mercado")
    api.category(bruno, name="Lazer")

    listed = client.get("/categories", headers=ana).json()
    names = {c["name"] for c in listed}
    assert names == {"Transferência", "Mercado"}
    system = _system_category(client, ana)
    assert system["userId"] is None


def test_create_category_rejects_system_name(client, api) -> None:
    headers = api.user()
    res = client.post("/categories", json={"name": "transferência", "type": "expense"}, headers=headers)
    assert res.status_code == 409


def test_foreign_category_is_forbidden(client, api) -> None:
    ana = api.user()
    bruno = api.user(email="bruno@example.com", name="Bruno Lima")
    health = api.category(ana, name="Saúde", type_="expense")

    res = client.get(f"/categories/{health['id']}", headers=bruno)
    assert res.status_code == 403
    assert res.json()["detail"] == "Access denied to category."
    assert client.get(f"/categories/{uuid4()}", headers=bruno).status_code == 404


def test_system_category_is_visible_but_read_only(client, api) -> None:
    headers = api.user()
    system = _system_category(client, headers)

    assert client.get(f"/categories/{system['id']}", headers=headers).status_code == 200
    update = client.put(f"/categories/{system['id']}", json={"name": "Outra"}, headers=headers)
    assert update.status_code == 403
    delete = client.delete(f"/categories/{system['id']}", headers=headers)
    assert delete.status_code == 403
    assert client.get(f"/categories/{system['id']}/subcategories", headers=headers).json() == []


def test_update_category(client, api) -> None:
    headers = api.user()
    category = api.category(headers, name="Mercado", color="#00FF00")

    res = client.put(f"/categories/{category['id']}", json={"name": "Supermercado"}, headers=headers)
    assert res.status_code == 200
    assert res.json()["name"] == "Supermercado"
    assert res.json()["color"] == "#00FF00"

    rename_clash = client.put(f"/categories/{category['id']}", json={"name": "TRANSFERÊNCIA"}, headers=headers)
    assert rename_clash.status_code == 409


def test_category_type_is_locked_while_transactions_use_it(client, api) -> None:
    headers = api.user()
    account = api.account(headers)
    category = api.category(headers, type_="expense")
    api.transaction(headers, account["id"], category["id"], type_="expense")

    res = client.put(f"/categories/{category['id']}", json={"type": "income"}, headers=headers)
    assert res.status_code == 409
    assert client.get(f"/categories/{category['id']}", headers=headers).json()["type"] == "expense"


def test_delete_category_blocked_by_subcategories(client, api) -> None:
    headers = api.user()
    category = api.category(headers)
    sub = api.subcategory(headers, category["id"])

    blocked = client.delete(f"/categories/{category['id']}", headers=headers)
    assert blocked.status_code == 409
    assert blocked.json()["detail"] == "Category has subcategories and cannot be removed."

    assert client.delete(f"/subcategories/{sub['id']}", headers=headers).status_code == 200
    assert client.delete(f"/categories/{category['id']}", headers=headers).status_code == 200


def test_subcategory_inherits_category_color(client, api) -> None:
    headers = api.user()
    category = api.category(headers, color="#123456")

    inherited = api.subcategory(headers, category["id"], name="Feira")
    assert inherited["color"] == "#123456"
    own = api.subcategory(headers, category["id"], name="Padaria", color="#ABC")
    assert own["color"] == "#ABC"

    listed = client.get(f"/categories/{category['id']}/subcategories", headers=headers).json()
    assert {s["name"] for s in listed} == {"Feira", "Padaria"}


def test_subcategory_rules(client, api) -> None:
    ana = api.user()
    bruno = api.user(email="bruno@example.com", name="Bruno Lima")
    system = _system_category(client, ana)
    category = api.category(ana)

    under_system = client.post("/subcategories", json={"categoryId": system["id"], "name": "X"}, headers=ana)
    assert under_system.status_code == 400

    foreign = client.post("/subcategories", json={"categoryId": category["id"], "name": "X"}, headers=bruno)
    assert foreign.status_code == 403

    missing = client.post("/subcategories", json={"categoryId": str(uuid4()), "name": "X"}, headers=ana)
    assert missing.status_code == 404

    sub = api.subcategory(ana, category["id"])
    assert client.get(f"/subcategories/{sub['id']}", headers=bruno).status_code == 403
    assert client.put(f"/subcategories/{sub['id']}", json={"name": "Y"}, headers=bruno).status_code == 403

    renamed = client.put(f"/subcategories/{sub['id']}", json={"name": "Hortifruti"}, headers=ana)
    assert renamed.status_code == 200
    assert renamed.json()["name"] == "Hortifruti"


def test_delete_subcategory_blocked_by_transactions(client, api) -> None:
    headers = api.user()
    account = api.account(headers)
    category = api.category(headers)
    sub = api.subcategory(headers, category["id"])
    api.transaction(headers, account["id"], category["id"], subcategoryId=sub["id"])

    assert client.delete(f"/subcategories/{sub['id']}", headers=headers).status_code == 409

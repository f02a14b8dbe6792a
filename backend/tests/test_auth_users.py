from datetime import timedelta
from uuid import uuid4

from finance_api.auth_utils import (
    create_access_token,
    create_refresh_token,
    create_reset_token,
    hash_password,
    password_score,
    password_strength,
    verify_password,
)


def test_health(client) -> None:
    res = client.get("/health")
    assert res.status_code == 200
    assert res.json() == {"status": "ok"}


def test_register_login_and_me(client, api) -> None:
    headers = api.user(email="Ana@Example.com")

    me = client.get("/auth/me", headers=headers)
    assert me.status_code == 200
    body = me.json()
    assert body["email"] == "ana@example.com"
    assert body["name"] == "Ana Souza"
    assert "password" not in body and "passwordHash" not in body

    login = client.post("/auth/login", json={"email": "ana@example.com", "password": "secret123"})
    assert login.status_code == 200
    assert login.json()["accessToken"]


def test_register_rejects_duplicate_email(client, api) -> None:
    api.user()
    res = client.post("/auth/register", json={"name": "Outra Ana", "email": "ANA@example.com", "password": "secret123"})
    assert res.status_code == 409
    assert res.json()["detail"] == "Email already registered."


def test_register_validates_payload(client) -> None:
    res = client.post("/auth/register", json={"name": "Al", "email": "nope", "password": "123"})
    assert res.status_code == 400
    body = res.json()
    assert body["title"] == "Validation Error"
    assert body["type"] == "https://opa.dev/errors/validation-error"


def test_login_with_wrong_password_is_unauthorized(client, api) -> None:
    api.user()
    res = client.post("/auth/login", json={"email": "ana@example.com", "password": "wrong-pass"})
    assert res.status_code == 401
    assert res.json()["detail"] == "Invalid credentials."


def test_protected_routes_require_a_valid_token(client) -> None:
    assert client.get("/accounts").status_code == 401
    assert client.get("/accounts", headers={"Authorization": "Token abc"}).status_code == 401
    res = client.get("/accounts", headers={"Authorization": "Bearer not-a-jwt"})
    assert res.status_code == 401
    assert res.json()["status"] == 401


def test_expired_token_is_rejected(client) -> None:
    expired = create_access_token(uuid4(), expires_delta=timedelta(minutes=-1))
    res = client.get("/auth/me", headers={"Authorization": f"Bearer {expired}"})
    assert res.status_code == 401


def test_update_profile_and_email_collision(client, api) -> None:
    headers = api.user()
    api.user(email="bruno@example.com", name="Bruno Lima")

    res = client.put("/users/me", json={"name": "Ana Maria"}, headers=headers)
    assert res.status_code == 200
    assert res.json()["name"] == "Ana Maria"

    clash = client.put("/users/me", json={"email": "bruno@example.com"}, headers=headers)
    assert clash.status_code == 409

    empty = client.put("/users/me", json={}, headers=headers)
    assert empty.status_code == 400
    assert "At least one field must be updated." in empty.json()["detail"]


def test_change_password(client, api) -> None:
    headers = api.user()
    wrong = client.post(
        "/users/me/change-password",
        json={"currentPassword": "not-mine", "newPassword": "another1"},
        headers=headers,
    )
    assert wrong.status_code == 400
    assert wrong.json()["detail"] == "Current password is incorrect."

    ok = client.post(
        "/users/me/change-password",
        json={"currentPassword": "secret123", "newPassword": "another1"},
        headers=headers,
    )
    assert ok.status_code == 200
    assert client.post("/auth/login", json={"email": "ana@example.com", "password": "another1"}).status_code == 200
    assert client.post("/auth/login", json={"email": "ana@example.com", "password": "secret123"}).status_code == 401


def test_delete_user_cascades_owned_rows(client, api) -> None:
    headers = api.user()
    account = api.account(headers)
    category = api.category(headers)
    api.transaction(headers, account["id"], category["id"])

    res = client.delete("/users/me", headers=headers)
    assert res.status_code == 200

    assert client.get("/auth/me", headers=headers).status_code == 401
    other = api.user(email="bruno@example.com", name="Bruno Lima")
    listed = client.get("/categories", headers=other).json()
    assert [c["name"] for c in listed] == ["Transferência"]


def test_password_hash_helpers() -> None:
    stored = hash_password("secret123")
    assert stored != "secret123"
    assert verify_password("secret123", stored)
    assert not verify_password("secret124", stored)
    assert not verify_password("secret123", "malformed")


def test_refresh_rotates_tokens_from_cookie(client, api) -> None:
    api.user()
    assert client.cookies.get("refreshToken")

    res = client.post("/auth/refresh")
    assert res.status_code == 200
    access = res.json()["accessToken"]
    assert client.get("/auth/me", headers={"Authorization": f"Bearer {access}"}).status_code == 200


def test_refresh_rejects_missing_or_wrong_token(client, api) -> None:
    headers = api.user()
    access = headers["Authorization"].split(" ", 1)[1]

    client.cookies.clear()
    assert client.post("/auth/refresh").status_code == 401

    client.cookies.set("refreshToken", access)
    res = client.post("/auth/refresh")
    assert res.status_code == 401
    assert res.json()["detail"] == "Invalid refresh token."


def test_refresh_token_is_not_an_access_token(client) -> None:
    token = create_refresh_token(uuid4())
    assert client.get("/auth/me", headers={"Authorization": f"Bearer {token}"}).status_code == 401


def test_logout_clears_refresh_cookie(client, api) -> None:
    api.user()
    res = client.post("/auth/logout")
    assert res.status_code == 200
    assert res.json() == {"message": "Logged out successfully."}
    assert client.cookies.get("refreshToken") is None
    assert client.post("/auth/refresh").status_code == 401


def test_password_strength_scores() -> None:
    assert password_score("") == 0
    assert password_score("abc") == 1
    assert password_score("abcdefgh") == 2
    assert password_score("abcdefgH") == 3
    assert password_score("abcdefH1") == 4
    assert password_score("abcdeH1!") == 5
    assert password_strength("abc") == "very weak"
    assert password_strength("abcdefgh") == "weak"
    assert password_strength("abcdefgH") == "medium"
    assert password_strength("abcdefH1") == "strong"
    assert password_strength("abcdeH1!") == "very strong"


def test_check_password_strength_endpoint(client) -> None:
    res = client.post("/auth/check-password-strength", json={"password": "Secret#2025"})
    assert res.status_code == 200
    assert res.json() == {"score": 5, "strength": "very strong"}
    assert client.post("/auth/check-password-strength", json={"password": ""}).status_code == 400


def test_forgot_and_reset_password(client, api) -> None:
    api.user()
    res = client.post("/auth/forgot-password", json={"email": "ANA@example.com"})
    assert res.status_code == 200
    token = res.json()["resetToken"]

    reset = client.post(
        "/auth/reset-password",
        json={"token": token, "newPassword": "novaSenha1", "confirmNewPassword": "novaSenha1"},
    )
    assert reset.status_code == 200
    assert reset.json()["message"] == "Password reset successfully."
    assert client.post("/auth/login", json={"email": "ana@example.com", "password": "novaSenha1"}).status_code == 200
    assert client.post("/auth/login", json={"email": "ana@example.com", "password": "secret123"}).status_code == 401


def test_forgot_password_for_unknown_email_has_no_token(client) -> None:
    res = client.post("/auth/forgot-password", json={"email": "ghost@example.com"})
    assert res.status_code == 200
    assert "resetToken" not in res.json()
    assert res.json()["message"]


def test_reset_password_rejects_bad_tokens(client, api) -> None:
    headers = api.user()
    body = {"newPassword": "novaSenha1", "confirmNewPassword": "novaSenha1"}

    garbage = client.post("/auth/reset-password", json={"token": "not-a-jwt", **body})
    assert garbage.status_code == 400
    assert garbage.json()["detail"] == "Invalid or expired token."

    expired_token = create_reset_token(uuid4(), expires_delta=timedelta(minutes=-1))
    expired = client.post("/auth/reset-password", json={"token": expired_token, **body})
    assert expired.status_code == 400
    assert expired.json()["detail"] == "Invalid or expired token."

    access = headers["Authorization"].split(" ", 1)[1]
    wrong_type = client.post("/auth/reset-password", json={"token": access, **body})
    assert wrong_type.status_code == 400
    assert wrong_type.json()["detail"] == "Invalid token."

    unknown = client.post("/auth/reset-password", json={"token": create_reset_token(uuid4()), **body})
    assert unknown.status_code == 404
    assert unknown.json()["detail"] == "User not found."


def test_reset_password_requires_matching_confirmation(client, api) -> None:
    api.user()
    token = client.post("/auth/forgot-password", json={"email": "ana@example.com"}).json()["resetToken"]
    res = client.post(
        "/auth/reset-password",
        json={"token": token, "newPassword": "novaSenha1", "confirmNewPassword": "outraSenha1"},
    )
    assert res.status_code == 400
    assert "Passwords do not match." in res.json()["detail"]

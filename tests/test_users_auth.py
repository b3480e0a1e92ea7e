from __future__ import annotations

import jwt
import pytest

from school_api import config
from school_api.utils.auth import verify_password


def _register(client, **overrides):
    payload = {
        "fullName": "Aziza Rahimova",
        "codeName": "aziza",
        "email": "aziza@example.com",
        "phone": "+998901234567",
        "password": "secret123",
        "confirmPassword": "secret123",
    }
    payload.update(overrides)
    return client.post("/api/users", json=payload)


def test_registration_hashes_password(client, db_module):
    response = _register(client)

    assert response.status_code == 201
    user = response.json()["user"]
    assert user["email"] == "aziza@example.com"
    assert "password" not in user
    assert "passwordHash" not in user

    with db_module.connect() as con:
        row = con.execute("SELECT password_hash FROM users WHERE id = ?", (user["id"],)).fetchone()
    assert row["password_hash"] != "secret123"
    assert verify_password(row["password_hash"], "secret123")


@pytest.mark.parametrize(
    "overrides",
    [
        {"email": "not-an-email"},
        {"phone": "+99890123"},
        {"password": "short", "confirmPassword": "short"},
        {"confirmPassword": "different1"},
    ],
)
def test_registration_validation(client, overrides):
    response = _register(client, **overrides)

    assert response.status_code == 400
    assert response.json()["error"] is True


def test_duplicate_registration(client):
    assert _register(client).status_code == 201

    duplicate = _register(client, phone="+998907777777")

    assert duplicate.status_code == 400


def test_login_issues_token_for_current_user(client):
    user_id = _register(client).json()["user"]["id"]

    response = client.post("/api/users/login", json={"email": "aziza@example.com", "password": "secret123"})

    assert response.status_code == 200
    token = response.json()["token"]
    claims = jwt.decode(token, config.JWT_SECRET, algorithms=["HS256"])
    assert claims["userId"] == user_id

    me = client.get("/api/users/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json()["user"]["id"] == user_id


def test_login_failures_share_one_message(client):
    _register(client)

    wrong_password = client.post("/api/users/login", json={"email": "aziza@example.com", "password": "nope"})
    unknown_user = client.post("/api/users/login", json={"email": "ghost@example.com", "password": "nope"})

    assert wrong_password.status_code == 401
    assert unknown_user.status_code == 401
    assert wrong_password.json()["message"] == unknown_user.json()["message"] == "Invalid credentials"


def test_user_crud(client):
    user_id = _register(client).json()["user"]["id"]

    listed = client.get("/api/users").json()
    assert [item["id"] for item in listed] == [user_id]
    assert client.get("/api/users/email/aziza@example.com").json()["id"] == user_id

    updated = client.put(
        f"/api/users/{user_id}",
        json={
            "fullName": "Aziza R.",
            "codeName": "az",
            "email": "aziza@example.com",
            "phone": "+998901234567",
        },
    )
    assert updated.status_code == 200
    assert updated.json()["user"]["fullName"] == "Aziza R."

    assert client.delete(f"/api/users/{user_id}").status_code == 200
    assert client.get(f"/api/users/{user_id}").status_code == 404
    assert client.delete(f"/api/users/{user_id}").status_code == 404


def test_me_requires_bearer_token(client):
    assert client.get("/api/users/me").status_code == 401
    assert client.get("/api/users/me", headers={"Authorization": "Basic abc"}).status_code == 401


def test_phone_registration_and_login(client):
    registered = client.post(
        "/api/auth/register",
        json={
            "fullName": "Bobur",
            "phoneNumber": "+998935551122",
            "telegramUsername": "@bobur",
            "password": "secret123",
        },
    )
    assert registered.status_code == 201
    assert registered.json()["user"]["telegramUsername"] == "@bobur"
    assert registered.json()["token"]

    duplicate = client.post(
        "/api/auth/register",
        json={"fullName": "Bobur", "phoneNumber": "+998935551122", "password": "secret123"},
    )
    assert duplicate.status_code == 400

    login = client.post("/api/auth/login", json={"phoneNumber": "+998935551122", "password": "secret123"})
    assert login.status_code == 200
    assert login.json()["user"]["phone"] == "+998935551122"

    rejected = client.post("/api/auth/login", json={"phoneNumber": "+998935551122", "password": "wrong"})
    assert rejected.status_code == 401

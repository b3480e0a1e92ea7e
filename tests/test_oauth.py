from __future__ import annotations

import logging
from urllib.parse import parse_qs, urlparse

import httpx
import jwt

from school_api import config
from school_api.utils import oauth, users


def _install_transport(monkeypatch, handler):
    monkeypatch.setattr(
        oauth,
        "_build_client",
        lambda: httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


def _github_handler(user_payload, emails_payload=None):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url == httpx.URL(oauth.GITHUB_TOKEN_URL):
            return httpx.Response(200, json={"access_token": "gh-token"})
        if request.url == httpx.URL(oauth.GITHUB_USER_URL):
            assert request.headers["Authorization"] == "token gh-token"
            return httpx.Response(200, json=user_payload)
        if request.url == httpx.URL(oauth.GITHUB_EMAILS_URL):
            return httpx.Response(200, json=emails_payload or [])
        return httpx.Response(404)

    return handler


def test_authorization_redirects(client):
    google = client.get("/api/users/auth/google", follow_redirects=False)
    github = client.get("/api/users/auth/github", follow_redirects=False)

    assert google.status_code == 302
    assert google.headers["location"].startswith(oauth.GOOGLE_AUTHORIZE_URL)
    assert github.status_code == 302
    query = parse_qs(urlparse(github.headers["location"]).query)
    assert query["scope"] == ["user:email"]


def test_google_callback_creates_user_and_redirects_with_token(client, monkeypatch):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url == httpx.URL(oauth.GOOGLE_TOKEN_URL):
            return httpx.Response(200, json={"access_token": "g-token"})
        if request.url == httpx.URL(oauth.GOOGLE_USERINFO_URL):
            return httpx.Response(
                200,
                json={
                    "id": "g-1",
                    "email": "learner@gmail.com",
                    "name": "Learner One",
                    "given_name": "Learner",
                    "picture": "https://example.com/a.png",
                },
            )
        return httpx.Response(404)

    _install_transport(monkeypatch, handler)

    response = client.get("/api/users/auth/google/callback", params={"code": "abc"}, follow_redirects=False)

    assert response.status_code == 302
    location = urlparse(response.headers["location"])
    assert f"{location.scheme}://{location.netloc}" == config.FRONTEND_URL
    query = parse_qs(location.query)
    claims = jwt.decode(query["token"][0], config.JWT_SECRET, algorithms=["HS256"])
    assert str(claims["userId"]) == query["userId"][0]

    user = client.get("/api/users/email/learner@gmail.com").json()
    assert user["provider"] == "google"
    assert user["codeName"] == "Learner"


def test_github_private_email_falls_back_to_primary(client, monkeypatch):
    _install_transport(
        monkeypatch,
        _github_handler(
            {"id": 5, "login": "octo", "name": None, "email": None},
            [{"email": "other@example.com", "primary": False}, {"email": "octo@example.com", "primary": True}],
        ),
    )

    response = client.get("/api/users/auth/github/callback", params={"code": "abc"}, follow_redirects=False)

    assert response.status_code == 302
    user = client.get("/api/users/email/octo@example.com").json()
    assert user["fullName"] == "octo"
    assert user["providerId"] == "5"


def test_github_without_any_email_uses_login_address(client, monkeypatch):
    _install_transport(monkeypatch, _github_handler({"id": 6, "login": "ghost", "email": None}))

    client.get("/api/users/auth/github/callback", params={"code": "abc"}, follow_redirects=False)

    assert client.get("/api/users/email/ghost@github.com").status_code == 200


def test_existing_user_is_reused(client, monkeypatch):
    _install_transport(monkeypatch, _github_handler({"id": 7, "login": "octo", "email": "octo@example.com"}))

    client.get("/api/users/auth/github/callback", params={"code": "one"}, follow_redirects=False)
    client.get("/api/users/auth/github/callback", params={"code": "two"}, follow_redirects=False)

    assert len(client.get("/api/users").json()) == 1


def test_provider_failure_redirects_to_error_page(client, monkeypatch):
    _install_transport(monkeypatch, lambda request: httpx.Response(401, json={"error": "bad_code"}))

    failed = client.get("/api/users/auth/google/callback", params={"code": "bad"}, follow_redirects=False)
    missing_code = client.get("/api/users/auth/github/callback", follow_redirects=False)

    assert failed.headers["location"] == f"{config.FRONTEND_URL}/auth-error"
    assert missing_code.headers["location"] == f"{config.FRONTEND_URL}/auth-error"
    assert client.get("/api/users").json() == []


def test_repeat_login_redirects_with_token_each_time(client, monkeypatch):
    _install_transport(monkeypatch, _github_handler({"id": 7, "login": "octo", "email": "octo@example.com"}))

    for code in ("one", "two"):
        response = client.get("/api/users/auth/github/callback", params={"code": code}, follow_redirects=False)
        location = urlparse(response.headers["location"])
        assert location.path == "/"
        assert "token" in parse_qs(location.query)


def test_find_or_create_refreshes_provider_fields(caplog):
    project_logger = logging.getLogger("school_api")

    first = users.find_or_create_oauth_user(
        email="octo@example.com",
        full_name="Octo Cat",
        code_name="octo",
        provider="github",
        provider_id="7",
        avatar=None,
    )
    # The project logger does not propagate, so listen on it directly.
    project_logger.addHandler(caplog.handler)
    try:
        second = users.find_or_create_oauth_user(
            email="octo@example.com",
            full_name="Octo Cat",
            code_name="octocat",
            provider="google",
            provider_id="g-7",
            avatar="https://avatars.example/octo.png",
        )
    finally:
        project_logger.removeHandler(caplog.handler)

    assert second["id"] == first["id"]
    assert (second["provider"], second["provider_id"], second["code_name"]) == ("google", "g-7", "octocat")
    assert second["avatar"] == "https://avatars.example/octo.png"
    assert [record.user_created for record in caplog.records if record.getMessage() == "OAuth login"] == [False]

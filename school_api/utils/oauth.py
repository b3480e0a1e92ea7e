"""Google and GitHub authorisation-code login."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any
from urllib.parse import urlencode

import httpx

from school_api import config
from school_api.errors import AuthError
from school_api.utils.logging import get_logger

logger = get_logger("utils.oauth")

GOOGLE_AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"
GOOGLE_SCOPES = (
    "https://www.googleapis.com/auth/userinfo.profile",
    "https://www.googleapis.com/auth/userinfo.email",
)

GITHUB_AUTHORIZE_URL = "https://github.com/login/oauth/authorize"
GITHUB_TOKEN_URL = "https://github.com/login/oauth/access_token"
GITHUB_USER_URL = "https://api.github.com/user"
GITHUB_EMAILS_URL = "https://api.github.com/user/emails"


class OAuthError(AuthError):
    """Raised when a provider exchange or profile lookup fails."""


@dataclass(slots=True)
class OAuthProfile:
    provider: str
    provider_id: str
    email: str
    full_name: str
    code_name: str
    avatar: str | None


def _build_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=httpx.Timeout(15.0, connect=5.0), trust_env=False)


def authorization_url(provider: str) -> str:
    if provider == "google":
        params = {
            "redirect_uri": config.GOOGLE_REDIRECT_URI,
            "client_id": config.GOOGLE_CLIENT_ID,
            "access_type": "offline",
            "response_type": "code",
            "prompt": "consent",
            "scope": " ".join(GOOGLE_SCOPES),
        }
        return f"{GOOGLE_AUTHORIZE_URL}?{urlencode(params)}"
    if provider == "github":
        params = {
            "client_id": config.GITHUB_CLIENT_ID,
            "redirect_uri": config.GITHUB_REDIRECT_URI,
            "scope": "user:email",
        }
        return f"{GITHUB_AUTHORIZE_URL}?{urlencode(params)}"
    raise ValueError(f"Unsupported OAuth provider: {provider}")


def _json(response: httpx.Response, provider: str) -> Any:
    try:
        response.raise_for_status()
        return response.json()
    except httpx.HTTPStatusError as exc:
        logger.warning(
            "OAuth provider rejected request",
            extra={"provider": provider, "status_code": exc.response.status_code},
        )
        raise OAuthError("OAuth provider rejected the request") from exc
    except ValueError as exc:
        logger.warning("OAuth provider returned invalid JSON", extra={"provider": provider})
        raise OAuthError("OAuth provider returned invalid JSON") from exc


def _access_token(payload: Any, provider: str) -> str:
    token = payload.get("access_token") if isinstance(payload, dict) else None
    if not token:
        logger.warning("OAuth token response without access token", extra={"provider": provider})
        raise OAuthError("OAuth code exchange failed")
    return str(token)


async def fetch_google_profile(code: str, *, client: httpx.AsyncClient | None = None) -> OAuthProfile:
    own_client = client is None
    http = client or _build_client()
    try:
        try:
            token_response = await http.post(
                GOOGLE_TOKEN_URL,
                json={
                    "code": code,
                    "client_id": config.GOOGLE_CLIENT_ID,
                    "client_secret": config.GOOGLE_CLIENT_SECRET,
                    "redirect_uri": config.GOOGLE_REDIRECT_URI,
                    "grant_type": "authorization_code",
                },
            )
            access_token = _access_token(_json(token_response, "google"), "google")
            info_response = await http.get(
                GOOGLE_USERINFO_URL,
                headers={"Authorization": f"Bearer {access_token}"},
            )
            data = _json(info_response, "google")
        except httpx.HTTPError as exc:
            logger.exception("Google OAuth request failed", extra={"error": str(exc)})
            raise OAuthError("Google OAuth request failed") from exc
    finally:
        if own_client:
            await http.aclose()

    email = data.get("email")
    if not email:
        raise OAuthError("Google profile has no email address")
    return OAuthProfile(
        provider="google",
        provider_id=str(data.get("id") or ""),
        email=email,
        full_name=data.get("name") or "Google User",
        code_name=data.get("given_name") or email.split("@")[0],
        avatar=data.get("picture"),
    )


async def fetch_github_profile(code: str, *, client: httpx.AsyncClient | None = None) -> OAuthProfile:
    """Exchange a GitHub code and resolve the account's email.

    Accounts with a private email fall back to the primary address from
    ``/user/emails`` and finally to ``<login>@github.com``.
    """

    own_client = client is None
    http = client or _build_client()
    try:
        try:
            token_response = await http.post(
                GITHUB_TOKEN_URL,
                json={
                    "client_id": config.GITHUB_CLIENT_ID,
                    "client_secret": config.GITHUB_CLIENT_SECRET,
                    "code": code,
                    "redirect_uri": config.GITHUB_REDIRECT_URI,
                },
                headers={"Accept": "application/json"},
            )
            access_token = _access_token(_json(token_response, "github"), "github")
            auth_headers = {"Authorization": f"token {access_token}"}
            user_response = await http.get(GITHUB_USER_URL, headers=auth_headers)
            data = _json(user_response, "github")
        except httpx.HTTPError as exc:
            logger.exception("GitHub OAuth request failed", extra={"error": str(exc)})
            raise OAuthError("GitHub OAuth request failed") from exc

        login = data.get("login") or ""
        email = data.get("email")
        if not email:
            try:
                emails_response = await http.get(GITHUB_EMAILS_URL, headers=auth_headers)
                emails = _json(emails_response, "github")
            except (httpx.HTTPError, OAuthError):
                logger.warning("Unable to fetch GitHub emails", extra={"login": login})
                emails = []
            primary = next(
                (item for item in emails if isinstance(item, dict) and item.get("primary")),
                None,
            )
            email = primary["email"] if primary else f"{login}@github.com"
    finally:
        if own_client:
            await http.aclose()

    return OAuthProfile(
        provider="github",
        provider_id=str(data.get("id") or ""),
        email=email,
        full_name=data.get("name") or login,
        code_name=login,
        avatar=data.get("avatar_url"),
    )


PROFILE_FETCHERS = {
    "google": fetch_google_profile,
    "github": fetch_github_profile,
}


__all__ = [
    "OAuthError",
    "OAuthProfile",
    "authorization_url",
    "fetch_google_profile",
    "fetch_github_profile",
    "PROFILE_FETCHERS",
]

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, status
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, ConfigDict, Field
from starlette.concurrency import run_in_threadpool

from school_api import config
from school_api.endpoints.security import require_user
from school_api.errors import SchoolAPIError
from school_api.utils import oauth, users
from school_api.utils.auth import issue_token
from school_api.utils.logging import get_logger

router = APIRouter(prefix="/api/users", tags=["users"])
logger = get_logger("endpoints.users")


class RegisterRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    full_name: str = Field(..., alias="fullName", min_length=1)
    code_name: str = Field(..., alias="codeName", min_length=1)
    email: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)
    confirm_password: str = Field(..., alias="confirmPassword", min_length=1)


class LoginRequest(BaseModel):
    email: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class UpdateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    full_name: str = Field(..., alias="fullName", min_length=1)
    code_name: str = Field(..., alias="codeName", min_length=1)
    email: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)


class UserResponse(BaseModel):
    success: bool = True
    message: str
    user: dict[str, Any]


class LoginResponse(UserResponse):
    token: str


@router.post("", status_code=status.HTTP_201_CREATED, response_model=UserResponse)
def register_user(request: RegisterRequest) -> UserResponse:
    user = users.create_user(
        full_name=request.full_name,
        code_name=request.code_name,
        email=request.email,
        phone=request.phone,
        password=request.password,
        confirm_password=request.confirm_password,
    )
    return UserResponse(message="Registration completed", user=users.serialize_user(user))


@router.post("/login", response_model=LoginResponse)
def login(request: LoginRequest) -> LoginResponse:
    user = users.authenticate_email(request.email, request.password)
    return LoginResponse(
        message="Logged in",
        user=users.serialize_user(user),
        token=issue_token(user["id"]),
    )


@router.get("")
def list_users() -> list[dict[str, Any]]:
    return [users.serialize_user(user) for user in users.list_users()]


@router.get("/me")
def current_user(claims: dict[str, Any] = Depends(require_user)) -> dict[str, Any]:
    user = users.get_user(int(claims["userId"]))
    return {"success": True, "user": users.serialize_user(user)}


# === OAuth ===
def _frontend_redirect(token: str, user_id: int) -> RedirectResponse:
    return RedirectResponse(
        f"{config.FRONTEND_URL}/?token={token}&userId={user_id}",
        status_code=status.HTTP_302_FOUND,
    )


def _auth_error_redirect() -> RedirectResponse:
    return RedirectResponse(f"{config.FRONTEND_URL}/auth-error", status_code=status.HTTP_302_FOUND)


async def _complete_oauth(provider: str, code: str | None) -> RedirectResponse:
    if not code:
        logger.warning("OAuth callback without code", extra={"provider": provider})
        return _auth_error_redirect()

    try:
        profile = await oauth.PROFILE_FETCHERS[provider](code)
        user = await run_in_threadpool(
            users.find_or_create_oauth_user,
            email=profile.email,
            full_name=profile.full_name,
            code_name=profile.code_name,
            provider=profile.provider,
            provider_id=profile.provider_id,
            avatar=profile.avatar,
        )
    except SchoolAPIError as exc:
        logger.warning(
            "OAuth login failed",
            extra={"provider": provider, "error": exc.message},
        )
        return _auth_error_redirect()

    token = issue_token(user["id"], provider=provider)
    return _frontend_redirect(token, user["id"])


@router.get("/auth/google")
def google_login() -> RedirectResponse:
    return RedirectResponse(oauth.authorization_url("google"), status_code=status.HTTP_302_FOUND)


@router.get("/auth/google/callback")
async def google_callback(code: str | None = None) -> RedirectResponse:
    return await _complete_oauth("google", code)


@router.get("/auth/github")
def github_login() -> RedirectResponse:
    return RedirectResponse(oauth.authorization_url("github"), status_code=status.HTTP_302_FOUND)


@router.get("/auth/github/callback")
async def github_callback(code: str | None = None) -> RedirectResponse:
    return await _complete_oauth("github", code)


# === Lookups by key ===
@router.get("/email/{email}")
def get_user_by_email(email: str) -> dict[str, Any]:
    return users.serialize_user(users.get_user_by_email(email))


@router.get("/{user_id}")
def get_user(user_id: int) -> dict[str, Any]:
    return users.serialize_user(users.get_user(user_id))


@router.put("/{user_id}")
def update_user(user_id: int, request: UpdateRequest) -> dict[str, Any]:
    user = users.update_user(
        user_id,
        full_name=request.full_name,
        code_name=request.code_name,
        email=request.email,
        phone=request.phone,
    )
    return {"success": True, "message": "User updated", "user": users.serialize_user(user)}


@router.delete("/{user_id}")
def delete_user(user_id: int) -> dict[str, Any]:
    users.delete_user(user_id)
    return {"success": True, "message": "User deleted"}


__all__ = ["router"]

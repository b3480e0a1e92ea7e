from __future__ import annotations

from typing import Any

from fastapi import APIRouter, status
from pydantic import BaseModel, ConfigDict, Field

from school_api.utils import users
from school_api.utils.auth import issue_token
from school_api.utils.logging import get_logger

router = APIRouter(prefix="/api/auth", tags=["auth"])
logger = get_logger("endpoints.auth")


class PhoneRegisterRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    full_name: str = Field(..., alias="fullName", min_length=1)
    phone_number: str = Field(..., alias="phoneNumber", min_length=1)
    telegram_username: str | None = Field(None, alias="telegramUsername")
    password: str = Field(..., min_length=1)


class PhoneLoginRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    phone_number: str = Field(..., alias="phoneNumber", min_length=1)
    password: str = Field(..., min_length=1)


class AuthResponse(BaseModel):
    success: bool = True
    message: str
    user: dict[str, Any]
    token: str


@router.post("/register", status_code=status.HTTP_201_CREATED, response_model=AuthResponse)
def register(request: PhoneRegisterRequest) -> AuthResponse:
    user = users.create_phone_user(
        full_name=request.full_name,
        phone=request.phone_number,
        telegram_username=request.telegram_username,
        password=request.password,
    )
    return AuthResponse(
        message="Registration completed",
        user=users.serialize_user(user),
        token=issue_token(user["id"]),
    )


@router.post("/login", response_model=AuthResponse)
def login(request: PhoneLoginRequest) -> AuthResponse:
    user = users.authenticate_phone(request.phone_number, request.password)
    return AuthResponse(
        message="Logged in",
        user=users.serialize_user(user),
        token=issue_token(user["id"]),
    )


__all__ = ["router"]

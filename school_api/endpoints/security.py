from __future__ import annotations

from typing import Any

from fastapi import Header

from school_api.errors import AuthError
from school_api.utils.auth import decode_token
from school_api.utils.logging import get_logger

logger = get_logger("endpoints.security")


def _bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    try:
        scheme, token = authorization.split(" ", 1)
    except ValueError:
        return None
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def require_user(
    authorization: str | None = Header(default=None, alias="Authorization"),
) -> dict[str, Any]:
    """Return the claims of a valid bearer token."""

    token = _bearer_token(authorization)
    if token is None:
        logger.warning("Request without bearer token")
        raise AuthError("Authentication required")

    try:
        claims = decode_token(token)
    except AuthError:
        logger.warning("Rejected bearer token")
        raise
    return claims


__all__ = ["require_user"]

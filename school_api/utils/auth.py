"""Password hashing and signed session tokens."""

from __future__ import annotations

from datetime import timedelta
from typing import Any

import jwt
from werkzeug.security import check_password_hash, generate_password_hash

from school_api import config
from school_api.errors import AuthError
from school_api.utils.db import utcnow
from school_api.utils.logging import get_logger

logger = get_logger("auth")


def hash_password(password: str) -> str:
    return generate_password_hash(password)


def verify_password(password_hash: str | None, password: str) -> bool:
    if not password_hash:
        return False
    try:
        return check_password_hash(password_hash, password)
    except ValueError:
        # Unknown hash method, e.g. a value that was never hashed.
        logger.warning("Stored credential has an unrecognised format")
        return False


def issue_token(user_id: int, **claims: Any) -> str:
    """Return an HS256 token for ``user_id`` expiring after the configured days."""

    now = utcnow()
    payload = {
        "sub": str(user_id),
        "userId": user_id,
        "iat": now,
        "exp": now + timedelta(days=config.JWT_EXPIRES_DAYS),
        **claims,
    }
    return jwt.encode(payload, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)


def decode_token(token: str) -> dict[str, Any]:
    try:
        claims = jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError as exc:
        raise AuthError("Token has expired") from exc
    except jwt.InvalidTokenError as exc:
        raise AuthError("Invalid token") from exc

    if "userId" not in claims:
        raise AuthError("Invalid token")
    return claims


__all__ = ["hash_password", "verify_password", "issue_token", "decode_token"]

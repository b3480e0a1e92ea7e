from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

from school_api.utils.env import PROJECT_ROOT, resolve_env_path
from school_api.utils.logging import get_logger

logger = get_logger("config")

_ENV_PATH = resolve_env_path()

if _ENV_PATH.exists():
    load_dotenv(str(_ENV_PATH), override=True)
    logger.info("Loaded environment variables from file", extra={"path": str(_ENV_PATH)})
else:
    logger.warning(
        ".env file is missing; using process environment and development defaults",
        extra={"path": str(_ENV_PATH)},
    )


def _strip_inline_comment(raw: str) -> str:
    """Remove inline shell-style comments from a value string."""

    comment_pos = raw.find("#")
    if comment_pos == -1:
        return raw.strip()
    return raw[:comment_pos].strip()


def _parse_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        cleaned = _strip_inline_comment(raw)
        if cleaned == "":
            return default
        value = int(cleaned)
    except ValueError as exc:
        logger.error(
            "Failed to parse int from env",
            extra={"env_name": name, "env_value": raw},
        )
        raise RuntimeError(f"Environment variable {name} must be an integer") from exc
    return value


def _parse_list(name: str, default: list[str]) -> list[str]:
    raw = os.getenv(name)
    if not raw:
        return list(default)
    return [item.strip() for item in raw.split(",") if item.strip()]


def _resolve_database_path() -> Path:
    explicit = os.getenv("DATABASE")
    if explicit:
        return Path(explicit).expanduser()
    name = os.getenv("DB_NAME", "school")
    return PROJECT_ROOT / f"{name}.db"


DATABASE_PATH = _resolve_database_path()
# Kept for parity with the hosted deployment; the embedded store ignores them.
DB_HOST = os.getenv("DB_HOST", "localhost")
DB_PORT = _parse_int("DB_PORT", 5432)
DB_USER = os.getenv("DB_USER", "postgres")
DB_PASSWORD = os.getenv("DB_PASSWORD") or os.getenv("DB_PASS", "postgres")

JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change-me")
JWT_ALGORITHM = "HS256"
JWT_EXPIRES_DAYS = _parse_int("JWT_EXPIRES_DAYS", 30)

FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173").rstrip("/")
PORT = _parse_int("PORT", 3000)
CORS_ALLOW_ORIGINS = _parse_list(
    "CORS_ALLOW_ORIGINS", ["http://localhost:5173", "http://localhost:3000"]
)

GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID", "")
GOOGLE_CLIENT_SECRET = os.getenv("GOOGLE_CLIENT_SECRET", "")
GOOGLE_REDIRECT_URI = os.getenv(
    "GOOGLE_REDIRECT_URI", f"http://localhost:{PORT}/api/users/auth/google/callback"
)
GITHUB_CLIENT_ID = os.getenv("GITHUB_CLIENT_ID", "")
GITHUB_CLIENT_SECRET = os.getenv("GITHUB_CLIENT_SECRET", "")
GITHUB_REDIRECT_URI = os.getenv(
    "GITHUB_REDIRECT_URI", f"http://localhost:{PORT}/api/users/auth/github/callback"
)

UPLOAD_DIR = Path(os.getenv("UPLOAD_DIR", PROJECT_ROOT / "uploads")).expanduser()
MAX_UPLOAD_BYTES = _parse_int("MAX_UPLOAD_BYTES", 5 * 1024 * 1024)

SUBSCRIPTION_PERIOD_DAYS = 30

if JWT_SECRET == "dev-secret-change-me":
    logger.warning("JWT_SECRET is not configured; using the development secret")

logger.info(
    "Configuration loaded",
    extra={
        "DATABASE_PATH": str(DATABASE_PATH),
        "PORT": PORT,
        "UPLOAD_DIR": str(UPLOAD_DIR),
        "CORS_ALLOW_ORIGINS": CORS_ALLOW_ORIGINS,
        "GOOGLE_ENABLED": bool(GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET),
        "GITHUB_ENABLED": bool(GITHUB_CLIENT_ID and GITHUB_CLIENT_SECRET),
    },
)


__all__ = [
    "DATABASE_PATH",
    "DB_HOST",
    "DB_PORT",
    "DB_USER",
    "DB_PASSWORD",
    "JWT_SECRET",
    "JWT_ALGORITHM",
    "JWT_EXPIRES_DAYS",
    "FRONTEND_URL",
    "PORT",
    "CORS_ALLOW_ORIGINS",
    "GOOGLE_CLIENT_ID",
    "GOOGLE_CLIENT_SECRET",
    "GOOGLE_REDIRECT_URI",
    "GITHUB_CLIENT_ID",
    "GITHUB_CLIENT_SECRET",
    "GITHUB_REDIRECT_URI",
    "UPLOAD_DIR",
    "MAX_UPLOAD_BYTES",
    "SUBSCRIPTION_PERIOD_DAYS",
]

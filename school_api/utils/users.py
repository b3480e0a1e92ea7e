from __future__ import annotations

import re
import sqlite3
from typing import Any

from school_api.errors import AuthError, NotFoundError, ValidationError
from school_api.utils import db
from school_api.utils.auth import hash_password, verify_password
from school_api.utils.logging import get_logger

logger = get_logger("users")

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_RE = re.compile(r"^\+998[0-9]{9}$")
MIN_PASSWORD_LENGTH = 6

_PUBLIC_FIELDS = {
    "id": "id",
    "full_name": "fullName",
    "code_name": "codeName",
    "email": "email",
    "phone": "phone",
    "telegram_username": "telegramUsername",
    "role": "role",
    "status": "status",
    "provider": "provider",
    "provider_id": "providerId",
    "avatar": "avatar",
    "created_at": "createdAt",
    "updated_at": "updatedAt",
}


def serialize_user(row: dict[str, Any] | sqlite3.Row | None) -> dict[str, Any] | None:
    """Public view of a user row; credential columns never leave this module."""

    record = db.row_to_dict(row) if isinstance(row, sqlite3.Row) else row
    if record is None:
        return None
    return {public: record.get(column) for column, public in _PUBLIC_FIELDS.items()}


def validate_email(email: str) -> str:
    email = (email or "").strip()
    if not EMAIL_RE.match(email):
        raise ValidationError("Invalid email format")
    return email


def validate_phone(phone: str) -> str:
    phone = (phone or "").strip()
    if not PHONE_RE.match(phone):
        raise ValidationError("Phone number must start with +998 and contain 12 digits")
    return phone


def validate_password(password: str, confirm_password: str | None = None) -> None:
    if len(password or "") < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"
        )
    if confirm_password is not None and password != confirm_password:
        raise ValidationError("Passwords do not match")


def _ensure_unique(
    con: sqlite3.Connection,
    *,
    email: str | None = None,
    phone: str | None = None,
    exclude_id: int | None = None,
) -> None:
    clauses: list[str] = []
    params: list[Any] = []
    if email:
        clauses.append("email = ?")
        params.append(email)
    if phone:
        clauses.append("phone = ?")
        params.append(phone)
    if not clauses:
        return
    query = f"SELECT id FROM users WHERE ({' OR '.join(clauses)})"
    if exclude_id is not None:
        query += " AND id != ?"
        params.append(exclude_id)
    if con.execute(query, params).fetchone() is not None:
        raise ValidationError("Email or phone number is already registered")


def _insert_user(con: sqlite3.Connection, fields: dict[str, Any]) -> dict[str, Any]:
    now = db.utcnow().isoformat()
    fields = {**fields, "created_at": now, "updated_at": now}
    columns = ", ".join(fields)
    placeholders = ", ".join("?" for _ in fields)
    try:
        cur = con.execute(
            f"INSERT INTO users ({columns}) VALUES ({placeholders})", tuple(fields.values())
        )
    except sqlite3.IntegrityError as exc:
        raise ValidationError("Email or phone number is already registered") from exc
    row = con.execute("SELECT * FROM users WHERE id = ?", (cur.lastrowid,)).fetchone()
    return db.row_to_dict(row)


def create_user(
    *,
    full_name: str,
    code_name: str,
    email: str,
    phone: str,
    password: str,
    confirm_password: str,
) -> dict[str, Any]:
    email = validate_email(email)
    phone = validate_phone(phone)
    validate_password(password, confirm_password)

    def _operation() -> dict[str, Any]:
        with db.transaction() as con:
            _ensure_unique(con, email=email, phone=phone)
            return _insert_user(
                con,
                {
                    "full_name": full_name.strip(),
                    "code_name": code_name.strip(),
                    "email": email,
                    "phone": phone,
                    "password_hash": hash_password(password),
                },
            )

    user = db.run_with_schema_retry(_operation)
    logger.info("Registered user", extra={"user_id": user["id"], "email": email})
    return user


def create_phone_user(
    *,
    full_name: str,
    phone: str,
    telegram_username: str | None,
    password: str,
) -> dict[str, Any]:
    phone = (phone or "").strip()
    if not phone:
        raise ValidationError("Phone number is required")
    validate_password(password)

    def _operation() -> dict[str, Any]:
        with db.transaction() as con:
            if con.execute("SELECT id FROM users WHERE phone = ?", (phone,)).fetchone():
                raise ValidationError("This phone number is already registered")
            return _insert_user(
                con,
                {
                    "full_name": full_name.strip(),
                    "phone": phone,
                    "telegram_username": telegram_username,
                    "password_hash": hash_password(password),
                },
            )

    user = db.run_with_schema_retry(_operation)
    logger.info("Registered user by phone", extra={"user_id": user["id"]})
    return user


def _authenticate(column: str, value: str, password: str) -> dict[str, Any]:
    def _operation() -> dict[str, Any] | None:
        with db.connect() as con:
            row = con.execute(f"SELECT * FROM users WHERE {column} = ?", (value,)).fetchone()
        return db.row_to_dict(row)

    user = db.run_with_schema_retry(_operation)
    if user is None or not verify_password(user.get("password_hash"), password):
        logger.warning("Failed login attempt", extra={"login_field": column})
        raise AuthError("Invalid credentials")
    logger.info("User logged in", extra={"user_id": user["id"], "login_field": column})
    return user


def authenticate_email(email: str, password: str) -> dict[str, Any]:
    if not email or not password:
        raise ValidationError("Email and password are required")
    return _authenticate("email", email.strip(), password)


def authenticate_phone(phone: str, password: str) -> dict[str, Any]:
    if not phone or not password:
        raise ValidationError("Phone number and password are required")
    return _authenticate("phone", phone.strip(), password)


def list_users() -> list[dict[str, Any]]:
    def _operation() -> list[dict[str, Any]]:
        with db.connect() as con:
            rows = con.execute("SELECT * FROM users ORDER BY created_at DESC, id DESC").fetchall()
        return [db.row_to_dict(row) for row in rows]

    return db.run_with_schema_retry(_operation)


def get_user(user_id: int) -> dict[str, Any]:
    def _operation() -> dict[str, Any] | None:
        with db.connect() as con:
            row = con.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        return db.row_to_dict(row)

    user = db.run_with_schema_retry(_operation)
    if user is None:
        raise NotFoundError("User not found")
    return user


def get_user_by_email(email: str) -> dict[str, Any]:
    def _operation() -> dict[str, Any] | None:
        with db.connect() as con:
            row = con.execute("SELECT * FROM users WHERE email = ?", (email,)).fetchone()
        return db.row_to_dict(row)

    user = db.run_with_schema_retry(_operation)
    if user is None:
        raise NotFoundError("User not found")
    return user


def update_user(
    user_id: int,
    *,
    full_name: str,
    code_name: str,
    email: str,
    phone: str,
) -> dict[str, Any]:
    email = validate_email(email)
    phone = validate_phone(phone)

    def _operation() -> dict[str, Any] | None:
        with db.transaction() as con:
            _ensure_unique(con, email=email, phone=phone, exclude_id=user_id)
            cur = con.execute(
                """
                UPDATE users
                SET full_name = ?, code_name = ?, email = ?, phone = ?, updated_at = ?
                WHERE id = ?
                """,
                (full_name.strip(), code_name.strip(), email, phone, db.utcnow().isoformat(), user_id),
            )
            if cur.rowcount == 0:
                return None
            row = con.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        return db.row_to_dict(row)

    user = db.run_with_schema_retry(_operation)
    if user is None:
        raise NotFoundError("User not found")
    logger.info("Updated user", extra={"user_id": user_id})
    return user


def delete_user(user_id: int) -> None:
    def _operation() -> int:
        with db.connect() as con:
            cur = con.execute("DELETE FROM users WHERE id = ?", (user_id,))
        return cur.rowcount

    if db.run_with_schema_retry(_operation) == 0:
        raise NotFoundError("User not found")
    logger.info("Deleted user", extra={"user_id": user_id})


def find_or_create_oauth_user(
    *,
    email: str,
    full_name: str,
    code_name: str,
    provider: str,
    provider_id: str,
    avatar: str | None,
) -> dict[str, Any]:
    """Return the user owning ``email``, refreshing provider fields, or create one."""

    def _operation() -> tuple[dict[str, Any], bool]:
        now = db.utcnow().isoformat()
        with db.transaction() as con:
            row = con.execute("SELECT id FROM users WHERE email = ?", (email,)).fetchone()
            if row is not None:
                con.execute(
                    """
                    UPDATE users
                    SET provider = ?, provider_id = ?, avatar = ?, full_name = ?, code_name = ?,
                        updated_at = ?
                    WHERE id = ?
                    """,
                    (provider, provider_id, avatar, full_name, code_name, now, row["id"]),
                )
                refreshed = con.execute("SELECT * FROM users WHERE id = ?", (row["id"],)).fetchone()
                return db.row_to_dict(refreshed), False
            user = _insert_user(
                con,
                {
                    "full_name": full_name,
                    "code_name": code_name,
                    "email": email,
                    "provider": provider,
                    "provider_id": provider_id,
                    "avatar": avatar,
                },
            )
            return user, True

    user, created = db.run_with_schema_retry(_operation)
    logger.info(
        "OAuth login",
        extra={"user_id": user["id"], "provider": provider, "user_created": created},
    )
    return user


__all__ = [
    "serialize_user",
    "validate_email",
    "validate_phone",
    "validate_password",
    "create_user",
    "create_phone_user",
    "authenticate_email",
    "authenticate_phone",
    "list_users",
    "get_user",
    "get_user_by_email",
    "update_user",
    "delete_user",
    "find_or_create_oauth_user",
]

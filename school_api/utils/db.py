from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Callable, Iterator, TypeVar

from school_api import config
from school_api.errors import StorageError
from school_api.utils.logging import get_logger

DB_PATH = Path(config.DATABASE_PATH)

logger = get_logger("db")
MIGRATION_ERROR: tuple[Path, Exception] | None = None
T = TypeVar("T")

_REPAIRABLE_COLUMNS = (
    "status",
    "admin_comment",
    "updated_at",
    "has_reply",
    "reply_to_message_id",
    "time",
    "password_hash",
    "provider_id",
    "avatar",
    "receipt_original_name",
)


def _needs_schema_repair(error: sqlite3.OperationalError) -> bool:
    message = str(error).lower()
    if "no such column" not in message and "no column named" not in message:
        return False
    return any(column in message for column in _REPAIRABLE_COLUMNS)


def _repair_database(error: sqlite3.OperationalError, *, db_path: Path) -> bool:
    message = str(error).lower()
    if "no such table" in message:
        logger.warning(
            "Missing SQLite table detected; reinitialising schema",
            extra={"error": str(error), "path": str(db_path)},
        )
        init_db(db_path=db_path)
        return True

    if _needs_schema_repair(error):
        logger.warning(
            "Database schema mismatch detected; attempting automatic migration",
            extra={"error": str(error), "path": str(db_path)},
        )
        auto_update_missing_fields(db_path=db_path)
        return True

    return False


def run_with_schema_retry(operation: Callable[[], T], *, db_path: Path | str | None = None) -> T:
    """Run ``operation`` once more after repairing a stale schema.

    Integrity errors are left to the caller, which knows whether a unique
    constraint means bad input. Any other SQLite failure is surfaced as
    :class:`StorageError`.
    """

    resolved = Path(db_path or DB_PATH)
    try:
        try:
            return operation()
        except sqlite3.OperationalError as exc:
            if not _repair_database(exc, db_path=resolved):
                raise
            return operation()
    except sqlite3.IntegrityError:
        raise
    except sqlite3.Error as exc:
        logger.exception("Database operation failed", extra={"path": str(resolved)})
        raise StorageError("Database operation failed", detail=str(exc)) from exc


INIT_SQL = """
CREATE TABLE IF NOT EXISTS users (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  full_name TEXT NOT NULL,
  code_name TEXT,
  email TEXT UNIQUE,
  phone TEXT UNIQUE,
  password_hash TEXT,
  telegram_username TEXT,
  role TEXT NOT NULL DEFAULT 'user',
  status TEXT NOT NULL DEFAULT 'active',
  provider TEXT,
  provider_id TEXT,
  avatar TEXT,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS payments (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  transaction_id TEXT NOT NULL UNIQUE,
  user_id INTEGER,
  status TEXT NOT NULL DEFAULT 'pending' CHECK (status IN ('pending', 'success', 'failed')),
  full_name TEXT NOT NULL,
  telegram_username TEXT NOT NULL,
  phone_number TEXT NOT NULL,
  card_number TEXT NOT NULL,
  card_owner TEXT NOT NULL,
  plan_name TEXT NOT NULL,
  plan_price TEXT NOT NULL,
  payment_date TEXT NOT NULL,
  receipt_image_path TEXT,
  receipt_image_filename TEXT,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS course_payments (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  transaction_id TEXT NOT NULL UNIQUE,
  status TEXT NOT NULL DEFAULT 'pending',
  full_name TEXT NOT NULL,
  telegram_username TEXT NOT NULL,
  phone_number TEXT NOT NULL,
  registration_date TEXT NOT NULL,
  course_start_date TEXT NOT NULL,
  course_time_slot TEXT NOT NULL,
  course_days TEXT NOT NULL,
  card_number TEXT NOT NULL,
  card_owner TEXT NOT NULL,
  plan_name TEXT NOT NULL,
  plan_price TEXT NOT NULL,
  payment_date TEXT NOT NULL,
  receipt_filename TEXT,
  receipt_original_name TEXT,
  receipt_filepath TEXT,
  receipt_filesize TEXT,
  receipt_filetype TEXT,
  receipt_upload_time TEXT,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS payment_modal (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  transaction_id TEXT NOT NULL UNIQUE,
  file_name TEXT,
  additional_amount INTEGER NOT NULL DEFAULT 0,
  base_amount INTEGER NOT NULL,
  final_amount INTEGER NOT NULL,
  subscription_type TEXT NOT NULL,
  promo_discount TEXT,
  yearly_discount TEXT,
  address TEXT,
  email TEXT NOT NULL,
  passport TEXT,
  phone TEXT NOT NULL,
  courses TEXT NOT NULL,
  status TEXT NOT NULL DEFAULT 'pending',
  admin_comment TEXT,
  created_at TEXT NOT NULL,
  updated_at TEXT
);

CREATE TABLE IF NOT EXISTS subscriptions (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  user_id INTEGER NOT NULL,
  payment_id INTEGER NOT NULL REFERENCES payments(id) ON DELETE CASCADE,
  start_date TEXT NOT NULL,
  end_date TEXT NOT NULL,
  status TEXT NOT NULL DEFAULT 'active' CHECK (status IN ('active', 'inactive', 'expired')),
  plan_name TEXT NOT NULL,
  plan_price TEXT NOT NULL,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL,
  CHECK (end_date > start_date)
);

CREATE TABLE IF NOT EXISTS messages (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  text TEXT NOT NULL,
  user_id TEXT NOT NULL,
  is_admin INTEGER NOT NULL DEFAULT 0,
  time TEXT,
  has_reply INTEGER NOT NULL DEFAULT 0,
  reply_to_message_id INTEGER REFERENCES messages(id) ON DELETE CASCADE,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL
);
"""

INDEX_SQL = (
    "CREATE INDEX IF NOT EXISTS idx_payments_phone ON payments(phone_number)",
    "CREATE INDEX IF NOT EXISTS idx_payments_status ON payments(status)",
    "CREATE INDEX IF NOT EXISTS idx_course_payments_phone ON course_payments(phone_number)",
    "CREATE INDEX IF NOT EXISTS idx_payment_modal_email ON payment_modal(email)",
    "CREATE INDEX IF NOT EXISTS idx_payment_modal_created_at ON payment_modal(created_at)",
    "CREATE INDEX IF NOT EXISTS idx_payment_modal_status ON payment_modal(status)",
    "CREATE INDEX IF NOT EXISTS idx_subscriptions_user ON subscriptions(user_id, status)",
    "CREATE INDEX IF NOT EXISTS idx_messages_user ON messages(user_id)",
    "CREATE INDEX IF NOT EXISTS idx_messages_reply_to ON messages(reply_to_message_id)",
)


def _table_exists(con: sqlite3.Connection, table: str) -> bool:
    cur = con.execute(
        "SELECT 1 FROM sqlite_master WHERE type='table' AND name=?", (table,)
    )
    return cur.fetchone() is not None


def _table_columns(con: sqlite3.Connection, table: str) -> set[str]:
    if not _table_exists(con, table):
        return set()
    cur = con.execute(f"PRAGMA table_info({table})")
    return {row[1] for row in cur.fetchall()}


def _apply_indexes(con: sqlite3.Connection) -> None:
    for statement in INDEX_SQL:
        target = statement.split("ON ", 1)[1].split("(", 1)[0].strip()
        columns_part = statement.split("(", 1)[1].rsplit(")", 1)[0]
        required_columns = {column.strip() for column in columns_part.split(",") if column.strip()}
        if not _table_exists(con, target):
            continue
        if not required_columns.issubset(_table_columns(con, target)):
            logger.debug(
                "Skipping index creation due to missing columns",
                extra={"table": target, "required_columns": sorted(required_columns)},
            )
            continue
        con.execute(statement)


def _open(resolved: Path, **kwargs: Any) -> sqlite3.Connection:
    if MIGRATION_ERROR is not None:
        failed_path, error = MIGRATION_ERROR
        if resolved == failed_path:
            raise StorageError("Database migrations failed") from error
    logger.debug("Opening SQLite connection", extra={"path": str(resolved)})
    con = sqlite3.connect(resolved, timeout=30, **kwargs)
    con.row_factory = sqlite3.Row
    con.execute("PRAGMA foreign_keys = ON")
    return con


@contextmanager
def connect(*, autocommit: bool = True, db_path: Path | str | None = None) -> Iterator[sqlite3.Connection]:
    """Check out a connection; commit on success, roll back on error, always close."""

    resolved = Path(db_path or DB_PATH)
    con = _open(resolved)
    try:
        yield con
        if autocommit:
            con.commit()
    except Exception:
        con.rollback()
        raise
    finally:
        con.close()


@contextmanager
def transaction(*, db_path: Path | str | None = None) -> Iterator[sqlite3.Connection]:
    """Run a multi-statement write under ``BEGIN IMMEDIATE``.

    The write lock is taken before the first read, so a concurrent writer
    cannot slip in between a read and the update that depends on it.
    """

    resolved = Path(db_path or DB_PATH)
    con = _open(resolved, isolation_level=None)
    try:
        con.execute("BEGIN IMMEDIATE")
        try:
            yield con
        except Exception:
            con.execute("ROLLBACK")
            raise
        con.execute("COMMIT")
    finally:
        con.close()


def init_db(*, db_path: Path | str | None = None) -> None:
    """Create every table and index if missing, then apply column migrations."""

    resolved = Path(db_path or DB_PATH)
    resolved.parent.mkdir(parents=True, exist_ok=True)
    logger.info("Ensuring SQLite schema exists", extra={"path": str(resolved)})
    with connect(db_path=resolved) as con:
        con.executescript(INIT_SQL)
    auto_update_missing_fields(db_path=resolved)
    logger.info("Database initialisation complete", extra={"path": str(resolved)})


def ping(*, db_path: Path | str | None = None) -> bool:
    """Round-trip ``SELECT 1``; raises :class:`StorageError` when unreachable."""

    def _operation() -> bool:
        with connect(db_path=db_path) as con:
            row = con.execute("SELECT 1").fetchone()
        return row[0] == 1

    return run_with_schema_retry(_operation, db_path=db_path)


def utcnow() -> datetime:
    return datetime.now(UTC).replace(microsecond=0)


def ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def parse_timestamp(value: str | datetime | None) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(text))


def row_to_dict(row: sqlite3.Row | None) -> dict | None:
    if row is None:
        return None
    return {key: row[key] for key in row.keys()}


def auto_update_missing_fields(*, db_path: Path | str | None = None) -> None:
    """Apply lightweight migrations to keep older databases compatible."""

    from school_api.db.migrations.migration_202503010001_payment_modal_status import (
        ensure_payment_modal_status_columns,
    )
    from school_api.db.migrations.migration_202503150001_message_replies import (
        ensure_message_reply_columns,
    )

    resolved = Path(db_path or DB_PATH)
    logger.info("Checking database schema for compatibility", extra={"path": str(resolved)})

    global MIGRATION_ERROR
    try:
        with connect(db_path=resolved) as con:
            if _table_columns(con, "payment_modal"):
                ensure_payment_modal_status_columns(con)

            if _table_columns(con, "messages"):
                ensure_message_reply_columns(con)

            user_columns = _table_columns(con, "users")
            if user_columns:
                for column, ddl in (
                    ("password_hash", "TEXT"),
                    ("telegram_username", "TEXT"),
                    ("provider", "TEXT"),
                    ("provider_id", "TEXT"),
                    ("avatar", "TEXT"),
                ):
                    if column not in user_columns:
                        logger.warning(
                            f"Adding missing '{column}' column to users table",
                            extra={"path": str(resolved)},
                        )
                        con.execute(f"ALTER TABLE users ADD COLUMN {column} {ddl}")

            course_columns = _table_columns(con, "course_payments")
            if course_columns:
                if "receipt_original_name" not in course_columns:
                    logger.warning(
                        "Adding missing 'receipt_original_name' column to course_payments table",
                        extra={"path": str(resolved)},
                    )
                    con.execute("ALTER TABLE course_payments ADD COLUMN receipt_original_name TEXT")
                # Older rows used two spellings for the same outcome.
                con.execute("UPDATE course_payments SET status='completed' WHERE status='success'")
                con.execute("UPDATE course_payments SET status='rejected' WHERE status='failed'")

            _apply_indexes(con)
    except Exception as exc:
        MIGRATION_ERROR = (resolved, exc)
        logger.exception("Failed to apply database migrations", extra={"path": str(resolved)})
        raise
    MIGRATION_ERROR = None


__all__ = [
    "DB_PATH",
    "connect",
    "run_with_schema_retry",
    "transaction",
    "init_db",
    "ping",
    "utcnow",
    "ensure_utc",
    "parse_timestamp",
    "row_to_dict",
    "auto_update_missing_fields",
]

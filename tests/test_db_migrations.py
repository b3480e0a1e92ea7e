from __future__ import annotations

import sqlite3

import pytest

from school_api.errors import StorageError
from school_api.utils import db


def test_run_with_schema_retry_repairs_missing_column(monkeypatch, tmp_path):
    calls = []

    def fake_migration(**kwargs):
        calls.append(kwargs)

    attempts = {"count": 0}

    def operation():
        attempts["count"] += 1
        if attempts["count"] == 1:
            raise sqlite3.OperationalError("table payment_modal has no column named admin_comment")
        return "ok"

    monkeypatch.setattr(db, "auto_update_missing_fields", fake_migration)

    result = db.run_with_schema_retry(operation, db_path=tmp_path / "retry.db")

    assert result == "ok"
    assert len(calls) == 1
    assert attempts["count"] == 2


def test_run_with_schema_retry_wraps_unrelated_errors(tmp_path):
    def operation():
        raise sqlite3.OperationalError("database is locked")

    with pytest.raises(StorageError) as excinfo:
        db.run_with_schema_retry(operation, db_path=tmp_path / "locked.db")

    assert excinfo.value.status_code == 500
    assert excinfo.value.detail == "database is locked"


def test_run_with_schema_retry_leaves_integrity_errors_to_caller(tmp_path):
    def operation():
        raise sqlite3.IntegrityError("UNIQUE constraint failed: payments.transaction_id")

    with pytest.raises(sqlite3.IntegrityError):
        db.run_with_schema_retry(operation, db_path=tmp_path / "dupe.db")


def test_legacy_database_is_upgraded(tmp_path):
    legacy = tmp_path / "legacy.db"
    with sqlite3.connect(legacy) as con:
        con.executescript(
            """
            CREATE TABLE users (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              full_name TEXT NOT NULL,
              code_name TEXT,
              email TEXT UNIQUE,
              phone TEXT UNIQUE,
              role TEXT NOT NULL DEFAULT 'user',
              status TEXT NOT NULL DEFAULT 'active',
              created_at TEXT NOT NULL,
              updated_at TEXT NOT NULL
            );
            CREATE TABLE payment_modal (
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
              created_at TEXT NOT NULL
            );
            CREATE TABLE messages (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              text TEXT NOT NULL,
              user_id TEXT NOT NULL,
              is_admin INTEGER NOT NULL DEFAULT 0,
              created_at TEXT NOT NULL,
              updated_at TEXT NOT NULL
            );
            CREATE TABLE course_payments (
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
              receipt_filepath TEXT,
              receipt_filesize TEXT,
              receipt_filetype TEXT,
              receipt_upload_time TEXT,
              created_at TEXT NOT NULL,
              updated_at TEXT NOT NULL
            );
            INSERT INTO course_payments (
              transaction_id, status, full_name, telegram_username, phone_number,
              registration_date, course_start_date, course_time_slot, course_days,
              card_number, card_owner, plan_name, plan_price, payment_date, created_at, updated_at
            ) VALUES
              ('CP-1', 'success', 'A', '@a', '+998900000001', 'd', 'd', 's', 'c', 'n', 'o', 'p', '1', 'd', 't', 't'),
              ('CP-2', 'failed', 'B', '@b', '+998900000002', 'd', 'd', 's', 'c', 'n', 'o', 'p', '1', 'd', 't', 't');
            """
        )

    db.init_db(db_path=legacy)

    with sqlite3.connect(legacy) as con:
        def columns(table):
            return {row[1] for row in con.execute(f"PRAGMA table_info({table})")}

        assert {"password_hash", "provider", "provider_id", "avatar", "telegram_username"} <= columns("users")
        assert {"status", "admin_comment", "updated_at"} <= columns("payment_modal")
        assert {"time", "has_reply", "reply_to_message_id"} <= columns("messages")
        assert "receipt_original_name" in columns("course_payments")
        assert {"payments", "subscriptions"} <= {
            row[0] for row in con.execute("SELECT name FROM sqlite_master WHERE type='table'")
        }
        statuses = dict(con.execute("SELECT transaction_id, status FROM course_payments"))
        indexes = {row[0] for row in con.execute("SELECT name FROM sqlite_master WHERE type='index'")}

    assert statuses == {"CP-1": "completed", "CP-2": "rejected"}
    assert {"idx_payment_modal_status", "idx_messages_reply_to", "idx_subscriptions_user"} <= indexes


def test_init_db_is_idempotent(tmp_path):
    target = tmp_path / "twice.db"

    db.init_db(db_path=target)
    db.init_db(db_path=target)

    assert db.ping(db_path=target) is True


def test_missing_table_is_recreated_on_access(tmp_path):
    target = tmp_path / "repair.db"
    db.init_db(db_path=target)
    with sqlite3.connect(target) as con:
        con.execute("DROP TABLE messages")

    def operation():
        with db.connect(db_path=target) as con:
            return con.execute("SELECT COUNT(*) FROM messages").fetchone()[0]

    assert db.run_with_schema_retry(operation, db_path=target) == 0


def test_timestamps_are_utc_iso_strings():
    parsed = db.parse_timestamp("2025-03-01T10:00:00Z")

    assert parsed.isoformat() == "2025-03-01T10:00:00+00:00"
    assert db.parse_timestamp("") is None
    assert db.utcnow().tzinfo is not None
    assert db.utcnow().microsecond == 0

"""Ensure the payment_modal table carries review status columns."""
from __future__ import annotations

import sqlite3

__all__ = ["ensure_payment_modal_status_columns"]


def ensure_payment_modal_status_columns(con: sqlite3.Connection) -> None:
    """Add ``status``, ``admin_comment`` and ``updated_at`` if they are missing."""

    cur = con.execute("PRAGMA table_info(payment_modal)")
    columns = {row[1] for row in cur.fetchall()}
    if "status" not in columns:
        con.execute("ALTER TABLE payment_modal ADD COLUMN status TEXT NOT NULL DEFAULT 'pending'")
    if "admin_comment" not in columns:
        con.execute("ALTER TABLE payment_modal ADD COLUMN admin_comment TEXT")
    if "updated_at" not in columns:
        con.execute("ALTER TABLE payment_modal ADD COLUMN updated_at TEXT")
    con.execute("CREATE INDEX IF NOT EXISTS idx_payment_modal_status ON payment_modal(status)")

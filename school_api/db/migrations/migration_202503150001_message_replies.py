"""Ensure the messages table can link admin replies to their originals."""
from __future__ import annotations

import sqlite3

__all__ = ["ensure_message_reply_columns"]


def ensure_message_reply_columns(con: sqlite3.Connection) -> None:
    cur = con.execute("PRAGMA table_info(messages)")
    columns = {row[1] for row in cur.fetchall()}
    if "time" not in columns:
        con.execute("ALTER TABLE messages ADD COLUMN time TEXT")
    if "has_reply" not in columns:
        con.execute("ALTER TABLE messages ADD COLUMN has_reply INTEGER NOT NULL DEFAULT 0")
    if "reply_to_message_id" not in columns:
        con.execute(
            "ALTER TABLE messages ADD COLUMN reply_to_message_id INTEGER "
            "REFERENCES messages(id) ON DELETE CASCADE"
        )
    con.execute(
        "CREATE INDEX IF NOT EXISTS idx_messages_reply_to ON messages(reply_to_message_id)"
    )

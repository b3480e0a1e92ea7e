"""Support chat storage.

A reply is an admin message whose ``reply_to_message_id`` points at the
message it answers; recording one flips ``has_reply`` on the original. When
a message has several replies only the newest is attached to it on read.
"""
from __future__ import annotations

import sqlite3
from typing import Any

from school_api.errors import NotFoundError, ValidationError
from school_api.utils import db
from school_api.utils.logging import get_logger

logger = get_logger("messages")

WELCOME_TEXT = (
    "Assalomu alaykum! Infinity-School web sitega xush kelibsiz! "
    "Sizga qanday yordam bera olaman?"
)

_SELECT_WITH_REPLY = """
SELECT
  m.id, m.text, m.user_id, m.is_admin, m.time, m.created_at, m.has_reply,
  m.reply_to_message_id,
  r.id AS reply_id, r.text AS reply_text, r.time AS reply_time,
  r.created_at AS reply_created_at
FROM messages m
LEFT JOIN messages r ON r.id = (
  SELECT r2.id FROM messages r2
  WHERE r2.reply_to_message_id = m.id AND r2.is_admin = 1
  ORDER BY r2.created_at DESC, r2.id DESC
  LIMIT 1
)
"""


def serialize_message(row: sqlite3.Row | dict[str, Any]) -> dict[str, Any]:
    record = dict(row) if not isinstance(row, dict) else row
    reply = None
    if record.get("reply_id") is not None:
        reply = {
            "id": record["reply_id"],
            "text": record["reply_text"],
            "time": record["reply_time"],
            "createdAt": record["reply_created_at"],
        }
    return {
        "id": record["id"],
        "text": record["text"],
        "userId": record["user_id"],
        "isAdmin": bool(record["is_admin"]),
        "time": record.get("time"),
        "createdAt": record["created_at"],
        "hasReply": bool(record.get("has_reply")),
        "replyToMessageId": record.get("reply_to_message_id"),
        "reply": reply,
    }


def _fetch(con: sqlite3.Connection, message_id: int) -> dict[str, Any]:
    row = con.execute(_SELECT_WITH_REPLY + " WHERE m.id = ?", (message_id,)).fetchone()
    return serialize_message(row)


def create_message(
    *,
    text: str,
    user_id: str,
    is_admin: bool = False,
    time: str | None = None,
) -> dict[str, Any]:
    if not text or not str(user_id or "").strip():
        raise ValidationError("text and userId are required")

    def _operation() -> dict[str, Any]:
        now = db.utcnow().isoformat()
        with db.connect() as con:
            cur = con.execute(
                """
                INSERT INTO messages (text, user_id, is_admin, time, has_reply, created_at, updated_at)
                VALUES (?, ?, ?, ?, 0, ?, ?)
                """,
                (text, str(user_id), int(bool(is_admin)), time or now, now, now),
            )
            return _fetch(con, cur.lastrowid)

    message = db.run_with_schema_retry(_operation)
    logger.info(
        "Stored message",
        extra={"message_id": message["id"], "user_id": message["userId"], "is_admin": message["isAdmin"]},
    )
    return message


def list_messages() -> list[dict[str, Any]]:
    def _operation() -> list[dict[str, Any]]:
        with db.connect() as con:
            rows = con.execute(
                _SELECT_WITH_REPLY + " ORDER BY m.created_at DESC, m.id DESC"
            ).fetchall()
        return [serialize_message(row) for row in rows]

    return db.run_with_schema_retry(_operation)


def welcome_message(user_id: str) -> dict[str, Any]:
    now = db.utcnow().isoformat()
    return {
        "id": 0,
        "text": WELCOME_TEXT,
        "userId": user_id,
        "isAdmin": True,
        "time": now,
        "createdAt": now,
        "hasReply": False,
        "replyToMessageId": None,
        "reply": None,
    }


def list_user_messages(user_id: str) -> list[dict[str, Any]]:
    """A user's thread oldest first, with admin replies to their messages."""

    if not str(user_id or "").strip():
        raise ValidationError("userId is required")

    def _operation() -> list[dict[str, Any]]:
        with db.connect() as con:
            rows = con.execute(
                _SELECT_WITH_REPLY
                + """
                WHERE m.user_id = ?
                   OR (m.is_admin = 1 AND m.reply_to_message_id IN (
                        SELECT id FROM messages WHERE user_id = ?
                   ))
                ORDER BY m.created_at ASC, m.id ASC
                """,
                (str(user_id), str(user_id)),
            ).fetchall()
        return [serialize_message(row) for row in rows]

    messages = db.run_with_schema_retry(_operation)
    if not messages:
        return [welcome_message(str(user_id))]
    return messages


def list_message_users() -> list[dict[str, Any]]:
    def _operation() -> list[dict[str, Any]]:
        with db.connect() as con:
            rows = con.execute(
                """
                SELECT
                  user_id,
                  COUNT(*) AS total_messages,
                  SUM(CASE WHEN has_reply = 0 THEN 1 ELSE 0 END) AS unanswered_messages,
                  MAX(created_at) AS last_message_at
                FROM messages
                WHERE is_admin = 0
                GROUP BY user_id
                ORDER BY last_message_at DESC
                """
            ).fetchall()
        return [
            {
                "userId": row["user_id"],
                "totalMessages": row["total_messages"],
                "unansweredMessages": row["unanswered_messages"] or 0,
                "lastMessageAt": row["last_message_at"],
            }
            for row in rows
        ]

    return db.run_with_schema_retry(_operation)


def reply_to_message(*, text: str, user_id: str, message_id: int) -> dict[str, Any]:
    """Record an admin reply and flag the original, atomically."""

    if not text or not str(user_id or "").strip() or not message_id:
        raise ValidationError("text, userId and messageId are required")

    def _operation() -> dict[str, Any]:
        now = db.utcnow().isoformat()
        with db.transaction() as con:
            if con.execute("SELECT id FROM messages WHERE id = ?", (message_id,)).fetchone() is None:
                raise NotFoundError("Original message not found")
            cur = con.execute(
                """
                INSERT INTO messages (
                  text, user_id, is_admin, time, has_reply, reply_to_message_id, created_at, updated_at
                ) VALUES (?, ?, 1, ?, 0, ?, ?, ?)
                """,
                (text, str(user_id), now, message_id, now, now),
            )
            reply_id = cur.lastrowid
            con.execute(
                "UPDATE messages SET has_reply = 1, updated_at = ? WHERE id = ?",
                (now, message_id),
            )
            return {"original": _fetch(con, message_id), "reply": _fetch(con, reply_id)}

    result = db.run_with_schema_retry(_operation)
    logger.info(
        "Stored admin reply",
        extra={"message_id": message_id, "reply_id": result["reply"]["id"]},
    )
    return result


def delete_message(message_id: int) -> int:
    """Delete a message and its direct replies; returns the number of rows removed."""

    def _operation() -> int:
        with db.transaction() as con:
            replies = con.execute(
                "DELETE FROM messages WHERE reply_to_message_id = ?", (message_id,)
            ).rowcount
            original = con.execute("DELETE FROM messages WHERE id = ?", (message_id,)).rowcount
            if original == 0:
                raise NotFoundError("Message not found")
        return replies + original

    deleted = db.run_with_schema_retry(_operation)
    logger.info("Deleted message", extra={"message_id": message_id, "deleted": deleted})
    return deleted


__all__ = [
    "WELCOME_TEXT",
    "serialize_message",
    "create_message",
    "list_messages",
    "welcome_message",
    "list_user_messages",
    "list_message_users",
    "reply_to_message",
    "delete_message",
]

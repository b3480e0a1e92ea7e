"""Storage for the three checkout tables.

``payments``, ``course_payments`` and ``payment_modal`` describe the same
thing with different columns. Each one is a :class:`PaymentVariant`; the
generic helpers below take a variant and never hard-code a table name, and
status values pass through the variant's :class:`StatusPolicy` on the way
in and out.
"""
from __future__ import annotations

import json
import re
import sqlite3
import time
import uuid
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Callable

from school_api.errors import NotFoundError, ValidationError
from school_api.utils import db
from school_api.utils.logging import get_logger
from school_api.utils.statuses import COURSE_PAYMENTS, PAYMENT_MODAL, PAYMENTS, StatusPolicy

logger = get_logger("payments")

_TRANSACTION_ID_ATTEMPTS = 3


@dataclass(frozen=True)
class PaymentVariant:
    name: str
    table: str
    policy: StatusPolicy
    receipt_path_column: str | None
    hidden_columns: tuple[str, ...] = ()


PAYMENTS_VARIANT = PaymentVariant(
    name="payments",
    table="payments",
    policy=PAYMENTS,
    receipt_path_column="receipt_image_path",
    hidden_columns=("receipt_image_path",),
)

COURSE_PAYMENTS_VARIANT = PaymentVariant(
    name="course_payments",
    table="course_payments",
    policy=COURSE_PAYMENTS,
    receipt_path_column="receipt_filepath",
    hidden_columns=("receipt_filepath",),
)

PAYMENT_MODAL_VARIANT = PaymentVariant(
    name="payment_modal",
    table="payment_modal",
    policy=PAYMENT_MODAL,
    receipt_path_column=None,
)


def modal_transaction_id() -> str:
    return f"TX-{uuid.uuid4().hex[:8].upper()}"


def course_transaction_id() -> str:
    millis = str(int(time.time() * 1000))
    return f"CP-{uuid.uuid4().hex[:8]}-{millis[8:]}"


def parse_amount(value: Any) -> float:
    """Parse prices such as ``"450,000 so'm"`` into a number; junk counts as zero."""

    if value is None:
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    cleaned = re.sub(r"[^0-9.]", "", str(value))
    try:
        return float(cleaned) if cleaned else 0.0
    except ValueError:
        return 0.0


def to_external(variant: PaymentVariant, row: dict[str, Any] | None) -> dict[str, Any] | None:
    if row is None:
        return None
    record = {key: value for key, value in row.items() if key not in variant.hidden_columns}
    record["status"] = variant.policy.to_external(record.get("status"))
    return record


# === Writes ===
def insert_payment(
    variant: PaymentVariant,
    fields: dict[str, Any],
    *,
    transaction_id_factory: Callable[[], str] | None = None,
) -> dict[str, Any]:
    """Insert a checkout row with the variant's initial status.

    When ``transaction_id_factory`` is given a fresh id is drawn on each
    attempt, so a collision on the unique index is retried instead of
    surfacing to the client. Client-supplied ids are never retried.
    """

    attempts = _TRANSACTION_ID_ATTEMPTS if transaction_id_factory else 1

    def _operation(values: dict[str, Any]) -> dict[str, Any]:
        columns = ", ".join(values)
        placeholders = ", ".join("?" for _ in values)
        with db.connect() as con:
            cur = con.execute(
                f"INSERT INTO {variant.table} ({columns}) VALUES ({placeholders})",
                tuple(values.values()),
            )
            row = con.execute(
                f"SELECT * FROM {variant.table} WHERE id = ?", (cur.lastrowid,)
            ).fetchone()
        return db.row_to_dict(row)

    now = db.utcnow().isoformat()
    attempt = 0
    while True:
        attempt += 1
        values = dict(fields)
        if transaction_id_factory:
            values["transaction_id"] = transaction_id_factory()
        if not values.get("transaction_id"):
            raise ValidationError("transactionId is required")
        values["status"] = variant.policy.to_internal(variant.policy.initial)
        values.setdefault("created_at", now)
        values.setdefault("updated_at", now)
        try:
            row = db.run_with_schema_retry(lambda: _operation(values))
        except sqlite3.IntegrityError as exc:
            if "transaction_id" not in str(exc):
                logger.warning(
                    "Rejected payment violating a table constraint",
                    extra={"variant": variant.name, "error": str(exc)},
                )
                raise ValidationError("Payment data violates a constraint", detail=str(exc)) from exc
            if attempt < attempts:
                logger.warning(
                    "Generated transaction id collided; retrying",
                    extra={"variant": variant.name, "attempt": attempt},
                )
                continue
            logger.warning(
                "Duplicate transaction id",
                extra={"variant": variant.name, "transaction_id": values["transaction_id"]},
            )
            raise ValidationError("A payment with this transaction id already exists") from exc

        logger.info(
            "Created payment",
            extra={
                "variant": variant.name,
                "payment_id": row["id"],
                "transaction_id": row["transaction_id"],
            },
        )
        return row


def update_status(
    variant: PaymentVariant,
    *,
    key_column: str,
    key: Any,
    status: str | None,
    admin_comment: str | None = None,
) -> dict[str, Any]:
    """Move a payment to ``status`` and return the externally mapped row.

    An unknown status is rejected before the row is touched. The existence
    check and the update share one transaction.
    """

    if key_column not in {"id", "transaction_id"}:
        raise ValueError(f"Unsupported lookup column: {key_column}")
    stored = variant.policy.coerce(status)

    def _operation() -> dict[str, Any] | None:
        now = db.utcnow().isoformat()
        with db.transaction() as con:
            existing = con.execute(
                f"SELECT id FROM {variant.table} WHERE {key_column} = ?", (key,)
            ).fetchone()
            if existing is None:
                return None
            if variant is PAYMENT_MODAL_VARIANT:
                con.execute(
                    "UPDATE payment_modal SET status = ?, admin_comment = ?, updated_at = ? WHERE id = ?",
                    (stored, admin_comment or None, now, existing["id"]),
                )
            else:
                con.execute(
                    f"UPDATE {variant.table} SET status = ?, updated_at = ? WHERE id = ?",
                    (stored, now, existing["id"]),
                )
            row = con.execute(
                f"SELECT * FROM {variant.table} WHERE id = ?", (existing["id"],)
            ).fetchone()
        return db.row_to_dict(row)

    row = db.run_with_schema_retry(_operation)
    if row is None:
        logger.warning(
            "Status update for unknown payment",
            extra={"variant": variant.name, key_column: key},
        )
        raise NotFoundError("Payment not found")
    logger.info(
        "Updated payment status",
        extra={"variant": variant.name, "payment_id": row["id"], "status": stored},
    )
    return to_external(variant, row)


def delete_payment(variant: PaymentVariant, payment_id: int) -> dict[str, Any]:
    """Delete a row and return it; the caller removes the receipt after commit."""

    def _operation() -> dict[str, Any] | None:
        with db.transaction() as con:
            row = con.execute(
                f"SELECT * FROM {variant.table} WHERE id = ?", (payment_id,)
            ).fetchone()
            if row is None:
                return None
            con.execute(f"DELETE FROM {variant.table} WHERE id = ?", (payment_id,))
        return db.row_to_dict(row)

    row = db.run_with_schema_retry(_operation)
    if row is None:
        raise NotFoundError("Payment not found")
    logger.info("Deleted payment", extra={"variant": variant.name, "payment_id": payment_id})
    return row


# === Reads ===
def get_payment(variant: PaymentVariant, *, key_column: str, key: Any) -> dict[str, Any]:
    if key_column not in {"id", "transaction_id", "file_name"}:
        raise ValueError(f"Unsupported lookup column: {key_column}")

    def _operation() -> dict[str, Any] | None:
        with db.connect() as con:
            row = con.execute(
                f"SELECT * FROM {variant.table} WHERE {key_column} = ?", (key,)
            ).fetchone()
        return db.row_to_dict(row)

    row = db.run_with_schema_retry(_operation)
    if row is None:
        raise NotFoundError("Payment not found")
    return row


def list_payments(
    variant: PaymentVariant,
    *,
    where: str = "",
    params: tuple[Any, ...] = (),
    order_by: str = "created_at DESC, id DESC",
    limit: int | None = None,
    offset: int = 0,
) -> tuple[list[dict[str, Any]], int]:
    """Return ``(rows, total)`` where ``total`` ignores ``limit``/``offset``.

    ``where`` and ``order_by`` are trusted SQL fragments built by callers from
    fixed column names; user values only ever travel through ``params``.
    """

    where_clause = f"WHERE {where}" if where else ""

    def _operation() -> tuple[list[dict[str, Any]], int]:
        with db.connect() as con:
            total = con.execute(
                f"SELECT COUNT(*) FROM {variant.table} {where_clause}", params
            ).fetchone()[0]
            query = f"SELECT * FROM {variant.table} {where_clause} ORDER BY {order_by}"
            query_params: tuple[Any, ...] = params
            if limit is not None:
                query += " LIMIT ? OFFSET ?"
                query_params = params + (limit, offset)
            rows = con.execute(query, query_params).fetchall()
        return [db.row_to_dict(row) for row in rows], int(total)

    return db.run_with_schema_retry(_operation)


def _fetch_all(query: str, params: tuple[Any, ...] = ()) -> list[dict[str, Any]]:
    def _operation() -> list[dict[str, Any]]:
        with db.connect() as con:
            rows = con.execute(query, params).fetchall()
        return [db.row_to_dict(row) for row in rows]

    return db.run_with_schema_retry(_operation)


def _cutoff(days: int) -> str:
    return (db.utcnow() - timedelta(days=days)).isoformat()


# === Statistics ===
def payments_stats() -> dict[str, Any]:
    rows, _ = list_payments(PAYMENTS_VARIANT)
    general = {
        "total_payments": len(rows),
        "successful_payments": sum(1 for row in rows if row["status"] == "success"),
        "pending_payments": sum(1 for row in rows if row["status"] == "pending"),
        "failed_payments": sum(1 for row in rows if row["status"] == "failed"),
        "total_amount": sum(
            parse_amount(row["plan_price"]) for row in rows if row["status"] == "success"
        ),
        "last_payment_date": max((row["created_at"] for row in rows), default=None),
        "unique_users": len({row["phone_number"] for row in rows}),
    }

    week_ago = _cutoff(7)
    recent = [row for row in rows if row["created_at"] >= week_ago]
    daily: dict[str, dict[str, Any]] = {}
    for row in recent:
        day = row["created_at"][:10]
        bucket = daily.setdefault(day, {"date": day, "payment_count": 0, "daily_amount": 0.0})
        bucket["payment_count"] += 1
        if row["status"] == "success":
            bucket["daily_amount"] += parse_amount(row["plan_price"])
    weekly = sorted(daily.values(), key=lambda item: item["date"], reverse=True)

    plans = _fetch_all(
        """
        SELECT plan_name, COUNT(*) AS count,
               SUM(CASE WHEN status = 'success' THEN 1 ELSE 0 END) AS successful_count
        FROM payments
        GROUP BY plan_name
        ORDER BY count DESC
        """
    )
    return {"general": general, "weekly": weekly, "plans": plans}


def course_payments_stats() -> dict[str, Any]:
    general = _fetch_all(
        """
        SELECT COUNT(*) AS total_payments,
               SUM(CASE WHEN status IN ('completed', 'success') THEN 1 ELSE 0 END) AS successful_payments,
               SUM(CASE WHEN status = 'pending' THEN 1 ELSE 0 END) AS pending_payments,
               SUM(CASE WHEN status IN ('rejected', 'failed') THEN 1 ELSE 0 END) AS failed_payments,
               COUNT(DISTINCT phone_number) AS unique_users
        FROM course_payments
        """
    )[0]
    general = {key: value or 0 for key, value in general.items()}
    plans = _fetch_all(
        """
        SELECT plan_name, COUNT(*) AS count,
               SUM(CASE WHEN status IN ('completed', 'success') THEN 1 ELSE 0 END) AS successful_count
        FROM course_payments
        GROUP BY plan_name
        ORDER BY count DESC
        """
    )
    time_slots = _fetch_all(
        "SELECT course_time_slot, COUNT(*) AS count FROM course_payments "
        "GROUP BY course_time_slot ORDER BY count DESC"
    )
    course_days = _fetch_all(
        "SELECT course_days, COUNT(*) AS count FROM course_payments "
        "GROUP BY course_days ORDER BY count DESC"
    )
    return {"general": general, "plans": plans, "timeSlots": time_slots, "courseDays": course_days}


def payment_modal_statistics() -> dict[str, Any]:
    totals = _fetch_all(
        "SELECT COUNT(*) AS count, COALESCE(SUM(final_amount), 0) AS amount FROM payment_modal"
    )[0]
    today = _fetch_all(
        "SELECT COUNT(*) AS count, COALESCE(SUM(final_amount), 0) AS amount FROM payment_modal "
        "WHERE substr(created_at, 1, 10) = ?",
        (db.utcnow().date().isoformat(),),
    )[0]
    subscription_types = _fetch_all(
        "SELECT subscription_type AS type, COUNT(*) AS count FROM payment_modal "
        "GROUP BY subscription_type"
    )
    monthly = _fetch_all(
        """
        SELECT substr(created_at, 1, 7) AS month, COUNT(*) AS count,
               COALESCE(SUM(final_amount), 0) AS total
        FROM payment_modal
        WHERE created_at > ?
        GROUP BY month
        ORDER BY month DESC
        """,
        (_cutoff(183),),
    )
    return {
        "totalPayments": totals["count"],
        "totalAmount": float(totals["amount"]),
        "today": {"count": today["count"], "amount": float(today["amount"])},
        "subscriptionTypes": subscription_types,
        "monthlyStats": [
            {"month": row["month"], "count": row["count"], "total": float(row["total"])}
            for row in monthly
        ],
    }


def payment_modal_status_counts() -> dict[str, dict[str, float]]:
    counts: dict[str, dict[str, float]] = {
        value: {"count": 0, "amount": 0.0} for value in PAYMENT_MODAL.external_values()
    }
    rows = _fetch_all(
        "SELECT status, COUNT(*) AS count, COALESCE(SUM(final_amount), 0) AS total_amount "
        "FROM payment_modal GROUP BY status"
    )
    for row in rows:
        counts[row["status"]] = {"count": row["count"], "amount": float(row["total_amount"])}
    return counts


# === payment_modal search ===
MODAL_SORT_COLUMNS = (
    "created_at",
    "updated_at",
    "final_amount",
    "base_amount",
    "transaction_id",
    "email",
    "status",
    "subscription_type",
)


def _date_bound(value: str, *, upper: bool) -> tuple[str, str]:
    """Return ``(operator, iso_value)`` for a ``startDate``/``endDate`` filter."""

    text = value.strip()
    try:
        if len(text) == 10:
            day = date.fromisoformat(text)
            if upper:
                return "<", (day + timedelta(days=1)).isoformat()
            return ">=", day.isoformat()
        parsed = db.parse_timestamp(text)
    except ValueError as exc:
        raise ValidationError("Invalid date filter", detail={"value": value}) from exc
    return ("<=" if upper else ">="), parsed.isoformat()


def modal_filters(
    *,
    search: str = "",
    start_date: str = "",
    end_date: str = "",
) -> tuple[str, tuple[Any, ...]]:
    conditions: list[str] = []
    params: list[Any] = []
    if search:
        conditions.append(
            "(transaction_id LIKE ? COLLATE NOCASE OR email LIKE ? COLLATE NOCASE "
            "OR phone LIKE ? COLLATE NOCASE)"
        )
        pattern = f"%{search}%"
        params.extend([pattern, pattern, pattern])
    if start_date:
        operator, bound = _date_bound(start_date, upper=False)
        conditions.append(f"created_at {operator} ?")
        params.append(bound)
    if end_date:
        operator, bound = _date_bound(end_date, upper=True)
        conditions.append(f"created_at {operator} ?")
        params.append(bound)
    return " AND ".join(conditions), tuple(params)


def modal_order_by(sort_by: str | None, sort_order: str | None) -> tuple[str, str, str]:
    column = sort_by if sort_by in MODAL_SORT_COLUMNS else "created_at"
    direction = "ASC" if (sort_order or "").lower() == "asc" else "DESC"
    return f"{column} {direction}, id {direction}", column, direction


def decode_courses(raw: Any) -> Any:
    if isinstance(raw, str):
        try:
            return json.loads(raw)
        except ValueError:
            return raw
    return raw


__all__ = [
    "PaymentVariant",
    "PAYMENTS_VARIANT",
    "COURSE_PAYMENTS_VARIANT",
    "PAYMENT_MODAL_VARIANT",
    "modal_transaction_id",
    "course_transaction_id",
    "parse_amount",
    "to_external",
    "insert_payment",
    "update_status",
    "delete_payment",
    "get_payment",
    "list_payments",
    "payments_stats",
    "course_payments_stats",
    "payment_modal_statistics",
    "payment_modal_status_counts",
    "MODAL_SORT_COLUMNS",
    "modal_filters",
    "modal_order_by",
    "decode_courses",
]

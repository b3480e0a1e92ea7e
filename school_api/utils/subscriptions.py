from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

from school_api import config
from school_api.errors import NotFoundError, ValidationError
from school_api.utils import db
from school_api.utils.logging import get_logger

logger = get_logger("subscriptions")


def create_subscription(
    *,
    user_id: int,
    payment_id: int,
    plan_name: str,
    plan_price: str,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Create a subscription, rolling over from the user's current one.

    A still-running active subscription hands its ``end_date`` over as the new
    ``start_date`` and becomes ``inactive``. The whole sequence runs under one
    write lock, so two renewals for the same user cannot both read the same
    predecessor.
    """

    if not plan_name or plan_price in (None, ""):
        raise ValidationError("planName and planPrice are required")
    current_time = db.ensure_utc(now) if now else db.utcnow()
    period = timedelta(days=config.SUBSCRIPTION_PERIOD_DAYS)

    def _operation() -> dict[str, Any]:
        stamp = current_time.isoformat()
        with db.transaction() as con:
            if con.execute("SELECT id FROM payments WHERE id = ?", (payment_id,)).fetchone() is None:
                raise NotFoundError("Payment not found")

            current = con.execute(
                """
                SELECT id, end_date FROM subscriptions
                WHERE user_id = ? AND status = 'active'
                ORDER BY end_date DESC, id DESC
                LIMIT 1
                """,
                (user_id,),
            ).fetchone()

            start = current_time
            if current is not None:
                current_end = db.parse_timestamp(current["end_date"])
                if current_end > current_time:
                    start = current_end
                    con.execute(
                        "UPDATE subscriptions SET status = 'inactive', updated_at = ? WHERE id = ?",
                        (stamp, current["id"]),
                    )
                else:
                    con.execute(
                        "UPDATE subscriptions SET status = 'expired', updated_at = ? WHERE id = ?",
                        (stamp, current["id"]),
                    )

            end = start + period
            cur = con.execute(
                """
                INSERT INTO subscriptions (
                  user_id, payment_id, start_date, end_date, status,
                  plan_name, plan_price, created_at, updated_at
                ) VALUES (?, ?, ?, ?, 'active', ?, ?, ?, ?)
                """,
                (
                    user_id,
                    payment_id,
                    start.isoformat(),
                    end.isoformat(),
                    plan_name,
                    str(plan_price),
                    stamp,
                    stamp,
                ),
            )
            row = con.execute("SELECT * FROM subscriptions WHERE id = ?", (cur.lastrowid,)).fetchone()
            return {
                "subscription": db.row_to_dict(row),
                "previous_id": current["id"] if current is not None else None,
                "rolled_over": start != current_time,
            }

    result = db.run_with_schema_retry(_operation)
    subscription = result["subscription"]
    logger.info(
        "Created subscription",
        extra={
            "user_id": user_id,
            "subscription_id": subscription["id"],
            "payment_id": payment_id,
            "rolled_over": result["rolled_over"],
            "previous_id": result["previous_id"],
        },
    )
    return subscription


def get_status(user_id: int, *, now: datetime | None = None) -> dict[str, Any] | None:
    """Return the newest active subscription, expiring it first if it has lapsed."""

    current_time = db.ensure_utc(now) if now else db.utcnow()

    def _operation() -> dict[str, Any] | None:
        with db.transaction() as con:
            row = con.execute(
                """
                SELECT s.*, p.transaction_id, p.full_name, p.phone_number
                FROM subscriptions s
                JOIN payments p ON s.payment_id = p.id
                WHERE s.user_id = ? AND s.status = 'active'
                ORDER BY s.created_at DESC, s.id DESC
                LIMIT 1
                """,
                (user_id,),
            ).fetchone()
            if row is None:
                return None
            subscription = db.row_to_dict(row)
            is_active = current_time < db.parse_timestamp(subscription["end_date"])
            if not is_active:
                con.execute(
                    "UPDATE subscriptions SET status = 'expired', updated_at = ? WHERE id = ?",
                    (current_time.isoformat(), subscription["id"]),
                )
                subscription["status"] = "expired"
                logger.info(
                    "Expired subscription on read",
                    extra={"user_id": user_id, "subscription_id": subscription["id"]},
                )
        subscription["isActive"] = is_active
        subscription["startDate"] = subscription["start_date"]
        subscription["endDate"] = subscription["end_date"]
        return subscription

    return db.run_with_schema_retry(_operation)


__all__ = ["create_subscription", "get_status"]

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import jwt
import pytest

from school_api.errors import NotFoundError
from school_api.utils import payments, subscriptions
from school_api.utils.auth import issue_token


@pytest.fixture
def payment_id(configured_env):
    row = payments.insert_payment(
        payments.PAYMENTS_VARIANT,
        {
            "transaction_id": "SUB-PAY-1",
            "full_name": "Ali Valiyev",
            "telegram_username": "@ali",
            "phone_number": "+998901234567",
            "card_number": "8600",
            "card_owner": "ALI",
            "plan_name": "Standard",
            "plan_price": "450000",
            "payment_date": "2025-03-01",
        },
    )
    return row["id"]


def _create(payment_id, now, user_id=7):
    return subscriptions.create_subscription(
        user_id=user_id,
        payment_id=payment_id,
        plan_name="Standard",
        plan_price="450000",
        now=now,
    )


def test_first_subscription_runs_thirty_days(payment_id):
    now = datetime(2025, 3, 1, 12, 0, tzinfo=UTC)

    subscription = _create(payment_id, now)

    assert subscription["status"] == "active"
    assert subscription["start_date"] == now.isoformat()
    assert subscription["end_date"] == (now + timedelta(days=30)).isoformat()


def test_renewal_rolls_over_from_running_subscription(payment_id, db_module):
    now = datetime(2025, 3, 1, 12, 0, tzinfo=UTC)
    first = _create(payment_id, now)

    second = _create(payment_id, now + timedelta(days=10))

    assert second["start_date"] == first["end_date"]
    assert second["end_date"] == (now + timedelta(days=60)).isoformat()
    with db_module.connect() as con:
        previous = con.execute("SELECT status FROM subscriptions WHERE id = ?", (first["id"],)).fetchone()
    assert previous["status"] == "inactive"

    status = subscriptions.get_status(7, now=now + timedelta(days=11))
    assert status["id"] == second["id"]
    assert status["isActive"] is True
    assert status["transaction_id"] == "SUB-PAY-1"


def test_renewal_after_lapse_starts_now(payment_id, db_module):
    now = datetime(2025, 3, 1, 12, 0, tzinfo=UTC)
    first = _create(payment_id, now)
    later = now + timedelta(days=45)

    second = _create(payment_id, later)

    assert second["start_date"] == later.isoformat()
    with db_module.connect() as con:
        previous = con.execute("SELECT status FROM subscriptions WHERE id = ?", (first["id"],)).fetchone()
    assert previous["status"] == "expired"


def test_status_expires_lapsed_subscription_on_read(payment_id, db_module):
    start = datetime.now(UTC) - timedelta(days=40)
    subscription = _create(payment_id, start)

    status = subscriptions.get_status(7)

    assert status["isActive"] is False
    assert status["status"] == "expired"
    with db_module.connect() as con:
        stored = con.execute(
            "SELECT status FROM subscriptions WHERE id = ?", (subscription["id"],)
        ).fetchone()
    assert stored["status"] == "expired"
    assert subscriptions.get_status(7) is None


def test_unknown_payment_is_rejected(configured_env):
    with pytest.raises(NotFoundError):
        _create(999, datetime(2025, 3, 1, tzinfo=UTC))


def test_routes_require_a_valid_token(client):
    assert client.get("/api/subscriptions/status").status_code == 401

    forged = jwt.encode({"userId": 7}, "wrong-secret", algorithm="HS256")
    response = client.get(
        "/api/subscriptions/status", headers={"Authorization": f"Bearer {forged}"}
    )
    assert response.status_code == 401
    assert response.json()["message"] == "Invalid token"


def test_routes_create_and_report_for_token_user(client, payment_id):
    headers = {"Authorization": f"Bearer {issue_token(7)}"}

    empty = client.get("/api/subscriptions/status", headers=headers)
    assert empty.json() == {"success": True, "subscription": None}

    created = client.post(
        "/api/subscriptions/create",
        json={"paymentId": payment_id, "planName": "Standard", "planPrice": 450000},
        headers=headers,
    )
    assert created.status_code == 201
    assert created.json()["subscription"]["user_id"] == 7

    status = client.get("/api/subscriptions/status", headers=headers).json()["subscription"]
    assert status["isActive"] is True
    assert status["endDate"] == created.json()["subscription"]["end_date"]

    missing = client.post(
        "/api/subscriptions/create",
        json={"paymentId": 999, "planName": "Standard", "planPrice": "1"},
        headers=headers,
    )
    assert missing.status_code == 404

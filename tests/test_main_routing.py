from __future__ import annotations

import pytest

from school_api.errors import StorageError


def test_root_reports_database_health(client):
    response = client.get("/")

    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "message": "School payments API is running.",
        "database": "ok",
    }
    assert client.get("/healthz").json() == {"ok": True}


def test_root_surfaces_storage_failure(client, monkeypatch, db_module):
    def broken_ping(**_kwargs):
        raise StorageError("Database operation failed", detail="disk I/O error")

    monkeypatch.setattr(db_module, "ping", broken_ping)

    response = client.get("/")

    assert response.status_code == 500
    assert response.json() == {
        "success": False,
        "error": True,
        "message": "Database operation failed",
        "detail": "disk I/O error",
    }


def test_unknown_route_uses_error_shape(client):
    response = client.get("/api/unknown")

    assert response.status_code == 404
    assert response.json() == {"success": False, "error": True, "message": "Not Found"}


def test_request_validation_is_a_bad_request(client):
    response = client.post("/api/users", json={})

    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["message"] == "Invalid request data"
    assert any(error["loc"][-1] == "email" for error in body["detail"])


@pytest.mark.parametrize(
    "path",
    ["/api/payments/all", "/api/payment-page/all", "/api/payment-modal/all", "/api/messages"],
)
def test_routers_are_mounted(client, path):
    assert client.get(path).status_code == 200


def test_cors_preflight(client):
    response = client.options(
        "/api/payments/all",
        headers={
            "Origin": "http://localhost:5173",
            "Access-Control-Request-Method": "GET",
        },
    )

    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == "http://localhost:5173"
    assert response.headers["access-control-allow-credentials"] == "true"


@pytest.mark.parametrize(
    "path, method, code, model",
    [
        ("/api/payments/with-receipt", "post", "201", "PaymentResponse"),
        ("/api/payments/status/{payment_id}", "put", "200", "PaymentResponse"),
        ("/api/payment-page/create", "post", "201", "CoursePaymentCreateResponse"),
        ("/api/payment-page/status/{payment_id}", "put", "200", "CoursePaymentResponse"),
        ("/api/payment-modal/create", "post", "201", "ModalCreateResponse"),
        ("/api/payment-modal/status/{transaction_id}", "put", "200", "ModalPaymentResponse"),
        ("/api/users/login", "post", "200", "LoginResponse"),
        ("/api/auth/register", "post", "201", "AuthResponse"),
        ("/api/messages", "post", "201", "MessageResponse"),
        ("/api/subscriptions/create", "post", "201", "SubscriptionResponse"),
    ],
)
def test_write_routes_publish_response_models(client, path, method, code, model):
    operation = client.get("/openapi.json").json()["paths"][path][method]

    schema = operation["responses"][code]["content"]["application/json"]["schema"]
    assert schema["$ref"] == f"#/components/schemas/{model}"

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, File, Form, UploadFile, status
from fastapi.responses import FileResponse
from pydantic import BaseModel, ConfigDict, Field
from starlette.concurrency import run_in_threadpool

from school_api.endpoints.forms import parse_json_field, require_fields, text_field
from school_api.errors import ValidationError
from school_api.utils import db, payments
from school_api.utils.logging import get_logger
from school_api.utils.storage import get_storage

router = APIRouter(prefix="/api/payments", tags=["payments"])
logger = get_logger("endpoints.payments")

VARIANT = payments.PAYMENTS_VARIANT

# Request key -> column.
TEXT_FIELDS = {
    "transactionId": "transaction_id",
    "fullName": "full_name",
    "telegramUsername": "telegram_username",
    "phoneNumber": "phone_number",
    "cardNumber": "card_number",
    "cardOwner": "card_owner",
    "planName": "plan_name",
    "planPrice": "plan_price",
}
REQUIRED_FIELDS = tuple(TEXT_FIELDS)


class StatusUpdateRequest(BaseModel):
    status: str | None = None


class ConfirmRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str | None = None
    telegram_username: str | None = Field(None, alias="telegramUsername")
    status: str = "completed"


class PaymentDetailResponse(BaseModel):
    success: bool = True
    payment: dict[str, Any]


class PaymentResponse(PaymentDetailResponse):
    message: str


class DeleteResponse(BaseModel):
    success: bool = True
    message: str


def _serialize(row: dict[str, Any]) -> dict[str, Any]:
    payment = payments.to_external(VARIANT, row)
    filename = row.get("receipt_image_filename")
    payment["receipt_image_url"] = f"/api/payments/receipt/{filename}" if filename else None
    return payment


def _build_fields(data: dict[str, Any]) -> dict[str, Any]:
    fields = {column: text_field(data, key) for key, column in TEXT_FIELDS.items()}
    fields["payment_date"] = text_field(data, "paymentDate", default=db.utcnow().isoformat())
    return fields


@router.post("/with-receipt", status_code=status.HTTP_201_CREATED, response_model=PaymentResponse)
async def create_payment_with_receipt(
    receipt: UploadFile | None = File(None),
    payment_data: str | None = Form(None, alias="paymentData"),
) -> PaymentResponse:
    if receipt is None:
        raise ValidationError("Receipt image is required")
    data = parse_json_field(payment_data)
    require_fields(data, REQUIRED_FIELDS)
    fields = _build_fields(data)

    storage = get_storage(VARIANT.name)
    stored = await storage.save(receipt)
    fields.update(
        receipt_image_path=str(stored.path),
        receipt_image_filename=stored.filename,
    )
    try:
        row = await run_in_threadpool(payments.insert_payment, VARIANT, fields)
    except Exception:
        await run_in_threadpool(storage.discard, stored.path)
        raise

    return PaymentResponse(message="Payment created", payment=_serialize(row))


@router.get("/receipt/{filename}")
def get_receipt(filename: str) -> FileResponse:
    path = get_storage(VARIANT.name).resolve(filename)
    return FileResponse(
        path,
        filename=filename,
        content_disposition_type="inline",
        headers={"Cache-Control": "public, max-age=31536000"},
    )


@router.get("/all")
def list_payments() -> dict[str, Any]:
    rows, total = payments.list_payments(VARIANT)
    return {"success": True, "count": total, "payments": [_serialize(row) for row in rows]}


@router.get("/user/{phone_number}")
def list_user_payments(phone_number: str) -> dict[str, Any]:
    rows, total = payments.list_payments(VARIANT, where="phone_number = ?", params=(phone_number,))
    return {"success": True, "count": total, "payments": [_serialize(row) for row in rows]}


@router.get("/transaction/{transaction_id}", response_model=PaymentDetailResponse)
def get_payment(transaction_id: str) -> PaymentDetailResponse:
    row = payments.get_payment(VARIANT, key_column="transaction_id", key=transaction_id)
    return PaymentDetailResponse(payment=_serialize(row))


@router.get("/recent")
def recent_payments() -> dict[str, Any]:
    rows, _ = payments.list_payments(VARIANT, limit=5)
    return {"success": True, "payments": [_serialize(row) for row in rows]}


@router.get("/stats")
def payment_stats() -> dict[str, Any]:
    return {"success": True, **payments.payments_stats()}


@router.put("/status/{payment_id}", response_model=PaymentResponse)
def update_payment_status(payment_id: int, request: StatusUpdateRequest) -> PaymentResponse:
    payment = payments.update_status(
        VARIANT, key_column="id", key=payment_id, status=request.status
    )
    return PaymentResponse(
        message=f"Payment status updated: {payment['status']}",
        payment=_serialize(payment),
    )


@router.post("/confirm/{payment_id}", response_model=PaymentResponse)
def confirm_payment(payment_id: int, request: ConfirmRequest) -> PaymentResponse:
    if not (request.message or "").strip():
        raise ValidationError("Confirmation message is required")
    payment = payments.update_status(
        VARIANT, key_column="id", key=payment_id, status=request.status
    )
    logger.info(
        "Payment confirmation recorded",
        extra={
            "payment_id": payment_id,
            "status": payment["status"],
            "telegram_username": request.telegram_username,
        },
    )
    return PaymentResponse(message="Confirmation sent", payment=_serialize(payment))


@router.delete("/{payment_id}", response_model=DeleteResponse)
def delete_payment(payment_id: int) -> DeleteResponse:
    row = payments.delete_payment(VARIANT, payment_id)
    get_storage(VARIANT.name).discard(row.get("receipt_image_path"))
    return DeleteResponse(message="Payment deleted")


__all__ = ["router"]

from __future__ import annotations

import csv
import io
import json
from typing import Any

from fastapi import APIRouter, File, Form, UploadFile, status
from fastapi.responses import FileResponse, Response
from pydantic import BaseModel, ConfigDict, Field
from starlette.concurrency import run_in_threadpool

from school_api.endpoints.forms import (
    amount_field,
    page_window,
    pagination,
    parse_json_field,
    require_fields,
    text_field,
)
from school_api.errors import ValidationError
from school_api.utils import db, payments
from school_api.utils.logging import get_logger
from school_api.utils.storage import RECEIPT_DIRECTORIES, get_storage

router = APIRouter(prefix="/api/payment-modal", tags=["payment-modal"])
logger = get_logger("endpoints.payment_modal")

VARIANT = payments.PAYMENT_MODAL_VARIANT
NO_DISCOUNT = "Yo'q"


class StatusUpdateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: str | None = None
    admin_comment: str | None = Field(None, alias="adminComment")


class UploadedReceipt(BaseModel):
    fileName: str
    path: str


class UploadReceiptResponse(BaseModel):
    success: bool = True
    message: str
    data: UploadedReceipt


class ModalCreatedPayment(BaseModel):
    transaction_id: str
    transactionId: str
    status: str


class ModalCreateResponse(BaseModel):
    success: bool = True
    message: str
    data: ModalCreatedPayment


class ModalPaymentDetailResponse(BaseModel):
    success: bool = True
    data: dict[str, Any]


class ModalPaymentResponse(ModalPaymentDetailResponse):
    message: str


def _serialize(row: dict[str, Any]) -> dict[str, Any]:
    payment = payments.to_external(VARIANT, row)
    payment["courses"] = payments.decode_courses(row.get("courses"))
    file_name = row.get("file_name")
    payment["receipt_url"] = f"/api/payment-modal/receipt/{file_name}" if file_name else None
    return payment


def _build_fields(data: dict[str, Any], file_name: str | None) -> dict[str, Any]:
    discounts = data.get("discounts") or {}
    if not isinstance(discounts, dict):
        raise ValidationError("discounts must be an object")
    courses = data.get("courses") or []
    if not isinstance(courses, list):
        raise ValidationError("courses must be an array", detail={"field": "courses"})
    return {
        "file_name": file_name,
        "additional_amount": amount_field(data, "additionalAmount"),
        "base_amount": amount_field(data, "baseAmount"),
        "final_amount": amount_field(data, "finalAmount"),
        "subscription_type": text_field(data, "subscriptionType", default="monthly"),
        "promo_discount": text_field(discounts, "promo", default=NO_DISCOUNT),
        "yearly_discount": text_field(discounts, "yearly", default=NO_DISCOUNT),
        "address": text_field(data, "address"),
        "email": text_field(data, "email"),
        "passport": text_field(data, "passport"),
        "phone": text_field(data, "phone"),
        "courses": json.dumps(courses, ensure_ascii=False),
    }


@router.post("/upload-receipt", response_model=UploadReceiptResponse)
async def upload_receipt(receipt: UploadFile | None = File(None)) -> UploadReceiptResponse:
    if receipt is None:
        raise ValidationError("Receipt image is required")
    stored = await get_storage(VARIANT.name).save(receipt)
    return UploadReceiptResponse(
        message="Receipt uploaded",
        data=UploadedReceipt(
            fileName=stored.filename,
            path=f"/uploads/{RECEIPT_DIRECTORIES[VARIANT.name]}/{stored.filename}",
        ),
    )


@router.post("/create", status_code=status.HTTP_201_CREATED, response_model=ModalCreateResponse)
async def create_modal_payment(
    receipt: UploadFile | None = File(None),
    payment_data: str | None = Form(None, alias="paymentData"),
) -> ModalCreateResponse:
    data = parse_json_field(payment_data)
    require_fields(data, ("email", "phone"))
    # Validate amounts, text fields and discounts before anything touches the disk.
    _build_fields(data, None)

    storage = get_storage(VARIANT.name)
    stored = await storage.save(receipt) if receipt is not None else None
    try:
        row = await run_in_threadpool(
            payments.insert_payment,
            VARIANT,
            _build_fields(data, stored.filename if stored else None),
            transaction_id_factory=payments.modal_transaction_id,
        )
    except Exception:
        if stored is not None:
            await run_in_threadpool(storage.discard, stored.path)
        raise

    return ModalCreateResponse(
        message="Payment saved",
        data=ModalCreatedPayment(
            transaction_id=row["transaction_id"],
            transactionId=row["transaction_id"],
            status=payments.to_external(VARIANT, row)["status"],
        ),
    )


@router.get("/all")
def list_modal_payments(
    page: int = 1,
    limit: int = 10,
    search: str = "",
    startDate: str = "",
    endDate: str = "",
    sortBy: str = "created_at",
    sortOrder: str = "desc",
) -> dict[str, Any]:
    page, limit, offset = page_window(page, limit)
    where, params = payments.modal_filters(search=search, start_date=startDate, end_date=endDate)
    order_by, column, direction = payments.modal_order_by(sortBy, sortOrder)
    rows, total = payments.list_payments(
        VARIANT, where=where, params=params, order_by=order_by, limit=limit, offset=offset
    )
    return {
        "success": True,
        "data": [_serialize(row) for row in rows],
        "pagination": pagination(page, limit, total),
        "filters": {
            "search": search,
            "startDate": startDate,
            "endDate": endDate,
            "sortBy": column,
            "sortOrder": direction,
        },
    }


@router.get("/statistics")
def modal_statistics() -> dict[str, Any]:
    return {"success": True, "data": payments.payment_modal_statistics()}


@router.get("/transaction/{transaction_id}", response_model=ModalPaymentDetailResponse)
def get_modal_payment(transaction_id: str) -> ModalPaymentDetailResponse:
    row = payments.get_payment(VARIANT, key_column="transaction_id", key=transaction_id)
    return ModalPaymentDetailResponse(data=_serialize(row))


@router.get("/user/{email}")
def list_user_modal_payments(email: str, page: int = 1, limit: int = 10) -> dict[str, Any]:
    page, limit, offset = page_window(page, limit)
    rows, total = payments.list_payments(
        VARIANT, where="email = ?", params=(email,), limit=limit, offset=offset
    )
    return {
        "success": True,
        "data": [_serialize(row) for row in rows],
        "pagination": pagination(page, limit, total),
    }


@router.get("/receipt/{file_name}")
def get_modal_receipt(file_name: str) -> FileResponse:
    return FileResponse(get_storage(VARIANT.name).resolve(file_name))


@router.get("/export")
def export_modal_payments(startDate: str = "", endDate: str = "") -> Response:
    where, params = payments.modal_filters(start_date=startDate, end_date=endDate)
    rows, total = payments.list_payments(VARIANT, where=where, params=params)

    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(["Transaction ID", "Email", "Phone", "Amount", "Subscription Type", "Status", "Date"])
    for row in rows:
        writer.writerow(
            [
                row["transaction_id"],
                row["email"],
                row["phone"],
                row["final_amount"],
                row["subscription_type"],
                row["status"],
                row["created_at"],
            ]
        )

    filename = f"payments-{db.utcnow().date().isoformat()}.csv"
    logger.info("Exported payment modal rows", extra={"count": total})
    return Response(
        content=buffer.getvalue(),
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


@router.put("/status/{transaction_id}", response_model=ModalPaymentResponse)
def update_modal_status(transaction_id: str, request: StatusUpdateRequest) -> ModalPaymentResponse:
    payment = payments.update_status(
        VARIANT,
        key_column="transaction_id",
        key=transaction_id,
        status=request.status,
        admin_comment=request.admin_comment,
    )
    return ModalPaymentResponse(
        message=f"Payment status updated: {payment['status']}",
        data=_serialize(payment),
    )


@router.get("/by-status/{status_value}")
def list_modal_by_status(status_value: str, page: int = 1, limit: int = 10) -> dict[str, Any]:
    if status_value != "all" and status_value not in VARIANT.policy.allowed:
        raise ValidationError(
            "Invalid status value",
            detail={"status": status_value, "allowed": [*VARIANT.policy.allowed, "all"]},
        )
    page, limit, offset = page_window(page, limit)
    where, params = ("", ()) if status_value == "all" else ("status = ?", (status_value,))
    rows, total = payments.list_payments(
        VARIANT, where=where, params=params, limit=limit, offset=offset
    )
    return {
        "success": True,
        "data": [_serialize(row) for row in rows],
        "pagination": pagination(page, limit, total),
    }


@router.get("/status-counts")
def modal_status_counts() -> dict[str, Any]:
    return {"success": True, "data": payments.payment_modal_status_counts()}


__all__ = ["router"]

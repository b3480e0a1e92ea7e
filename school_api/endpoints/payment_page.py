from __future__ import annotations

from pathlib import Path
from typing import Any

from fastapi import APIRouter, File, Form, UploadFile, status
from fastapi.responses import FileResponse
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from school_api.endpoints.forms import page_window, parse_json_field, require_fields, text_field
from school_api.errors import NotFoundError
from school_api.utils import payments
from school_api.utils.logging import get_logger
from school_api.utils.storage import StoredReceipt, get_storage

router = APIRouter(prefix="/api/payment-page", tags=["payment-page"])
logger = get_logger("endpoints.payment_page")

VARIANT = payments.COURSE_PAYMENTS_VARIANT

# Request key -> column.
TEXT_FIELDS = {
    "fullName": "full_name",
    "telegramUsername": "telegram_username",
    "phoneNumber": "phone_number",
    "registrationDate": "registration_date",
    "startDate": "course_start_date",
    "timeSlot": "course_time_slot",
    "courseDays": "course_days",
    "cardNumber": "card_number",
    "cardOwner": "card_owner",
    "planName": "plan_name",
    "planPrice": "plan_price",
    "paymentDate": "payment_date",
}
REQUIRED_FIELDS = tuple(TEXT_FIELDS)


class StatusUpdateRequest(BaseModel):
    status: str | None = None


class CoursePaymentDetailResponse(BaseModel):
    success: bool = True
    payment: dict[str, Any]


class CoursePaymentResponse(CoursePaymentDetailResponse):
    message: str


class CoursePaymentCreateResponse(CoursePaymentResponse):
    transactionId: str


class CoursePaymentDeleteResponse(BaseModel):
    success: bool = True
    message: str


def _serialize(row: dict[str, Any]) -> dict[str, Any]:
    payment = payments.to_external(VARIANT, row)
    payment["receipt_url"] = (
        f"/api/payment-page/receipt/{row['id']}" if row.get("receipt_filename") else None
    )
    return payment


def _build_fields(data: dict[str, Any], stored: StoredReceipt | None) -> dict[str, Any]:
    # Day pickers send an array; it is stored as a comma-separated list.
    fields = {
        column: text_field(data, key, join_lists=True) for key, column in TEXT_FIELDS.items()
    }
    if stored is not None:
        fields.update(
            {
                "receipt_filename": stored.filename,
                "receipt_original_name": stored.original_name,
                "receipt_filepath": str(stored.path),
                "receipt_filesize": stored.size_label,
                "receipt_filetype": stored.content_type,
                "receipt_upload_time": stored.uploaded_at.isoformat(),
            }
        )
    return fields


@router.post("/create", status_code=status.HTTP_201_CREATED, response_model=CoursePaymentCreateResponse)
async def create_course_payment(
    receipt: UploadFile | None = File(None),
    payment_data: str | None = Form(None, alias="paymentData"),
) -> CoursePaymentCreateResponse:
    data = parse_json_field(payment_data)
    require_fields(data, REQUIRED_FIELDS)
    _build_fields(data, None)

    storage = get_storage(VARIANT.name)
    stored = await storage.save(receipt) if receipt is not None else None
    try:
        row = await run_in_threadpool(
            payments.insert_payment,
            VARIANT,
            _build_fields(data, stored),
            transaction_id_factory=payments.course_transaction_id,
        )
    except Exception:
        if stored is not None:
            await run_in_threadpool(storage.discard, stored.path)
        raise

    return CoursePaymentCreateResponse(
        message="Payment created",
        transactionId=row["transaction_id"],
        payment=_serialize(row),
    )


@router.get("/all")
def list_course_payments(page: int = 1, limit: int = 10) -> dict[str, Any]:
    page, limit, offset = page_window(page, limit)
    rows, total = payments.list_payments(VARIANT, limit=limit, offset=offset)
    total_pages = (total + limit - 1) // limit
    return {
        "success": True,
        "message": "Payments fetched",
        "data": {
            "payments": [_serialize(row) for row in rows],
            "pagination": {
                "currentPage": page,
                "totalPages": total_pages,
                "totalCount": total,
                "hasNextPage": page < total_pages,
                "hasPrevPage": page > 1,
                "limit": limit,
            },
        },
    }


@router.get("/user/{phone_number}")
def list_user_course_payments(phone_number: str) -> dict[str, Any]:
    rows, total = payments.list_payments(VARIANT, where="phone_number = ?", params=(phone_number,))
    return {"success": True, "count": total, "payments": [_serialize(row) for row in rows]}


@router.get("/transaction/{transaction_id}", response_model=CoursePaymentDetailResponse)
def get_course_payment(transaction_id: str) -> CoursePaymentDetailResponse:
    row = payments.get_payment(VARIANT, key_column="transaction_id", key=transaction_id)
    return CoursePaymentDetailResponse(payment=_serialize(row))


@router.get("/receipt/{payment_id}")
def get_course_receipt(payment_id: int) -> FileResponse:
    row = payments.get_payment(VARIANT, key_column="id", key=payment_id)
    filepath = row.get("receipt_filepath")
    if not filepath or not Path(filepath).is_file():
        raise NotFoundError("Receipt not found")
    download_name = row.get("receipt_original_name") or row.get("receipt_filename")
    return FileResponse(
        filepath,
        media_type=row.get("receipt_filetype") or "image/jpeg",
        filename=download_name,
        content_disposition_type="inline",
        headers={"Cache-Control": "public, max-age=31536000"},
    )


@router.put("/status/{payment_id}", response_model=CoursePaymentResponse)
def update_course_payment_status(payment_id: int, request: StatusUpdateRequest) -> CoursePaymentResponse:
    payment = payments.update_status(
        VARIANT, key_column="id", key=payment_id, status=request.status
    )
    return CoursePaymentResponse(message="Payment status updated", payment=_serialize(payment))


@router.get("/stats")
def course_payment_stats() -> dict[str, Any]:
    return {"success": True, **payments.course_payments_stats()}


@router.delete("/{payment_id}", response_model=CoursePaymentDeleteResponse)
def delete_course_payment(payment_id: int) -> CoursePaymentDeleteResponse:
    row = payments.delete_payment(VARIANT, payment_id)
    get_storage(VARIANT.name).discard(row.get("receipt_filepath"))
    return CoursePaymentDeleteResponse(message="Payment deleted")


__all__ = ["router"]

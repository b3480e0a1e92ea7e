from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, ConfigDict, Field

from school_api.endpoints.security import require_user
from school_api.utils import subscriptions
from school_api.utils.logging import get_logger

router = APIRouter(
    prefix="/api/subscriptions",
    tags=["subscriptions"],
    dependencies=[Depends(require_user)],
)
logger = get_logger("endpoints.subscriptions")


class SubscriptionCreateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True)

    user_id: int | None = Field(None, alias="userId")
    payment_id: int = Field(..., alias="paymentId")
    plan_name: str = Field(..., alias="planName", min_length=1)
    plan_price: str = Field(..., alias="planPrice", min_length=1)


class SubscriptionResponse(BaseModel):
    success: bool = True
    message: str
    subscription: dict[str, Any] | None


@router.post("/create", status_code=status.HTTP_201_CREATED, response_model=SubscriptionResponse)
def create_subscription(
    request: SubscriptionCreateRequest,
    claims: dict[str, Any] = Depends(require_user),
) -> SubscriptionResponse:
    user_id = request.user_id if request.user_id is not None else int(claims["userId"])
    subscription = subscriptions.create_subscription(
        user_id=user_id,
        payment_id=request.payment_id,
        plan_name=request.plan_name,
        plan_price=request.plan_price,
    )
    return SubscriptionResponse(message="Subscription created", subscription=subscription)


@router.get("/status")
def subscription_status(claims: dict[str, Any] = Depends(require_user)) -> dict[str, Any]:
    subscription = subscriptions.get_status(int(claims["userId"]))
    return {"success": True, "subscription": subscription}


__all__ = ["router"]

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, status
from pydantic import BaseModel, ConfigDict, Field

from school_api.utils import messages
from school_api.utils.logging import get_logger

router = APIRouter(prefix="/api/messages", tags=["messages"])
logger = get_logger("endpoints.messages")


class MessageCreateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True)

    text: str = Field(..., min_length=1)
    user_id: str = Field(..., alias="userId", min_length=1)
    is_admin: bool = Field(False, alias="isAdmin")
    time: str | None = None


class ReplyRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True)

    text: str = Field(..., min_length=1)
    user_id: str = Field(..., alias="userId", min_length=1)
    message_id: int = Field(..., alias="messageId", gt=0)


class MessageResponse(BaseModel):
    success: bool = True
    message: str
    data: dict[str, Any]


@router.post("", status_code=status.HTTP_201_CREATED, response_model=MessageResponse)
def create_message(request: MessageCreateRequest) -> MessageResponse:
    message = messages.create_message(
        text=request.text,
        user_id=request.user_id,
        is_admin=request.is_admin,
        time=request.time,
    )
    return MessageResponse(message="Message sent", data=message)


@router.get("")
def list_messages() -> dict[str, Any]:
    return {"success": True, "messages": messages.list_messages()}


@router.get("/users")
def list_message_users() -> dict[str, Any]:
    return {"success": True, "users": messages.list_message_users()}


@router.get("/user/{user_id}")
def list_user_messages(user_id: str) -> dict[str, Any]:
    return {"success": True, "messages": messages.list_user_messages(user_id)}


@router.post("/reply", status_code=status.HTTP_201_CREATED, response_model=MessageResponse)
def reply(request: ReplyRequest) -> MessageResponse:
    result = messages.reply_to_message(
        text=request.text,
        user_id=request.user_id,
        message_id=request.message_id,
    )
    return MessageResponse(message="Reply sent", data=result)


@router.delete("/{message_id}")
def delete_message(message_id: int) -> dict[str, Any]:
    deleted = messages.delete_message(message_id)
    return {"success": True, "message": "Message deleted", "deleted": deleted}


__all__ = ["router"]

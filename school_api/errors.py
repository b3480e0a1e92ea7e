"""Error taxonomy shared by data-access helpers and endpoints."""
from __future__ import annotations

from typing import Any


class SchoolAPIError(Exception):
    """Base error rendered as a JSON body by the application handlers."""

    status_code = 500

    def __init__(self, message: str, *, detail: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"success": False, "error": True, "message": self.message}
        if self.detail is not None:
            payload["detail"] = self.detail
        return payload


class ValidationError(SchoolAPIError):
    status_code = 400


class AuthError(SchoolAPIError):
    status_code = 401


class NotFoundError(SchoolAPIError):
    status_code = 404


class StorageError(SchoolAPIError):
    status_code = 500


__all__ = [
    "SchoolAPIError",
    "ValidationError",
    "AuthError",
    "NotFoundError",
    "StorageError",
]

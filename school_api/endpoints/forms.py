"""Helpers for multipart checkout submissions."""
from __future__ import annotations

import json
import math
from typing import Any, Iterable

from school_api.errors import ValidationError

# Range of a signed 64-bit SQLite INTEGER.
SQLITE_INTEGER_MIN = -(2**63)
SQLITE_INTEGER_MAX = 2**63 - 1

_SCALARS = (str, int, float)


def _is_scalar(value: Any) -> bool:
    return isinstance(value, _SCALARS) and not isinstance(value, bool)


def parse_json_field(raw: str | None, *, field: str = "paymentData") -> dict[str, Any]:
    if not raw:
        raise ValidationError(f"{field} is required")
    try:
        data = json.loads(raw)
    except ValueError as exc:
        raise ValidationError(f"{field} is not valid JSON") from exc
    if not isinstance(data, dict):
        raise ValidationError(f"{field} must be a JSON object")
    return data


def require_fields(data: dict[str, Any], fields: Iterable[str]) -> None:
    missing = [
        name
        for name in fields
        if data.get(name) is None or (isinstance(data.get(name), str) and not data[name].strip())
    ]
    if missing:
        raise ValidationError(
            f"Missing required fields: {', '.join(missing)}",
            detail={"missing": missing},
        )


def text_field(
    data: dict[str, Any],
    name: str,
    *,
    default: str = "",
    join_lists: bool = False,
) -> str:
    """Return ``data[name]`` as stripped text.

    Numbers are accepted and stringified. Objects, booleans and (unless
    ``join_lists``) arrays are rejected; a joined array may only hold scalars.
    """

    value = data.get(name)
    if value is None or value == "":
        return default
    if join_lists and isinstance(value, list) and all(_is_scalar(item) for item in value):
        return ", ".join(str(item).strip() for item in value)
    if not _is_scalar(value):
        raise ValidationError(f"{name} must be a string", detail={"field": name})
    return str(value).strip()


def amount_field(data: dict[str, Any], name: str) -> int:
    """Return ``data[name]`` as a whole amount that fits a SQLite INTEGER; missing means 0."""

    raw = data.get(name)
    if raw is None or raw == "":
        return 0
    if not _is_scalar(raw):
        raise ValidationError(f"{name} must be a number", detail={"field": name})
    try:
        number = float(raw)
    except (ValueError, OverflowError) as exc:
        raise ValidationError(f"{name} must be a number", detail={"field": name}) from exc
    if not math.isfinite(number):
        raise ValidationError(f"{name} must be a finite number", detail={"field": name})
    amount = raw if isinstance(raw, int) else int(number)
    if not SQLITE_INTEGER_MIN <= amount <= SQLITE_INTEGER_MAX:
        raise ValidationError(f"{name} is out of range", detail={"field": name})
    return amount


def page_window(page: int | None, limit: int | None, *, default_limit: int = 10) -> tuple[int, int, int]:
    """Return ``(page, limit, offset)`` with non-positive values replaced by defaults."""

    page = page if page and page > 0 else 1
    limit = limit if limit and limit > 0 else default_limit
    return page, limit, (page - 1) * limit


def pagination(page: int, limit: int, total: int) -> dict[str, int]:
    return {
        "currentPage": page,
        "totalPages": (total + limit - 1) // limit,
        "totalItems": total,
        "itemsPerPage": limit,
    }


__all__ = [
    "parse_json_field",
    "require_fields",
    "text_field",
    "amount_field",
    "page_window",
    "pagination",
]

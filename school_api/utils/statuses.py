"""Status vocabularies for the three checkout tables.

Each variant owns one :class:`StatusPolicy`. Handlers only ever see external
values; the policy translates them to what is stored and back.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping

from school_api.errors import ValidationError


@dataclass(frozen=True)
class StatusPolicy:
    name: str
    allowed: tuple[str, ...]
    stored: tuple[str, ...]
    inbound: Mapping[str, str] = field(default_factory=dict)
    outbound: Mapping[str, str] = field(default_factory=dict)
    initial: str = "pending"

    def to_internal(self, value: str) -> str:
        return self.inbound.get(value, value)

    def to_external(self, value: str | None) -> str | None:
        if value is None:
            return None
        return self.outbound.get(value, value)

    def coerce(self, value: str | None) -> str:
        """Validate an external status and return the value to store."""

        candidate = (value or "").strip().lower()
        if candidate not in self.allowed:
            raise ValidationError(
                "Invalid status value",
                detail={"status": value, "allowed": list(self.allowed)},
            )
        return self.to_internal(candidate)

    def external_values(self) -> tuple[str, ...]:
        """Distinct external statuses in stored order, used for counters."""

        seen: list[str] = []
        for value in self.stored:
            mapped = self.to_external(value)
            if mapped not in seen:
                seen.append(mapped)
        return tuple(seen)


PAYMENTS = StatusPolicy(
    name="payments",
    allowed=("pending", "completed", "rejected"),
    stored=("pending", "success", "failed"),
    inbound={"completed": "success", "rejected": "failed"},
    outbound={"success": "completed", "failed": "rejected"},
)

COURSE_PAYMENTS = StatusPolicy(
    name="course_payments",
    allowed=("pending", "completed", "success", "rejected", "failed"),
    stored=("pending", "completed", "rejected"),
    inbound={"success": "completed", "failed": "rejected"},
    # Rows written before the vocabulary was collapsed.
    outbound={"success": "completed", "failed": "rejected"},
)

PAYMENT_MODAL = StatusPolicy(
    name="payment_modal",
    allowed=("pending", "approved", "rejected", "refunded"),
    stored=("pending", "approved", "rejected", "refunded"),
)


__all__ = [
    "StatusPolicy",
    "PAYMENTS",
    "COURSE_PAYMENTS",
    "PAYMENT_MODAL",
]

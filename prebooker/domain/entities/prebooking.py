from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class PreBookingStatus(str, Enum):
    PENDING = "pending"
    LOADED = "loaded"  # claimed, not yet fired
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (PreBookingStatus.COMPLETED, PreBookingStatus.FAILED)


# Forward-only edges. Nothing returns to PENDING and nothing leaves a terminal state.
ALLOWED_TRANSITIONS: dict[PreBookingStatus, frozenset[PreBookingStatus]] = {
    PreBookingStatus.PENDING: frozenset({PreBookingStatus.LOADED, PreBookingStatus.FAILED}),
    PreBookingStatus.LOADED: frozenset({PreBookingStatus.EXECUTING, PreBookingStatus.FAILED}),
    PreBookingStatus.EXECUTING: frozenset({PreBookingStatus.COMPLETED, PreBookingStatus.FAILED}),
    PreBookingStatus.COMPLETED: frozenset(),
    PreBookingStatus.FAILED: frozenset(),
}


def can_transition(current: PreBookingStatus, target: PreBookingStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


@dataclass(frozen=True)
class BookingIntent:
    """Payload submitted upstream when the prebooking fires."""

    day: str  # YYYYMMDD
    slot_id: str
    family_id: str = ""
    insist: bool = False
    class_name: str | None = None
    class_time_utc: str | None = None  # ISO instant, informational

    def to_dict(self) -> dict[str, Any]:
        return {
            "day": self.day,
            "slot_id": self.slot_id,
            "family_id": self.family_id,
            "insist": self.insist,
            "class_name": self.class_name,
            "class_time_utc": self.class_time_utc,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "BookingIntent":
        return BookingIntent(
            day=str(data["day"]),
            slot_id=str(data["slot_id"]),
            family_id=str(data.get("family_id") or ""),
            insist=bool(data.get("insist", False)),
            class_name=data.get("class_name"),
            class_time_utc=data.get("class_time_utc"),
        )


@dataclass(frozen=True)
class ExecutionTiming:
    fire_latency_ms: float | None = None  # fire instant minus target
    wait_variance_ms: float | None = None  # actual wait minus planned wait
    prep_ms: float | None = None
    upstream_ms: float | None = None


@dataclass(frozen=True)
class PreBookingResult:
    success: bool
    executed_at: datetime
    booking_id: str | None = None
    message: str | None = None
    status_code: int | None = None
    already_booked_manually: bool = False
    timing: ExecutionTiming = field(default_factory=ExecutionTiming)


@dataclass(frozen=True)
class PreBooking:
    id: str
    user_ref: str
    venue_ref: str
    booking_intent: BookingIntent
    available_at: datetime  # UTC, immutable after creation
    created_at: datetime
    status: PreBookingStatus = PreBookingStatus.PENDING
    result: PreBookingResult | None = None
    error_message: str | None = None
    schedule_ref: str | None = None
    loaded_at: datetime | None = None
    executed_at: datetime | None = None

    @property
    def available_at_ms(self) -> int:
        return int(self.available_at.timestamp() * 1000)

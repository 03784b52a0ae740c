from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

# Upstream "bookState" codes
BOOK_STATE_BOOKED = 1
BOOK_STATE_ERROR_MAX_BOOKINGS = -8
BOOK_STATE_ERROR_EARLY_BOOKING = -12


class UpstreamKind(str, Enum):
    OK = "ok"  # upstream answered with a parseable body
    AUTH = "auth"  # session rejected, user must re-authenticate
    BUSINESS = "business"  # upstream refused for capacity/eligibility reasons
    TRANSIENT = "transient"  # network, timeout, 5xx, unparseable body


@dataclass(frozen=True)
class BookingResponse:
    kind: UpstreamKind
    status_code: int | None = None
    booking_id: str | None = None
    message: str | None = None

    @property
    def is_early_booking_rejection(self) -> bool:
        return self.status_code == BOOK_STATE_ERROR_EARLY_BOOKING


@dataclass(frozen=True)
class BookingOutcome:
    success: bool
    message: str
    status_code: int | None = None
    booking_id: str | None = None
    already_booked_manually: bool = False
    kind: UpstreamKind = UpstreamKind.OK

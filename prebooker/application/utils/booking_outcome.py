from __future__ import annotations

from prebooker.domain.entities.booking_response import (
    BOOK_STATE_BOOKED,
    BookingOutcome,
    BookingResponse,
    UpstreamKind,
)

MSG_BOOKED = "Booking created successfully"
MSG_ALREADY_BOOKED_MANUALLY = "Booking already created manually by user"
MSG_SESSION_EXPIRED = "Session expired - please login again"
MSG_BOOKING_FAILED = "Booking failed"


def classify_booking_response(response: BookingResponse) -> BookingOutcome:
    """
    Map a tagged upstream response to a success/failure outcome.

    A non-booked code that still carries a booking id counts as success: the
    user booked the same slot by hand a moment earlier and upstream reports the
    existing booking.
    """
    if response.kind == UpstreamKind.AUTH:
        return BookingOutcome(
            success=False,
            message=MSG_SESSION_EXPIRED,
            status_code=response.status_code,
            kind=response.kind,
        )

    if response.kind == UpstreamKind.TRANSIENT:
        return BookingOutcome(
            success=False,
            message=response.message or MSG_BOOKING_FAILED,
            status_code=response.status_code,
            kind=response.kind,
        )

    if response.status_code == BOOK_STATE_BOOKED:
        return BookingOutcome(
            success=True,
            message=response.message or MSG_BOOKED,
            status_code=response.status_code,
            booking_id=response.booking_id,
            kind=response.kind,
        )

    if response.booking_id:
        return BookingOutcome(
            success=True,
            message=MSG_ALREADY_BOOKED_MANUALLY,
            status_code=response.status_code,
            booking_id=response.booking_id,
            already_booked_manually=True,
            kind=response.kind,
        )

    return BookingOutcome(
        success=False,
        message=response.message or MSG_BOOKING_FAILED,
        status_code=response.status_code,
        kind=response.kind,
    )

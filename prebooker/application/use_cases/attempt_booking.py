from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from prebooker.application.exceptions import PreBookingRejectedError
from prebooker.application.ports.booking_client import BookingClientPort
from prebooker.application.use_cases.prebooking_lifecycle import PreBookingLifecycleUseCase
from prebooker.application.use_cases.session_freshness import SessionFreshnessGuard
from prebooker.application.utils.booking_outcome import classify_booking_response
from prebooker.domain.entities.booking_response import BookingOutcome
from prebooker.domain.entities.prebooking import BookingIntent, PreBooking
from prebooker.domain.entities.session import SessionKind


@dataclass(frozen=True)
class AttemptResult:
    outcome: BookingOutcome
    early_booking: bool = False
    prebooking: PreBooking | None = None


class AttemptBookingUseCase:
    """Book a class now with the user's own session; fall back to a prebooking when it is too early."""

    def __init__(
        self,
        booking_client: BookingClientPort,
        freshness_guard: SessionFreshnessGuard,
        lifecycle: PreBookingLifecycleUseCase,
    ) -> None:
        self._booking_client = booking_client
        self._freshness_guard = freshness_guard
        self._lifecycle = lifecycle
        self._logger = logging.getLogger(__name__)

    async def attempt(
        self,
        user_ref: str,
        venue_ref: str,
        intent: BookingIntent,
        class_instant_utc: datetime | None = None,
        class_local_time: str | None = None,
        timezone: str | None = None,
        is_admin: bool = False,
    ) -> AttemptResult:
        session = await self._freshness_guard.ensure_fresh(user_ref, kind=SessionKind.INTERACTIVE)

        response = await self._booking_client.submit(intent, session.credentials, venue_ref)
        outcome = classify_booking_response(response)
        self._logger.info(
            "Booking attempt",
            extra={"user_ref": user_ref, "venue_ref": venue_ref, "status": response.status_code, "kind": response.kind.value},
        )

        if not response.is_early_booking_rejection:
            return AttemptResult(outcome=outcome)

        try:
            prebooking = await self._lifecycle.create_from_rejection(
                user_ref,
                venue_ref,
                intent,
                response.message,
                class_instant_utc=class_instant_utc,
                class_local_time=class_local_time,
                timezone=timezone,
                is_admin=is_admin,
            )
        except PreBookingRejectedError as e:
            self._logger.warning("Early booking rejection not scheduled", extra={"user_ref": user_ref, "error": str(e)})
            return AttemptResult(outcome=outcome, early_booking=True)
        return AttemptResult(outcome=outcome, early_booking=True, prebooking=prebooking)

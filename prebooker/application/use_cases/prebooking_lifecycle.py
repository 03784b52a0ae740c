from __future__ import annotations

import logging
from datetime import datetime, timedelta

from prebooker.application.exceptions import (
    PreBookingInFlightError,
    PreBookingLimitError,
    PreBookingNotFoundError,
    PreBookingRejectedError,
)
from prebooker.application.ports.delayed_trigger import DelayedTriggerPort
from prebooker.application.ports.prebooking_store import PreBookingStorePort
from prebooker.application.utils.availability import (
    class_instant_from_local,
    parse_class_day,
    parse_early_booking_rejection,
    resolve_timezone,
)
from prebooker.domain.entities.prebooking import BookingIntent, PreBooking, PreBookingStatus
from prebooker.infrastructure.security.token_codec import SecurityTokenCodec

# Rows in these states may be removed by their owner.
DELETABLE_STATUSES = (PreBookingStatus.PENDING, PreBookingStatus.COMPLETED, PreBookingStatus.FAILED)


class PreBookingLifecycleUseCase:
    def __init__(
        self,
        store: PreBookingStorePort,
        trigger: DelayedTriggerPort,
        codec: SecurityTokenCodec,
        early_offset_seconds: float = 5.0,
        max_pending: int = 15,
    ) -> None:
        self._store = store
        self._trigger = trigger
        self._codec = codec
        self._early_offset = timedelta(seconds=early_offset_seconds)
        self._max_pending = max_pending
        self._logger = logging.getLogger(__name__)

    async def create_from_rejection(
        self,
        user_ref: str,
        venue_ref: str,
        intent: BookingIntent,
        rejection_message: str | None,
        class_instant_utc: datetime | None = None,
        class_local_time: str | None = None,
        timezone: str | None = None,
        is_admin: bool = False,
    ) -> PreBooking:
        """
        Persist a deferred booking for a class rejected as "too early" and
        schedule its wake-up. The class start may be given as a UTC instant or as
        a venue-local "HH:MM"; with neither, local midnight of the class day is used.
        """
        if class_instant_utc is None and class_local_time:
            class_day = parse_class_day(intent.day)
            if class_day is None:
                raise PreBookingRejectedError(f"Invalid class day: {intent.day}")
            try:
                class_instant_utc = class_instant_from_local(class_day, class_local_time, resolve_timezone(timezone))
            except ValueError as e:
                raise PreBookingRejectedError(str(e)) from e

        window = parse_early_booking_rejection(rejection_message, intent.day, class_instant_utc, timezone)
        if window is None:
            raise PreBookingRejectedError("Rejection does not describe when booking opens")

        if not is_admin:
            pending = await self._store.count_pending_by_user(user_ref)
            if pending >= self._max_pending:
                self._logger.info(
                    "Pending prebooking limit reached",
                    extra={"user_ref": user_ref, "count": pending},
                )
                raise PreBookingLimitError(current=pending, maximum=self._max_pending)

        prebooking = await self._store.create(user_ref, venue_ref, intent, window.available_at)
        self._logger.info(
            "Prebooking created",
            extra={
                "prebooking_id": prebooking.id,
                "user_ref": user_ref,
                "venue_ref": venue_ref,
                "available_at": prebooking.available_at.isoformat(),
                "degraded": window.degraded,
            },
        )

        try:
            prebooking = await self.schedule(prebooking)
        except Exception as e:
            # Stays pending; the batch sweep picks it up once due.
            self._logger.error(
                "Failed to schedule prebooking trigger",
                extra={"prebooking_id": prebooking.id, "error": str(e)},
            )
        return prebooking

    async def schedule(self, prebooking: PreBooking) -> PreBooking:
        execute_at_ms = prebooking.available_at_ms
        payload = {
            "prebookingId": prebooking.id,
            "executeAt": execute_at_ms,
            "securityToken": self._codec.issue(prebooking.id, execute_at_ms),
            "userRef": prebooking.user_ref,
            "venueRef": prebooking.venue_ref,
        }
        handle = await self._trigger.schedule_at(prebooking.available_at - self._early_offset, payload)
        updated = await self._store.set_schedule_ref(prebooking.id, handle)
        self._logger.info("Prebooking trigger scheduled", extra={"prebooking_id": prebooking.id, "schedule_ref": handle})
        return updated or prebooking

    async def list_for_user(self, user_ref: str, venue_ref: str | None = None) -> list[PreBooking]:
        return await self._store.find_by_user(user_ref, venue_ref)

    async def cancel(self, user_ref: str, prebooking_id: str) -> PreBooking:
        prebooking = await self._store.find_by_id(prebooking_id)
        if prebooking is None or prebooking.user_ref != user_ref:
            raise PreBookingNotFoundError(prebooking_id)

        deleted = await self._store.delete(prebooking_id, only_if_status=DELETABLE_STATUSES)
        if not deleted:
            current = await self._store.find_by_id(prebooking_id)
            if current is None:
                raise PreBookingNotFoundError(prebooking_id)
            raise PreBookingInFlightError(f"Prebooking is already {current.status.value}")

        self._logger.info("Prebooking cancelled", extra={"prebooking_id": prebooking_id, "user_ref": user_ref})

        if prebooking.schedule_ref and prebooking.status == PreBookingStatus.PENDING:
            try:
                await self._trigger.cancel(prebooking.schedule_ref)
            except Exception as e:
                # The wake-up will find no row and no-op.
                self._logger.warning(
                    "Failed to cancel prebooking trigger",
                    extra={"prebooking_id": prebooking_id, "error": str(e)},
                )
        return prebooking

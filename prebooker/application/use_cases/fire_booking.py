from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from prebooker.application.ports.booking_client import BookingClientPort
from prebooker.application.ports.prebooking_store import PreBookingStorePort
from prebooker.application.utils.booking_outcome import classify_booking_response
from prebooker.application.utils.precise_wait import Clock, wait_until
from prebooker.domain.entities.booking_response import BookingOutcome, BookingResponse, UpstreamKind
from prebooker.domain.entities.prebooking import (
    ExecutionTiming,
    PreBooking,
    PreBookingResult,
    PreBookingStatus,
)
from prebooker.domain.entities.session import CredentialBundle


@dataclass(frozen=True)
class FireReport:
    prebooking_id: str
    outcome: BookingOutcome | None  # None when another actor already moved the row on
    timing: ExecutionTiming
    recorded: bool

    @property
    def status(self) -> str:
        if self.outcome is None:
            return "skipped"
        return PreBookingStatus.COMPLETED.value if self.outcome.success else PreBookingStatus.FAILED.value


class FireBookingUseCase:
    """Waits for the exact instant, submits one claimed prebooking and records the terminal state."""

    def __init__(
        self,
        store: PreBookingStorePort,
        booking_client: BookingClientPort,
        clock: Clock | None = None,
        spin_threshold_ms: float = 15.0,
    ) -> None:
        self._store = store
        self._booking_client = booking_client
        self._clock = clock or Clock()
        self._spin_threshold_ms = spin_threshold_ms
        self._logger = logging.getLogger(__name__)

    async def fire(
        self,
        prebooking: PreBooking,
        credentials: CredentialBundle,
        target_ts: float,
        prep_ms: float | None = None,
    ) -> FireReport:
        executing = await self._store.update_status(
            prebooking.id,
            PreBookingStatus.EXECUTING,
            expected=[PreBookingStatus.LOADED],
        )
        if executing is None:
            self._logger.warning(
                "Prebooking no longer loaded; not firing",
                extra={"prebooking_id": prebooking.id},
            )
            return FireReport(prebooking.id, None, ExecutionTiming(prep_ms=prep_ms), recorded=False)

        planned_wait = target_ts - self._clock.now()
        if planned_wait < 0:
            self._logger.warning(
                "Preparation overran the target; firing immediately",
                extra={"prebooking_id": prebooking.id, "late_ms": round(-planned_wait * 1000, 1)},
            )
        waited = await wait_until(target_ts, self._clock, self._spin_threshold_ms)

        fire_ts = self._clock.now()
        fire_latency_ms = (fire_ts - target_ts) * 1000
        self._logger.info(
            "Firing booking",
            extra={"prebooking_id": prebooking.id, "fire_latency_ms": round(fire_latency_ms, 1)},
        )

        try:
            response = await self._booking_client.submit(
                prebooking.booking_intent, credentials, prebooking.venue_ref
            )
        except Exception as e:
            self._logger.exception("Booking client raised", extra={"prebooking_id": prebooking.id})
            response = BookingResponse(kind=UpstreamKind.TRANSIENT, message=f"Booking error: {e!s}")
        upstream_ms = (self._clock.now() - fire_ts) * 1000

        outcome = classify_booking_response(response)
        timing = ExecutionTiming(
            fire_latency_ms=round(fire_latency_ms, 1),
            wait_variance_ms=round((waited - max(planned_wait, 0.0)) * 1000, 1),
            prep_ms=round(prep_ms, 1) if prep_ms is not None else None,
            upstream_ms=round(upstream_ms, 1),
        )
        recorded = await self._record(prebooking.id, outcome, timing)
        return FireReport(prebooking.id, outcome, timing, recorded=recorded)

    async def record_failure(
        self,
        prebooking_id: str,
        message: str,
        expected: Iterable[PreBookingStatus] = (PreBookingStatus.LOADED, PreBookingStatus.EXECUTING),
        status_code: int | None = None,
    ) -> bool:
        now = self._clock.now_datetime()
        result = PreBookingResult(success=False, executed_at=now, message=message, status_code=status_code)
        updated = await self._store.update_status(
            prebooking_id,
            PreBookingStatus.FAILED,
            expected=expected,
            executed_at=now,
            result=result,
            error_message=message,
        )
        if updated is None:
            self._logger.warning("Failure not recorded; status already moved on", extra={"prebooking_id": prebooking_id})
            return False
        self._logger.info("Prebooking failed", extra={"prebooking_id": prebooking_id, "reason": message})
        return True

    async def _record(self, prebooking_id: str, outcome: BookingOutcome, timing: ExecutionTiming) -> bool:
        now = self._clock.now_datetime()
        result = PreBookingResult(
            success=outcome.success,
            executed_at=now,
            booking_id=outcome.booking_id,
            message=outcome.message,
            status_code=outcome.status_code,
            already_booked_manually=outcome.already_booked_manually,
            timing=timing,
        )
        status = PreBookingStatus.COMPLETED if outcome.success else PreBookingStatus.FAILED
        fields = {"executed_at": now, "result": result}
        if not outcome.success:
            fields["error_message"] = outcome.message

        updated = await self._store.update_status(
            prebooking_id, status, expected=[PreBookingStatus.EXECUTING], **fields
        )
        if updated is None:
            self._logger.error("Terminal write found no executing row", extra={"prebooking_id": prebooking_id})
            return False

        self._logger.info(
            "Prebooking recorded",
            extra={
                "prebooking_id": prebooking_id,
                "status": status.value,
                "booking_id": outcome.booking_id,
                "already_booked_manually": outcome.already_booked_manually,
                "fire_latency_ms": timing.fire_latency_ms,
            },
        )
        return True

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass

from prebooker.application.exceptions import (
    InvalidSecurityTokenError,
    SessionExpiredError,
    SessionMissingError,
)
from prebooker.application.ports.session_store import SessionStorePort
from prebooker.application.use_cases.claim_prebooking import ClaimPreBookingUseCase, NotClaimable
from prebooker.application.use_cases.fire_booking import FireBookingUseCase
from prebooker.application.use_cases.session_freshness import SessionFreshnessGuard
from prebooker.application.utils.precise_wait import Clock
from prebooker.domain.entities.prebooking import PreBookingStatus
from prebooker.infrastructure.security.token_codec import SecurityTokenCodec


@dataclass(frozen=True)
class ExecutionReport:
    success: bool
    prebooking_id: str
    execution_time_ms: float
    status: str | None = None
    message: str | None = None
    booking_id: str | None = None
    already_booked_manually: bool = False
    fire_latency_ms: float | None = None
    recorded: bool = True  # False only when a terminal write was attempted and lost


class ExecutePreBookingUseCase:
    """
    Handles one delayed-trigger wake-up for a single prebooking.

    The trigger is delivered a few seconds before the legal instant so the
    claim and any session refresh happen ahead of time; the actual submission
    waits until available_at. Redelivered wake-ups lose the claim and return
    without side effects.
    """

    def __init__(
        self,
        codec: SecurityTokenCodec,
        claim: ClaimPreBookingUseCase,
        session_store: SessionStorePort,
        freshness_guard: SessionFreshnessGuard,
        fire: FireBookingUseCase,
        clock: Clock | None = None,
        max_execution_seconds: float = 10.0,
    ) -> None:
        self._codec = codec
        self._claim = claim
        self._session_store = session_store
        self._freshness_guard = freshness_guard
        self._fire = fire
        self._clock = clock or Clock()
        self._max_execution_seconds = max_execution_seconds
        self._logger = logging.getLogger(__name__)

    async def execute(
        self,
        prebooking_id: str,
        execute_at_ms: int,
        security_token: str,
        user_ref: str | None = None,
    ) -> ExecutionReport:
        execution_id = uuid.uuid4().hex[:8]
        started = self._clock.now()
        log_ctx = {"prebooking_id": prebooking_id, "execution_id": execution_id}

        self._logger.info("Execution wake-up", extra={**log_ctx, "execute_at_ms": execute_at_ms})

        if not self._codec.verify(security_token, prebooking_id, execute_at_ms, now_ms=int(started * 1000)):
            self._logger.warning("Invalid security token", extra=log_ctx)
            raise InvalidSecurityTokenError("Invalid security token")

        if user_ref:
            claimed, session = await asyncio.gather(
                self._claim.execute(prebooking_id),
                self._session_store.get_unattended_session(user_ref),
                return_exceptions=True,
            )
            if isinstance(claimed, BaseException):
                raise claimed
            if isinstance(session, BaseException):
                # The freshness guard fetches again and records a failure if that also breaks.
                self._logger.warning("Concurrent session fetch failed", extra={**log_ctx, "error": str(session)})
                session = None
        else:
            claimed = await self._claim.execute(prebooking_id)
            session = None

        if isinstance(claimed, NotClaimable):
            return self._report(
                started,
                prebooking_id,
                success=claimed.reason != "not_found",
                status=claimed.reason.removeprefix("already_"),
                message=f"Prebooking not claimable ({claimed.reason})",
            )

        prebooking = claimed
        log_ctx["user_ref"] = prebooking.user_ref
        if prebooking.available_at_ms != execute_at_ms:
            self._logger.warning(
                "Trigger instant differs from stored availability; using stored value",
                extra={**log_ctx, "execute_at_ms": execute_at_ms, "available_at_ms": prebooking.available_at_ms},
            )

        try:
            session = await self._freshness_guard.ensure_fresh(prebooking.user_ref, session)
        except (SessionMissingError, SessionExpiredError) as e:
            self._logger.error("No usable session for execution", extra={**log_ctx, "error": str(e)})
            await self._fire.record_failure(prebooking.id, str(e), expected=[PreBookingStatus.LOADED])
            return self._report(
                started,
                prebooking.id,
                success=False,
                status=PreBookingStatus.FAILED.value,
                message=str(e),
            )
        except Exception as e:
            return await self._fail_unexpected(started, prebooking.id, e, log_ctx)

        prep_ms = (self._clock.now() - started) * 1000
        target_ts = prebooking.available_at.timestamp()
        try:
            report = await self._fire.fire(prebooking, session.credentials, target_ts, prep_ms=prep_ms)
        except Exception as e:
            return await self._fail_unexpected(started, prebooking.id, e, log_ctx)

        elapsed = self._clock.now() - started
        if elapsed > self._max_execution_seconds:
            self._logger.warning(
                "Execution exceeded platform time budget",
                extra={**log_ctx, "elapsed_ms": round(elapsed * 1000, 1)},
            )

        if report.outcome is None:
            return self._report(
                started,
                prebooking.id,
                success=True,
                status="skipped",
                message="Prebooking moved on before firing",
            )

        outcome = report.outcome
        return self._report(
            started,
            prebooking.id,
            success=outcome.success,
            status=report.status,
            message=outcome.message,
            booking_id=outcome.booking_id,
            already_booked_manually=outcome.already_booked_manually,
            fire_latency_ms=report.timing.fire_latency_ms,
            recorded=report.recorded,
        )

    async def _fail_unexpected(
        self,
        started: float,
        prebooking_id: str,
        error: Exception,
        log_ctx: dict,
    ) -> ExecutionReport:
        self._logger.exception("Unexpected error during execution", extra={**log_ctx, "error": str(error)})
        # Raises if the store itself is down; the caller turns that into a 500.
        await self._fire.record_failure(prebooking_id, f"Unexpected error: {error!s}")
        return self._report(
            started,
            prebooking_id,
            success=False,
            status=PreBookingStatus.FAILED.value,
            message=f"Unexpected error: {error!s}",
        )

    def _report(self, started: float, prebooking_id: str, **fields) -> ExecutionReport:
        return ExecutionReport(
            prebooking_id=prebooking_id,
            execution_time_ms=round((self._clock.now() - started) * 1000, 1),
            **fields,
        )

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from prebooker.application.exceptions import SessionExpiredError, SessionMissingError
from prebooker.application.ports.prebooking_store import PreBookingStorePort
from prebooker.application.use_cases.claim_prebooking import ClaimPreBookingUseCase
from prebooker.application.use_cases.fire_booking import FireBookingUseCase
from prebooker.application.use_cases.session_freshness import SessionFreshnessGuard
from prebooker.application.utils.precise_wait import Clock
from prebooker.domain.entities.prebooking import PreBooking, PreBookingStatus


@dataclass
class BatchTickResult:
    total: int = 0
    completed: int = 0
    failed: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)


class BatchSchedulerUseCase:
    """
    Stateless fallback sweep, run by an external cron.

    Picks up every pending prebooking that is due, in creation order, and
    fires the claimed ones concurrently with a small fixed stagger. Shares the
    claim, freshness and firing code with the webhook executor, so a prebooking
    raced by both is fired at most once.
    """

    def __init__(
        self,
        store: PreBookingStorePort,
        claim: ClaimPreBookingUseCase,
        freshness_guard: SessionFreshnessGuard,
        fire: FireBookingUseCase,
        clock: Clock | None = None,
        stagger_ms: int = 50,
        window_seconds: float = 0.0,
    ) -> None:
        self._store = store
        self._claim = claim
        self._freshness_guard = freshness_guard
        self._fire = fire
        self._clock = clock or Clock()
        self._stagger = stagger_ms / 1000.0
        self._window = timedelta(seconds=window_seconds)
        self._logger = logging.getLogger(__name__)

    async def tick(self, now: datetime | None = None) -> BatchTickResult:
        now = now or self._clock.now_datetime()
        due = await self._store.find_due(now + self._window)
        result = BatchTickResult(total=len(due))
        if not due:
            self._logger.debug("No prebookings due")
            return result

        self._logger.info("Batch tick", extra={"count": len(due)})

        claimed: list[PreBooking] = []
        for prebooking in due:
            outcome = await self._claim.execute(prebooking.id)
            if outcome:
                claimed.append(outcome)
            else:
                result.skipped += 1

        start_ts = now.timestamp()
        statuses = await asyncio.gather(
            *(
                self._run_one(p, max(p.available_at.timestamp(), start_ts) + index * self._stagger)
                for index, p in enumerate(claimed)
            ),
            return_exceptions=True,
        )

        for prebooking, status in zip(claimed, statuses):
            if isinstance(status, BaseException):
                self._logger.error(
                    "Batch execution raised",
                    extra={"prebooking_id": prebooking.id, "error": str(status)},
                )
                result.failed += 1
                result.errors.append(f"{prebooking.id}: {status!s}")
            elif status == PreBookingStatus.COMPLETED.value:
                result.completed += 1
            elif status == PreBookingStatus.FAILED.value:
                result.failed += 1
            else:
                result.skipped += 1

        self._logger.info(
            "Batch tick finished",
            extra={
                "total": result.total,
                "completed": result.completed,
                "failed": result.failed,
                "skipped": result.skipped,
            },
        )
        return result

    async def _run_one(self, prebooking: PreBooking, target_ts: float) -> str:
        started = self._clock.now()
        try:
            session = await self._freshness_guard.ensure_fresh(prebooking.user_ref)
        except (SessionMissingError, SessionExpiredError) as e:
            await self._fire.record_failure(prebooking.id, str(e), expected=[PreBookingStatus.LOADED])
            return PreBookingStatus.FAILED.value
        except Exception as e:
            await self._fire.record_failure(
                prebooking.id, f"Unexpected error: {e!s}", expected=[PreBookingStatus.LOADED]
            )
            raise

        try:
            report = await self._fire.fire(
                prebooking,
                session.credentials,
                target_ts,
                prep_ms=(self._clock.now() - started) * 1000,
            )
        except Exception as e:
            await self._fire.record_failure(prebooking.id, f"Unexpected error: {e!s}")
            raise
        return report.status

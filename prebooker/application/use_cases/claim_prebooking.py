from __future__ import annotations

import logging
from dataclasses import dataclass

from prebooker.application.ports.prebooking_store import PreBookingStorePort
from prebooker.application.utils.precise_wait import Clock
from prebooker.domain.entities.prebooking import PreBooking


@dataclass(frozen=True)
class NotClaimable:
    """A claim miss. Falsy so callers can write `if not claimed:`."""

    prebooking_id: str
    reason: str  # "not_found" or "already_<status>"

    def __bool__(self) -> bool:
        return False


class ClaimPreBookingUseCase:
    def __init__(self, store: PreBookingStorePort, clock: Clock | None = None) -> None:
        self._store = store
        self._clock = clock or Clock()
        self._logger = logging.getLogger(__name__)

    async def execute(self, prebooking_id: str) -> PreBooking | NotClaimable:
        """
        Move a prebooking from pending to loaded, or report that someone else owns it.
        A miss is the expected outcome of a redelivered or concurrent wake-up.
        """
        claimed = await self._store.claim(prebooking_id, now=self._clock.now_datetime())
        if claimed is not None:
            self._logger.info("Prebooking claimed", extra={"prebooking_id": prebooking_id})
            return claimed

        existing = await self._store.find_by_id(prebooking_id)
        reason = "not_found" if existing is None else f"already_{existing.status.value}"
        self._logger.info("Prebooking not claimable", extra={"prebooking_id": prebooking_id, "reason": reason})
        return NotClaimable(prebooking_id=prebooking_id, reason=reason)

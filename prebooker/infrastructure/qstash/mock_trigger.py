from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from prebooker.application.ports.delayed_trigger import DelayedTriggerPort


class MockDelayedTrigger(DelayedTriggerPort):
    """Records scheduled deliveries instead of sending them."""

    def __init__(self) -> None:
        self.scheduled: dict[str, tuple[datetime, dict[str, Any]]] = {}
        self.cancelled: list[str] = []
        self._logger = logging.getLogger(__name__)

    async def schedule_at(self, instant: datetime, payload: dict[str, Any]) -> str:
        handle = f"mock_msg_{len(self.scheduled) + 1}"
        self.scheduled[handle] = (instant, payload)
        self._logger.info(
            "Mock trigger scheduled",
            extra={"schedule_ref": handle, "prebooking_id": payload.get("prebookingId"), "not_before": instant.isoformat()},
        )
        return handle

    async def cancel(self, handle: str) -> bool:
        if handle not in self.scheduled or handle in self.cancelled:
            return False
        self.cancelled.append(handle)
        self._logger.info("Mock trigger cancelled", extra={"schedule_ref": handle})
        return True

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any


class DelayedTriggerPort(ABC):
    """One-shot callback delivery at or after an instant, at-least-once."""

    @abstractmethod
    async def schedule_at(self, instant: datetime, payload: dict[str, Any]) -> str:
        """Schedule delivery of payload. Returns a handle usable with cancel()."""
        raise NotImplementedError

    @abstractmethod
    async def cancel(self, handle: str) -> bool:
        """Cancel a scheduled delivery. Returns False if it was already gone."""
        raise NotImplementedError

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable
from datetime import datetime
from typing import Any

from prebooker.domain.entities.prebooking import BookingIntent, PreBooking, PreBookingStatus


class PreBookingStorePort(ABC):
    @abstractmethod
    async def create(
        self,
        user_ref: str,
        venue_ref: str,
        booking_intent: BookingIntent,
        available_at: datetime,
    ) -> PreBooking:
        raise NotImplementedError

    @abstractmethod
    async def find_by_id(self, prebooking_id: str) -> PreBooking | None:
        raise NotImplementedError

    @abstractmethod
    async def claim(self, prebooking_id: str, now: datetime | None = None) -> PreBooking | None:
        """
        Conditional update: status=loaded, loaded_at=now WHERE id=? AND status=pending.
        Returns the updated record, or None when nothing matched.
        """
        raise NotImplementedError

    @abstractmethod
    async def update_status(
        self,
        prebooking_id: str,
        status: PreBookingStatus,
        expected: Iterable[PreBookingStatus],
        **fields: Any,
    ) -> PreBooking | None:
        """
        Conditional update guarded by the current status being one of `expected`.
        Returns None when the row is missing or its status did not match.
        Raises InvalidTransitionError when the edge is not part of the state graph.
        """
        raise NotImplementedError

    @abstractmethod
    async def set_schedule_ref(self, prebooking_id: str, schedule_ref: str) -> PreBooking | None:
        raise NotImplementedError

    @abstractmethod
    async def find_by_user(self, user_ref: str, venue_ref: str | None = None) -> list[PreBooking]:
        """Newest first."""
        raise NotImplementedError

    @abstractmethod
    async def count_pending_by_user(self, user_ref: str) -> int:
        raise NotImplementedError

    @abstractmethod
    async def find_due(self, before: datetime) -> list[PreBooking]:
        """Pending prebookings with available_at <= before, oldest created_at first."""
        raise NotImplementedError

    @abstractmethod
    async def delete(
        self,
        prebooking_id: str,
        only_if_status: Iterable[PreBookingStatus] | None = None,
    ) -> bool:
        """Returns True when a row was deleted."""
        raise NotImplementedError

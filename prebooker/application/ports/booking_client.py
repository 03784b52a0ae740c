from abc import ABC, abstractmethod

from prebooker.domain.entities.booking_response import BookingResponse
from prebooker.domain.entities.prebooking import BookingIntent
from prebooker.domain.entities.session import CredentialBundle


class BookingClientPort(ABC):
    @abstractmethod
    async def submit(self, intent: BookingIntent, credentials: CredentialBundle, venue_ref: str) -> BookingResponse:
        """Submit a booking. Failures come back as tagged responses, not exceptions."""
        raise NotImplementedError

    @abstractmethod
    async def cancel(
        self,
        booking_ref: str,
        credentials: CredentialBundle,
        venue_ref: str,
        family_id: str = "",
        late: bool = False,
    ) -> BookingResponse:
        raise NotImplementedError

from __future__ import annotations

import logging
from itertools import count

from prebooker.application.ports.booking_client import BookingClientPort
from prebooker.application.ports.credential_refresher import CredentialRefresherPort
from prebooker.domain.entities.booking_response import BOOK_STATE_BOOKED, BookingResponse, UpstreamKind
from prebooker.domain.entities.prebooking import BookingIntent
from prebooker.domain.entities.session import CredentialBundle, RefreshResult


class MockBookingClient(BookingClientPort):
    """Accepts every booking. Scripted responses can be queued for tests."""

    def __init__(self, responses: list[BookingResponse] | None = None) -> None:
        self._responses = list(responses or [])
        self._ids = count(1)
        self.submitted: list[tuple[BookingIntent, CredentialBundle, str]] = []
        self._logger = logging.getLogger(__name__)

    async def submit(self, intent: BookingIntent, credentials: CredentialBundle, venue_ref: str) -> BookingResponse:
        self.submitted.append((intent, credentials, venue_ref))
        if self._responses:
            response = self._responses.pop(0)
        else:
            response = BookingResponse(
                kind=UpstreamKind.OK,
                status_code=BOOK_STATE_BOOKED,
                booking_id=f"mock_booking_{next(self._ids)}",
            )
        self._logger.info(
            "Mock booking submitted",
            extra={"venue_ref": venue_ref, "status": response.status_code, "booking_id": response.booking_id},
        )
        return response

    async def cancel(
        self,
        booking_ref: str,
        credentials: CredentialBundle,
        venue_ref: str,
        family_id: str = "",
        late: bool = False,
    ) -> BookingResponse:
        self._logger.info("Mock booking cancelled", extra={"venue_ref": venue_ref, "booking_id": booking_ref})
        return BookingResponse(kind=UpstreamKind.OK, status_code=1, booking_id=booking_ref)


class MockCredentialRefresher(CredentialRefresherPort):
    def __init__(self, results: list[RefreshResult] | None = None) -> None:
        self._results = list(results or [])
        self.calls = 0

    async def refresh(self, current: CredentialBundle) -> RefreshResult:
        self.calls += 1
        if self._results:
            return self._results.pop(0)
        return RefreshResult(
            success=True,
            new_bundle=CredentialBundle(
                token=f"{current.token.split(':', 1)[0]}:r{self.calls}",
                cookies=dict(current.cookies),
                fingerprint=current.fingerprint,
            ),
        )

from __future__ import annotations

import logging
from typing import Any

import httpx

from prebooker.application.ports.booking_client import BookingClientPort
from prebooker.core.config import settings
from prebooker.domain.entities.booking_response import BOOK_STATE_BOOKED, BookingResponse, UpstreamKind
from prebooker.domain.entities.prebooking import BookingIntent
from prebooker.domain.entities.session import CredentialBundle

CANCEL_STATE_CANCELLED = 1


def format_cookie_header(cookies: dict[str, str]) -> str:
    return "; ".join(f"{name}={value}" for name, value in cookies.items())


class AimHarderBookingClient(BookingClientPort):
    def __init__(
        self,
        url_template: str | None = None,
        timeout: float | None = None,
        user_agent: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url_template = url_template or settings.UPSTREAM_BOOKING_URL_TEMPLATE
        self._timeout = timeout or settings.UPSTREAM_TIMEOUT_SECONDS
        self._user_agent = user_agent or settings.UPSTREAM_USER_AGENT
        self._transport = transport
        self._logger = logging.getLogger(__name__)

    async def submit(self, intent: BookingIntent, credentials: CredentialBundle, venue_ref: str) -> BookingResponse:
        form = {
            "day": intent.day,
            "familyId": intent.family_id,
            "id": intent.slot_id,
            "insist": "true" if intent.insist else "false",
        }
        data, failure = await self._post(venue_ref, "/api/book", form, credentials)
        if failure is not None:
            return failure

        if data.get("logout") == 1:
            self._logger.error("Upstream reported session logout", extra={"venue_ref": venue_ref})
            return BookingResponse(kind=UpstreamKind.AUTH, message="Session expired - authentication required")

        try:
            book_state = int(data["bookState"])
        except (KeyError, TypeError, ValueError):
            self._logger.error("Unexpected booking response", extra={"venue_ref": venue_ref, "body": str(data)[:500]})
            return BookingResponse(kind=UpstreamKind.TRANSIENT, message="Invalid booking response format")

        booking_id = data.get("id")
        booking_id = str(booking_id) if booking_id not in (None, "") else None
        message = data.get("errorMssg")
        kind = UpstreamKind.OK if book_state == BOOK_STATE_BOOKED else UpstreamKind.BUSINESS

        self._logger.info(
            "Upstream booking answered",
            extra={"venue_ref": venue_ref, "status": book_state, "booking_id": booking_id},
        )
        return BookingResponse(kind=kind, status_code=book_state, booking_id=booking_id, message=message)

    async def cancel(
        self,
        booking_ref: str,
        credentials: CredentialBundle,
        venue_ref: str,
        family_id: str = "",
        late: bool = False,
    ) -> BookingResponse:
        form = {"id": booking_ref, "late": "1" if late else "0", "familyId": family_id}
        data, failure = await self._post(venue_ref, "/api/cancelBook", form, credentials)
        if failure is not None:
            return failure

        if data.get("logout") == 1:
            return BookingResponse(kind=UpstreamKind.AUTH, message="Session expired - authentication required")

        cancel_state = data.get("cancelState")
        kind = UpstreamKind.OK if cancel_state == CANCEL_STATE_CANCELLED else UpstreamKind.BUSINESS
        return BookingResponse(kind=kind, status_code=cancel_state, booking_id=booking_ref, message=data.get("errorMssg"))

    async def _post(
        self,
        venue_ref: str,
        path: str,
        form: dict[str, str],
        credentials: CredentialBundle,
    ) -> tuple[dict[str, Any], BookingResponse | None]:
        base_url = self._url_template.format(venue=venue_ref)
        headers = {
            "Accept": "*/*",
            "X-Requested-With": "XMLHttpRequest",
            "User-Agent": self._user_agent,
            "Referer": f"{base_url}/",
            "Origin": base_url,
        }
        if credentials.cookies:
            headers["Cookie"] = format_cookie_header(credentials.cookies)

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                resp = await client.post(f"{base_url}{path}", data=form, headers=headers)
        except httpx.TimeoutException:
            self._logger.error("Upstream request timed out", extra={"venue_ref": venue_ref, "path": path})
            return {}, BookingResponse(kind=UpstreamKind.TRANSIENT, message="Request timeout")
        except httpx.HTTPError as e:
            self._logger.error("Upstream request failed", extra={"venue_ref": venue_ref, "path": path, "error": str(e)})
            return {}, BookingResponse(kind=UpstreamKind.TRANSIENT, message=f"Network error: {e!s}")

        if resp.status_code >= 400:
            self._logger.error(
                "Upstream HTTP error",
                extra={"venue_ref": venue_ref, "path": path, "status": resp.status_code, "body": resp.text[:500]},
            )
            return {}, BookingResponse(
                kind=UpstreamKind.TRANSIENT,
                status_code=resp.status_code,
                message=f"HTTP {resp.status_code}: {resp.reason_phrase}",
            )

        try:
            data = resp.json()
        except ValueError:
            self._logger.error("Upstream returned non-JSON body", extra={"venue_ref": venue_ref, "path": path})
            return {}, BookingResponse(kind=UpstreamKind.TRANSIENT, message="Invalid booking response format")
        if not isinstance(data, dict):
            return {}, BookingResponse(kind=UpstreamKind.TRANSIENT, message="Invalid booking response format")
        return data, None

from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import Any

import httpx

from prebooker.application.exceptions import TriggerSchedulingError
from prebooker.application.ports.delayed_trigger import DelayedTriggerPort
from prebooker.core.config import settings

EXECUTE_PATH = "/api/execute-prebooking"


class QStashTrigger(DelayedTriggerPort):
    def __init__(
        self,
        token: str | None = None,
        base_url: str | None = None,
        callback_base_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._token = token or settings.QSTASH_TOKEN
        self._base_url = (base_url or settings.QSTASH_URL).rstrip("/")
        self._callback_url = (callback_base_url or settings.CALLBACK_BASE_URL).rstrip("/") + EXECUTE_PATH
        self._transport = transport
        self._logger = logging.getLogger(__name__)

        if not self._token:
            raise ValueError("QSTASH_TOKEN is required for QStash scheduling")

    async def schedule_at(self, instant: datetime, payload: dict[str, Any]) -> str:
        not_before = math.floor(instant.timestamp())
        headers = {
            "Authorization": f"Bearer {self._token}",
            "Upstash-Not-Before": str(not_before),
        }
        url = f"{self._base_url}/v2/publish/{self._callback_url}"

        try:
            async with httpx.AsyncClient(timeout=10.0, transport=self._transport) as client:
                resp = await client.post(url, json=payload, headers=headers)
                resp.raise_for_status()
        except httpx.HTTPError as e:
            self._logger.error("Error scheduling trigger", extra={"error": str(e)})
            raise TriggerSchedulingError(f"Failed to schedule trigger: {e!s}") from e

        message_id = resp.json().get("messageId")
        if not message_id:
            raise TriggerSchedulingError("No messageId returned from QStash")

        self._logger.info(
            "Trigger scheduled",
            extra={"schedule_ref": message_id, "prebooking_id": payload.get("prebookingId"), "not_before": not_before},
        )
        return str(message_id)

    async def cancel(self, handle: str) -> bool:
        headers = {"Authorization": f"Bearer {self._token}"}
        try:
            async with httpx.AsyncClient(timeout=10.0, transport=self._transport) as client:
                resp = await client.delete(f"{self._base_url}/v2/messages/{handle}", headers=headers)
        except httpx.HTTPError as e:
            raise TriggerSchedulingError(f"Failed to cancel trigger: {e!s}") from e

        if resp.status_code == 404:
            # Already delivered or never existed.
            self._logger.info("Trigger not found on cancel", extra={"schedule_ref": handle})
            return False
        if resp.status_code >= 400:
            self._logger.error("Error cancelling trigger", extra={"schedule_ref": handle, "status": resp.status_code})
            raise TriggerSchedulingError(f"Failed to cancel trigger: HTTP {resp.status_code}")

        self._logger.info("Trigger cancelled", extra={"schedule_ref": handle})
        return True

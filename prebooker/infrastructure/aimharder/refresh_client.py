from __future__ import annotations

import logging

import httpx

from prebooker.application.ports.credential_refresher import CredentialRefresherPort
from prebooker.core.config import settings
from prebooker.domain.entities.session import CredentialBundle, RefreshResult


class AimHarderRefreshClient(CredentialRefresherPort):
    def __init__(
        self,
        refresh_url: str | None = None,
        fingerprint: str | None = None,
        timeout: float | None = None,
        user_agent: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._refresh_url = refresh_url or settings.UPSTREAM_REFRESH_URL
        self._fingerprint = fingerprint if fingerprint is not None else settings.UPSTREAM_FINGERPRINT
        self._timeout = timeout or settings.UPSTREAM_TIMEOUT_SECONDS
        self._user_agent = user_agent or settings.UPSTREAM_USER_AGENT
        self._transport = transport
        self._logger = logging.getLogger(__name__)

    async def refresh(self, current: CredentialBundle) -> RefreshResult:
        fingerprint = current.fingerprint or self._fingerprint
        form = {"token": current.token, "ciclo": "1", "fingerprint": fingerprint}
        headers = {"User-Agent": self._user_agent}

        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport, cookies=current.cookies
            ) as client:
                resp = await client.post(self._refresh_url, data=form, headers=headers)
        except httpx.HTTPError as e:
            self._logger.error("Token update request failed", extra={"error": str(e)})
            return RefreshResult(success=False, error=f"Token update failed: {e!s}")

        if resp.status_code >= 400:
            self._logger.error("Token update server error", extra={"status": resp.status_code})
            return RefreshResult(success=False, error=f"Server error: {resp.status_code} {resp.reason_phrase}")

        try:
            data = resp.json()
        except ValueError:
            return RefreshResult(success=False, error="Unexpected response format from token update service")

        if isinstance(data, dict) and "logout" in data:
            self._logger.info("Token update returned logout signal")
            return RefreshResult(success=False, logged_out=True, error="Session expired - logout required")

        new_token = data.get("newToken") if isinstance(data, dict) else None
        if not new_token:
            self._logger.error("Unexpected token update response", extra={"body": str(data)[:500]})
            return RefreshResult(success=False, error="Unexpected response format from token update service")

        cookies = dict(current.cookies)
        for name, value in resp.cookies.items():
            cookies[name] = value

        return RefreshResult(
            success=True,
            new_bundle=CredentialBundle(token=new_token, cookies=cookies, fingerprint=fingerprint),
        )

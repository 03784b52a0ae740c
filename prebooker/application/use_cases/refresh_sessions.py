from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from prebooker.application.ports.credential_refresher import CredentialRefresherPort
from prebooker.application.ports.session_store import SessionStorePort
from prebooker.application.utils.precise_wait import Clock
from prebooker.domain.entities.session import Session, SessionKind


@dataclass
class RefreshSweepResult:
    total: int = 0
    refreshed: int = 0
    skipped: int = 0
    failed: int = 0
    logged_out: int = 0
    errors: list[str] = field(default_factory=list)


class RefreshSessionsUseCase:
    """
    Keeps stored sessions alive between executions.

    Interactive sessions that come back logged out are deleted. Unattended
    sessions are never deleted here: prebookings depend on them, so a logout
    is only reported.
    """

    def __init__(
        self,
        session_store: SessionStorePort,
        refresher: CredentialRefresherPort,
        min_age_minutes: float = 20.0,
        clock: Clock | None = None,
    ) -> None:
        self._session_store = session_store
        self._refresher = refresher
        self._min_age_seconds = min_age_minutes * 60
        self._clock = clock or Clock()
        self._logger = logging.getLogger(__name__)

    async def run(self, now: datetime | None = None) -> RefreshSweepResult:
        now = now or self._clock.now_datetime()
        sessions = await self._session_store.list_sessions()
        result = RefreshSweepResult(total=len(sessions))

        for session in sessions:
            if session.age_seconds(now) <= self._min_age_seconds:
                result.skipped += 1
                continue
            await self._refresh_one(session, result)

        self._logger.info(
            "Session refresh sweep finished",
            extra={
                "total": result.total,
                "refreshed": result.refreshed,
                "skipped": result.skipped,
                "failed": result.failed,
            },
        )
        return result

    async def _refresh_one(self, session: Session, result: RefreshSweepResult) -> None:
        ctx = {"user_ref": session.user_ref, "session_kind": session.kind.value}
        try:
            outcome = await self._refresher.refresh(session.credentials)
        except Exception as e:
            self._logger.warning("Session refresh raised", extra={**ctx, "error": str(e)})
            await self._session_store.mark_refresh_outcome(session.user_ref, False, str(e), session.kind)
            result.failed += 1
            result.errors.append(f"{session.user_ref}/{session.kind.value}: {e!s}")
            return

        if outcome.logged_out:
            result.logged_out += 1
            if session.kind == SessionKind.INTERACTIVE:
                await self._session_store.delete_session(session.user_ref, session.kind)
                self._logger.info("Interactive session expired and deleted", extra=ctx)
            else:
                await self._session_store.mark_refresh_outcome(
                    session.user_ref, False, outcome.error or "logged out", session.kind
                )
                self._logger.warning("Unattended session reported logged out; keeping it", extra=ctx)
            return

        if not outcome.success or outcome.new_bundle is None:
            await self._session_store.mark_refresh_outcome(session.user_ref, False, outcome.error, session.kind)
            result.failed += 1
            result.errors.append(f"{session.user_ref}/{session.kind.value}: {outcome.error}")
            return

        await self._session_store.update_credentials(session.user_ref, outcome.new_bundle, session.kind)
        await self._session_store.mark_refresh_outcome(session.user_ref, True, None, session.kind)
        result.refreshed += 1
        self._logger.debug("Session refreshed", extra=ctx)

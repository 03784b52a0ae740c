from __future__ import annotations

import logging
from dataclasses import replace

from prebooker.application.exceptions import SessionExpiredError, SessionMissingError
from prebooker.application.ports.credential_refresher import CredentialRefresherPort
from prebooker.application.ports.session_store import SessionStorePort
from prebooker.application.utils.booking_outcome import MSG_SESSION_EXPIRED
from prebooker.application.utils.precise_wait import Clock
from prebooker.domain.entities.session import Session, SessionKind


class SessionFreshnessGuard:
    """
    Guarantees the credentials used for a booking were refreshed recently.

    Stale sessions are refreshed inline and persisted under the same identity;
    the refreshed bundle is returned directly, without re-reading the store.
    A logged-out answer is terminal. Transient refresh failures fall back to the
    existing credentials since the background refresher may have kept them valid.
    """

    def __init__(
        self,
        session_store: SessionStorePort,
        refresher: CredentialRefresherPort,
        staleness_minutes: float = 25.0,
        clock: Clock | None = None,
    ) -> None:
        self._session_store = session_store
        self._refresher = refresher
        self._staleness_seconds = staleness_minutes * 60
        self._clock = clock or Clock()
        self._logger = logging.getLogger(__name__)

    def is_stale(self, session: Session) -> bool:
        if session.last_refreshed_at is None:
            return True
        age = (self._clock.now_datetime() - session.last_refreshed_at).total_seconds()
        return age > self._staleness_seconds

    async def ensure_fresh(
        self,
        user_ref: str,
        session: Session | None = None,
        kind: SessionKind = SessionKind.UNATTENDED,
    ) -> Session:
        if session is None or session.user_ref != user_ref or session.kind != kind:
            session = await self._session_store.get_session(user_ref, kind)
        if session is None or session.user_ref != user_ref:
            raise SessionMissingError(f"No {kind.value} session for user")

        if not self.is_stale(session):
            self._logger.debug("Session fresh", extra={"user_ref": user_ref, "session_kind": kind.value})
            return session

        self._logger.info("Session stale, refreshing", extra={"user_ref": user_ref, "session_kind": kind.value})
        try:
            result = await self._refresher.refresh(session.credentials)
        except Exception as e:
            self._logger.warning(
                "Session refresh raised; continuing with existing credentials",
                extra={"user_ref": user_ref, "error": str(e)},
            )
            await self._record_outcome(user_ref, False, str(e), kind)
            return session

        if result.logged_out:
            self._logger.error("Session logged out upstream", extra={"user_ref": user_ref, "session_kind": kind.value})
            await self._record_outcome(user_ref, False, result.error or "logged out", kind)
            raise SessionExpiredError(MSG_SESSION_EXPIRED)

        if not result.success or result.new_bundle is None:
            self._logger.warning(
                "Session refresh failed; continuing with existing credentials",
                extra={"user_ref": user_ref, "error": result.error},
            )
            await self._record_outcome(user_ref, False, result.error, kind)
            return session

        try:
            await self._session_store.update_credentials(user_ref, result.new_bundle, kind)
        except Exception as e:
            # The rotated token is still valid in memory for this execution.
            self._logger.error("Could not persist refreshed credentials", extra={"user_ref": user_ref, "error": str(e)})
        else:
            await self._record_outcome(user_ref, True, None, kind)
        self._logger.info("Session refreshed", extra={"user_ref": user_ref, "session_kind": kind.value})
        return replace(
            session,
            credentials=result.new_bundle,
            last_refreshed_at=self._clock.now_datetime(),
            refresh_count=session.refresh_count + 1,
            last_refresh_error=None,
        )

    async def _record_outcome(self, user_ref: str, success: bool, error: str | None, kind: SessionKind) -> None:
        # Bookkeeping only; must not abort the booking path.
        try:
            await self._session_store.mark_refresh_outcome(user_ref, success, error, kind)
        except Exception as e:
            self._logger.warning("Could not record refresh outcome", extra={"user_ref": user_ref, "error": str(e)})

from __future__ import annotations

import asyncio

import pytest

from conftest import make_session
from prebooker.application.exceptions import SessionExpiredError, SessionMissingError
from prebooker.application.use_cases.session_freshness import SessionFreshnessGuard
from prebooker.domain.entities.session import RefreshResult, SessionKind
from prebooker.infrastructure.aimharder.mock_upstream import MockCredentialRefresher
from prebooker.infrastructure.store.memory_store import MemorySessionStore


def _guard(clock, refresher, store):
    return SessionFreshnessGuard(store, refresher, staleness_minutes=25, clock=clock)


def test_fresh_session_is_returned_without_refresh(clock):
    store = MemorySessionStore()
    refresher = MockCredentialRefresher()
    asyncio.run(store.save_session(make_session("u1", clock, refreshed_minutes_ago=1)))

    session = asyncio.run(_guard(clock, refresher, store).ensure_fresh("u1"))

    assert session.credentials.token == "tok"
    assert refresher.calls == 0


def test_stale_session_is_refreshed_and_persisted(clock):
    store = MemorySessionStore()
    refresher = MockCredentialRefresher()
    asyncio.run(store.save_session(make_session("u1", clock, refreshed_minutes_ago=26)))

    session = asyncio.run(_guard(clock, refresher, store).ensure_fresh("u1"))
    stored = asyncio.run(store.get_unattended_session("u1"))

    assert refresher.calls == 1
    assert session.credentials.token == "tok:r1"
    assert stored.credentials.token == "tok:r1"
    assert stored.refresh_count == 1
    assert session.last_refreshed_at == clock.now_datetime()


def test_never_refreshed_session_counts_as_stale(clock):
    store = MemorySessionStore()
    refresher = MockCredentialRefresher()
    asyncio.run(store.save_session(make_session("u1", clock, refreshed_minutes_ago=None)))

    asyncio.run(_guard(clock, refresher, store).ensure_fresh("u1"))
    assert refresher.calls == 1


def test_only_the_unattended_session_is_used(clock):
    store = MemorySessionStore()
    asyncio.run(store.save_session(make_session("u1", clock, kind=SessionKind.INTERACTIVE)))

    with pytest.raises(SessionMissingError):
        asyncio.run(_guard(clock, MockCredentialRefresher(), store).ensure_fresh("u1"))


def test_logged_out_refresh_is_terminal(clock):
    store = MemorySessionStore()
    refresher = MockCredentialRefresher([RefreshResult(success=False, logged_out=True, error="logout")])
    asyncio.run(store.save_session(make_session("u1", clock, refreshed_minutes_ago=40)))

    with pytest.raises(SessionExpiredError, match="Session expired - please login again"):
        asyncio.run(_guard(clock, refresher, store).ensure_fresh("u1"))

    stored = asyncio.run(store.get_unattended_session("u1"))
    assert stored is not None
    assert stored.last_refresh_error == "logout"


def test_transient_refresh_failure_keeps_existing_credentials(clock):
    store = MemorySessionStore()
    refresher = MockCredentialRefresher([RefreshResult(success=False, error="Server error: 502")])
    asyncio.run(store.save_session(make_session("u1", clock, refreshed_minutes_ago=40)))

    session = asyncio.run(_guard(clock, refresher, store).ensure_fresh("u1"))
    stored = asyncio.run(store.get_unattended_session("u1"))

    assert session.credentials.token == "tok"
    assert stored.last_refresh_error == "Server error: 502"


class _RaisingRefresher(MockCredentialRefresher):
    async def refresh(self, current):
        raise ConnectionError("connection reset")


def test_refresher_exception_keeps_existing_credentials(clock):
    store = MemorySessionStore()
    asyncio.run(store.save_session(make_session("u1", clock, refreshed_minutes_ago=40)))

    session = asyncio.run(_guard(clock, _RaisingRefresher(), store).ensure_fresh("u1"))
    assert session.credentials.token == "tok"


class _MisroutingStore(MemorySessionStore):
    """Hands back whichever session it holds, regardless of the user asked for."""

    async def get_session(self, user_ref, kind):
        sessions = await self.list_sessions()
        return sessions[0] if sessions else None


def test_session_of_another_user_is_never_used(clock):
    store = _MisroutingStore()
    asyncio.run(store.save_session(make_session("alice_smith", clock, token="ALICE")))

    with pytest.raises(SessionMissingError):
        asyncio.run(_guard(clock, MockCredentialRefresher(), store).ensure_fresh("alice smith"))

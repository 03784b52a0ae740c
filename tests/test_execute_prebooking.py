"""
End-to-end execution of a single prebooking wake-up, driven by a virtual clock.
"""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from conftest import make_session
from prebooker.application.exceptions import InvalidSecurityTokenError
from prebooker.application.use_cases.claim_prebooking import ClaimPreBookingUseCase
from prebooker.application.use_cases.execute_prebooking import ExecutePreBookingUseCase
from prebooker.application.use_cases.fire_booking import FireBookingUseCase
from prebooker.application.use_cases.session_freshness import SessionFreshnessGuard
from prebooker.domain.entities.booking_response import BookingResponse, UpstreamKind
from prebooker.domain.entities.prebooking import BookingIntent, PreBookingStatus
from prebooker.infrastructure.aimharder.mock_upstream import MockBookingClient, MockCredentialRefresher
from prebooker.infrastructure.security.token_codec import SecurityTokenCodec
from prebooker.infrastructure.store.memory_store import MemoryPreBookingStore, MemorySessionStore

SECRET = "test-secret"
INTENT = BookingIntent(day="20250214", slot_id="12345", family_id="", insist=False)


class TimedBookingClient(MockBookingClient):
    def __init__(self, clock, responses=None):
        super().__init__(responses)
        self.fired_at: list[float] = []
        self._clock = clock

    async def submit(self, intent, credentials, venue_ref):
        self.fired_at.append(self._clock.now())
        return await super().submit(intent, credentials, venue_ref)


class ExplodingBookingClient(MockBookingClient):
    async def submit(self, intent, credentials, venue_ref):
        raise RuntimeError("socket closed")


def build(clock, booking_client=None, refresher=None, sessions=None):
    store = MemoryPreBookingStore(clock=clock)
    sessions = sessions or MemorySessionStore(clock=clock)
    booking_client = booking_client or TimedBookingClient(clock)
    refresher = refresher or MockCredentialRefresher()
    use_case = ExecutePreBookingUseCase(
        codec=SecurityTokenCodec(SECRET),
        claim=ClaimPreBookingUseCase(store, clock=clock),
        session_store=sessions,
        freshness_guard=SessionFreshnessGuard(sessions, refresher, staleness_minutes=25, clock=clock),
        fire=FireBookingUseCase(store, booking_client, clock=clock, spin_threshold_ms=15),
        clock=clock,
    )
    return use_case, store, sessions, booking_client


def _create(store, sessions, clock, user_ref="user@example.com", offset_seconds=5, session=True):
    async def scenario():
        if session:
            await sessions.save_session(make_session(user_ref, clock, refreshed_minutes_ago=1))
        return await store.create(
            user_ref,
            "crossfitbox",
            INTENT,
            clock.now_datetime() + timedelta(seconds=offset_seconds),
        )

    return asyncio.run(scenario())


def _token(prebooking):
    return SecurityTokenCodec(SECRET).issue(prebooking.id, prebooking.available_at_ms)


def test_fires_at_available_at_and_completes(clock):
    use_case, store, sessions, client = build(clock)
    prebooking = _create(store, sessions, clock)

    report = asyncio.run(
        use_case.execute(prebooking.id, prebooking.available_at_ms, _token(prebooking), user_ref=prebooking.user_ref)
    )
    stored = asyncio.run(store.find_by_id(prebooking.id))

    assert report.success
    assert report.status == "completed"
    assert report.booking_id == "mock_booking_1"
    assert stored.status == PreBookingStatus.COMPLETED
    assert stored.result.booking_id == "mock_booking_1"
    assert stored.result.timing.fire_latency_ms is not None

    target = prebooking.available_at.timestamp()
    assert len(client.fired_at) == 1
    assert client.fired_at[0] >= target
    assert client.fired_at[0] - target < 0.005
    assert 0 <= report.fire_latency_ms < 5


def test_redelivered_wake_up_is_a_no_op(clock):
    use_case, store, sessions, client = build(clock)
    prebooking = _create(store, sessions, clock)
    token = _token(prebooking)

    first = asyncio.run(use_case.execute(prebooking.id, prebooking.available_at_ms, token))
    second = asyncio.run(use_case.execute(prebooking.id, prebooking.available_at_ms, token))

    assert first.status == "completed"
    assert second.success
    assert second.status == "completed"
    assert second.booking_id is None
    assert len(client.fired_at) == 1


def test_concurrent_wake_ups_fire_once(clock):
    use_case, store, sessions, client = build(clock)
    prebooking = _create(store, sessions, clock)
    token = _token(prebooking)

    async def scenario():
        return await asyncio.gather(
            *(use_case.execute(prebooking.id, prebooking.available_at_ms, token) for _ in range(10))
        )

    reports = asyncio.run(scenario())

    assert len(client.fired_at) == 1
    assert sum(1 for r in reports if r.booking_id) == 1


def test_bad_token_is_rejected_before_claim(clock):
    use_case, store, sessions, client = build(clock)
    prebooking = _create(store, sessions, clock)

    with pytest.raises(InvalidSecurityTokenError):
        asyncio.run(use_case.execute(prebooking.id, prebooking.available_at_ms, "0" * 64))

    assert asyncio.run(store.find_by_id(prebooking.id)).status == PreBookingStatus.PENDING
    assert client.fired_at == []


def test_unknown_prebooking_is_reported_not_found(clock):
    use_case, store, sessions, client = build(clock)
    execute_at_ms = int((clock.now() + 5) * 1000)
    token = SecurityTokenCodec(SECRET).issue("gone", execute_at_ms)

    report = asyncio.run(use_case.execute("gone", execute_at_ms, token))

    assert not report.success
    assert report.status == "not_found"


def test_missing_session_fails_without_firing(clock):
    use_case, store, sessions, client = build(clock)
    prebooking = _create(store, sessions, clock, session=False)

    report = asyncio.run(use_case.execute(prebooking.id, prebooking.available_at_ms, _token(prebooking)))
    stored = asyncio.run(store.find_by_id(prebooking.id))

    assert not report.success
    assert stored.status == PreBookingStatus.FAILED
    assert stored.error_message
    assert client.fired_at == []


def test_payload_user_is_not_trusted_over_the_stored_owner(clock):
    use_case, store, sessions, client = build(clock)
    prebooking = _create(store, sessions, clock)
    asyncio.run(sessions.save_session(make_session("intruder", clock, token="intruder-token")))

    asyncio.run(use_case.execute(prebooking.id, prebooking.available_at_ms, _token(prebooking), user_ref="intruder"))

    _, credentials, _ = client.submitted[0]
    assert credentials.token == "tok"


def test_preparation_overrun_fires_immediately(clock):
    use_case, store, sessions, client = build(clock)
    prebooking = _create(store, sessions, clock)
    clock.advance(8)

    report = asyncio.run(use_case.execute(prebooking.id, prebooking.available_at_ms, _token(prebooking)))

    assert report.status == "completed"
    assert client.fired_at[0] == pytest.approx(prebooking.available_at.timestamp() + 3)
    assert report.fire_latency_ms == pytest.approx(3000, abs=1)


def test_upstream_rejection_is_recorded_verbatim(clock):
    rejection = BookingResponse(kind=UpstreamKind.BUSINESS, status_code=-8, message="Has alcanzado el máximo de reservas")
    use_case, store, sessions, client = build(clock, booking_client=TimedBookingClient(clock, [rejection]))
    prebooking = _create(store, sessions, clock)

    report = asyncio.run(use_case.execute(prebooking.id, prebooking.available_at_ms, _token(prebooking)))
    stored = asyncio.run(store.find_by_id(prebooking.id))

    assert not report.success
    assert report.status == "failed"
    assert stored.error_message == "Has alcanzado el máximo de reservas"
    assert stored.result.status_code == -8


def test_booking_client_exception_ends_failed_not_executing(clock):
    use_case, store, sessions, _ = build(clock, booking_client=ExplodingBookingClient())
    prebooking = _create(store, sessions, clock)

    report = asyncio.run(use_case.execute(prebooking.id, prebooking.available_at_ms, _token(prebooking)))
    stored = asyncio.run(store.find_by_id(prebooking.id))

    assert not report.success
    assert stored.status == PreBookingStatus.FAILED
    assert "socket closed" in stored.error_message


class FlakySessionStore(MemorySessionStore):
    """Fails the first `failures` reads, then behaves normally."""

    def __init__(self, clock, failures):
        super().__init__(clock=clock)
        self.failures = failures

    async def get_session(self, user_ref, kind):
        if self.failures:
            self.failures -= 1
            raise OSError("session store hiccup")
        return await super().get_session(user_ref, kind)


def test_failed_concurrent_session_fetch_is_retried(clock):
    sessions = FlakySessionStore(clock, failures=1)
    use_case, store, sessions, client = build(clock, sessions=sessions)
    prebooking = _create(store, sessions, clock)

    report = asyncio.run(
        use_case.execute(prebooking.id, prebooking.available_at_ms, _token(prebooking), user_ref=prebooking.user_ref)
    )

    assert report.status == "completed"
    assert asyncio.run(store.find_by_id(prebooking.id)).status == PreBookingStatus.COMPLETED


def test_session_store_outage_after_claim_ends_failed(clock):
    sessions = FlakySessionStore(clock, failures=2)
    use_case, store, sessions, client = build(clock, sessions=sessions)
    prebooking = _create(store, sessions, clock)

    report = asyncio.run(
        use_case.execute(prebooking.id, prebooking.available_at_ms, _token(prebooking), user_ref=prebooking.user_ref)
    )
    stored = asyncio.run(store.find_by_id(prebooking.id))

    assert not report.success
    assert stored.status == PreBookingStatus.FAILED
    assert "session store hiccup" in stored.error_message
    assert client.fired_at == []

from __future__ import annotations

import asyncio
from datetime import timedelta

from conftest import make_session
from prebooker.application.use_cases.batch_scheduler import BatchSchedulerUseCase
from prebooker.application.use_cases.claim_prebooking import ClaimPreBookingUseCase
from prebooker.application.use_cases.fire_booking import FireBookingUseCase
from prebooker.application.use_cases.session_freshness import SessionFreshnessGuard
from prebooker.domain.entities.prebooking import BookingIntent, PreBookingStatus
from prebooker.infrastructure.aimharder.mock_upstream import MockBookingClient, MockCredentialRefresher
from prebooker.infrastructure.store.memory_store import MemoryPreBookingStore, MemorySessionStore


class RecordingBookingClient(MockBookingClient):
    def __init__(self, clock):
        super().__init__()
        self._clock = clock
        self.fired: list[tuple[str, float]] = []

    async def submit(self, intent, credentials, venue_ref):
        self.fired.append((intent.slot_id, self._clock.now()))
        return await super().submit(intent, credentials, venue_ref)


class StaleDueStore(MemoryPreBookingStore):
    """Returns extra rows from find_due, as if they were claimed after the query ran."""

    def __init__(self, clock=None):
        super().__init__(clock=clock)
        self.extra = []

    async def find_due(self, before):
        return await super().find_due(before) + self.extra


def build(clock, store=None, sessions=None):
    store = store or MemoryPreBookingStore(clock=clock)
    sessions = sessions or MemorySessionStore(clock=clock)
    client = RecordingBookingClient(clock)
    scheduler = BatchSchedulerUseCase(
        store=store,
        claim=ClaimPreBookingUseCase(store, clock=clock),
        freshness_guard=SessionFreshnessGuard(sessions, MockCredentialRefresher(), clock=clock),
        fire=FireBookingUseCase(store, client, clock=clock),
        clock=clock,
        stagger_ms=50,
    )
    return scheduler, store, sessions, client


def test_due_prebookings_fire_in_creation_order_with_stagger(clock):
    scheduler, store, sessions, client = build(clock)
    now = clock.now_datetime()

    async def setup():
        for user in ("a", "b", "c"):
            await sessions.save_session(make_session(user, clock))
        created = []
        for user, slot in (("a", "1"), ("b", "2"), ("c", "3")):
            created.append(await store.create(user, "box", BookingIntent(day="20250214", slot_id=slot), now - timedelta(seconds=1)))
        await store.create("a", "box", BookingIntent(day="20250215", slot_id="future"), now + timedelta(hours=2))
        return created

    created = asyncio.run(setup())
    result = asyncio.run(scheduler.tick())

    assert result.total == 3
    assert result.completed == 3
    assert result.failed == 0
    assert [slot for slot, _ in client.fired] == ["1", "2", "3"]

    start = now.timestamp()
    for index, (_, fired_at) in enumerate(client.fired):
        assert fired_at >= start + index * 0.05

    statuses = [asyncio.run(store.find_by_id(p.id)).status for p in created]
    assert statuses == [PreBookingStatus.COMPLETED] * 3


def test_nothing_due_is_an_empty_tick(clock):
    scheduler, store, sessions, client = build(clock)
    asyncio.run(store.create("a", "box", BookingIntent(day="20250215", slot_id="9"), clock.now_datetime() + timedelta(hours=1)))

    result = asyncio.run(scheduler.tick())

    assert result.total == 0
    assert client.fired == []


def test_rows_claimed_elsewhere_are_skipped(clock):
    store = StaleDueStore(clock)
    scheduler, store, sessions, client = build(clock, store)

    async def setup():
        await sessions.save_session(make_session("a", clock))
        taken = await store.create("a", "box", BookingIntent(day="20250214", slot_id="1"), clock.now_datetime())
        await store.claim(taken.id)
        store.extra.append(taken)

    asyncio.run(setup())
    result = asyncio.run(scheduler.tick())

    assert result.total == 1
    assert result.skipped == 1
    assert client.fired == []


def test_missing_session_fails_the_prebooking(clock):
    scheduler, store, sessions, client = build(clock)
    prebooking = asyncio.run(
        store.create("nobody", "box", BookingIntent(day="20250214", slot_id="1"), clock.now_datetime())
    )

    result = asyncio.run(scheduler.tick())

    assert result.failed == 1
    assert asyncio.run(store.find_by_id(prebooking.id)).status == PreBookingStatus.FAILED
    assert client.fired == []


class BrokenSessionStore(MemorySessionStore):
    async def get_session(self, user_ref, kind):
        raise OSError("session store unavailable")


def test_unexpected_session_error_fails_the_claimed_row(clock):
    scheduler, store, sessions, client = build(clock, sessions=BrokenSessionStore(clock=clock))
    prebooking = asyncio.run(
        store.create("a", "box", BookingIntent(day="20250214", slot_id="1"), clock.now_datetime())
    )

    result = asyncio.run(scheduler.tick())
    stored = asyncio.run(store.find_by_id(prebooking.id))

    assert result.failed == 1
    assert result.errors == [f"{prebooking.id}: session store unavailable"]
    assert stored.status == PreBookingStatus.FAILED
    assert "session store unavailable" in stored.error_message
    assert client.fired == []


def test_created_at_follows_the_injected_clock(clock):
    scheduler, store, sessions, client = build(clock)

    async def setup():
        for user, slot in (("a", "1"), ("b", "2")):
            await sessions.save_session(make_session(user, clock))
        first = await store.create("a", "box", BookingIntent(day="20250214", slot_id="1"), clock.now_datetime())
        clock.advance(1)
        second = await store.create("b", "box", BookingIntent(day="20250214", slot_id="2"), clock.now_datetime())
        return first, second

    first, second = asyncio.run(setup())

    assert first.created_at == second.created_at - timedelta(seconds=1)
    assert asyncio.run(store.find_due(clock.now_datetime())) == [first, second]

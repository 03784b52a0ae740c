from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from prebooker.application.exceptions import (
    PreBookingInFlightError,
    PreBookingLimitError,
    PreBookingNotFoundError,
    PreBookingRejectedError,
    TriggerSchedulingError,
)
from prebooker.application.use_cases.prebooking_lifecycle import PreBookingLifecycleUseCase
from prebooker.domain.entities.prebooking import BookingIntent, PreBookingStatus
from prebooker.infrastructure.qstash.mock_trigger import MockDelayedTrigger
from prebooker.infrastructure.security.token_codec import SecurityTokenCodec
from prebooker.infrastructure.store.memory_store import MemoryPreBookingStore

REJECTION = "No puedes reservar clases con más de 4 días de antelación"
INTENT = BookingIntent(day="20250214", slot_id="12345")
CLASS_AT = datetime(2025, 2, 14, 20, 30, tzinfo=timezone.utc)


class FailingTrigger(MockDelayedTrigger):
    async def schedule_at(self, instant, payload):
        raise TriggerSchedulingError("qstash down")


def build(trigger=None, max_pending=15):
    store = MemoryPreBookingStore()
    trigger = trigger or MockDelayedTrigger()
    codec = SecurityTokenCodec("test-secret")
    lifecycle = PreBookingLifecycleUseCase(store, trigger, codec, early_offset_seconds=5, max_pending=max_pending)
    return lifecycle, store, trigger, codec


def test_create_schedules_trigger_ahead_of_available_at():
    lifecycle, store, trigger, codec = build()

    prebooking = asyncio.run(
        lifecycle.create_from_rejection("u1", "box", INTENT, REJECTION, class_instant_utc=CLASS_AT, timezone="Europe/Madrid")
    )

    assert prebooking.available_at == datetime(2025, 2, 10, 20, 30, tzinfo=timezone.utc)
    assert prebooking.status == PreBookingStatus.PENDING
    assert prebooking.schedule_ref == "mock_msg_1"

    instant, payload = trigger.scheduled["mock_msg_1"]
    assert instant == prebooking.available_at - timedelta(seconds=5)
    assert payload["prebookingId"] == prebooking.id
    assert payload["executeAt"] == prebooking.available_at_ms
    assert payload["userRef"] == "u1"
    assert codec.verify(payload["securityToken"], prebooking.id, payload["executeAt"], now_ms=payload["executeAt"])


def test_create_accepts_venue_local_class_time():
    lifecycle, store, trigger, codec = build()

    prebooking = asyncio.run(
        lifecycle.create_from_rejection("u1", "box", INTENT, REJECTION, class_local_time="21:30", timezone="Europe/Madrid")
    )

    assert prebooking.available_at == datetime(2025, 2, 10, 20, 30, tzinfo=timezone.utc)


def test_unparseable_rejection_creates_nothing():
    lifecycle, store, trigger, codec = build()

    with pytest.raises(PreBookingRejectedError):
        asyncio.run(lifecycle.create_from_rejection("u1", "box", INTENT, "Clase completa", class_instant_utc=CLASS_AT))

    assert asyncio.run(store.find_by_user("u1")) == []


def test_pending_limit_applies_to_non_admins_only():
    lifecycle, store, trigger, codec = build(max_pending=2)

    async def scenario():
        for _ in range(2):
            await lifecycle.create_from_rejection("u1", "box", INTENT, REJECTION, class_instant_utc=CLASS_AT)
        with pytest.raises(PreBookingLimitError) as excinfo:
            await lifecycle.create_from_rejection("u1", "box", INTENT, REJECTION, class_instant_utc=CLASS_AT)
        admin = await lifecycle.create_from_rejection(
            "u1", "box", INTENT, REJECTION, class_instant_utc=CLASS_AT, is_admin=True
        )
        return excinfo.value, admin

    error, admin = asyncio.run(scenario())
    assert error.current == 2
    assert error.maximum == 2
    assert admin.status == PreBookingStatus.PENDING


def test_trigger_failure_leaves_prebooking_pending_for_batch_fallback():
    lifecycle, store, trigger, codec = build(trigger=FailingTrigger())

    prebooking = asyncio.run(
        lifecycle.create_from_rejection("u1", "box", INTENT, REJECTION, class_instant_utc=CLASS_AT)
    )
    stored = asyncio.run(store.find_by_id(prebooking.id))

    assert stored.status == PreBookingStatus.PENDING
    assert stored.schedule_ref is None


def test_list_is_newest_first_and_filters_by_venue():
    lifecycle, store, trigger, codec = build()

    async def scenario():
        first = await lifecycle.create_from_rejection("u1", "box-a", INTENT, REJECTION, class_instant_utc=CLASS_AT)
        second = await lifecycle.create_from_rejection("u1", "box-b", INTENT, REJECTION, class_instant_utc=CLASS_AT)
        await lifecycle.create_from_rejection("u2", "box-a", INTENT, REJECTION, class_instant_utc=CLASS_AT)
        return first, second, await lifecycle.list_for_user("u1"), await lifecycle.list_for_user("u1", "box-a")

    first, second, everything, box_a = asyncio.run(scenario())
    assert {p.id for p in everything} == {first.id, second.id}
    assert everything[0].created_at >= everything[1].created_at
    assert [p.id for p in box_a] == [first.id]


def test_cancel_pending_deletes_and_cancels_trigger():
    lifecycle, store, trigger, codec = build()
    prebooking = asyncio.run(lifecycle.create_from_rejection("u1", "box", INTENT, REJECTION, class_instant_utc=CLASS_AT))

    asyncio.run(lifecycle.cancel("u1", prebooking.id))

    assert asyncio.run(store.find_by_id(prebooking.id)) is None
    assert trigger.cancelled == ["mock_msg_1"]


def test_cancel_by_another_user_looks_like_not_found():
    lifecycle, store, trigger, codec = build()
    prebooking = asyncio.run(lifecycle.create_from_rejection("u1", "box", INTENT, REJECTION, class_instant_utc=CLASS_AT))

    with pytest.raises(PreBookingNotFoundError):
        asyncio.run(lifecycle.cancel("u2", prebooking.id))
    assert asyncio.run(store.find_by_id(prebooking.id)) is not None


def test_cancel_after_claim_is_refused():
    lifecycle, store, trigger, codec = build()
    prebooking = asyncio.run(lifecycle.create_from_rejection("u1", "box", INTENT, REJECTION, class_instant_utc=CLASS_AT))
    asyncio.run(store.claim(prebooking.id))

    with pytest.raises(PreBookingInFlightError):
        asyncio.run(lifecycle.cancel("u1", prebooking.id))

    assert asyncio.run(store.find_by_id(prebooking.id)).status == PreBookingStatus.LOADED
    assert trigger.cancelled == []


def test_cancel_racing_claim_has_one_winner():
    lifecycle, store, trigger, codec = build()

    async def scenario():
        prebooking = await lifecycle.create_from_rejection("u1", "box", INTENT, REJECTION, class_instant_utc=CLASS_AT)
        cancel, claim = await asyncio.gather(
            lifecycle.cancel("u1", prebooking.id),
            store.claim(prebooking.id),
            return_exceptions=True,
        )
        return prebooking, cancel, claim, await store.find_by_id(prebooking.id)

    prebooking, cancel, claim, remaining = asyncio.run(scenario())

    cancelled = not isinstance(cancel, Exception)
    claimed = claim is not None
    assert cancelled != claimed
    if cancelled:
        assert remaining is None
    else:
        assert isinstance(cancel, (PreBookingInFlightError, PreBookingNotFoundError))
        assert remaining.status == PreBookingStatus.LOADED


def test_terminal_rows_can_be_removed_by_owner():
    lifecycle, store, trigger, codec = build()

    async def scenario():
        prebooking = await lifecycle.create_from_rejection("u1", "box", INTENT, REJECTION, class_instant_utc=CLASS_AT)
        await store.claim(prebooking.id)
        await store.update_status(prebooking.id, PreBookingStatus.FAILED, expected=[PreBookingStatus.LOADED])
        await lifecycle.cancel("u1", prebooking.id)
        return await store.find_by_id(prebooking.id)

    assert asyncio.run(scenario()) is None
    assert trigger.cancelled == []

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from prebooker.application.utils.precise_wait import Clock
from prebooker.domain.entities.session import CredentialBundle, Session, SessionKind

START = datetime(2025, 2, 10, 20, 29, 55, tzinfo=timezone.utc)


class FakeClock(Clock):
    """Virtual time. Every sleep advances the clock, sleep(0) by one millisecond."""

    def __init__(self, start: datetime = START) -> None:
        self._now = start.timestamp()
        self.sleeps: list[float] = []

    def now(self) -> float:
        return self._now

    def advance(self, seconds: float) -> None:
        self._now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self._now += max(seconds, 0.001)
        await asyncio.sleep(0)


def make_session(
    user_ref: str,
    clock: Clock,
    refreshed_minutes_ago: float | None = 1,
    kind: SessionKind = SessionKind.UNATTENDED,
    token: str = "tok",
) -> Session:
    now = clock.now_datetime()
    return Session(
        user_ref=user_ref,
        kind=kind,
        credentials=CredentialBundle(token=token, cookies={"AWSALB": "a", "PHPSESSID": "b"}, fingerprint="fp"),
        created_at=now - timedelta(days=1),
        last_refreshed_at=now - timedelta(minutes=refreshed_minutes_ago) if refreshed_minutes_ago is not None else None,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()

from __future__ import annotations

import asyncio
import time
from datetime import datetime, timezone


class Clock:
    """Wall clock plus cooperative sleep. Swapped for a fake in tests."""

    def now(self) -> float:
        return time.time()

    def now_datetime(self) -> datetime:
        return datetime.fromtimestamp(self.now(), timezone.utc)

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


async def wait_until(target_ts: float, clock: Clock, spin_threshold_ms: float = 15.0) -> float:
    """
    Suspend until the wall clock reaches target_ts (never earlier).

    Sleeps coarsely until spin_threshold_ms before the target, then yields to the
    event loop in a tight loop so timer granularity does not delay the fire.
    Returns the seconds actually waited.
    """
    started = clock.now()
    spin_threshold = spin_threshold_ms / 1000.0
    while True:
        remaining = target_ts - clock.now()
        if remaining <= 0:
            break
        if remaining > spin_threshold:
            await clock.sleep(remaining - spin_threshold)
        else:
            await clock.sleep(0)
    return clock.now() - started

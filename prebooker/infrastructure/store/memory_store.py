from __future__ import annotations

import threading
import uuid
from collections.abc import Iterable
from dataclasses import replace
from datetime import datetime
from typing import Any

from prebooker.application.ports.prebooking_store import PreBookingStorePort
from prebooker.application.ports.session_store import SessionStorePort
from prebooker.application.utils.precise_wait import Clock
from prebooker.application.utils.state_helpers import apply_status_change
from prebooker.domain.entities.prebooking import BookingIntent, PreBooking, PreBookingStatus
from prebooker.domain.entities.session import CredentialBundle, Session, SessionKind


class MemoryPreBookingStore(PreBookingStorePort):
    def __init__(self, clock: Clock | None = None) -> None:
        self._clock = clock or Clock()
        self._rows: dict[str, PreBooking] = {}
        self._lock = threading.Lock()

    async def create(
        self,
        user_ref: str,
        venue_ref: str,
        booking_intent: BookingIntent,
        available_at: datetime,
    ) -> PreBooking:
        record = PreBooking(
            id=uuid.uuid4().hex,
            user_ref=user_ref,
            venue_ref=venue_ref,
            booking_intent=booking_intent,
            available_at=available_at,
            created_at=self._clock.now_datetime(),
        )
        with self._lock:
            self._rows[record.id] = record
        return record

    async def find_by_id(self, prebooking_id: str) -> PreBooking | None:
        with self._lock:
            return self._rows.get(prebooking_id)

    async def claim(self, prebooking_id: str, now: datetime | None = None) -> PreBooking | None:
        return await self.update_status(
            prebooking_id,
            PreBookingStatus.LOADED,
            expected=[PreBookingStatus.PENDING],
            loaded_at=now or self._clock.now_datetime(),
        )

    async def update_status(
        self,
        prebooking_id: str,
        status: PreBookingStatus,
        expected: Iterable[PreBookingStatus],
        **fields: Any,
    ) -> PreBooking | None:
        with self._lock:
            current = self._rows.get(prebooking_id)
            if current is None:
                return None
            updated = apply_status_change(current, status, expected, fields)
            if updated is not None:
                self._rows[prebooking_id] = updated
            return updated

    async def set_schedule_ref(self, prebooking_id: str, schedule_ref: str) -> PreBooking | None:
        with self._lock:
            current = self._rows.get(prebooking_id)
            if current is None:
                return None
            updated = replace(current, schedule_ref=schedule_ref)
            self._rows[prebooking_id] = updated
            return updated

    async def find_by_user(self, user_ref: str, venue_ref: str | None = None) -> list[PreBooking]:
        with self._lock:
            rows = [
                r for r in self._rows.values()
                if r.user_ref == user_ref and (venue_ref is None or r.venue_ref == venue_ref)
            ]
        return sorted(rows, key=lambda r: r.created_at, reverse=True)

    async def count_pending_by_user(self, user_ref: str) -> int:
        with self._lock:
            return sum(
                1 for r in self._rows.values()
                if r.user_ref == user_ref and r.status == PreBookingStatus.PENDING
            )

    async def find_due(self, before: datetime) -> list[PreBooking]:
        with self._lock:
            rows = [
                r for r in self._rows.values()
                if r.status == PreBookingStatus.PENDING and r.available_at <= before
            ]
        return sorted(rows, key=lambda r: r.created_at)

    async def delete(
        self,
        prebooking_id: str,
        only_if_status: Iterable[PreBookingStatus] | None = None,
    ) -> bool:
        allowed = set(only_if_status) if only_if_status is not None else None
        with self._lock:
            current = self._rows.get(prebooking_id)
            if current is None:
                return False
            if allowed is not None and current.status not in allowed:
                return False
            del self._rows[prebooking_id]
            return True


class MemorySessionStore(SessionStorePort):
    def __init__(self, clock: Clock | None = None) -> None:
        self._clock = clock or Clock()
        self._sessions: dict[tuple[str, SessionKind], Session] = {}
        self._lock = threading.Lock()

    async def get_session(self, user_ref: str, kind: SessionKind) -> Session | None:
        with self._lock:
            return self._sessions.get((user_ref, kind))

    async def save_session(self, session: Session) -> None:
        with self._lock:
            self._sessions[(session.user_ref, session.kind)] = session

    async def update_credentials(self, user_ref: str, bundle: CredentialBundle, kind: SessionKind) -> None:
        with self._lock:
            current = self._sessions.get((user_ref, kind))
            if current is None:
                return
            self._sessions[(user_ref, kind)] = replace(current, credentials=bundle)

    async def mark_refresh_outcome(
        self,
        user_ref: str,
        success: bool,
        error: str | None,
        kind: SessionKind,
    ) -> None:
        with self._lock:
            current = self._sessions.get((user_ref, kind))
            if current is None:
                return
            if success:
                updated = replace(
                    current,
                    last_refreshed_at=self._clock.now_datetime(),
                    refresh_count=current.refresh_count + 1,
                    last_refresh_error=None,
                )
            else:
                updated = replace(current, last_refresh_error=error)
            self._sessions[(user_ref, kind)] = updated

    async def list_sessions(self) -> list[Session]:
        with self._lock:
            return list(self._sessions.values())

    async def delete_session(self, user_ref: str, kind: SessionKind) -> None:
        with self._lock:
            self._sessions.pop((user_ref, kind), None)

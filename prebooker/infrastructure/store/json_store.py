from __future__ import annotations

import hashlib
import json
import re
import threading
import uuid
from collections.abc import Iterable
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Any

from prebooker.application.ports.prebooking_store import PreBookingStorePort
from prebooker.application.ports.session_store import SessionStorePort
from prebooker.application.utils.precise_wait import Clock
from prebooker.application.utils.state_helpers import apply_status_change
from prebooker.domain.entities.prebooking import (
    BookingIntent,
    ExecutionTiming,
    PreBooking,
    PreBookingResult,
    PreBookingStatus,
)
from prebooker.domain.entities.session import CredentialBundle, Session, SessionKind

_SAFE_KEY = re.compile(r"[A-Za-z0-9_@-][A-Za-z0-9_.@-]*")


class _JsonDirectory:
    """One JSON document per key, written atomically, guarded by per-key locks."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._path.mkdir(parents=True, exist_ok=True)
        self._locks: dict[str, threading.Lock] = {}
        self._lock_lock = threading.Lock()  # Lock for managing locks dict

    def lock(self, key: str) -> threading.Lock:
        with self._lock_lock:
            if key not in self._locks:
                self._locks[key] = threading.Lock()
            return self._locks[key]

    def file_path(self, key: str) -> Path:
        if not _SAFE_KEY.fullmatch(key):
            raise ValueError(f"Invalid store key: {key!r}")
        return self._path / f"{key}.json"

    def load(self, key: str) -> dict[str, Any] | None:
        if not _SAFE_KEY.fullmatch(key):
            return None
        file_path = self.file_path(key)
        if not file_path.exists():
            return None
        with open(file_path, "r", encoding="utf-8") as f:
            return json.load(f)

    def save(self, key: str, data: dict[str, Any]) -> None:
        file_path = self.file_path(key)
        temp_path = file_path.with_suffix(".json.tmp")
        try:
            with open(temp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
            # Atomic rename
            temp_path.replace(file_path)
        except Exception:
            if temp_path.exists():
                temp_path.unlink(missing_ok=True)
            raise

    def remove(self, key: str) -> bool:
        if not _SAFE_KEY.fullmatch(key):
            return False
        file_path = self.file_path(key)
        if not file_path.exists():
            return False
        file_path.unlink()
        return True

    def keys(self) -> list[str]:
        return [p.stem for p in self._path.glob("*.json")]


class JsonPreBookingStore(PreBookingStorePort):
    def __init__(self, data_dir: str = "./data", clock: Clock | None = None) -> None:
        self._dir = _JsonDirectory(Path(data_dir) / "prebookings")
        self._clock = clock or Clock()

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
        with self._dir.lock(record.id):
            self._dir.save(record.id, self._serialize(record))
        return record

    async def find_by_id(self, prebooking_id: str) -> PreBooking | None:
        with self._dir.lock(prebooking_id):
            data = self._dir.load(prebooking_id)
        return self._deserialize(data) if data else None

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
        with self._dir.lock(prebooking_id):
            data = self._dir.load(prebooking_id)
            if data is None:
                return None
            updated = apply_status_change(self._deserialize(data), status, expected, fields)
            if updated is not None:
                self._dir.save(prebooking_id, self._serialize(updated))
            return updated

    async def set_schedule_ref(self, prebooking_id: str, schedule_ref: str) -> PreBooking | None:
        with self._dir.lock(prebooking_id):
            data = self._dir.load(prebooking_id)
            if data is None:
                return None
            updated = replace(self._deserialize(data), schedule_ref=schedule_ref)
            self._dir.save(prebooking_id, self._serialize(updated))
            return updated

    async def find_by_user(self, user_ref: str, venue_ref: str | None = None) -> list[PreBooking]:
        rows = [
            r for r in self._load_all()
            if r.user_ref == user_ref and (venue_ref is None or r.venue_ref == venue_ref)
        ]
        return sorted(rows, key=lambda r: r.created_at, reverse=True)

    async def count_pending_by_user(self, user_ref: str) -> int:
        return sum(
            1 for r in self._load_all()
            if r.user_ref == user_ref and r.status == PreBookingStatus.PENDING
        )

    async def find_due(self, before: datetime) -> list[PreBooking]:
        rows = [
            r for r in self._load_all()
            if r.status == PreBookingStatus.PENDING and r.available_at <= before
        ]
        return sorted(rows, key=lambda r: r.created_at)

    async def delete(
        self,
        prebooking_id: str,
        only_if_status: Iterable[PreBookingStatus] | None = None,
    ) -> bool:
        allowed = set(only_if_status) if only_if_status is not None else None
        with self._dir.lock(prebooking_id):
            data = self._dir.load(prebooking_id)
            if data is None:
                return False
            if allowed is not None and PreBookingStatus(data["status"]) not in allowed:
                return False
            return self._dir.remove(prebooking_id)

    def _load_all(self) -> list[PreBooking]:
        rows: list[PreBooking] = []
        for key in self._dir.keys():
            with self._dir.lock(key):
                try:
                    data = self._dir.load(key)
                except (json.JSONDecodeError, OSError):
                    continue
            if data:
                rows.append(self._deserialize(data))
        return rows

    def _serialize(self, record: PreBooking) -> dict[str, Any]:
        """Serialize PreBooking to dict with ISO string conversion."""
        return {
            "id": record.id,
            "user_ref": record.user_ref,
            "venue_ref": record.venue_ref,
            "booking_intent": record.booking_intent.to_dict(),
            "available_at": record.available_at.isoformat(),
            "status": record.status.value,
            "result": self._serialize_result(record.result),
            "error_message": record.error_message,
            "schedule_ref": record.schedule_ref,
            "created_at": record.created_at.isoformat(),
            "loaded_at": record.loaded_at.isoformat() if record.loaded_at else None,
            "executed_at": record.executed_at.isoformat() if record.executed_at else None,
            "version": 1,
        }

    def _deserialize(self, data: dict[str, Any]) -> PreBooking:
        return PreBooking(
            id=data["id"],
            user_ref=data["user_ref"],
            venue_ref=data["venue_ref"],
            booking_intent=BookingIntent.from_dict(data["booking_intent"]),
            available_at=datetime.fromisoformat(data["available_at"]),
            created_at=datetime.fromisoformat(data["created_at"]),
            status=PreBookingStatus(data.get("status", "pending")),
            result=self._deserialize_result(data.get("result")),
            error_message=data.get("error_message"),
            schedule_ref=data.get("schedule_ref"),
            loaded_at=_parse_optional(data.get("loaded_at")),
            executed_at=_parse_optional(data.get("executed_at")),
        )

    def _serialize_result(self, result: PreBookingResult | None) -> dict[str, Any] | None:
        if result is None:
            return None
        return {
            "success": result.success,
            "executed_at": result.executed_at.isoformat(),
            "booking_id": result.booking_id,
            "message": result.message,
            "status_code": result.status_code,
            "already_booked_manually": result.already_booked_manually,
            "timing": {
                "fire_latency_ms": result.timing.fire_latency_ms,
                "wait_variance_ms": result.timing.wait_variance_ms,
                "prep_ms": result.timing.prep_ms,
                "upstream_ms": result.timing.upstream_ms,
            },
        }

    def _deserialize_result(self, data: dict[str, Any] | None) -> PreBookingResult | None:
        if not data:
            return None
        timing = data.get("timing") or {}
        return PreBookingResult(
            success=bool(data.get("success")),
            executed_at=datetime.fromisoformat(data["executed_at"]),
            booking_id=data.get("booking_id"),
            message=data.get("message"),
            status_code=data.get("status_code"),
            already_booked_manually=bool(data.get("already_booked_manually", False)),
            timing=ExecutionTiming(
                fire_latency_ms=timing.get("fire_latency_ms"),
                wait_variance_ms=timing.get("wait_variance_ms"),
                prep_ms=timing.get("prep_ms"),
                upstream_ms=timing.get("upstream_ms"),
            ),
        )


class JsonSessionStore(SessionStorePort):
    def __init__(self, data_dir: str = "./data", clock: Clock | None = None) -> None:
        self._dir = _JsonDirectory(Path(data_dir) / "sessions")
        self._clock = clock or Clock()

    async def get_session(self, user_ref: str, kind: SessionKind) -> Session | None:
        key = _session_key(user_ref, kind)
        with self._dir.lock(key):
            data = self._dir.load(key)
        if not data or data.get("user_ref") != user_ref:
            return None
        return self._deserialize(data)

    async def save_session(self, session: Session) -> None:
        key = _session_key(session.user_ref, session.kind)
        with self._dir.lock(key):
            self._dir.save(key, self._serialize(session))

    async def update_credentials(self, user_ref: str, bundle: CredentialBundle, kind: SessionKind) -> None:
        self._modify(user_ref, kind, lambda s: replace(s, credentials=bundle))

    async def mark_refresh_outcome(
        self,
        user_ref: str,
        success: bool,
        error: str | None,
        kind: SessionKind,
    ) -> None:
        if success:
            self._modify(
                user_ref,
                kind,
                lambda s: replace(
                    s,
                    last_refreshed_at=self._clock.now_datetime(),
                    refresh_count=s.refresh_count + 1,
                    last_refresh_error=None,
                ),
            )
        else:
            self._modify(user_ref, kind, lambda s: replace(s, last_refresh_error=error))

    async def list_sessions(self) -> list[Session]:
        sessions: list[Session] = []
        for key in self._dir.keys():
            with self._dir.lock(key):
                data = self._dir.load(key)
            if data:
                sessions.append(self._deserialize(data))
        return sessions

    async def delete_session(self, user_ref: str, kind: SessionKind) -> None:
        key = _session_key(user_ref, kind)
        with self._dir.lock(key):
            self._dir.remove(key)

    def _modify(self, user_ref: str, kind: SessionKind, change) -> None:
        key = _session_key(user_ref, kind)
        with self._dir.lock(key):
            data = self._dir.load(key)
            if data is None or data.get("user_ref") != user_ref:
                return
            self._dir.save(key, self._serialize(change(self._deserialize(data))))

    def _serialize(self, session: Session) -> dict[str, Any]:
        return {
            "user_ref": session.user_ref,
            "kind": session.kind.value,
            "token": session.credentials.token,
            "cookies": dict(session.credentials.cookies),
            "fingerprint": session.credentials.fingerprint,
            "created_at": session.created_at.isoformat(),
            "last_refreshed_at": session.last_refreshed_at.isoformat() if session.last_refreshed_at else None,
            "refresh_count": session.refresh_count,
            "last_refresh_error": session.last_refresh_error,
        }

    def _deserialize(self, data: dict[str, Any]) -> Session:
        return Session(
            user_ref=data["user_ref"],
            kind=SessionKind(data["kind"]),
            credentials=CredentialBundle(
                token=data["token"],
                cookies=dict(data.get("cookies") or {}),
                fingerprint=data.get("fingerprint"),
            ),
            created_at=datetime.fromisoformat(data["created_at"]),
            last_refreshed_at=_parse_optional(data.get("last_refreshed_at")),
            refresh_count=int(data.get("refresh_count") or 0),
            last_refresh_error=data.get("last_refresh_error"),
        )


def _session_key(user_ref: str, kind: SessionKind) -> str:
    # One file per (user, kind); the digest keeps distinct user refs apart.
    digest = hashlib.sha256(user_ref.encode("utf-8")).hexdigest()
    return f"{digest}__{kind.value}"


def _parse_optional(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except (ValueError, TypeError):
        return None

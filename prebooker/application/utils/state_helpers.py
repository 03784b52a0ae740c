from __future__ import annotations

from collections.abc import Iterable
from dataclasses import replace
from typing import Any

from prebooker.application.exceptions import InvalidTransitionError
from prebooker.domain.entities.prebooking import PreBooking, PreBookingStatus, can_transition

UPDATABLE_FIELDS = frozenset({"loaded_at", "executed_at", "result", "error_message"})


def apply_status_change(
    record: PreBooking,
    status: PreBookingStatus,
    expected: Iterable[PreBookingStatus],
    fields: dict[str, Any],
) -> PreBooking | None:
    """
    Return the record moved to `status`, or None if its current status is not in `expected`.
    Stores call this while holding their per-row lock so check and write happen together.
    """
    expected_set = set(expected)
    for allowed_from in expected_set:
        if not can_transition(allowed_from, status):
            raise InvalidTransitionError(f"{allowed_from.value} -> {status.value} is not a valid transition")

    unknown = set(fields) - UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Cannot update fields: {sorted(unknown)}")

    if record.status not in expected_set:
        return None
    return replace(record, status=status, **fields)

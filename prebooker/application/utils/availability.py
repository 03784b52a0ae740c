from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)

# "No puedes reservar clases con más de 4 días de antelación"
# "You cannot book more than 4 days in advance"
DAYS_ADVANCE_PATTERNS = (
    re.compile(r"(\d+)\s+d[ií]as?\s+de\s+antelaci[oó]n", re.IGNORECASE),
    re.compile(r"(\d+)\s+days?\s+in\s+advance", re.IGNORECASE),
)

_CLASS_DAY_RE = re.compile(r"^\d{8}$")


@dataclass(frozen=True)
class AvailabilityWindow:
    available_at: datetime  # UTC
    days_advance: int
    class_instant: datetime  # UTC
    degraded: bool = False  # class time unknown, local midnight was used


def extract_days_advance(message: str | None) -> int | None:
    """Return N from the upstream 'N days in advance' constraint, or None."""
    if not message:
        return None
    for pattern in DAYS_ADVANCE_PATTERNS:
        match = pattern.search(message)
        if match:
            return int(match.group(1))
    return None


def parse_class_day(class_day: str) -> date | None:
    """Parse YYYYMMDD. Returns None for malformed or impossible dates."""
    if not class_day or not _CLASS_DAY_RE.match(class_day):
        return None
    try:
        return datetime.strptime(class_day, "%Y%m%d").date()
    except ValueError:
        return None


def resolve_timezone(name: str | None) -> ZoneInfo:
    if not name:
        return ZoneInfo("UTC")
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone, falling back to UTC", extra={"timezone": name})
        return ZoneInfo("UTC")


def class_instant_from_local(class_day: date, local_time: str, tz: ZoneInfo) -> datetime:
    """
    Convert a venue-local wall-clock start ("HH:MM") on class_day to UTC,
    using the UTC offset in force on class_day itself.
    """
    hour, minute = (int(part) for part in local_time.split(":", 1))
    local = datetime.combine(class_day, time(hour, minute), tzinfo=tz)
    return local.astimezone(timezone.utc)


def subtract_civil_days(instant: datetime, days: int, tz: ZoneInfo) -> datetime:
    """
    Same wall-clock time `days` calendar days earlier in `tz`, returned in UTC.

    Arithmetic on an aware datetime keeps the wall-clock fields, so the offset
    applied on the way back to UTC is the one in force on the earlier date.
    """
    local = instant.astimezone(tz)
    earlier = local - timedelta(days=days)
    return earlier.astimezone(timezone.utc)


def parse_early_booking_rejection(
    message: str | None,
    class_day: str,
    class_instant_utc: datetime | None = None,
    tz_name: str | None = None,
) -> AvailabilityWindow | None:
    """
    Turn an upstream "too early" rejection into the instant booking becomes legal.

    Returns None (never raises) when the message does not carry the
    "N days in advance" constraint or the class date cannot be determined.
    A naive class_instant_utc is read as UTC.
    """
    days_advance = extract_days_advance(message)
    if days_advance is None:
        logger.warning("Could not extract days in advance from rejection", extra={"reason": message})
        return None

    tz = resolve_timezone(tz_name)
    degraded = False

    if class_instant_utc is not None:
        if class_instant_utc.tzinfo is None:
            class_instant_utc = class_instant_utc.replace(tzinfo=timezone.utc)
        class_instant = class_instant_utc.astimezone(timezone.utc)
    else:
        parsed_day = parse_class_day(class_day)
        if parsed_day is None:
            logger.error("Invalid class day format", extra={"class_day": class_day})
            return None
        logger.warning(
            "No class time supplied; using local midnight of the class day",
            extra={"class_day": class_day, "timezone": str(tz)},
        )
        class_instant = datetime.combine(parsed_day, time(0, 0), tzinfo=tz).astimezone(timezone.utc)
        degraded = True

    available_at = subtract_civil_days(class_instant, days_advance, tz)

    return AvailabilityWindow(
        available_at=available_at,
        days_advance=days_advance,
        class_instant=class_instant,
        degraded=degraded,
    )

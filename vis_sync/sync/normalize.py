"""Sanitizing and canonicalization helpers for upstream field values."""

from __future__ import annotations

import re
from datetime import date, datetime, time
from enum import Enum

from ..utils.logging import setup_logger
from ..utils.timeutils import Clock, utc_now

logger = setup_logger(__name__, context={"component": "Normalizer"})

MAX_TEXT_LENGTH = 255
_ELLIPSIS = "..."

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")
_WHITESPACE = re.compile(r"\s+")
_ISO_DATE = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})(?:[T ].*)?$")
_NUMERIC_DATE = re.compile(r"^(\d{1,2})([/\-.])(\d{1,2})\2(\d{4})$")
_TIME = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2}))?$")


class SyncStatus(str, Enum):
    """Normalized lifecycle vocabulary shared by tournaments and matches."""

    RUNNING = "Running"
    FINISHED = "Finished"
    UPCOMING = "Upcoming"
    CANCELLED = "Cancelled"
    SUSPENDED = "Suspended"
    POSTPONED = "Postponed"
    UNKNOWN = "Unknown"


_STATUS_SYNONYMS: dict[str, SyncStatus] = {
    "running": SyncStatus.RUNNING,
    "live": SyncStatus.RUNNING,
    "active": SyncStatus.RUNNING,
    "in progress": SyncStatus.RUNNING,
    "in-progress": SyncStatus.RUNNING,
    "playing": SyncStatus.RUNNING,
    "finished": SyncStatus.FINISHED,
    "completed": SyncStatus.FINISHED,
    "ended": SyncStatus.FINISHED,
    "final": SyncStatus.FINISHED,
    "upcoming": SyncStatus.UPCOMING,
    "scheduled": SyncStatus.UPCOMING,
    "pending": SyncStatus.UPCOMING,
    "future": SyncStatus.UPCOMING,
    "cancelled": SyncStatus.CANCELLED,
    "canceled": SyncStatus.CANCELLED,
    "suspended": SyncStatus.SUSPENDED,
    "paused": SyncStatus.SUSPENDED,
    "postponed": SyncStatus.POSTPONED,
    "delayed": SyncStatus.POSTPONED,
}


def sanitize_text(value: str | None, *, max_length: int = MAX_TEXT_LENGTH) -> str | None:
    """Trim, strip control characters, collapse whitespace and cap the length.

    Over-long values keep ``max_length`` characters in total, ending in ``...``.
    """

    if value is None:
        return None
    cleaned = _CONTROL_CHARS.sub("", value)
    cleaned = _WHITESPACE.sub(" ", cleaned).strip()
    if not cleaned:
        return None
    if len(cleaned) > max_length:
        cleaned = cleaned[: max_length - len(_ELLIPSIS)] + _ELLIPSIS
    return cleaned


def normalize_status(value: str | None, *, default: SyncStatus = SyncStatus.UNKNOWN) -> str:
    """Map free-form upstream status text onto the fixed vocabulary."""

    if value is None or not value.strip():
        return default.value
    key = _WHITESPACE.sub(" ", value.strip().lower())
    if key in _STATUS_SYNONYMS:
        return _STATUS_SYNONYMS[key].value
    for member in SyncStatus:
        if key == member.value.lower():
            return member.value
    return SyncStatus.UNKNOWN.value


def _build_date(year: int, month: int, day: int) -> date | None:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def parse_date(value: str | None) -> date | None:
    """Parse ISO, DD/MM/YYYY, DD-MM-YYYY or MM-DD-YYYY text; ``None`` when invalid.

    Two-part numeric dates are read day-first for ``/`` and ``.`` separators and
    month-first for ``-``, unless one of the parts can only be a day (> 12).
    """

    if value is None:
        return None
    text = value.strip()
    if not text:
        return None

    iso = _ISO_DATE.match(text)
    if iso:
        return _build_date(int(iso.group(1)), int(iso.group(2)), int(iso.group(3)))

    numeric = _NUMERIC_DATE.match(text)
    if numeric is None:
        return None

    first, separator, second, year = (
        int(numeric.group(1)),
        numeric.group(2),
        int(numeric.group(3)),
        int(numeric.group(4)),
    )
    if first > 12:
        return _build_date(year, second, first)
    if second > 12:
        return _build_date(year, first, second)
    if separator == "-":
        return _build_date(year, first, second)
    return _build_date(year, second, first)


def normalize_date(
    value: str | None,
    *,
    clock: Clock = utc_now,
    field_name: str = "date",
    record_key: str | None = None,
) -> date:
    """Return a canonical date, substituting today's date (with a warning) when invalid."""

    parsed = parse_date(value)
    if parsed is not None:
        return parsed

    fallback = clock().date()
    logger.warning(
        "Invalid or empty %s %r, using %s",
        field_name,
        value,
        fallback.isoformat(),
        extra={"tournament_no": record_key or "-", "status": "fallback"},
    )
    return fallback


def normalize_time(value: str | None) -> time:
    """Return ``HH:MM:SS`` as a time object; unparseable input becomes midnight."""

    if value:
        match = _TIME.match(value.strip())
        if match:
            hour, minute = int(match.group(1)), int(match.group(2))
            second = int(match.group(3) or 0)
            if hour < 24 and minute < 60 and second < 60:
                return time(hour, minute, second)
    return time(0, 0, 0)


def parse_int(value: str | None) -> int | None:
    if value is None:
        return None
    text = value.strip()
    if not text:
        return None
    try:
        return int(float(text))
    except (ValueError, OverflowError):
        return None


def is_numeric_key(value: str | None) -> bool:
    return bool(value) and value.strip().isdigit()  # type: ignore[union-attr]


def combine(local_date: date | None, local_time: time | None) -> datetime | None:
    """Combine a stored date and time into a naive datetime."""

    if local_date is None:
        return None
    return datetime.combine(local_date, local_time or time(0, 0, 0))

"""Clock and duration helpers shared by the time-aware components."""

from __future__ import annotations

import re
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

Clock = Callable[[], datetime]

_DURATION_PATTERN = re.compile(
    r"^\s*(\d+(?:\.\d+)?)\s*(s|sec|secs|seconds?|m|min|mins|minutes?|h|hr|hrs|hours?|d|days?)\s*$",
    re.IGNORECASE,
)

_UNIT_SECONDS = {
    "s": 1,
    "m": 60,
    "h": 3600,
    "d": 86400,
}


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""

    return datetime.now(timezone.utc)


def ensure_aware(value: datetime) -> datetime:
    """Treat naive datetimes (as returned by sqlite) as UTC."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def parse_duration(value: str | int | float | timedelta | None, default: timedelta) -> timedelta:
    """Parse ``"30 minutes"``, ``"1 hour"``, ``"2d"`` or a number of seconds.

    Unparseable input falls back to ``default``.
    """

    if value is None:
        return default
    if isinstance(value, timedelta):
        return value
    if isinstance(value, (int, float)):
        return timedelta(seconds=float(value)) if value > 0 else default

    match = _DURATION_PATTERN.match(value)
    if match is None:
        return default

    amount = float(match.group(1))
    unit = match.group(2).lower()
    if unit.startswith("mi") or unit == "m":
        seconds = amount * _UNIT_SECONDS["m"]
    else:
        seconds = amount * _UNIT_SECONDS[unit[0]]
    if seconds <= 0:
        return default
    return timedelta(seconds=seconds)

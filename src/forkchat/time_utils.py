"""Shared date/time utilities used across the application."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_utc_iso(value: datetime) -> str:
    """Format a datetime as a high-precision UTC ISO string with ``Z`` marker.

    Format: ``2026-01-15T12:34:56.789012Z``
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds").replace(
        "+00:00", "Z"
    )


def utc_now_iso() -> str:
    """Return the current UTC time in the ``Z``-suffixed ISO form."""
    return to_utc_iso(utc_now())


def parse_utc_iso(timestamp: str) -> datetime:
    """Parse a ``Z``-suffixed (or offset) ISO timestamp into an aware datetime.

    Raises:
        ValueError: If *timestamp* is not an ISO 8601 string.
    """
    if not isinstance(timestamp, str):
        raise ValueError(f"Invalid timestamp: {timestamp!r}")
    dt = datetime.fromisoformat(timestamp.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


class MonotonicClock:
    """UTC clock whose readings strictly increase.

    Wall-clock readings that do not move past the previous value are bumped
    by one microsecond, so timestamps handed out by one clock never tie.
    """

    _STEP = timedelta(microseconds=1)

    def __init__(self) -> None:
        self._last: datetime | None = None

    def observe(self, value: datetime) -> None:
        """Make sure future readings come after *value* (used after loading state)."""
        if self._last is None or value > self._last:
            self._last = value

    def now(self) -> datetime:
        current = utc_now()
        if self._last is not None and current <= self._last:
            current = self._last + self._STEP
        self._last = current
        return current

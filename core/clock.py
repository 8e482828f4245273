"""
core/clock.py -- UTC time helpers shared by every layer.

Components that make time-based decisions (token expiry, lock windows,
session TTLs) take a `clock` callable instead of calling datetime.now()
directly, so tests can move time forward without sleeping.

Timestamps are persisted as ISO 8601 strings with a fixed microsecond
precision and a +00:00 offset. Fixed width keeps lexical order equal to
chronological order, which the store relies on for SQL comparisons.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_iso(value: str | None) -> datetime | None:
    """Parse a stored timestamp. Naive values are assumed to be UTC."""
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed

"""
Datetime utility functions for handling timezone-aware datetimes.

Attempt timestamps are persisted as ISO strings inside JSON columns (section
progress) as well as in DateTime columns, so both directions are covered here.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional


def utc_now() -> datetime:
    """
    Return the current datetime in UTC timezone.

    The exam engine takes a clock callable defaulting to this function so
    tests can drive time explicitly.
    """
    return datetime.now(timezone.utc)


def ensure_timezone_aware(dt: Optional[datetime]) -> datetime:
    """
    Ensure a datetime object is timezone-aware (UTC).
    SQLite returns timezone-naive datetimes even when stored as timezone-aware.

    Raises:
        ValueError: If dt is None
    """
    if dt is None:
        raise ValueError("datetime cannot be None")
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def to_iso(dt: Optional[datetime]) -> Optional[str]:
    """Serialize a datetime for storage in a JSON column."""
    if dt is None:
        return None
    return ensure_timezone_aware(dt).isoformat()


def from_iso(value: Optional[str]) -> Optional[datetime]:
    """Parse a datetime previously written by to_iso."""
    if value is None:
        return None
    return ensure_timezone_aware(datetime.fromisoformat(value))


def seconds_between(start: datetime, end: datetime) -> int:
    """Whole seconds from start to end, never negative."""
    delta = ensure_timezone_aware(end) - ensure_timezone_aware(start)
    return max(0, int(delta.total_seconds()))


def minutes(value: float) -> timedelta:
    return timedelta(minutes=value)

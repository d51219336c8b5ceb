"""
Datetime utility functions for handling timezone-aware datetimes.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional


def utc_now() -> datetime:
    """
    Return the current datetime in UTC timezone.

    Use this instead of datetime.now(timezone.utc) directly so tests can
    patch a fixed clock.
    """
    return datetime.now(timezone.utc)


def ensure_timezone_aware(dt: Optional[datetime]) -> datetime:
    """
    Ensure a datetime object is timezone-aware (UTC).
    SQLite may return timezone-naive datetimes even when stored as timezone-aware.

    Raises:
        ValueError: If dt is None
    """
    if dt is None:
        raise ValueError("datetime cannot be None")
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def window_start(window_days: int, now: Optional[datetime] = None) -> datetime:
    """Return the inclusive start of an analysis window ending at now."""
    reference = ensure_timezone_aware(now) if now is not None else utc_now()
    return reference - timedelta(days=window_days)

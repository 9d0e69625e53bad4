"""
Helper Functions
================

Common utility functions used across the application.
"""

from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """Get current UTC datetime with timezone info."""
    return datetime.now(timezone.utc)


def from_epoch_ms(value: Optional[float]) -> Optional[datetime]:
    """Convert epoch milliseconds to an aware UTC datetime."""
    if value is None:
        return None
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


def is_valid_epoch_ms(value: float) -> bool:
    """True when ``value`` converts to a datetime without overflowing."""
    try:
        from_epoch_ms(value)
    except (OverflowError, OSError, ValueError):
        return False
    return True


def to_epoch_ms(dt: Optional[datetime]) -> Optional[int]:
    """
    Convert a datetime to epoch milliseconds.

    Naive datetimes (as returned by SQLite) are treated as UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(round(dt.timestamp() * 1000))


def mask_id(value: Optional[str]) -> str:
    """Mask an identifier for logs: ``abcd...wxyz``."""
    if not value:
        return "<none>"
    if len(value) <= 8:
        return value[:2] + "..."
    return f"{value[:4]}...{value[-4:]}"

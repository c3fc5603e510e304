"""UTC datetime utilities."""

from collections.abc import Callable
from datetime import datetime, timedelta, timezone

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Return timezone-aware UTC now."""
    return datetime.now(timezone.utc)


def hours_after(start: datetime, hours: float) -> datetime:
    return start + timedelta(hours=hours)


def days_after(start: datetime, days: int) -> datetime:
    return start + timedelta(days=days)

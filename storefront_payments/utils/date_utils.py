"""Date manipulation utilities"""

from datetime import datetime, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes (SQLite drops the offset) as UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def is_within(value: Optional[datetime], window: timedelta, now: Optional[datetime] = None) -> bool:
    """True if value lies no further than window before now"""
    if value is None:
        return False
    now = now or utcnow()
    return as_utc(now) - as_utc(value) <= window

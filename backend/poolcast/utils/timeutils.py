# poolcast/utils/timeutils.py
from __future__ import annotations

from datetime import datetime, timezone


def ensure_utc(ts: datetime) -> datetime:
    """Treat naive datetimes as UTC; convert aware ones to UTC."""
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def floor_hour(ts: datetime) -> datetime:
    return ensure_utc(ts).replace(minute=0, second=0, microsecond=0)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)

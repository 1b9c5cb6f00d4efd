from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def seconds_ago(seconds: float, now: Optional[datetime] = None) -> datetime:
    """Start of a trailing window of the given length, UTC-naive."""
    return (now or utcnow()) - timedelta(seconds=seconds)


def whole_seconds_until(moment: datetime, now: Optional[datetime] = None) -> int:
    """Seconds until moment, rounded up, never below 1 (Retry-After style)."""
    remaining = (moment - (now or utcnow())).total_seconds()
    return max(1, math.ceil(remaining))


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """
    ISO-8601 with a trailing 'Z', second precision.
    Naive datetimes are stored UTC and are treated as such.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")

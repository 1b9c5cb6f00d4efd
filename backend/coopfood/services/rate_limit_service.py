"""
Request Throttling

Counters are rows in rate_limit_hits so every app process shares one
window. A request is admitted when fewer than `limit` hits exist for
(bucket, client_key) in the trailing window; admitted requests record a hit.
"""

from __future__ import annotations

from datetime import timedelta

from sqlalchemy import func

from ..extensions import db
from ..models import RateLimitHit
from ..time_utils import seconds_ago, utcnow, whole_seconds_until


def hit(bucket: str, client_key: str, *, limit: int, window_seconds: int) -> tuple[bool, int | None]:
    """
    Returns:
    - (True, None) when admitted (hit recorded)
    - (False, retry_after_seconds) when over the limit
    """
    now = utcnow()
    cutoff = seconds_ago(window_seconds, now)
    base = db.session.query(RateLimitHit).filter(
        RateLimitHit.bucket == bucket,
        RateLimitHit.client_key == client_key,
        RateLimitHit.occurred_at > cutoff,
    )

    if base.count() >= limit:
        oldest = (
            db.session.query(func.min(RateLimitHit.occurred_at))
            .filter(
                RateLimitHit.bucket == bucket,
                RateLimitHit.client_key == client_key,
                RateLimitHit.occurred_at > cutoff,
            )
            .scalar()
        )
        if oldest is None:
            return False, max(1, int(window_seconds))
        return False, whole_seconds_until(oldest + timedelta(seconds=window_seconds), now)

    db.session.add(RateLimitHit(bucket=bucket, client_key=client_key, occurred_at=now))
    db.session.commit()
    return True, None


def purge_expired(older_than_seconds: int) -> int:
    cutoff = seconds_ago(older_than_seconds)
    deleted = (
        db.session.query(RateLimitHit)
        .filter(RateLimitHit.occurred_at <= cutoff)
        .delete(synchronize_session=False)
    )
    db.session.commit()
    return deleted

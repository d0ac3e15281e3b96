"""
Timezone handling. SQLite hands back naive datetimes even for
`DateTime(timezone=True)` columns; everything we store is UTC.
"""

from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)

    return value.astimezone(timezone.utc)


def is_expired(expires_at: datetime, now: datetime | None = None) -> bool:
    """
    A record is expired once its expiry has passed. At the expiry instant
    itself it is still valid.
    """
    now = now or utcnow()
    return ensure_utc(expires_at) < ensure_utc(now)

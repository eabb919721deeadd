from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """
    Naive UTC timestamp. All persisted datetimes are naive UTC so that
    SQLite and Postgres compare them the same way.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalizes an incoming (possibly tz-aware) datetime to naive UTC."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)

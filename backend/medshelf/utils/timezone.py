from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime], default: Optional[datetime] = None) -> datetime:
    """Normalize a stored timestamp to an aware UTC datetime.

    Some backends (SQLite) hand back naive values; those are taken as UTC.
    A missing value falls back to ``default``, or the current time.
    """
    if value is None:
        return default if default is not None else utc_now()
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)

"""Datetime utilities for consistent timezone handling."""
from datetime import datetime, timedelta, timezone


def utcnow() -> datetime:
    """
    Get current UTC time as a naive datetime.

    Every timestamp column is `TIMESTAMP WITHOUT TIME ZONE` holding UTC, and
    asyncpg refuses to bind aware datetimes to those columns, so the tzinfo is
    dropped after the conversion.

    Returns:
        datetime: Current UTC time without tzinfo
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def after_ms(start: datetime, milliseconds: int) -> datetime:
    return start + timedelta(milliseconds=int(milliseconds or 0))

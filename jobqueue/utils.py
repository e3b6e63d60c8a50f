"""
Time helpers shared by the store, workers and API.
"""

from datetime import UTC, datetime


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    """
    Normalize a datetime to aware UTC.

    Naive values are taken to already be UTC, which is also how SQLite
    hands stored timestamps back.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)

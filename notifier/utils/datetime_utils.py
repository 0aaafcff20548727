from datetime import datetime, timedelta, timezone
from typing import Optional

from dateutil.parser import isoparse


def naive_utc_now() -> datetime:
    """
    Get current UTC datetime as a naive datetime (no timezone info).
    All reminder timestamps are stored this way.

    Returns:
        datetime: Current UTC datetime without timezone info
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(dt: datetime) -> datetime:
    """
    Convert a datetime object to naive UTC (no timezone info).

    Args:
        dt: Datetime object to convert; naive values are assumed to be UTC

    Returns:
        datetime: Naive UTC datetime
    """
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def resolve_now(effective_now: Optional[datetime] = None) -> datetime:
    """Clock used by the reminder engine; an override pins it for tests and E2E runs."""
    if effective_now is None:
        return naive_utc_now()
    return to_naive_utc(effective_now)


def hours_after(dt: datetime, hours: float) -> datetime:
    return dt + timedelta(hours=hours)


def days_before(dt: datetime, days: int) -> datetime:
    return dt - timedelta(days=days)


def days_after(dt: datetime, days: int) -> datetime:
    return dt + timedelta(days=days)


def parse_iso_datetime(value: str) -> datetime:
    """
    Parse an ISO-8601 timestamp (accepting a trailing ``Z``) into naive UTC.

    Raises:
        ValueError: If the value is not a valid ISO-8601 timestamp
    """
    return to_naive_utc(isoparse(value))

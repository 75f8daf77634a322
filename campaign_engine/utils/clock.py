"""
Time helpers
All timestamps are stored as naive UTC datetimes.
"""
from datetime import datetime, timedelta, timezone


def utcnow() -> datetime:
    """Current UTC time without tzinfo."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def whole_days_between(start: datetime, end: datetime) -> int:
    """Number of complete days from start to end (floor, may be negative)."""
    return (end - start) // timedelta(days=1)


def shift_years(moment: datetime, years: int) -> datetime:
    """Move a datetime by whole years; Feb 29 falls back to Feb 28."""
    try:
        return moment.replace(year=moment.year + years)
    except ValueError:
        return moment.replace(year=moment.year + years, day=28)

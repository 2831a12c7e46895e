"""Centralized datetime utilities for consistent timezone handling.

All functions return naive UTC datetimes for database compatibility
(the ORM models store naive UTC).

Usage:
    from jobwatch.core.datetime_utils import utc_now, get_cutoff, day_bounds

    # Window for "last 7 days" queries
    cutoff = get_cutoff(days=7)
    query = query.where(JobExecution.created_at >= cutoff)

    # Inclusive calendar-date range on a timestamp column
    start, end = day_bounds(date(2026, 1, 1), date(2026, 1, 31))
    query = query.where(JobExecution.started_at >= start, JobExecution.started_at < end)
"""

from datetime import UTC, date, datetime, timedelta


def utc_now() -> datetime:
    """Get current UTC time as naive datetime.

    Returns naive datetime for database compatibility.
    Replaces deprecated datetime.utcnow().
    """
    return datetime.now(UTC).replace(tzinfo=None)


def utc_today() -> date:
    """Get the current UTC calendar date."""
    return utc_now().date()


def get_cutoff(hours: float = 0, days: float = 0, minutes: float = 0) -> datetime:
    """Get cutoff datetime for filtering queries.

    Args:
        hours: Hours to subtract from now
        days: Days to subtract from now
        minutes: Minutes to subtract from now

    Returns:
        Naive UTC datetime representing the cutoff point
    """
    delta = timedelta(hours=hours, days=days, minutes=minutes)
    return utc_now() - delta


def elapsed_seconds(start: datetime, end: datetime | None = None) -> float:
    """Seconds between start and end (now when end is omitted), never negative."""
    end = end or utc_now()
    return max((end - start).total_seconds(), 0.0)


def day_bounds(start: date, end: date) -> tuple[datetime, datetime]:
    """Half-open datetime range covering the calendar days start..end inclusive.

    Args:
        start: First calendar day
        end: Last calendar day (inclusive)

    Returns:
        (start at 00:00, day after end at 00:00)
    """
    lower = datetime.combine(start, datetime.min.time())
    upper = datetime.combine(end, datetime.min.time()) + timedelta(days=1)
    return lower, upper


def date_series(days_back: int, until: date | None = None) -> list[date]:
    """Consecutive calendar days ending at `until` (today by default), oldest first."""
    until = until or utc_today()
    return [until - timedelta(days=offset) for offset in range(days_back - 1, -1, -1)]


def month_bounds(day: date) -> tuple[date, date]:
    """First and last calendar day of the month containing `day`."""
    first = day.replace(day=1)
    next_month = (first + timedelta(days=32)).replace(day=1)
    return first, next_month - timedelta(days=1)

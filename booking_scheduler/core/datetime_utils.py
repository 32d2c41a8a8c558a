"""Centralized datetime utilities for consistent timezone handling.

All functions return naive UTC datetimes for database compatibility
(SQLAlchemy models store naive UTC). APScheduler works with aware
datetimes, so values crossing that boundary go through `to_naive_utc`.

Usage:
    from booking_scheduler.core.datetime_utils import utc_now, get_cutoff

    now = utc_now()

    # Stale runs started before the cutoff
    cutoff = get_cutoff(minutes=120)
"""

from datetime import UTC, datetime, timedelta


def utc_now() -> datetime:
    """Get current UTC time as naive datetime.

    Returns naive datetime for database compatibility.
    Replaces deprecated datetime.utcnow().
    """
    return datetime.now(UTC).replace(tzinfo=None)


def get_cutoff(minutes: int = 0, hours: int = 0, days: int = 0) -> datetime:
    """Get cutoff datetime for filtering queries.

    Args:
        minutes: Minutes to subtract from now
        hours: Hours to subtract from now
        days: Days to subtract from now

    Returns:
        Naive UTC datetime representing the cutoff point
    """
    delta = timedelta(minutes=minutes, hours=hours, days=days)
    return utc_now() - delta


def to_naive_utc(dt: datetime | None) -> datetime | None:
    """Convert a datetime to naive UTC.

    Args:
        dt: Datetime to convert (can be aware, naive or None)

    Returns:
        Naive UTC datetime for database compatibility, or None
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        # Already naive, assume it's UTC
        return dt
    return dt.astimezone(UTC).replace(tzinfo=None)


def duration_ms(start: datetime, end: datetime) -> int:
    """Whole milliseconds elapsed between two naive UTC datetimes."""
    return int((end - start).total_seconds() * 1000)


def parse_start_from_time(value: str | None) -> datetime | None:
    """Parse an administrator-supplied watermark override.

    Accepts an ISO datetime ("2026-01-10T08:00:00"), an ISO date
    ("2026-01-10", midnight) or a bare "HH:MM", which is combined with
    today's date. Aware values are converted to naive UTC.

    Returns:
        Naive UTC datetime, or None for empty or unparseable input
    """
    if value is None or not value.strip():
        return None

    value = value.strip()
    try:
        parts = value.split(":")
        if len(parts) == 2 and all(p.isdigit() for p in parts):
            return utc_now().replace(
                hour=int(parts[0]),
                minute=int(parts[1]),
                second=0,
                microsecond=0,
            )

        # Anything else must be ISO: full datetime or date-only (midnight)
        return to_naive_utc(datetime.fromisoformat(value))
    except ValueError:
        return None

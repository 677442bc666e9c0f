"""Time utilities.

All timestamps are stored in UTC. The "assignment day" is the calendar day in
the configured ``day_timezone``.
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from quotagate.config import settings


def utc_now() -> datetime:
    """Return a timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


def _zone(tz: Optional[ZoneInfo]) -> ZoneInfo:
    return tz or settings.tz


def local_today(now: Optional[datetime] = None, tz: Optional[ZoneInfo] = None) -> date:
    """Calendar date of ``now`` in the day timezone."""
    now = now or utc_now()
    return now.astimezone(_zone(tz)).date()


def day_window(
    now: Optional[datetime] = None, tz: Optional[ZoneInfo] = None
) -> tuple[datetime, datetime]:
    """Return [start, end) of the day containing ``now``, as UTC datetimes."""
    zone = _zone(tz)
    today = local_today(now, zone)
    start = datetime.combine(today, time.min, tzinfo=zone)
    end = datetime.combine(today + timedelta(days=1), time.min, tzinfo=zone)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


def end_of_day(now: Optional[datetime] = None, tz: Optional[ZoneInfo] = None) -> datetime:
    """Last representable instant of the day containing ``now`` (23:59:59.999999 local)."""
    _, end = day_window(now, tz)
    return end - timedelta(microseconds=1)


def next_occurrence(
    at: time, now: Optional[datetime] = None, tz: Optional[ZoneInfo] = None
) -> datetime:
    """Next UTC instant strictly after ``now`` whose local wall-clock time is ``at``."""
    zone = _zone(tz)
    now = now or utc_now()
    local_now = now.astimezone(zone)
    candidate = datetime.combine(local_now.date(), at, tzinfo=zone)
    if candidate <= local_now:
        candidate = datetime.combine(local_now.date() + timedelta(days=1), at, tzinfo=zone)
    return candidate.astimezone(timezone.utc)

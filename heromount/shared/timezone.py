"""
Civil time helpers

All slot arithmetic uses naive datetimes expressed in the single service
timezone (SERVICE_TIMEZONE). Instants coming from the outside world are
converted into that zone once, at the edge, never mid-calculation.
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Union
from zoneinfo import ZoneInfo

from ..config import SERVICE_TIMEZONE
from ..models import DAYS_OF_WEEK


def service_zone() -> ZoneInfo:
    return ZoneInfo(SERVICE_TIMEZONE)


def utcnow() -> datetime:
    """Naive UTC timestamp for audit columns"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def now_local(now: Optional[datetime] = None) -> datetime:
    """
    Current wall-clock time in the service timezone, as a naive datetime.

    An aware `now` is converted; a naive `now` is taken to already be local.
    """
    if now is None:
        return datetime.now(service_zone()).replace(tzinfo=None)
    if now.tzinfo is not None:
        return now.astimezone(service_zone()).replace(tzinfo=None)
    return now


def parse_time(value: Union[str, time]) -> time:
    """Parse "HH:MM" or "HH:MM:SS" into a time"""
    if isinstance(value, time):
        return value.replace(tzinfo=None)
    parts = [int(p) for p in str(value).strip().split(":")]
    if len(parts) == 2:
        return time(parts[0], parts[1])
    if len(parts) == 3:
        return time(parts[0], parts[1], parts[2])
    raise ValueError(f"Invalid time value: {value!r}")


def local_datetime(day: date, start: time) -> datetime:
    return datetime.combine(day, start.replace(tzinfo=None))


def day_bounds(day: date) -> tuple[datetime, datetime]:
    start = datetime.combine(day, time.min)
    return start, start + timedelta(days=1)


def day_of_week_name(day: date) -> str:
    return DAYS_OF_WEEK[day.weekday()]


def format_slot_time(value: time) -> str:
    return value.strftime("%H:%M")

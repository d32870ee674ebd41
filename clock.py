from datetime import date, datetime, timedelta, timezone
from typing import Union
from zoneinfo import ZoneInfo

from config import get_settings

DateLike = Union[date, datetime]


def _local_tz() -> ZoneInfo:
    return ZoneInfo(get_settings().timezone)


def local_now() -> datetime:
    return datetime.now(_local_tz())


def local_today() -> date:
    return local_now().date()


def utcnow() -> datetime:
    """Naive UTC timestamp, the form stored in DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def midnight(value: DateLike) -> date:
    """Calendar day of ``value`` with the time of day discarded.

    Aware datetimes are first moved into the configured timezone so the
    day boundary is the user's local midnight. Naive datetimes are taken
    as already local.
    """
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(_local_tz())
        return value.date()
    if isinstance(value, date):
        return value
    raise TypeError(f"Expected date or datetime, got {type(value).__name__}")


def days_between(later: DateLike, earlier: DateLike) -> int:
    return (midnight(later) - midnight(earlier)).days


def shift_days(value: DateLike, days: int) -> date:
    return midnight(value) + timedelta(days=days)


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def day_in_month(year: int, month: int, day: int) -> date:
    # day 31 in a 30 day month lands on the 30th
    return date(year, month, min(day, days_in_month(year, month)))

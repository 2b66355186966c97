"""
Calendar-day boundaries and week/month windows.

All arithmetic is wall-clock: adding a day to 00:00 gives 00:00 the next day
even when a DST transition makes that day 23 or 25 hours long.
"""
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Tuple, TypeVar, Union

from dateutil.relativedelta import relativedelta

DateLike = TypeVar("DateLike", date, datetime)


def to_local_date(value: Union[date, datetime], tz: tzinfo) -> date:
    """Calendar date of value in tz. Naive datetimes are taken as already local."""
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(tz)
        return value.date()
    return value


def local_midnight(day: date, tz: tzinfo) -> datetime:
    """Start of day in tz, normalised through UTC so the offset is the one actually in effect."""
    naive = datetime.combine(day, time.min)
    return naive.replace(tzinfo=tz).astimezone(timezone.utc).astimezone(tz)


def day_bounds(day: Union[date, datetime], tz: tzinfo) -> Tuple[datetime, datetime]:
    """Return (start, end): local midnight of day and local midnight of the following calendar day."""
    local_day = to_local_date(day, tz)
    return local_midnight(local_day, tz), local_midnight(local_day + timedelta(days=1), tz)


def add_days(value: DateLike, n: int) -> DateLike:
    """Move value by n calendar days, keeping the wall-clock time."""
    return value + timedelta(days=n)


def add_months(value: DateLike, n: int) -> DateLike:
    """Move value by n months; the day clamps to the target month's length (Jan 31 + 1 month = Feb 28/29)."""
    return value + relativedelta(months=n)


def week_window(day: Union[date, datetime], tz: tzinfo) -> Tuple[datetime, datetime]:
    """Seven calendar days starting at day's local midnight."""
    local_day = to_local_date(day, tz)
    return local_midnight(local_day, tz), local_midnight(add_days(local_day, 7), tz)


def month_window(day: Union[date, datetime], tz: tzinfo) -> Tuple[datetime, datetime]:
    """From the first of day's month to the first of the next month."""
    first = to_local_date(day, tz).replace(day=1)
    return local_midnight(first, tz), local_midnight(add_months(first, 1), tz)


def default_agenda_window(now: datetime) -> Tuple[datetime, datetime]:
    """Window refreshed by default: one month back to two months ahead."""
    return add_months(now, -1), add_months(now, 2)

"""
Next-prayer resolution: the first of today's five prayers still ahead of now,
otherwise tomorrow's Fajr.
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Optional, Union

from agenda.core.errors import DecodeError
from agenda.plugins.prayer.cache import PrayerTimesCache
from agenda.plugins.prayer.types import CANONICAL_PRAYERS, CalculationMethod, PrayerTimeSet, normalize_time_string

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NextPrayer:
    name: str
    time: datetime


def prayer_datetime(day: date, time_str: str, tz) -> datetime:
    """Place an "HH:MM" string on day in tz."""
    hour, minute = (int(part) for part in normalize_time_string("time", time_str).split(":"))
    return datetime.combine(day, time(hour, minute), tzinfo=tz)


def resolve_next_prayer(
    now: datetime,
    today_set: PrayerTimeSet,
    tomorrow_set: Optional[PrayerTimeSet],
) -> Optional[NextPrayer]:
    """Return the next prayer strictly after now.

    Today's prayers are placed on now's calendar day in now's timezone. When all
    of them have passed, tomorrow's Fajr is returned unconditionally; None only
    when nothing remains today and tomorrow_set is None.
    """
    tz = now.tzinfo
    today = now.date()
    for name in CANONICAL_PRAYERS:
        time_str = today_set.time_of(name)
        if time_str is None:
            continue
        try:
            candidate = prayer_datetime(today, time_str, tz)
        except DecodeError:
            logger.warning(f"Skipping unparseable {name} time {time_str!r} for {today_set.day}")
            continue
        if candidate > now:
            return NextPrayer(name, candidate)

    if tomorrow_set is None:
        return None
    return NextPrayer("Fajr", prayer_datetime(today + timedelta(days=1), tomorrow_set.fajr, tz))


async def find_next_prayer(
    cache: PrayerTimesCache,
    now: datetime,
    latitude: float,
    longitude: float,
    method: Union[str, CalculationMethod],
) -> NextPrayer:
    """Resolve the next prayer through the cache; tomorrow is fetched only when today has none left."""
    today_set = await cache.get_prayer_times(now.date(), latitude, longitude, method)
    upcoming = resolve_next_prayer(now, today_set, None)
    if upcoming is not None:
        return upcoming
    tomorrow_set = await cache.get_prayer_times(now.date() + timedelta(days=1), latitude, longitude, method)
    return resolve_next_prayer(now, today_set, tomorrow_set)


def format_prayer_time(time_str: str) -> str:
    """'13:05' -> '1:05 PM'. Unparseable input is returned unchanged."""
    try:
        parsed = datetime.strptime(time_str.strip(), "%H:%M")
    except ValueError:
        return time_str
    return f"{parsed.hour % 12 or 12}:{parsed.minute:02d} {'AM' if parsed.hour < 12 else 'PM'}"

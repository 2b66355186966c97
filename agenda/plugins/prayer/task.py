"""
Background task: prefetch the coming week of prayer times for the stored location.
"""
import asyncio
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from agenda.core.task import BaseTask, TaskType, parse_hh_mm
from agenda.plugins.prayer.cache import PrayerTimesCache
from agenda.plugins.prayer.location import LocationService
from agenda.plugins.prayer.types import PrayerTimeSet

TASK_NAME = "prayer_prefetch"


class PrayerPrefetchTask(BaseTask):
    """Warm the cache with seven days of prayer times once a day."""

    def __init__(
        self,
        cache: PrayerTimesCache,
        location_service: LocationService,
        config: Dict[str, Any],
        clock: Optional[Callable[[], datetime]] = None,
    ):
        schedule_type, schedule_config = self._schedule_from_config(config)
        super().__init__(TASK_NAME, schedule_type, schedule_config)
        self.cache = cache
        self.location_service = location_service
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def _schedule_from_config(self, config: Dict[str, Any]) -> tuple:
        hour, minute = parse_hh_mm(config.get("prefetch_time", "00:30"), default=(0, 30))
        return TaskType.DAILY, {"time": f"{hour:02d}:{minute:02d}"}

    async def run(self) -> List[PrayerTimeSet]:
        location = await asyncio.to_thread(self.location_service.get_location)
        if location is None:
            self.logger.info("No location set, skipping prayer prefetch")
            return []
        week = await self.cache.get_prayer_times_for_week(
            self.clock(), location.latitude, location.longitude, location.calculation_method
        )
        self.logger.info(
            f"Prayer prefetch: {len(week)} day(s) from {week[0].day} at {location.latitude},{location.longitude}"
        )
        return week

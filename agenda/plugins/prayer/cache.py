"""
Prayer calculation cache.

Prayer times for a fixed (day, location, method) never change, so a stored day
is returned forever without touching the network. Concurrent requests for the
same key share one load: at most one remote fetch and one store write per key.
"""
import asyncio
import logging
from datetime import date, datetime, tzinfo
from typing import Dict, List, Union

from agenda.core.time_window import add_days, local_midnight, to_local_date
from agenda.plugins.prayer.prayer_base import PrayerBackend
from agenda.plugins.prayer.service import PrayerTimesStore
from agenda.plugins.prayer.types import CalculationMethod, PrayerCacheKey, PrayerTimeSet


class PrayerTimesCache:
    def __init__(self, store: PrayerTimesStore, backend: PrayerBackend, tz: tzinfo):
        self.store = store
        self.backend = backend
        self.tz = tz
        self.logger = logging.getLogger(self.__class__.__name__)
        self._in_flight: Dict[PrayerCacheKey, "asyncio.Task[PrayerTimeSet]"] = {}

    @property
    def in_flight_count(self) -> int:
        return len(self._in_flight)

    async def get_prayer_times(
        self,
        day: Union[date, datetime],
        latitude: float,
        longitude: float,
        method: Union[str, CalculationMethod],
    ) -> PrayerTimeSet:
        """Return the prayer times of day, from the store when present, else from the backend.

        Raises ProviderError/DecodeError when the backend fails; nothing is stored in that case.
        """
        key = PrayerCacheKey.create(to_local_date(day, self.tz), latitude, longitude, method)

        load = self._in_flight.get(key)
        if load is None:
            load = asyncio.get_running_loop().create_task(self._load(key))
            self._in_flight[key] = load
            load.add_done_callback(lambda task, key=key: self._release(key, task))
        else:
            self.logger.debug(f"Joining in-flight load for {key}")

        # A caller going away must not cancel the load other callers are waiting on
        return await asyncio.shield(load)

    def _release(self, key: PrayerCacheKey, task: "asyncio.Task[PrayerTimeSet]") -> None:
        if self._in_flight.get(key) is task:
            del self._in_flight[key]
        if not task.cancelled() and task.exception() is not None:
            self.logger.warning(f"Prayer times load for {key} failed: {task.exception()}")

    async def _load(self, key: PrayerCacheKey) -> PrayerTimeSet:
        cached = await asyncio.to_thread(self.store.get, key)
        if cached is not None:
            self.logger.debug(f"Cache hit for {key}")
            return cached

        day_start = local_midnight(key.day, self.tz)
        self.logger.info(f"Cache miss for {key}, fetching from {self.backend.__class__.__name__}")
        timings = await self.backend.fetch_timings(
            int(day_start.timestamp()), key.latitude, key.longitude, key.method
        )
        record = PrayerTimeSet.from_key(key, timings)
        await asyncio.to_thread(self.store.put, key, record)
        return record

    async def get_prayer_times_for_week(
        self,
        start_day: Union[date, datetime],
        latitude: float,
        longitude: float,
        method: Union[str, CalculationMethod],
    ) -> List[PrayerTimeSet]:
        """Seven consecutive days starting at start_day, in day order."""
        first = to_local_date(start_day, self.tz)
        return list(
            await asyncio.gather(
                *(
                    self.get_prayer_times(add_days(first, offset), latitude, longitude, method)
                    for offset in range(7)
                )
            )
        )

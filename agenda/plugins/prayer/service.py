"""
Service layer: persistence store for computed prayer times.
Keyed by PrayerCacheKey; a stored day is never updated.
"""
import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Dict, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from agenda.core.db import Database
from agenda.plugins.prayer.models import PrayerTimesRecord
from agenda.plugins.prayer.types import CalculationMethod, PrayerCacheKey, PrayerTimeSet

logger = logging.getLogger(__name__)


class PrayerTimesStore(ABC):
    """get(key) -> record | None, put(key, record)."""

    @abstractmethod
    def get(self, key: PrayerCacheKey) -> Optional[PrayerTimeSet]:
        pass

    @abstractmethod
    def put(self, key: PrayerCacheKey, record: PrayerTimeSet) -> None:
        pass


class SqlPrayerTimesStore(PrayerTimesStore):
    def __init__(self, database: Database):
        self.database = database

    def get(self, key: PrayerCacheKey) -> Optional[PrayerTimeSet]:
        with self.database.session_scope() as session:
            row = session.execute(
                select(PrayerTimesRecord).where(
                    PrayerTimesRecord.prayer_date == key.day,
                    PrayerTimesRecord.latitude == key.latitude,
                    PrayerTimesRecord.longitude == key.longitude,
                    PrayerTimesRecord.method == key.method.value,
                )
            ).scalars().first()
            return _row_to_time_set(row) if row else None

    def put(self, key: PrayerCacheKey, record: PrayerTimeSet) -> None:
        fetched_at = datetime.now(timezone.utc).replace(tzinfo=None)
        try:
            with self.database.session_scope() as session:
                session.add(
                    PrayerTimesRecord(
                        prayer_date=key.day,
                        latitude=key.latitude,
                        longitude=key.longitude,
                        method=key.method.value,
                        fetched_at=fetched_at,
                        data=dict(record.timings),
                    )
                )
        except IntegrityError:
            # Another process stored the same key; values for a key never differ
            logger.debug(f"Prayer times for {key} already stored")


class MemoryPrayerTimesStore(PrayerTimesStore):
    """Process-local store; nothing survives a restart."""

    def __init__(self):
        self._records: Dict[PrayerCacheKey, PrayerTimeSet] = {}
        self._lock = threading.Lock()

    def get(self, key: PrayerCacheKey) -> Optional[PrayerTimeSet]:
        with self._lock:
            return self._records.get(key)

    def put(self, key: PrayerCacheKey, record: PrayerTimeSet) -> None:
        with self._lock:
            self._records.setdefault(key, record)

    def __len__(self) -> int:
        return len(self._records)


def _row_to_time_set(r: PrayerTimesRecord) -> PrayerTimeSet:
    return PrayerTimeSet(
        day=r.prayer_date,
        latitude=r.latitude,
        longitude=r.longitude,
        method=CalculationMethod(r.method),
        timings=dict(r.data),
    )

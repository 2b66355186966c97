import asyncio
from datetime import date, datetime, timedelta, timezone

import pytest

from agenda.core.errors import ProviderError
from agenda.plugins.prayer.cache import PrayerTimesCache
from agenda.plugins.prayer.service import MemoryPrayerTimesStore
from agenda.plugins.prayer.types import CalculationMethod, PrayerCacheKey, PrayerTimeSet

from fakes import SAMPLE_TIMINGS, FakePrayerBackend

LAT, LON = 32.7767, -96.797


@pytest.fixture
def store():
    return MemoryPrayerTimesStore()


def test_second_request_is_served_from_store(store, chicago):
    backend = FakePrayerBackend()
    cache = PrayerTimesCache(store, backend, chicago)

    async def scenario():
        first = await cache.get_prayer_times(date(2025, 9, 1), LAT, LON, "KARACHI")
        second = await cache.get_prayer_times(date(2025, 9, 1), LAT, LON, CalculationMethod.KARACHI)
        return first, second

    first, second = asyncio.run(scenario())

    assert first == second
    assert len(backend.calls) == 1
    assert len(store) == 1


def test_stored_day_never_hits_network(store, chicago):
    key = PrayerCacheKey.create(date(2025, 9, 1), LAT, LON, "ISNA")
    store.put(key, PrayerTimeSet.from_key(key, SAMPLE_TIMINGS))
    backend = FakePrayerBackend(error=AssertionError("network must not be used"))
    cache = PrayerTimesCache(store, backend, chicago)

    result = asyncio.run(cache.get_prayer_times(date(2025, 9, 1), LAT, LON, "ISNA"))

    assert result.fajr == "05:15"
    assert backend.calls == []


def test_fetch_uses_local_midnight_timestamp(store, chicago):
    backend = FakePrayerBackend()
    cache = PrayerTimesCache(store, backend, chicago)

    asyncio.run(cache.get_prayer_times(date(2025, 9, 1), LAT, LON, "MWL"))

    timestamp, latitude, longitude, method = backend.calls[0]
    assert timestamp == int(datetime(2025, 9, 1, tzinfo=chicago).timestamp())
    assert (latitude, longitude, method) == (LAT, LON, CalculationMethod.MWL)


def test_datetime_is_normalised_to_local_day(store, chicago):
    backend = FakePrayerBackend()
    cache = PrayerTimesCache(store, backend, chicago)

    async def scenario():
        # 03:00 UTC on the 2nd is the evening of the 1st in Chicago
        a = await cache.get_prayer_times(datetime(2025, 9, 2, 3, 0, tzinfo=timezone.utc), LAT, LON, "KARACHI")
        b = await cache.get_prayer_times(date(2025, 9, 1), LAT, LON, "KARACHI")
        return a, b

    a, b = asyncio.run(scenario())

    assert a.day == b.day == date(2025, 9, 1)
    assert len(backend.calls) == 1


def test_concurrent_requests_share_one_fetch(store, chicago):
    backend = FakePrayerBackend(delay=0.05)
    cache = PrayerTimesCache(store, backend, chicago)

    async def scenario():
        results = await asyncio.gather(
            *(cache.get_prayer_times(date(2025, 9, 1), LAT + 0.00001, LON, "KARACHI") for _ in range(10))
        )
        return results, cache.in_flight_count

    results, in_flight = asyncio.run(scenario())

    assert len(backend.calls) == 1
    assert all(r is results[0] for r in results)
    assert len(store) == 1
    assert in_flight == 0


def test_concurrent_requests_share_one_failure(store, chicago):
    error = ProviderError("aladhan", "down", status=503)
    backend = FakePrayerBackend(error=error, delay=0.05)
    cache = PrayerTimesCache(store, backend, chicago)

    async def scenario():
        results = await asyncio.gather(
            *(cache.get_prayer_times(date(2025, 9, 1), LAT, LON, "KARACHI") for _ in range(5)),
            return_exceptions=True,
        )
        return results, cache.in_flight_count

    results, in_flight = asyncio.run(scenario())

    assert len(backend.calls) == 1
    assert all(r is error for r in results)
    assert len(store) == 0
    assert in_flight == 0


def test_failure_is_not_cached_and_next_call_retries(store, chicago):
    backend = FakePrayerBackend(error=ProviderError("aladhan", "down"))
    cache = PrayerTimesCache(store, backend, chicago)

    async def scenario():
        with pytest.raises(ProviderError):
            await cache.get_prayer_times(date(2025, 9, 1), LAT, LON, "KARACHI")
        backend.error = None
        return await cache.get_prayer_times(date(2025, 9, 1), LAT, LON, "KARACHI")

    result = asyncio.run(scenario())

    assert result.isha == "20:00"
    assert len(backend.calls) == 2


def test_cancelled_caller_does_not_cancel_shared_fetch(store, chicago):
    backend = FakePrayerBackend(delay=0.05)
    cache = PrayerTimesCache(store, backend, chicago)

    async def scenario():
        first = asyncio.ensure_future(cache.get_prayer_times(date(2025, 9, 1), LAT, LON, "KARACHI"))
        second = asyncio.ensure_future(cache.get_prayer_times(date(2025, 9, 1), LAT, LON, "KARACHI"))
        await asyncio.sleep(0.01)
        first.cancel()
        result = await second
        with pytest.raises(asyncio.CancelledError):
            await first
        return result

    result = asyncio.run(scenario())

    assert result.fajr == "05:15"
    assert len(backend.calls) == 1
    assert len(store) == 1


def test_week_is_returned_in_day_order(store, chicago):
    backend = FakePrayerBackend(delay=0.01)
    cache = PrayerTimesCache(store, backend, chicago)

    week = asyncio.run(cache.get_prayer_times_for_week(date(2025, 8, 29), LAT, LON, "KARACHI"))

    assert [d.day for d in week] == [date(2025, 8, 29) + timedelta(days=i) for i in range(7)]
    assert len(backend.calls) == 7

"""
Per-plugin API for prayer times. Mounted at /api/components/prayer/.
- /times, /week: cached daily prayer times for the stored location.
- /next: the next upcoming prayer.
- /location: read or replace the stored location.
"""
import asyncio
from datetime import date, datetime
from typing import Dict, List, Optional

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, ConfigDict

from .resolver import find_next_prayer, format_prayer_time
from .types import PrayerTimeSet, UserLocation


class PrayerTimesResponse(BaseModel):
    """One day of prayer times; display holds 12-hour renderings of timings."""

    day: date
    latitude: float
    longitude: float
    method: str
    timings: Dict[str, str]
    display: Dict[str, str]


class WeekResponse(BaseModel):
    days: List[PrayerTimesResponse]


class NextPrayerResponse(BaseModel):
    name: str
    time: datetime
    display: str


class LocationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    latitude: float
    longitude: float
    city: Optional[str] = None
    country: Optional[str] = None
    calculation_method: str
    updated_at: Optional[datetime] = None


class LocationUpdate(BaseModel):
    latitude: float
    longitude: float
    method: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None


def _times_response(time_set: PrayerTimeSet) -> PrayerTimesResponse:
    return PrayerTimesResponse(
        day=time_set.day,
        latitude=time_set.latitude,
        longitude=time_set.longitude,
        method=time_set.method.value,
        timings=dict(time_set.timings),
        display={name: format_prayer_time(value) for name, value in time_set.timings.items()},
    )


def _location_response(location: UserLocation) -> LocationResponse:
    return LocationResponse(
        latitude=location.latitude,
        longitude=location.longitude,
        city=location.city,
        country=location.country,
        calculation_method=location.calculation_method.value,
        updated_at=location.updated_at,
    )


def get_router(agenda_app) -> Optional[APIRouter]:
    """Return router for this plugin; mounted with prefix /api/components/prayer."""
    if getattr(agenda_app, "prayer_cache", None) is None:
        return None
    router = APIRouter(tags=["Prayer"])

    async def _require_location() -> UserLocation:
        location = await asyncio.to_thread(agenda_app.location_service.get_location)
        if location is None:
            raise HTTPException(status_code=409, detail="No location set; PUT /location first")
        return location

    @router.get("/times", response_model=PrayerTimesResponse)
    async def get_times(day: Optional[date] = Query(None, alias="date")) -> PrayerTimesResponse:
        """Prayer times of date (default today) for the stored location."""
        location = await _require_location()
        day = day or agenda_app.clock()
        time_set = await agenda_app.call(
            agenda_app.prayer_cache.get_prayer_times(
                day, location.latitude, location.longitude, location.calculation_method
            )
        )
        return _times_response(time_set)

    @router.get("/week", response_model=WeekResponse)
    async def get_week(start: Optional[date] = None) -> WeekResponse:
        """Seven days of prayer times from start (default today)."""
        location = await _require_location()
        week = await agenda_app.call(
            agenda_app.prayer_cache.get_prayer_times_for_week(
                start or agenda_app.clock(), location.latitude, location.longitude, location.calculation_method
            )
        )
        return WeekResponse(days=[_times_response(day) for day in week])

    @router.get("/next", response_model=NextPrayerResponse)
    async def get_next() -> NextPrayerResponse:
        location = await _require_location()
        now = agenda_app.clock().astimezone(agenda_app.tz)
        upcoming = await agenda_app.call(
            find_next_prayer(
                agenda_app.prayer_cache, now, location.latitude, location.longitude, location.calculation_method
            )
        )
        return NextPrayerResponse(
            name=upcoming.name,
            time=upcoming.time,
            display=format_prayer_time(upcoming.time.strftime("%H:%M")),
        )

    @router.get("/location", response_model=LocationResponse)
    def get_location() -> LocationResponse:
        location = agenda_app.location_service.get_location()
        if location is None:
            raise HTTPException(status_code=404, detail="No location set")
        return _location_response(location)

    @router.put("/location", response_model=LocationResponse)
    def put_location(update: LocationUpdate) -> LocationResponse:
        """Replace the stored location; city/country are reverse geocoded when omitted."""
        try:
            location = agenda_app.location_service.set_location(
                update.latitude,
                update.longitude,
                method=update.method or agenda_app.default_method,
                city=update.city,
                country=update.country,
            )
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e)) from e
        return _location_response(location)

    return router

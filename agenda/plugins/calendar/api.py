"""
Per-plugin API for the aggregated calendar. Mounted at /api/components/calendar/.
"""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, ConfigDict

from agenda.core.time_window import default_agenda_window

from .backends.local import LocalCalendarBackend
from .types import EventSnapshot


class CalendarEventResponse(BaseModel):
    """Pydantic view of CalendarEvent; serializes from the dataclass attributes."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    start_time: datetime
    end_time: datetime
    is_all_day: bool = False
    location: Optional[str] = None
    notes: Optional[str] = None
    url: Optional[str] = None
    source: str


class EventsResponse(BaseModel):
    events: List[CalendarEventResponse]


class SnapshotResponse(BaseModel):
    events: List[CalendarEventResponse]
    window_start: datetime
    window_end: datetime
    refreshed_at: datetime
    failed_sources: List[str]
    last_sync: str


class EventCreate(BaseModel):
    title: str
    start_time: datetime
    end_time: datetime
    is_all_day: bool = False


class PermissionResponse(BaseModel):
    status: str


def _event_response(event) -> CalendarEventResponse:
    return CalendarEventResponse(
        id=event.id,
        title=event.title,
        start_time=event.start_time,
        end_time=event.end_time,
        is_all_day=event.is_all_day,
        location=event.location,
        notes=event.notes,
        url=event.url,
        source=event.source.value,
    )


def get_router(agenda_app) -> Optional[APIRouter]:
    """Return router for this plugin; mounted with prefix /api/components/calendar."""
    service = getattr(agenda_app, "agenda_service", None)
    if service is None:
        return None
    router = APIRouter(tags=["Calendar"])

    def _local_backend() -> LocalCalendarBackend:
        local = next(
            (b for b in service.aggregator.backends if isinstance(b, LocalCalendarBackend)), None
        )
        if local is None:
            raise HTTPException(status_code=404, detail="Local calendar is not enabled")
        return local

    def _snapshot_response(snapshot: EventSnapshot) -> SnapshotResponse:
        return SnapshotResponse(
            events=[_event_response(e) for e in snapshot.events],
            window_start=snapshot.window_start,
            window_end=snapshot.window_end,
            refreshed_at=snapshot.refreshed_at,
            failed_sources=list(snapshot.failed_sources),
            last_sync=service.last_sync_description(),
        )

    @router.get("/events", response_model=EventsResponse)
    async def get_events(start: Optional[datetime] = None, end: Optional[datetime] = None) -> EventsResponse:
        """Aggregated events overlapping [start, end); defaults to the agenda window around now."""
        default_start, default_end = default_agenda_window(agenda_app.clock().astimezone(agenda_app.tz))
        start = _aware(start, agenda_app.tz) or default_start
        end = _aware(end, agenda_app.tz) or default_end
        if end < start:
            raise HTTPException(status_code=422, detail="end must not be before start")
        events = await agenda_app.call(service.aggregator.load_events(start, end))
        return EventsResponse(events=[_event_response(e) for e in events])

    @router.post("/events", response_model=CalendarEventResponse, status_code=201)
    async def create_event(body: EventCreate) -> CalendarEventResponse:
        """Save a new event to the local calendar and refresh the snapshot."""
        local = _local_backend()
        start = _aware(body.start_time, agenda_app.tz)
        end = _aware(body.end_time, agenda_app.tz)
        try:
            event = await agenda_app.call(service.create_event(local, body.title, start, end, body.is_all_day))
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e))
        return _event_response(event)

    @router.post("/refresh", response_model=SnapshotResponse)
    async def refresh() -> SnapshotResponse:
        snapshot = await agenda_app.call(service.refresh_all())
        return _snapshot_response(snapshot)

    @router.get("/snapshot", response_model=SnapshotResponse)
    def get_snapshot() -> SnapshotResponse:
        """Last refresh result; 404 until the first refresh completes."""
        snapshot = service.snapshot
        if snapshot is None:
            raise HTTPException(status_code=404, detail="Calendar has not been refreshed yet")
        return _snapshot_response(snapshot)

    @router.post("/permission", response_model=PermissionResponse)
    async def request_permission() -> PermissionResponse:
        """Ask for local calendar access."""
        local = _local_backend()
        status = await agenda_app.call(local.request_permission())
        return PermissionResponse(status=status.value)

    return router


def _aware(value: Optional[datetime], tz) -> Optional[datetime]:
    if value is None:
        return None
    return value.replace(tzinfo=tz) if value.tzinfo is None else value

"""
Local calendar backend: a permission-gated event store on this machine.

IcsEventStore reads every .ics file of a directory with icalendar and writes
new events there, one file per event.
Recurrence rules are not expanded; each VEVENT is one occurrence.
"""
import asyncio
import dataclasses
import logging
import os
import uuid
from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone, tzinfo
from enum import Enum
from pathlib import Path
from typing import List, Optional, Union

from icalendar import Calendar, Event

from agenda.core.errors import SourceUnavailable
from agenda.core.time_window import add_days, local_midnight, to_local_date
from agenda.plugins.calendar.backends.base import CalendarBackend, in_window
from agenda.plugins.calendar.types import CalendarEvent, EventSource


class AuthorizationStatus(Enum):
    NOT_DETERMINED = "not_determined"
    AUTHORIZED = "authorized"
    DENIED = "denied"
    RESTRICTED = "restricted"


class LocalEventStore(ABC):
    """Device-level event store. Status only changes through request_access()."""

    @abstractmethod
    def authorization_status(self) -> AuthorizationStatus:
        pass

    @abstractmethod
    def request_access(self) -> AuthorizationStatus:
        pass

    @abstractmethod
    def events_between(self, start: datetime, end: datetime) -> List[CalendarEvent]:
        pass

    @abstractmethod
    def create_event(self, title: str, start: datetime, end: datetime, is_all_day: bool = False) -> CalendarEvent:
        """Save a new event to the default calendar. Raises SourceUnavailable unless authorized."""
        pass


def _as_date(value: Union[date, datetime]) -> date:
    return value.date() if isinstance(value, datetime) else value


class IcsEventStore(LocalEventStore):
    def __init__(self, path: Union[str, Path], tz: tzinfo, allow_access: bool = True):
        self.path = Path(path).expanduser()
        self.tz = tz
        self.allow_access = allow_access
        self.logger = logging.getLogger(self.__class__.__name__)
        self._status = AuthorizationStatus.NOT_DETERMINED

    def authorization_status(self) -> AuthorizationStatus:
        return self._status

    def request_access(self) -> AuthorizationStatus:
        if not self.allow_access:
            self._status = AuthorizationStatus.DENIED
        elif not self.path.is_dir() or not os.access(self.path, os.R_OK | os.X_OK):
            self._status = AuthorizationStatus.RESTRICTED
        else:
            self._status = AuthorizationStatus.AUTHORIZED
        self.logger.info(f"Local calendar access for {self.path}: {self._status.value}")
        return self._status

    def events_between(self, start: datetime, end: datetime) -> List[CalendarEvent]:
        events = []
        for ics_file in sorted(self.path.glob("*.ics")):
            try:
                calendar = Calendar.from_ical(ics_file.read_bytes())
            except (OSError, ValueError) as e:
                self.logger.warning(f"Skipping unreadable calendar file {ics_file.name}: {e}")
                continue
            for index, component in enumerate(calendar.walk("VEVENT")):
                try:
                    event = self._to_event(component, f"{ics_file.stem}-{index}")
                except (TypeError, ValueError) as e:
                    self.logger.warning(f"Skipping malformed event {index} in {ics_file.name}: {e}")
                    continue
                if event is not None and event.overlaps(start, end):
                    events.append(event)
        return events

    def create_event(self, title: str, start: datetime, end: datetime, is_all_day: bool = False) -> CalendarEvent:
        if self._status is not AuthorizationStatus.AUTHORIZED:
            raise SourceUnavailable(EventSource.LOCAL.value, "calendar access is required to create events")
        start, end = self._aware(start), self._aware(end)
        if end < start:
            raise ValueError("Event end must not be before its start")

        uid = f"{uuid.uuid4().hex}@personal-agenda"
        vevent = Event()
        vevent.add("uid", uid)
        vevent.add("dtstamp", datetime.now(timezone.utc))
        vevent.add("summary", title)
        if is_all_day:
            first_day = to_local_date(start, self.tz)
            vevent.add("dtstart", first_day)
            vevent.add("dtend", max(to_local_date(end, self.tz), add_days(first_day, 1)))
        else:
            vevent.add("dtstart", start.astimezone(timezone.utc))
            vevent.add("dtend", end.astimezone(timezone.utc))

        calendar = Calendar()
        calendar.add("prodid", "-//Personal Agenda//EN")
        calendar.add("version", "2.0")
        calendar.add_component(vevent)
        data = calendar.to_ical()

        ics_file = self.path / f"{uid.split('@')[0]}.ics"
        try:
            ics_file.write_bytes(data)
        except OSError as e:
            raise SourceUnavailable(EventSource.LOCAL.value, f"failed to create event: {e}") from e
        self.logger.info(f"Created local event '{title}' in {ics_file.name}")

        # Read back what was written so the result matches what listing returns
        written = next(iter(Calendar.from_ical(data).walk("VEVENT")))
        return self._to_event(written, uid)

    def _aware(self, value: datetime) -> datetime:
        # Floating times are in the configured zone
        return value.replace(tzinfo=self.tz) if value.tzinfo is None else value

    def _to_event(self, component, fallback_uid: str) -> Optional[CalendarEvent]:
        if "DTSTART" not in component:
            return None
        if str(component.get("STATUS", "")).upper() == "CANCELLED":
            return None

        start = component.decoded("DTSTART")
        all_day = not isinstance(start, datetime)
        if "DTEND" in component:
            end = component.decoded("DTEND")
        elif "DURATION" in component:
            end = start + component.decoded("DURATION")
        else:
            end = start + timedelta(days=1) if all_day else start

        if all_day:
            start_time = local_midnight(start, self.tz)
            end_time = local_midnight(_as_date(end), self.tz)
        else:
            start_time = self._aware(start)
            end_time = self._aware(end) if isinstance(end, datetime) else local_midnight(end, self.tz)
        if end_time < start_time:
            self.logger.debug(f"Event {fallback_uid} ends before it starts, clamping")
            end_time = start_time

        uid = str(component.get("UID") or fallback_uid)
        return CalendarEvent(
            id=f"local:{uid}@{start_time.isoformat()}",
            title=str(component.get("SUMMARY") or ""),
            start_time=start_time,
            end_time=end_time,
            source=EventSource.LOCAL,
            is_all_day=all_day,
            location=str(component["LOCATION"]) if component.get("LOCATION") else None,
            notes=str(component["DESCRIPTION"]) if component.get("DESCRIPTION") else None,
            url=str(component["URL"]) if component.get("URL") else None,
        )


class LocalCalendarBackend(CalendarBackend):
    """Events from the local event store, once access has been granted."""

    source = EventSource.LOCAL

    def __init__(self, event_store: LocalEventStore, tz: tzinfo):
        super().__init__()
        self.event_store = event_store
        self.tz = tz

    @property
    def authorization_status(self) -> AuthorizationStatus:
        return self.event_store.authorization_status()

    async def request_permission(self) -> AuthorizationStatus:
        """Ask the store for access. The only way the authorization status changes."""
        status = await asyncio.to_thread(self.event_store.request_access)
        self.logger.info(f"Local calendar permission: {status.value}")
        return status

    async def create_event(
        self, title: str, start: datetime, end: datetime, is_all_day: bool = False
    ) -> CalendarEvent:
        event = await asyncio.to_thread(self.event_store.create_event, title, start, end, is_all_day)
        return dataclasses.replace(
            event, start_time=event.start_time.astimezone(self.tz), end_time=event.end_time.astimezone(self.tz)
        )

    async def list_events(self, window_start: datetime, window_end: datetime) -> List[CalendarEvent]:
        status = self.event_store.authorization_status()
        if status is AuthorizationStatus.DENIED:
            raise SourceUnavailable(self.name, "calendar access denied")
        if status is not AuthorizationStatus.AUTHORIZED:
            self.logger.debug(f"Local calendar not authorized ({status.value}), returning no events")
            return []

        events = await asyncio.to_thread(self.event_store.events_between, window_start, window_end)
        self.logger.debug(f"Local calendar: {len(events)} event(s) between {window_start} and {window_end}")
        return [
            dataclasses.replace(
                event, start_time=event.start_time.astimezone(self.tz), end_time=event.end_time.astimezone(self.tz)
            )
            for event in in_window(events, window_start, window_end)
        ]

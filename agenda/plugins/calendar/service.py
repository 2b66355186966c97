"""
Calendar aggregation: fan out to every backend, merge, order, and keep the
latest refresh as one immutable snapshot.
"""
import asyncio
import dataclasses
import logging
from collections import Counter
from datetime import date, datetime, timezone, tzinfo
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

from agenda.core.errors import AggregateSourceError
from agenda.core.time_window import day_bounds, default_agenda_window
from agenda.plugins.calendar.backends.base import CalendarBackend
from agenda.plugins.calendar.backends.local import LocalCalendarBackend
from agenda.plugins.calendar.types import CalendarEvent, EventSnapshot


def _with_unique_ids(events: List[CalendarEvent]) -> List[CalendarEvent]:
    taken = {event.id for event in events}
    seen: Counter = Counter()
    unique = []
    for event in events:
        seen[event.id] += 1
        if seen[event.id] > 1:
            # A provider id may already end in "#N"
            while f"{event.id}#{seen[event.id]}" in taken:
                seen[event.id] += 1
            new_id = f"{event.id}#{seen[event.id]}"
            taken.add(new_id)
            event = dataclasses.replace(event, id=new_id)
        unique.append(event)
    return unique


class CalendarAggregator:
    def __init__(self, backends: Sequence[CalendarBackend]):
        self.backends = list(backends)
        self.logger = logging.getLogger(self.__class__.__name__)

    async def load_events_with_failures(
        self, window_start: datetime, window_end: datetime
    ) -> Tuple[List[CalendarEvent], Dict[str, BaseException]]:
        """Query every backend concurrently over the same window.

        Returns the merged, ordered events and the failures of the backends that raised.
        Raises AggregateSourceError when every backend failed.
        """
        results = await asyncio.gather(
            *(backend.list_events(window_start, window_end) for backend in self.backends),
            return_exceptions=True,
        )

        events: List[CalendarEvent] = []
        failures: Dict[str, BaseException] = {}
        for backend, result in zip(self.backends, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                name = backend.name if backend.name not in failures else f"{backend.name}:{len(failures)}"
                failures[name] = result
                self.logger.warning(f"Calendar source {name} failed: {result}")
            else:
                events.extend(result)

        if self.backends and len(failures) == len(self.backends):
            raise AggregateSourceError(failures)

        events.sort(key=CalendarEvent.sort_key)
        return _with_unique_ids(events), failures

    async def load_events(self, window_start: datetime, window_end: datetime) -> List[CalendarEvent]:
        """Merged events of all backends ordered by start, then local before remote.

        A failing backend contributes nothing while another one succeeds, so an empty
        list always means no events.
        """
        events, _ = await self.load_events_with_failures(window_start, window_end)
        return events


class AgendaService:
    """Holds the last aggregation result; refreshes replace it as a whole."""

    def __init__(
        self,
        aggregator: CalendarAggregator,
        tz: tzinfo,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.aggregator = aggregator
        self.tz = tz
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.logger = logging.getLogger(self.__class__.__name__)
        self._snapshot: Optional[EventSnapshot] = None
        self._refresh_lock = asyncio.Lock()

    @property
    def snapshot(self) -> Optional[EventSnapshot]:
        return self._snapshot

    async def refresh_all(
        self, window_start: Optional[datetime] = None, window_end: Optional[datetime] = None
    ) -> EventSnapshot:
        """Re-run the aggregation and swap in the new snapshot.

        Concurrent refreshes run one after another. On failure the previous snapshot stays.
        """
        async with self._refresh_lock:
            now = self.clock().astimezone(self.tz)
            default_start, default_end = default_agenda_window(now)
            window_start = window_start or default_start
            window_end = window_end or default_end

            events, failures = await self.aggregator.load_events_with_failures(window_start, window_end)
            snapshot = EventSnapshot(
                events=tuple(events),
                window_start=window_start,
                window_end=window_end,
                refreshed_at=self.clock(),
                failed_sources=tuple(failures),
            )
            self._snapshot = snapshot
            self.logger.info(
                f"Calendar refreshed: {len(events)} event(s) from {window_start:%Y-%m-%d} to {window_end:%Y-%m-%d}"
                + (f", failed sources: {', '.join(failures)}" if failures else "")
            )
            return snapshot

    async def create_event(
        self, backend: LocalCalendarBackend, title: str, start: datetime, end: datetime, is_all_day: bool = False
    ) -> CalendarEvent:
        """Save a new local event, then reload the snapshot so it shows up."""
        event = await backend.create_event(title, start, end, is_all_day)
        try:
            await self.refresh_all()
        except AggregateSourceError as e:
            self.logger.warning(f"Event {event.id} created but the refresh after it failed: {e}")
        return event

    async def events_for_day(self, day: Union[date, datetime]) -> List[CalendarEvent]:
        start, end = day_bounds(day, self.tz)
        return await self.aggregator.load_events(start, end)

    def last_sync_description(self) -> str:
        """Relative age of the last refresh, e.g. '5m ago'."""
        if self._snapshot is None:
            return "Never"
        seconds = int((self.clock() - self._snapshot.refreshed_at).total_seconds())
        if seconds < 60:
            return "Just now"
        if seconds < 3600:
            return f"{seconds // 60}m ago"
        if seconds < 86400:
            return f"{seconds // 3600}h ago"
        return f"{seconds // 86400}d ago"

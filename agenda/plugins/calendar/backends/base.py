"""
Base interface for calendar backends.
All backends return List[CalendarEvent]; no dicts.
"""
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Iterable, List

from agenda.plugins.calendar.types import CalendarEvent, EventSource


class CalendarBackend(ABC):
    """Abstract backend: events of one calendar source overlapping a window."""

    source: EventSource

    def __init__(self):
        self.logger = logging.getLogger(self.__class__.__name__)

    @property
    def name(self) -> str:
        return self.source.value

    @abstractmethod
    async def list_events(self, window_start: datetime, window_end: datetime) -> List[CalendarEvent]:
        """Return the events overlapping [window_start, window_end).
        Raises SourceUnavailable when the source cannot be queried, ProviderError when it fails.
        """
        pass


def in_window(events: Iterable[CalendarEvent], window_start: datetime, window_end: datetime) -> List[CalendarEvent]:
    return [event for event in events if event.overlaps(window_start, window_end)]

"""Common event record every calendar backend normalises into."""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple

UNTITLED_EVENT = "Untitled Event"


class EventSource(Enum):
    LOCAL = "local"
    REMOTE = "remote"

    @property
    def sort_rank(self) -> int:
        """Tie-break order for events starting at the same instant: local before remote."""
        return 0 if self is EventSource.LOCAL else 1


@dataclass(frozen=True)
class CalendarEvent:
    """One calendar entry. Times are timezone-aware; for all-day events they are local day boundaries."""

    id: str
    title: str
    start_time: datetime
    end_time: datetime
    source: EventSource
    is_all_day: bool = False
    location: Optional[str] = None
    notes: Optional[str] = None
    url: Optional[str] = None

    def __post_init__(self):
        if self.start_time.tzinfo is None or self.end_time.tzinfo is None:
            raise ValueError(f"Event {self.id!r} has naive start/end times")
        if self.end_time < self.start_time:
            raise ValueError(f"Event {self.id!r} ends before it starts")
        if not (self.title or "").strip():
            object.__setattr__(self, "title", UNTITLED_EVENT)

    def overlaps(self, window_start: datetime, window_end: datetime) -> bool:
        """True if the event intersects [window_start, window_end). Zero-length events count at their start."""
        if self.start_time == self.end_time:
            return window_start <= self.start_time < window_end
        return self.start_time < window_end and self.end_time > window_start

    def sort_key(self) -> Tuple:
        return (self.start_time, self.source.sort_rank, self.end_time, self.title, self.id)


@dataclass(frozen=True)
class EventSnapshot:
    """Result of one full refresh, swapped in as a whole."""

    events: Tuple[CalendarEvent, ...]
    window_start: datetime
    window_end: datetime
    refreshed_at: datetime
    failed_sources: Tuple[str, ...] = field(default=())

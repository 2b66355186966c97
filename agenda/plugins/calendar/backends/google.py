"""
Google Calendar backend using the Calendar v3 REST API with a bearer token.
"""
import asyncio
from datetime import date, datetime, timezone, tzinfo
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests
from dateutil import parser as date_parser
from google.auth.exceptions import TransportError

from agenda.core.errors import DecodeError, ProviderError, SourceUnavailable
from agenda.core.time_window import local_midnight
from agenda.plugins.calendar.backends.base import CalendarBackend, in_window
from agenda.plugins.calendar.identity import AccessTokenProvider
from agenda.plugins.calendar.types import CalendarEvent, EventSource

EVENTS_URL = "https://www.googleapis.com/calendar/v3/calendars/{calendar_id}/events"


def _rfc3339(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


class GoogleCalendarBackend(CalendarBackend):
    """Remote calendar. A missing token means signed out: no events, no error."""

    source = EventSource.REMOTE
    PAGE_SIZE = 250

    def __init__(
        self,
        token_provider: AccessTokenProvider,
        tz: tzinfo,
        calendar_id: str = "primary",
        timeout: float = 30,
        session: Optional[requests.Session] = None,
    ):
        super().__init__()
        self.token_provider = token_provider
        self.tz = tz
        self.calendar_id = calendar_id
        self.timeout = timeout
        self.session = session or requests.Session()

    async def list_events(self, window_start: datetime, window_end: datetime) -> List[CalendarEvent]:
        try:
            token = await asyncio.to_thread(self.token_provider.current_access_token)
        except TransportError as e:
            raise SourceUnavailable(self.name, f"token endpoint unreachable: {e}") from e
        if not token:
            self.logger.info("No Google access token, skipping remote calendar")
            return []
        items = await asyncio.to_thread(self._get_items, token, window_start, window_end)
        events = [event for event in (self._to_event(item) for item in items) if event is not None]
        self.logger.debug(f"Google calendar: {len(events)} event(s) between {window_start} and {window_end}")
        return in_window(events, window_start, window_end)

    def _get_items(self, token: str, window_start: datetime, window_end: datetime) -> List[Dict[str, Any]]:
        url = EVENTS_URL.format(calendar_id=quote(self.calendar_id, safe=""))
        headers = {"Authorization": f"Bearer {token}"}
        params = {
            "timeMin": _rfc3339(window_start),
            "timeMax": _rfc3339(window_end),
            "singleEvents": "true",
            "orderBy": "startTime",
            "maxResults": self.PAGE_SIZE,
        }
        items: List[Dict[str, Any]] = []
        while True:
            data = self._get_page(url, headers, params)
            page_items = data.get("items") or []
            if not isinstance(page_items, list):
                raise DecodeError(self.name, "Response items is not a list")
            items.extend(page_items)
            page_token = data.get("nextPageToken")
            if not page_token:
                return items
            params = dict(params, pageToken=page_token)

    def _get_page(self, url: str, headers: Dict[str, str], params: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = self.session.get(url, headers=headers, params=params, timeout=self.timeout)
        except requests.exceptions.Timeout as e:
            raise SourceUnavailable(self.name, f"request timed out after {self.timeout}s") from e
        except requests.exceptions.ConnectionError as e:
            raise SourceUnavailable(self.name, f"connection failed: {e}") from e
        except requests.exceptions.RequestException as e:
            raise ProviderError(self.name, f"Request failed: {e}") from e

        if response.status_code in (401, 403):
            raise SourceUnavailable(self.name, f"not authorized (HTTP {response.status_code})")
        if response.status_code != 200:
            raise ProviderError(self.name, response.text[:200] or response.reason or "HTTP error",
                                status=response.status_code)
        try:
            data = response.json()
        except ValueError as e:
            raise DecodeError(self.name, f"Response is not JSON: {e}", status=response.status_code) from e
        if not isinstance(data, dict):
            raise DecodeError(self.name, "Response is not an object")
        return data

    def _parse_when(self, when: Any, field: str) -> tuple:
        """Return (aware datetime, is_all_day) from a {dateTime} or {date} object."""
        if not isinstance(when, dict):
            raise DecodeError(self.name, f"Event {field} is missing")
        try:
            if when.get("dateTime"):
                value = date_parser.isoparse(when["dateTime"])
                if value.tzinfo is None:
                    value = value.replace(tzinfo=self.tz)
                return value.astimezone(self.tz), False
            if when.get("date"):
                return local_midnight(date.fromisoformat(when["date"]), self.tz), True
        except (TypeError, ValueError) as e:
            raise DecodeError(self.name, f"Invalid event {field}: {when}") from e
        raise DecodeError(self.name, f"Event {field} has neither dateTime nor date")

    def _to_event(self, item: Dict[str, Any]) -> Optional[CalendarEvent]:
        if not isinstance(item, dict):
            raise DecodeError(self.name, "Event item is not an object")
        if item.get("status") == "cancelled":
            return None
        start_time, all_day = self._parse_when(item.get("start"), "start")
        end_time, _ = self._parse_when(item.get("end"), "end")
        if end_time < start_time:
            end_time = start_time
        return CalendarEvent(
            id=f"google:{item.get('id') or start_time.isoformat()}",
            title=item.get("summary") or "",
            start_time=start_time,
            end_time=end_time,
            source=EventSource.REMOTE,
            is_all_day=all_day,
            location=item.get("location"),
            notes=item.get("description"),
            url=item.get("htmlLink"),
        )

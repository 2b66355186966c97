import asyncio
from datetime import datetime, timedelta, timezone
from unittest import mock

import pytest
import requests
from google.auth.exceptions import RefreshError, TransportError

from agenda.core.errors import DecodeError, ProviderError, SourceUnavailable
from agenda.plugins.calendar.backends.google import GoogleCalendarBackend
from agenda.plugins.calendar.identity import GoogleCredentialsTokenProvider, StaticTokenProvider
from agenda.plugins.calendar.service import AgendaService, CalendarAggregator
from agenda.plugins.calendar.types import EventSource

from fakes import FakeCalendarBackend, json_response, session_returning

WINDOW = (datetime(2025, 9, 1, tzinfo=timezone.utc), datetime(2025, 9, 8, tzinfo=timezone.utc))


def _backend(session, tz, token="tok"):
    return GoogleCalendarBackend(StaticTokenProvider(token), tz, session=session)


def _list(backend):
    return asyncio.run(backend.list_events(*WINDOW))


def test_no_token_returns_empty_without_request(chicago):
    session = mock.Mock()

    assert _list(_backend(session, chicago, token=None)) == []
    session.get.assert_not_called()


def test_request_shape(chicago):
    session = session_returning(json_response({"items": []}))

    _list(_backend(session, chicago))

    args, kwargs = session.get.call_args
    assert args[0] == "https://www.googleapis.com/calendar/v3/calendars/primary/events"
    assert kwargs["headers"] == {"Authorization": "Bearer tok"}
    assert kwargs["params"]["timeMin"] == "2025-09-01T00:00:00Z"
    assert kwargs["params"]["timeMax"] == "2025-09-08T00:00:00Z"
    assert kwargs["params"]["singleEvents"] == "true"
    assert kwargs["params"]["orderBy"] == "startTime"


def test_all_day_event_decodes_to_local_midnight(chicago):
    item = {"id": "e1", "summary": "Labor Day", "start": {"date": "2025-09-01"}, "end": {"date": "2025-09-02"}}
    events = _list(_backend(session_returning(json_response({"items": [item]})), chicago))

    assert len(events) == 1
    event = events[0]
    assert event.is_all_day is True
    assert event.start_time == datetime(2025, 9, 1, 0, 0, tzinfo=chicago)
    assert event.end_time == datetime(2025, 9, 2, 0, 0, tzinfo=chicago)
    assert event.source is EventSource.REMOTE
    assert event.id == "google:e1"


def test_timed_event_keeps_instant(chicago):
    item = {
        "id": "e2",
        "summary": "Dentist",
        "location": "Main St",
        "htmlLink": "https://calendar.google.com/e2",
        "start": {"dateTime": "2025-09-03T15:00:00Z"},
        "end": {"dateTime": "2025-09-03T16:30:00Z"},
    }
    event = _list(_backend(session_returning(json_response({"items": [item]})), chicago))[0]

    assert event.is_all_day is False
    assert event.start_time == datetime(2025, 9, 3, 15, 0, tzinfo=timezone.utc)
    assert event.end_time - event.start_time == timedelta(minutes=90)
    assert event.start_time.tzinfo is chicago
    assert (event.location, event.url) == ("Main St", "https://calendar.google.com/e2")


def test_missing_summary_becomes_untitled(chicago):
    item = {"id": "e3", "start": {"dateTime": "2025-09-03T15:00:00Z"}, "end": {"dateTime": "2025-09-03T16:00:00Z"}}

    assert _list(_backend(session_returning(json_response({"items": [item]})), chicago))[0].title == "Untitled Event"


def test_follows_pages_and_skips_cancelled(chicago):
    first = {
        "items": [{"id": "a", "start": {"date": "2025-09-02"}, "end": {"date": "2025-09-03"}}],
        "nextPageToken": "p2",
    }
    second = {
        "items": [
            {"id": "b", "status": "cancelled"},
            {"id": "c", "start": {"date": "2025-09-04"}, "end": {"date": "2025-09-05"}},
        ]
    }
    session = session_returning(json_response(first), json_response(second))

    events = _list(_backend(session, chicago))

    assert [e.id for e in events] == ["google:a", "google:c"]
    assert session.get.call_args_list[1].kwargs["params"]["pageToken"] == "p2"


@pytest.mark.parametrize("status", [401, 403])
def test_unauthorized_is_source_unavailable(chicago, status):
    with pytest.raises(SourceUnavailable):
        _list(_backend(session_returning(json_response({}, status_code=status)), chicago))


def test_server_error_is_provider_error(chicago):
    with pytest.raises(ProviderError) as excinfo:
        _list(_backend(session_returning(json_response({}, status_code=500)), chicago))
    assert excinfo.value.status == 500


def test_timeout_is_source_unavailable(chicago):
    session = mock.Mock()
    session.get.side_effect = requests.exceptions.Timeout()

    with pytest.raises(SourceUnavailable):
        _list(_backend(session, chicago))


def test_bad_event_shape_is_decode_error(chicago):
    item = {"id": "x", "start": {"dateTime": "not a time"}, "end": {"dateTime": "2025-09-03T16:00:00Z"}}

    with pytest.raises(DecodeError):
        _list(_backend(session_returning(json_response({"items": [item]})), chicago))


class ExpiredCredentials:
    valid = False
    expired = True
    refresh_token = "refresh"
    token = None

    def __init__(self, error):
        self.error = error

    def refresh(self, request):
        raise self.error


def _provider_with(creds, tmp_path):
    provider = GoogleCredentialsTokenProvider(str(tmp_path / "token.json"))
    provider._creds = creds
    return provider


def test_rejected_refresh_means_signed_out(tmp_path):
    provider = _provider_with(ExpiredCredentials(RefreshError("invalid_grant")), tmp_path)

    assert provider.current_access_token() is None


def test_unreachable_token_endpoint_is_source_unavailable(chicago, tmp_path):
    provider = _provider_with(ExpiredCredentials(TransportError("connection refused")), tmp_path)
    session = mock.Mock()
    backend = GoogleCalendarBackend(provider, chicago, session=session)

    with pytest.raises(SourceUnavailable) as excinfo:
        _list(backend)

    assert excinfo.value.source == "remote"
    session.get.assert_not_called()


def test_unreachable_token_endpoint_shows_in_failed_sources(chicago, tmp_path, fixed_clock):
    provider = _provider_with(ExpiredCredentials(TransportError("timed out")), tmp_path)
    backend = GoogleCalendarBackend(provider, chicago, session=mock.Mock())
    service = AgendaService(CalendarAggregator([backend, FakeCalendarBackend(EventSource.LOCAL)]), chicago, fixed_clock)

    snapshot = asyncio.run(service.refresh_all(*WINDOW))

    assert snapshot.events == ()
    assert snapshot.failed_sources == ("remote",)

from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from agenda.api.server import create_app
from agenda.core.app import AgendaApp
from agenda.core.errors import ProviderError, SourceUnavailable
from agenda.core.task_manager import TaskManager
from agenda.plugins.calendar.backends.local import IcsEventStore, LocalCalendarBackend
from agenda.plugins.calendar.service import AgendaService, CalendarAggregator
from agenda.plugins.calendar.types import EventSource
from agenda.plugins.prayer.cache import PrayerTimesCache
from agenda.plugins.prayer.location import LocationService
from agenda.plugins.prayer.service import MemoryPrayerTimesStore

from fakes import FakeCalendarBackend, FakePrayerBackend, make_event


def at(hour):
    return datetime(2025, 9, 1, hour, 0, tzinfo=timezone.utc)


@pytest.fixture
def parts(database, chicago, fixed_clock):
    prayer_backend = FakePrayerBackend()
    local = FakeCalendarBackend(EventSource.LOCAL, [make_event(EventSource.LOCAL, at(14), at(15), "Review")])
    remote = FakeCalendarBackend(EventSource.REMOTE, [make_event(EventSource.REMOTE, at(13), at(14), "Lunch")])
    task_manager = TaskManager(database)
    app = AgendaApp(
        database,
        task_manager,
        chicago,
        prayer_cache=PrayerTimesCache(MemoryPrayerTimesStore(), prayer_backend, chicago),
        location_service=LocationService(database),
        agenda_service=AgendaService(CalendarAggregator([local, remote]), chicago, clock=fixed_clock),
        clock=fixed_clock,
    )
    yield {"app": app, "prayer_backend": prayer_backend, "local": local, "remote": remote}
    task_manager.stop()


@pytest.fixture
def client(parts):
    return TestClient(create_app(parts["app"]))


def _set_location(client):
    response = client.put(
        "/api/components/prayer/location",
        json={"latitude": 32.7767, "longitude": -96.797, "method": "isna", "city": "Dallas", "country": "US"},
    )
    assert response.status_code == 200
    return response.json()


def test_health(client):
    response = client.get("/api/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_tasks_listing(client):
    body = client.get("/api/tasks").json()

    assert body == {"db_schedules": [], "active_timers": []}


def test_prayer_times_need_a_location(client):
    assert client.get("/api/components/prayer/times").status_code == 409
    assert client.get("/api/components/prayer/location").status_code == 404


def test_location_round_trip(client):
    stored = _set_location(client)

    assert stored["calculation_method"] == "ISNA"
    assert client.get("/api/components/prayer/location").json()["city"] == "Dallas"


def test_invalid_location_is_rejected(client):
    response = client.put("/api/components/prayer/location", json={"latitude": 95, "longitude": 0})

    assert response.status_code == 422


def test_prayer_times_for_date(client, parts):
    _set_location(client)

    body = client.get("/api/components/prayer/times", params={"date": "2025-09-01"}).json()

    assert body["day"] == "2025-09-01"
    assert body["method"] == "ISNA"
    assert body["timings"]["Fajr"] == "05:15"
    assert body["display"]["Dhuhr"] == "1:05 PM"
    assert len(parts["prayer_backend"].calls) == 1


def test_prayer_week(client):
    _set_location(client)

    days = client.get("/api/components/prayer/week", params={"start": "2025-09-01"}).json()["days"]

    assert [d["day"] for d in days] == [f"2025-09-0{i}" for i in range(1, 8)]


def test_next_prayer(client):
    _set_location(client)

    # 12:00 UTC is 07:00 in Chicago
    body = client.get("/api/components/prayer/next").json()

    assert body["name"] == "Dhuhr"
    assert body["display"] == "1:05 PM"


def test_provider_failure_maps_to_502(client, parts):
    _set_location(client)
    parts["prayer_backend"].error = ProviderError("aladhan", "unavailable", status=503)

    response = client.get("/api/components/prayer/times", params={"date": "2025-10-01"})

    assert response.status_code == 502
    assert response.json()["provider"] == "aladhan"


def test_calendar_events_are_merged(client):
    response = client.get(
        "/api/components/calendar/events",
        params={"start": "2025-09-01T00:00:00+00:00", "end": "2025-09-02T00:00:00+00:00"},
    )

    assert response.status_code == 200
    assert [e["title"] for e in response.json()["events"]] == ["Lunch", "Review"]
    assert [e["source"] for e in response.json()["events"]] == ["remote", "local"]


def test_all_sources_failing_maps_to_503(client, parts):
    parts["local"].error = SourceUnavailable("local", "denied")
    parts["remote"].error = SourceUnavailable("remote", "signed out")

    response = client.get("/api/components/calendar/events")

    assert response.status_code == 503
    assert set(response.json()["sources"]) == {"local", "remote"}


def test_snapshot_after_refresh(client):
    assert client.get("/api/components/calendar/snapshot").status_code == 404

    refreshed = client.post("/api/components/calendar/refresh")
    assert refreshed.status_code == 200
    assert len(refreshed.json()["events"]) == 2

    snapshot = client.get("/api/components/calendar/snapshot").json()
    assert snapshot["last_sync"] == "Just now"
    assert snapshot["failed_sources"] == []


def test_permission_without_local_calendar(client):
    assert client.post("/api/components/calendar/permission").status_code == 404


@pytest.fixture
def ics_client(database, chicago, fixed_clock, tmp_path):
    local = LocalCalendarBackend(IcsEventStore(tmp_path, chicago), chicago)
    task_manager = TaskManager(database)
    app = AgendaApp(
        database,
        task_manager,
        chicago,
        agenda_service=AgendaService(CalendarAggregator([local]), chicago, clock=fixed_clock),
        clock=fixed_clock,
    )
    yield TestClient(create_app(app))
    task_manager.stop()


def test_create_event_needs_permission(ics_client):
    response = ics_client.post(
        "/api/components/calendar/events",
        json={"title": "Dentist", "start_time": "2025-09-03T10:00:00", "end_time": "2025-09-03T11:00:00"},
    )

    assert response.status_code == 503


def test_create_event_saves_and_refreshes(ics_client, tmp_path):
    assert ics_client.post("/api/components/calendar/permission").json()["status"] == "authorized"

    response = ics_client.post(
        "/api/components/calendar/events",
        json={"title": "Dentist", "start_time": "2025-09-03T10:00:00", "end_time": "2025-09-03T11:00:00"},
    )

    assert response.status_code == 201
    created = response.json()
    assert created["title"] == "Dentist"
    assert created["source"] == "local"
    assert datetime.fromisoformat(created["start_time"]) == datetime(2025, 9, 3, 15, 0, tzinfo=timezone.utc)
    assert len(list(tmp_path.glob("*.ics"))) == 1

    snapshot = ics_client.get("/api/components/calendar/snapshot").json()
    assert [e["id"] for e in snapshot["events"]] == [created["id"]]


def test_create_event_rejects_end_before_start(ics_client):
    ics_client.post("/api/components/calendar/permission")

    response = ics_client.post(
        "/api/components/calendar/events",
        json={"title": "Backwards", "start_time": "2025-09-03T11:00:00", "end_time": "2025-09-03T10:00:00"},
    )

    assert response.status_code == 422

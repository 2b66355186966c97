import threading
import time
from datetime import datetime, timedelta, timezone

import pytest

from agenda.core.models import get_all_task_schedules
from agenda.core.task import (
    BaseTask,
    TaskType,
    compute_next_run,
    get_next_run_from_db,
    parse_hh_mm,
    record_run,
    upsert_task_schedule,
)
from agenda.core.task_manager import TaskManager


class RecordingTask(BaseTask):
    def __init__(self, name="recording", error=None):
        super().__init__(name, TaskType.INTERVAL_SECONDS, {"interval_seconds": 3600})
        self.error = error
        self.ran = threading.Event()

    async def run(self):
        self.ran.set()
        if self.error is not None:
            raise self.error
        return "done"


def test_parse_hh_mm():
    assert parse_hh_mm("07:45") == (7, 45)
    assert parse_hh_mm("7") == (7, 0)
    assert parse_hh_mm("25:00") == (0, 0)
    assert parse_hh_mm("bad", default=(0, 30)) == (0, 30)


def test_daily_next_run_is_later_today_or_tomorrow():
    config = {"time": "00:30"}

    assert compute_next_run(TaskType.DAILY, config, datetime(2025, 9, 1, 0, 10)) == datetime(2025, 9, 1, 0, 30)
    assert compute_next_run(TaskType.DAILY, config, datetime(2025, 9, 1, 10, 0)) == datetime(2025, 9, 2, 0, 30)
    assert compute_next_run(TaskType.DAILY, config, datetime(2025, 9, 1, 0, 30)) == datetime(2025, 9, 2, 0, 30)


def test_interval_next_run():
    last = datetime(2025, 9, 1, 10, 0)

    assert compute_next_run(TaskType.INTERVAL_SECONDS, {"interval_seconds": 900}, last) == last + timedelta(seconds=900)
    assert compute_next_run("unknown", None, last) == last + timedelta(days=1)


def test_schedule_row_lifecycle(database):
    upsert_task_schedule(database, "calendar_refresh", TaskType.INTERVAL_SECONDS, {"interval_seconds": 900})

    assert get_next_run_from_db(database, "calendar_refresh") is None

    before = datetime.now(timezone.utc).replace(tzinfo=None)
    next_run = record_run(database, "calendar_refresh", error="boom")

    assert next_run >= before + timedelta(seconds=899)
    assert get_next_run_from_db(database, "calendar_refresh") == next_run
    row = get_all_task_schedules(database)[0]
    assert row["task_name"] == "calendar_refresh"
    assert row["last_error"] == "boom"


def test_upsert_keeps_existing_next_run(database):
    when = datetime(2030, 1, 1, 0, 0)
    upsert_task_schedule(database, "t", TaskType.DAILY, {"time": "01:00"}, next_run_at=when)
    upsert_task_schedule(database, "t", TaskType.DAILY, {"time": "02:00"})

    assert get_next_run_from_db(database, "t") == when
    assert get_all_task_schedules(database)[0]["schedule_config"] == {"time": "02:00"}


def test_record_run_for_unknown_task(database):
    assert record_run(database, "missing") is None


def _wait_for_timer(manager, name, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if any(t["name"] == name for t in manager.get_active_timers()):
            return True
        time.sleep(0.01)
    return False


def test_new_task_runs_immediately_and_is_rescheduled(file_database):
    manager = TaskManager(file_database)
    task = RecordingTask()
    try:
        manager.register_task(task)
        manager.schedule_registered_task(task.task_name)

        assert task.ran.wait(5)
        assert _wait_for_timer(manager, task.task_name)
        # Timer is first set for the immediate run; wait until the run has been recorded
        deadline = time.monotonic() + 5
        while get_all_task_schedules(file_database)[0]["last_run_at"] is None and time.monotonic() < deadline:
            time.sleep(0.01)
        row = get_all_task_schedules(file_database)[0]
        assert row["last_run_at"] is not None
        assert row["last_error"] is None
        assert row["next_run_at"] > row["last_run_at"]
    finally:
        manager.stop()


def test_failing_task_records_error(file_database):
    manager = TaskManager(file_database)
    task = RecordingTask("failing", error=RuntimeError("provider down"))
    try:
        manager.register_task(task)
        manager.schedule_registered_task(task.task_name)

        assert task.ran.wait(5)
        deadline = time.monotonic() + 5
        while get_all_task_schedules(file_database)[0]["last_error"] is None and time.monotonic() < deadline:
            time.sleep(0.01)
        assert get_all_task_schedules(file_database)[0]["last_error"] == "provider down"
    finally:
        manager.stop()


def test_run_task_now_and_submit():
    manager = TaskManager()
    task = RecordingTask()
    try:
        manager.register_task(task)

        assert manager.run_task_now(task.task_name).result(timeout=5) == "done"
        with pytest.raises(KeyError):
            manager.run_task_now("nope")

        async def add(a, b):
            return a + b

        assert manager.run_sync(add(2, 3), timeout=5) == 5
    finally:
        manager.stop()

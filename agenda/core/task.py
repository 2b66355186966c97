"""
Base task type and abstract BaseTask with next_run persistence in DB.
"""
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from sqlalchemy import select

from agenda.core.db import Database
from agenda.core.models import TaskSchedule

logger = logging.getLogger(__name__)


class TaskType:
    """Schedule kind for tasks."""
    DAILY = "daily"
    INTERVAL_SECONDS = "interval_seconds"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_hh_mm(time_str: Any, default: tuple = (0, 0)) -> tuple:
    """Parse "HH:MM" into (hour, minute); falls back to default on bad input."""
    try:
        parts = str(time_str).strip().split(":")
        hour = int(parts[0])
        minute = int(parts[1]) if len(parts) > 1 else 0
        if not (0 <= hour < 24 and 0 <= minute < 60):
            raise ValueError(time_str)
        return hour, minute
    except (ValueError, IndexError):
        return default


def compute_next_run(
    schedule_type: str,
    schedule_config: Optional[Dict[str, Any]],
    last_run: Optional[datetime],
    now: Optional[datetime] = None,
) -> datetime:
    """Compute next run datetime (naive UTC) from schedule_type, schedule_config, and last_run."""
    if now is None:
        now = _utc_now()
    if last_run is None:
        last_run = now

    if schedule_type == TaskType.DAILY and schedule_config:
        hour, minute = parse_hh_mm(schedule_config.get("time", "00:00"))
        next_run = last_run.replace(hour=hour, minute=minute, second=0, microsecond=0)
        if next_run <= last_run:
            next_run += timedelta(days=1)
        return next_run

    if schedule_type == TaskType.INTERVAL_SECONDS and schedule_config:
        sec = int(schedule_config.get("interval_seconds", 86400))
        return last_run + timedelta(seconds=sec)

    return last_run + timedelta(days=1)


def get_next_run_from_db(database: Database, task_name: str) -> Optional[datetime]:
    """Read next_run_at for a task. None if no row or next_run_at is null (task will run immediately)."""
    with database.session_scope() as session:
        row = session.execute(
            select(TaskSchedule).where(TaskSchedule.task_name == task_name)
        ).scalars().first()
        if row and row.next_run_at is not None:
            return row.next_run_at
    return None


def upsert_task_schedule(
    database: Database,
    task_name: str,
    schedule_type: str,
    schedule_config: Optional[Dict[str, Any]],
    next_run_at: Optional[datetime] = None,
) -> None:
    """Create or update a TaskSchedule row. An existing next_run_at is kept unless one is given."""
    with database.session_scope() as session:
        row = session.execute(
            select(TaskSchedule).where(TaskSchedule.task_name == task_name)
        ).scalars().first()
        now = _utc_now()
        if row:
            row.schedule_type = schedule_type
            row.schedule_config = schedule_config
            if next_run_at is not None:
                row.next_run_at = next_run_at
            row.updated_at = now
        else:
            # New row: leave next_run_at null so the task runs immediately, then record_run sets it
            session.add(TaskSchedule(
                task_name=task_name,
                schedule_type=schedule_type,
                schedule_config=schedule_config,
                next_run_at=next_run_at,
                created_at=now,
                updated_at=now,
            ))


def record_run(database: Database, task_name: str, error: Optional[str] = None) -> Optional[datetime]:
    """Store last_run_at, last_error and the following next_run_at after a run. Returns next_run_at."""
    with database.session_scope() as session:
        row = session.execute(
            select(TaskSchedule).where(TaskSchedule.task_name == task_name)
        ).scalars().first()
        if not row:
            return None
        now = _utc_now()
        row.last_run_at = now
        row.last_error = error
        row.next_run_at = compute_next_run(row.schedule_type, row.schedule_config, now)
        row.updated_at = now
        return row.next_run_at


class BaseTask(ABC):
    """
    Abstract base for background tasks run on the TaskManager loop. Subclasses implement run();
    the manager persists next_run and last_error around each run.
    """

    def __init__(self, task_name: str, schedule_type: str, schedule_config: Optional[Dict[str, Any]] = None):
        self.task_name = task_name
        self.schedule_type = schedule_type
        self.schedule_config = schedule_config or {}
        self.logger = logging.getLogger(self.__class__.__name__)

    def get_next_run(self, last_run: Optional[datetime] = None) -> datetime:
        """Compute next run time from schedule_type and schedule_config."""
        return compute_next_run(self.schedule_type, self.schedule_config, last_run)

    def ensure_scheduled(self, database: Database) -> None:
        """Ensure the TaskSchedule row exists so the next run survives restarts."""
        upsert_task_schedule(database, self.task_name, self.schedule_type, self.schedule_config)

    @abstractmethod
    async def run(self) -> Any:
        """Execute the task once. Exceptions are logged and recorded by the TaskManager."""

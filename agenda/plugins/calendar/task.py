"""
Background task: refresh the calendar snapshot on a fixed interval.
"""
from typing import Any, Dict

from agenda.core.task import BaseTask, TaskType
from agenda.plugins.calendar.types import EventSnapshot
from agenda.plugins.calendar.service import AgendaService

TASK_NAME = "calendar_refresh"


class CalendarRefreshTask(BaseTask):
    def __init__(self, agenda_service: AgendaService, config: Dict[str, Any]):
        interval = max(60, int(config.get("refresh_interval", 900)))
        super().__init__(TASK_NAME, TaskType.INTERVAL_SECONDS, {"interval_seconds": interval})
        self.agenda_service = agenda_service

    async def run(self) -> EventSnapshot:
        return await self.agenda_service.refresh_all()

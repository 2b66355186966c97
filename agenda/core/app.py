import asyncio
import logging
import sys
from datetime import datetime, timezone, tzinfo
from pathlib import Path
from typing import Any, Callable, Coroutine, Dict, List, Optional

from agenda.core.config import Config
from agenda.core.db import Database, init_db
from agenda.core.errors import ConfigError
from agenda.core.task import BaseTask
from agenda.core.task_manager import TaskManager
from agenda.plugins.calendar.backends import get_backend as get_calendar_backend
from agenda.plugins.calendar.backends.local import LocalCalendarBackend
from agenda.plugins.calendar.service import AgendaService, CalendarAggregator
from agenda.plugins.calendar.task import CalendarRefreshTask
from agenda.plugins.prayer.cache import PrayerTimesCache
from agenda.plugins.prayer.location import LocationService, NominatimGeocoder
from agenda.plugins.prayer.prayer_base import get_backend as get_prayer_backend
from agenda.plugins.prayer.service import SqlPrayerTimesStore
from agenda.plugins.prayer.task import PrayerPrefetchTask
from agenda.plugins.prayer.types import DEFAULT_METHOD, CalculationMethod

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s'


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class AgendaApp:
    """Owns every component. Built from config by from_config(), or directly with injected parts in tests."""

    def __init__(
        self,
        database: Database,
        task_manager: TaskManager,
        tz: tzinfo,
        prayer_cache: Optional[PrayerTimesCache] = None,
        location_service: Optional[LocationService] = None,
        agenda_service: Optional[AgendaService] = None,
        config: Optional[Config] = None,
        clock: Optional[Callable[[], datetime]] = None,
        default_method: CalculationMethod = DEFAULT_METHOD,
    ):
        self.logger = logging.getLogger(self.__class__.__name__)
        self.database = database
        self.task_manager = task_manager
        self.tz = tz
        self.prayer_cache = prayer_cache
        self.location_service = location_service
        self.agenda_service = agenda_service
        self.config = config
        self.clock = clock or _utc_now
        self.default_method = default_method
        self.tasks: List[BaseTask] = []

    @classmethod
    def from_config(cls, config_path: Optional[str] = None, watch: bool = True) -> "AgendaApp":
        config = Config(config_path=config_path, watch=watch)
        _setup_logging(config.data)
        tz = config.timezone

        prayer_config = config.get_section("prayer")
        try:
            default_method = CalculationMethod.parse(prayer_config.get("default_method") or DEFAULT_METHOD)
        except ValueError as e:
            raise ConfigError(str(e)) from e
        prayer_backend = get_prayer_backend(prayer_config.get("backend", "aladhan"), prayer_config)
        if prayer_backend is None:
            raise ConfigError(f"Unknown prayer backend: {prayer_config.get('backend')}")

        database = init_db(config.data)
        task_manager = TaskManager(database)
        prayer_cache = PrayerTimesCache(SqlPrayerTimesStore(database), prayer_backend, tz)

        location_config = config.get_section("location")
        geocoder = NominatimGeocoder(location_config) if location_config.get("geocoder") == "nominatim" else None
        location_service = LocationService(database, geocoder)

        calendar_backends = []
        for name in ("local", "google"):
            section = config.get_section("calendar", name)
            if section.get("enable", False):
                calendar_backends.append(get_calendar_backend(name, section, tz))
        if not calendar_backends:
            logging.warning("No calendar source enabled; enable calendar.local or calendar.google in the config")
        agenda_service = AgendaService(CalendarAggregator(calendar_backends), tz)

        app = cls(
            database,
            task_manager,
            tz,
            prayer_cache=prayer_cache,
            location_service=location_service,
            agenda_service=agenda_service,
            config=config,
            default_method=default_method,
        )
        config.register_change_callback(app.handle_config_change)
        return app

    async def call(self, coro: Coroutine[Any, Any, Any]) -> Any:
        """Await coro on the task manager loop from another event loop (the API server)."""
        return await asyncio.wrap_future(self.task_manager.submit(coro))

    def initialize_tasks(self) -> None:
        """Create the periodic tasks for the configured components and schedule them."""
        if self.agenda_service is not None:
            calendar_config = self.config.get_section("calendar") if self.config else {}
            self.tasks.append(CalendarRefreshTask(self.agenda_service, calendar_config))
        if self.prayer_cache is not None and self.location_service is not None:
            prayer_config = self.config.get_section("prayer") if self.config else {}
            self.tasks.append(PrayerPrefetchTask(self.prayer_cache, self.location_service, prayer_config, self.clock))

        for task in self.tasks:
            self.task_manager.register_task(task)
            self.task_manager.schedule_registered_task(task.task_name)

    def request_calendar_permissions(self) -> None:
        """Explicitly ask the local calendar for access once at startup."""
        if self.agenda_service is None:
            return
        for backend in self.agenda_service.aggregator.backends:
            if isinstance(backend, LocalCalendarBackend):
                self.task_manager.run_sync(backend.request_permission(), timeout=30)

    def handle_config_change(self, new_data: Dict[str, Any]) -> None:
        level = (new_data.get("logging") or {}).get("level", "INFO")
        logging.getLogger().setLevel(getattr(logging, str(level).upper(), logging.INFO))
        self.logger.info(f"Log level set to {level}; restart to apply other changes")

    def run(self, host: Optional[str] = None, port: Optional[int] = None) -> None:
        from agenda.api.server import run_api_server

        self.request_calendar_permissions()
        self.initialize_tasks()
        try:
            run_api_server(self, host=host, port=port)
        finally:
            self.stop()

    def stop(self) -> None:
        self.logger.info("Shutting down")
        self.task_manager.stop()
        if self.config is not None:
            self.config.cleanup()
        self.database.dispose()


def _setup_logging(config_data: Dict[str, Any]) -> None:
    """Configure logging to write to both file and stdout"""
    logging_config = config_data.get("logging") or {}
    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
    root_logger.setLevel(getattr(logging, str(logging_config.get("level", "INFO")).upper(), logging.INFO))

    formatter = logging.Formatter(LOG_FORMAT)

    log_file = logging_config.get("file")
    if log_file:
        Path(log_file).expanduser().parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(Path(log_file).expanduser())
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    logging.info("Personal agenda starting...")

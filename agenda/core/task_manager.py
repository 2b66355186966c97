"""
Single place for scheduling: one background asyncio loop owns every service coroutine.
Callers get concurrent.futures.Future handles they can wait on or cancel.
"""
import asyncio
import concurrent.futures
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Coroutine, Dict, List, Optional

from agenda.core.db import Database
from agenda.core.task import BaseTask, get_next_run_from_db, record_run


class TaskManager:
    def __init__(self, database: Optional[Database] = None):
        self.database = database
        self.logger = logging.getLogger("TaskManager")
        self._registered_tasks: Dict[str, BaseTask] = {}
        self._timers: Dict[str, asyncio.TimerHandle] = {}
        self._scheduled_at: Dict[str, datetime] = {}
        self._running: set = set()
        self._setup_async_loop()

    def _setup_async_loop(self) -> None:
        """Setup async event loop in background thread."""
        self.async_loop = asyncio.new_event_loop()
        started = threading.Event()

        def run_async_loop():
            asyncio.set_event_loop(self.async_loop)
            self.async_loop.call_soon(started.set)
            self.async_loop.run_forever()

        self.async_thread = threading.Thread(target=run_async_loop, name="agenda-loop", daemon=True)
        self.async_thread.start()
        started.wait()

    def submit(self, coro: Coroutine[Any, Any, Any]) -> concurrent.futures.Future:
        """Run a coroutine on the manager loop. The returned future can be awaited via asyncio.wrap_future."""
        return asyncio.run_coroutine_threadsafe(coro, self.async_loop)

    def run_sync(self, coro: Coroutine[Any, Any, Any], timeout: Optional[float] = None) -> Any:
        """Submit and block for the result (for CLI and scripts)."""
        return self.submit(coro).result(timeout=timeout)

    def register_task(self, task: BaseTask) -> None:
        """Register a task; its schedule row is created on first schedule."""
        self._registered_tasks[task.task_name] = task
        self.logger.debug(f"Registered task: {task.task_name}")

    def schedule_registered_task(self, task_name: str) -> None:
        """
        Schedule a registered task at next_run from DB (or immediately if past due / never run).
        After running, next_run is updated in DB and the task is rescheduled for it.
        """
        task = self._registered_tasks.get(task_name)
        if task is None:
            self.logger.warning(f"No task registered with name: {task_name}")
            return
        next_run = None
        if self.database is not None:
            task.ensure_scheduled(self.database)
            next_run = get_next_run_from_db(self.database, task_name)
        now = datetime.now(timezone.utc).replace(tzinfo=None)
        delay = 0.0 if next_run is None else max(0.0, (next_run - now).total_seconds())
        self.async_loop.call_soon_threadsafe(self._set_timer, task_name, delay)

    def _set_timer(self, task_name: str, delay: float) -> None:
        existing = self._timers.pop(task_name, None)
        if existing is not None:
            self.logger.info(f"Cancelling existing timer {task_name}")
            existing.cancel()
        self._timers[task_name] = self.async_loop.call_later(delay, self._start_run, task_name)
        self._scheduled_at[task_name] = datetime.fromtimestamp(
            datetime.now(timezone.utc).timestamp() + delay, tz=timezone.utc
        )
        self.logger.info(f"Timer set for {task_name} in {delay:.0f} seconds")

    def _start_run(self, task_name: str) -> None:
        run = self.async_loop.create_task(self._run_registered_and_reschedule(task_name))
        self._running.add(run)
        run.add_done_callback(self._running.discard)

    async def _run_registered_and_reschedule(self, task_name: str) -> None:
        """Run the registered task, record the outcome, then reschedule for next_run."""
        task = self._registered_tasks.get(task_name)
        if task is None:
            return
        error = None
        try:
            await task.run()
        except Exception as e:
            error = str(e) or e.__class__.__name__
            self.logger.exception(f"Registered task {task_name} failed: {e}")
        if self.database is not None:
            await asyncio.to_thread(record_run, self.database, task_name, error)
        next_run = task.get_next_run()
        if self.database is not None:
            next_run = await asyncio.to_thread(get_next_run_from_db, self.database, task_name) or next_run
        now = datetime.now(timezone.utc).replace(tzinfo=None)
        self._set_timer(task_name, max(0.0, (next_run - now).total_seconds()))

    def run_task_now(self, task_name: str) -> concurrent.futures.Future:
        """Run a registered task once immediately (e.g. manual refresh)."""
        task = self._registered_tasks.get(task_name)
        if task is None:
            raise KeyError(f"No task registered with name: {task_name}")
        return self.submit(task.run())

    def get_active_timers(self) -> List[Dict[str, Any]]:
        """Return list of active timer names and their next run time (for API)."""
        return [
            {"name": name, "next_run_at": when}
            for name, when in sorted(self._scheduled_at.items())
            if name in self._timers
        ]

    def stop(self) -> None:
        """Stop all scheduled tasks and the loop."""
        def _cancel_all():
            for handle in self._timers.values():
                handle.cancel()
            self._timers.clear()
            self.async_loop.stop()

        if self.async_loop.is_running():
            self.async_loop.call_soon_threadsafe(_cancel_all)
            self.async_thread.join(timeout=5)

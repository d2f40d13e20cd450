"""
Single place for scheduling: in-memory timers and DB-backed registered tasks.
"""
import logging
import threading
from datetime import datetime, timezone
from threading import Timer
from typing import Any, Callable, Dict, List

from prayer_clock.core.task import BaseTask, get_next_run_from_db


class TaskManager:
    def __init__(self):
        self.tasks: Dict[str, Timer] = {}
        self.logger = logging.getLogger("TaskManager")
        self._registered_tasks: Dict[str, BaseTask] = {}
        self._lock = threading.Lock()
        self._stopped = False

    def schedule_task(self, name: str, callback: Callable, delay: float, one_time: bool = True) -> None:
        """Schedule a callback to run after delay seconds."""
        with self._lock:
            if self._stopped:
                return
            if name in self.tasks:
                self.logger.info(f"Cancelling existing task {name}")
                self.tasks[name].cancel()

            scheduled_time = datetime.now().timestamp() + delay
            timer = Timer(delay, self._run_task, args=(name, callback, delay, one_time))
            timer.daemon = True
            timer.scheduled_time = scheduled_time
            self.tasks[name] = timer
            timer.start()
        self.logger.info(f"Timer started for {name}, scheduled for {datetime.fromtimestamp(scheduled_time)}")

    def _run_task(self, name: str, callback: Callable, delay: float, one_time: bool) -> None:
        """Run the task and reschedule if needed."""
        try:
            callback()
        except Exception as e:
            self.logger.error(f"Error running task {name}: {e}", exc_info=True)
        if not one_time:
            self.schedule_task(name, callback, delay, one_time)

    def register_task(self, task: BaseTask) -> None:
        """Register a BaseTask and schedule it at its persisted next run."""
        self._registered_tasks[task.name] = task
        task.ensure_scheduled()
        self.logger.debug(f"Registered task: {task.name}")
        self.schedule_registered_task(task.name)

    def schedule_registered_task(self, task_name: str) -> None:
        """
        Schedule a registered task at next_run from DB (or immediately if due).
        After running, the task updates next_run in DB and is rescheduled again.
        """
        if task_name not in self._registered_tasks:
            self.logger.warning(f"No task registered with name: {task_name}")
            return
        next_run = get_next_run_from_db(task_name)
        now = datetime.now(timezone.utc).replace(tzinfo=None)
        delay = 0 if next_run is None else max(0, int((next_run - now).total_seconds()))
        self.schedule_task(task_name, lambda: self._run_registered_and_reschedule(task_name), delay)

    def _run_registered_and_reschedule(self, task_name: str) -> None:
        self.run_task_now(task_name)
        self.schedule_registered_task(task_name)

    def run_task_now(self, task_name: str) -> Any:
        """Run a registered task once immediately (e.g. manual prefetch)."""
        task = self._registered_tasks.get(task_name)
        if not task:
            self.logger.warning(f"No task registered with name: {task_name}")
            return None
        try:
            result = task.execute()
            self.logger.info(f"Task {task_name} finished: {result}")
            return result
        except Exception as e:
            self.logger.exception(f"Task {task_name} failed: {e}")
            return None

    def get_active_timers(self) -> List[Dict[str, Any]]:
        """Return active timer names and their next run time (for API)."""
        result = []
        for name, timer in list(self.tasks.items()):
            if timer.is_alive() and getattr(timer, "scheduled_time", None) is not None:
                next_run = datetime.fromtimestamp(timer.scheduled_time, tz=timezone.utc)
                result.append({"name": name, "next_run_at": next_run})
        return result

    def stop(self, timeout: float = 5.0) -> None:
        """Stop all scheduled tasks and wait for any that are mid-run."""
        with self._lock:
            self._stopped = True
            timers = list(self.tasks.values())
            for timer in timers:
                timer.cancel()
            self.tasks.clear()
        for timer in timers:
            if timer is not threading.current_thread():
                timer.join(timeout)

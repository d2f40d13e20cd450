"""
Base task type and abstract BaseTask with next_run persistence in DB.
"""
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from sqlalchemy import select

from prayer_clock.core.db import session_scope
from prayer_clock.core.models import TaskSchedule, utc_now

logger = logging.getLogger(__name__)


class TaskType:
    """Schedule kind for tasks."""
    DAILY = "daily"
    HOURLY = "hourly"
    INTERVAL_SECONDS = "interval_seconds"
    MONTHLY = "monthly"


def _parse_time(schedule_config: Dict[str, Any]) -> tuple:
    parts = str(schedule_config.get("time", "00:00")).strip().split(":")
    hour = int(parts[0]) if parts and parts[0] else 0
    minute = int(parts[1]) if len(parts) > 1 else 0
    return hour, minute


def compute_next_run(
    schedule_type: str,
    schedule_config: Optional[Dict[str, Any]],
    last_run: Optional[datetime],
) -> datetime:
    """Compute next run datetime from schedule_type, schedule_config, and last_run."""
    if last_run is None:
        last_run = utc_now()
    schedule_config = schedule_config or {}

    if schedule_type == TaskType.DAILY:
        hour, minute = _parse_time(schedule_config)
        next_run = last_run.replace(hour=hour, minute=minute, second=0, microsecond=0)
        if next_run <= last_run:
            next_run += timedelta(days=1)
        return next_run

    if schedule_type == TaskType.HOURLY:
        return last_run + timedelta(hours=1)

    if schedule_type == TaskType.INTERVAL_SECONDS:
        sec = int(schedule_config.get("interval_seconds", 86400))
        return last_run + timedelta(seconds=sec)

    if schedule_type == TaskType.MONTHLY:
        day = min(int(schedule_config.get("day", 1)), 28)
        hour, minute = _parse_time(schedule_config)
        next_run = last_run.replace(day=day, hour=hour, minute=minute, second=0, microsecond=0)
        if next_run <= last_run:
            if next_run.month == 12:
                next_run = next_run.replace(year=next_run.year + 1, month=1)
            else:
                next_run = next_run.replace(month=next_run.month + 1)
        return next_run

    return last_run + timedelta(days=1)


def get_next_run_from_db(task_name: str) -> Optional[datetime]:
    """Read next_run_at for a task. None if no row or next_run_at is null (task runs immediately)."""
    with session_scope() as session:
        row = session.execute(
            select(TaskSchedule).where(TaskSchedule.task_name == task_name)
        ).scalars().first()
        if row and row.next_run_at is not None:
            return row.next_run_at
    return None


def upsert_task_schedule(
    task_name: str,
    schedule_type: str,
    schedule_config: Optional[Dict[str, Any]],
    next_run_at: Optional[datetime] = None,
) -> None:
    """Create or update a TaskSchedule row without overwriting an existing next_run_at."""
    with session_scope() as session:
        row = session.execute(
            select(TaskSchedule).where(TaskSchedule.task_name == task_name)
        ).scalars().first()
        now = utc_now()
        if row:
            row.schedule_type = schedule_type
            row.schedule_config = schedule_config
            if next_run_at is not None:
                row.next_run_at = next_run_at
            row.updated_at = now
        else:
            session.add(TaskSchedule(
                task_name=task_name,
                schedule_type=schedule_type,
                schedule_config=schedule_config,
                next_run_at=next_run_at,
                created_at=now,
                updated_at=now,
            ))


def update_after_run(task_name: str, error: Optional[str] = None, result: Optional[str] = None) -> None:
    """Record a run: last_run_at, its result or error, and the next scheduled run."""
    with session_scope() as session:
        row = session.execute(
            select(TaskSchedule).where(TaskSchedule.task_name == task_name)
        ).scalars().first()
        if not row:
            return
        now = utc_now()
        row.last_run_at = now
        row.last_result = result
        row.last_error = error
        row.next_run_at = compute_next_run(row.schedule_type, row.schedule_config, now)
        row.updated_at = now


class BaseTask(ABC):
    """
    Abstract base for background maintenance tasks. Subclasses implement run();
    execute() wraps it with next_run bookkeeping in the DB.
    """

    name: str = "task"

    def __init__(self, schedule_type: str, schedule_config: Optional[Dict[str, Any]] = None):
        self.schedule_type = schedule_type
        self.schedule_config = schedule_config or {}
        self.logger = logging.getLogger(self.__class__.__name__)

    def ensure_scheduled(self) -> None:
        """Ensure a TaskSchedule row exists so the next run survives restarts."""
        upsert_task_schedule(self.name, self.schedule_type, self.schedule_config)

    def execute(self) -> Any:
        """Run the task and persist the outcome. Errors are recorded and re-raised."""
        try:
            result = self.run()
        except Exception as e:
            update_after_run(self.name, error=str(e))
            raise
        update_after_run(self.name, result=None if result is None else str(result))
        return result

    @abstractmethod
    def run(self) -> Any:
        """Do the work. Return value is logged by the task manager."""
        pass

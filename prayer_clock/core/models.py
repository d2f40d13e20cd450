"""
Background task schedule table. next_run_at survives restarts so the monthly
prefetch is not repeated every time the clock boots.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List

from sqlalchemy import Column, DateTime, JSON, String, Text, select

from prayer_clock.core.db import Base, session_scope


def utc_now() -> datetime:
    """Naive UTC, matching the DateTime(timezone=False) columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class TaskSchedule(Base):
    __tablename__ = "task_schedules"

    task_name = Column(String(255), primary_key=True)
    schedule_type = Column(String(64), nullable=False)  # daily, hourly, interval_seconds, monthly
    schedule_config = Column(JSON, nullable=True)  # {"time": "03:00"} or {"day": 1, "time": "02:00"}
    next_run_at = Column(DateTime(timezone=False), nullable=True)  # null: due now
    last_run_at = Column(DateTime(timezone=False), nullable=True)
    last_result = Column(Text, nullable=True)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=False), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=False), default=utc_now, onupdate=utc_now, nullable=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task_name": self.task_name,
            "schedule_type": self.schedule_type,
            "schedule_config": self.schedule_config,
            "next_run_at": self.next_run_at,
            "last_run_at": self.last_run_at,
            "last_result": self.last_result,
            "last_error": self.last_error,
        }


def get_all_task_schedule_records() -> List[TaskSchedule]:
    """All TaskSchedule rows, detached, ordered by task name."""
    with session_scope() as session:
        query = select(TaskSchedule).order_by(TaskSchedule.task_name)
        return list(session.execute(query).scalars().all())


def get_all_task_schedules() -> List[Dict[str, Any]]:
    return [row.to_dict() for row in get_all_task_schedule_records()]

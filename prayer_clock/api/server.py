"""
FastAPI server for the prayer clock. Run with run_api_server(app) in a background thread.
Central endpoints: GET /api/tasks, GET /api/notifications. Prayer time routes are
mounted from prayer_clock.api.prayer under /api/prayer-times/.
Docs when enabled: http://<host>:<port>/docs
"""
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import uvicorn
from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, ConfigDict

from prayer_clock.api.prayer import get_router as get_prayer_router
from prayer_clock.core.models import get_all_task_schedule_records

logger = logging.getLogger(__name__)


class TaskScheduleResponse(BaseModel):
    """Pydantic view of TaskSchedule for API; serializes from ORM."""

    model_config = ConfigDict(from_attributes=True)

    task_name: str
    schedule_type: Optional[str] = None
    schedule_config: Optional[Dict[str, Any]] = None
    next_run_at: Optional[datetime] = None
    last_run_at: Optional[datetime] = None
    last_result: Optional[str] = None
    last_error: Optional[str] = None


class ActiveTimerResponse(BaseModel):
    """One active timer (in-memory; not from DB)."""

    name: str = ""
    next_run_at: Optional[datetime] = None


class TasksResponse(BaseModel):
    db_schedules: List[TaskScheduleResponse]
    active_timers: List[ActiveTimerResponse]


def _as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Stored datetimes are naive UTC."""
    if dt is None or dt.tzinfo is not None:
        return dt
    return dt.replace(tzinfo=timezone.utc)


def create_app(prayer_app: Any) -> FastAPI:
    """Create FastAPI app with routes that use the given PrayerClockApp instance."""
    app = FastAPI(title="Prayer Clock API", description="Prayer times, notifications and background tasks")

    @app.get("/api/tasks", response_model=TasksResponse)
    def list_tasks() -> TasksResponse:
        """List scheduled tasks: DB schedules and active in-memory timers."""
        schedules = []
        for record in get_all_task_schedule_records():
            row = TaskScheduleResponse.model_validate(record)
            row.next_run_at = _as_utc(row.next_run_at)
            row.last_run_at = _as_utc(row.last_run_at)
            schedules.append(row)

        active_list = [
            ActiveTimerResponse(name=t["name"], next_run_at=t.get("next_run_at"))
            for t in prayer_app.task_manager.get_active_timers()
        ]
        return TasksResponse(db_schedules=schedules, active_timers=active_list)

    @app.get("/api/notifications")
    def list_notifications() -> List[Dict[str, Any]]:
        """Most recent notifications shown by the scheduler, oldest first."""
        return prayer_app.sink.recent_notifications()

    @app.post("/api/notifications/{notification_id}/cancel")
    def cancel_notification(notification_id: int) -> Dict[str, Any]:
        """Run a notification's cancel action, e.g. stop the countdown clip."""
        if not prayer_app.sink.cancel(notification_id):
            raise HTTPException(status_code=404, detail=f"No cancellable notification {notification_id}")
        return {"id": notification_id, "cancelled": True}

    app.include_router(get_prayer_router(prayer_app), prefix="/api/prayer-times")
    return app


def run_api_server(prayer_app: Any) -> Optional[threading.Thread]:
    """
    Start the API server in a daemon thread if api.enabled is true.
    Reads api.host (default 127.0.0.1) and api.port (default 8765) from config.
    """
    api_config = prayer_app.config.section("api")
    enabled = api_config.get("enabled", False)
    logger.info(f"API config: enabled={enabled}, config_file={prayer_app.config.config_file}")
    if not enabled:
        logger.info("API server not started: set api.enabled to true in your config file to enable.")
        return None
    host = api_config.get("host", "127.0.0.1")
    port = int(api_config.get("port", 8765))
    fastapi_app = create_app(prayer_app)

    def run_uvicorn():
        try:
            logger.info(f"API server listening at http://{host}:{port} (docs at /docs)")
            uvicorn.run(fastapi_app, host=host, port=port, log_config=None)
        except Exception as e:
            logger.exception(f"API server thread failed: {e}")

    thread = threading.Thread(target=run_uvicorn, name="api-server", daemon=True)
    thread.start()
    logger.info("API server thread started.")
    return thread

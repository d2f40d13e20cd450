import copy
import logging
import os
import sys
import threading
from pathlib import Path
from typing import Any, Dict, Optional

import requests

from prayer_clock.core.config import Config
from prayer_clock.core.db import init_db, shutdown_db
from prayer_clock.core.settings import (
    NotificationSettings,
    PrayerSettings,
    load_notification_settings,
    load_prayer_settings,
)
from prayer_clock.core.task_manager import TaskManager
from prayer_clock.notifications.audio_manager import AudioNotificationSink
from prayer_clock.notifications.scheduler import PrayerEventScheduler
from prayer_clock.scraping.acju_scraper import ACJUScraper
from prayer_clock.scraping.direct_scraping import DirectScrapingService
from prayer_clock.scraping.hijri_scraper import HijriDateScraper
from prayer_clock.times.repository import PrayerTimesRepository
from prayer_clock.times.task import PrayerTimesCleanupTask, PrayerTimesPrefetchTask


class PrayerClockApp:
    def __init__(self, config_path: Optional[str] = None, watch_config: bool = True):
        self.logger = logging.getLogger(self.__class__.__name__)

        self.config = Config(config_path=config_path, watch=watch_config)
        self.config.register_change_callback(self.handle_config_change)
        self._prayer_section = copy.deepcopy(self.config.section("prayer_times"))
        self._setup_logging()

        # Initialize database (before tasks so tables exist)
        init_db(self.config.data)

        cache_dir = self.config.section("cache").get("directory")
        self.session = requests.Session()
        self.direct_service = DirectScrapingService(
            ACJUScraper(session=self.session, cache_dir=cache_dir),
            HijriDateScraper(session=self.session, cache_dir=cache_dir),
        )
        self.repository = PrayerTimesRepository(
            self.prayer_settings, direct_service=self.direct_service, session=self.session
        )

        notification_config = self.config.section("notifications")
        self.sink = AudioNotificationSink(
            clips=notification_config.get("clips") or {},
            cache_dir=os.path.join(cache_dir, "audio") if cache_dir else None,
            volume=self.notification_settings().volume,
        )
        self.scheduler = PrayerEventScheduler(
            self.repository.today_with_iqamah,
            self.notification_settings,
            self.sink,
            cache_ttl=self.notification_settings().cache_ttl,
        )

        self.task_manager = TaskManager()
        self._register_tasks()

        # Start API server if enabled (api.enabled in config)
        from prayer_clock.api.server import run_api_server
        run_api_server(self)

        self._stop_event = threading.Event()

    def prayer_settings(self) -> PrayerSettings:
        return load_prayer_settings(self.config.data)

    def notification_settings(self) -> NotificationSettings:
        return load_notification_settings(self.config.data)

    def _setup_logging(self) -> None:
        """Configure logging to write to both file and stdout"""
        logging_config = self.config.section("logging")
        root_logger = logging.getLogger()
        for handler in list(root_logger.handlers):
            root_logger.removeHandler(handler)
        root_logger.setLevel(getattr(logging, str(logging_config.get("level", "INFO")).upper(), logging.INFO))

        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s'
        )

        log_file = logging_config.get("file")
        if log_file:
            Path(log_file).expanduser().parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(Path(log_file).expanduser())
            file_handler.setFormatter(formatter)
            root_logger.addHandler(file_handler)

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

        logging.info("Prayer clock starting...")

    def _register_tasks(self) -> None:
        tasks_config = self.config.section("tasks")
        self.task_manager.register_task(
            PrayerTimesCleanupTask(self.repository, tasks_config.get("cleanup"))
        )
        self.task_manager.register_task(
            PrayerTimesPrefetchTask(self.direct_service, self.prayer_settings, tasks_config.get("prefetch"))
        )

    def handle_config_change(self, new_config: Dict[str, Any]) -> None:
        """Handle configuration changes"""
        self.logger.info("Handling config change")
        prayer_section = new_config.get("prayer_times") or {}
        if prayer_section != self._prayer_section:
            self.logger.info("Prayer time settings changed, invalidating cached times")
            self._prayer_section = copy.deepcopy(prayer_section)
            self.repository.invalidate()
        self.sink.set_volume(self.notification_settings().volume)
        self.scheduler.refresh()

    def run(self) -> None:
        """Start the scheduler and block until interrupted"""
        self.scheduler.start()
        try:
            while not self._stop_event.wait(1.0):
                pass
        except KeyboardInterrupt:
            self.logger.info("Interrupted, shutting down")
        finally:
            self.shutdown()

    def stop(self) -> None:
        self._stop_event.set()

    def shutdown(self) -> None:
        self.logger.info("Shutting down")
        self.scheduler.close()
        self.task_manager.stop()
        self.sink.close()
        self.config.cleanup()
        self.session.close()
        shutdown_db()

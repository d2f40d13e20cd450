"""
Background tasks: drop old stored prayer times daily, and prefetch the rest of
the year's direct-scrape documents monthly.
"""
from typing import Any, Callable, Dict, Optional

from prayer_clock.core.settings import PrayerSettings, ProviderType
from prayer_clock.core.task import BaseTask, TaskType
from prayer_clock.scraping.direct_scraping import DirectScrapingService, PrefetchResult
from prayer_clock.times.repository import PrayerTimesRepository


class PrayerTimesCleanupTask(BaseTask):
    """Delete stored records older than the retention window."""

    name = "prayer_times_cleanup"

    def __init__(self, repository: PrayerTimesRepository, schedule_config: Optional[Dict[str, Any]] = None):
        super().__init__(TaskType.DAILY, schedule_config or {"time": "03:00"})
        self.repository = repository

    def run(self) -> int:
        deleted = self.repository.clean_old_prayer_times()
        self.logger.info(f"Deleted {deleted} old prayer time record(s)")
        return deleted


class PrayerTimesPrefetchTask(BaseTask):
    """Scrape every missing month of the prefetch window for the configured zone."""

    name = "prayer_times_prefetch"

    def __init__(
        self,
        direct_service: DirectScrapingService,
        settings_provider: Callable[[], PrayerSettings],
        schedule_config: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(TaskType.MONTHLY, schedule_config or {"day": 1, "time": "02:00"})
        self.direct_service = direct_service
        self._settings = settings_provider

    def run(self) -> Optional[PrefetchResult]:
        settings = self._settings()
        if settings.provider != ProviderType.DIRECT_SCRAPE:
            self.logger.debug(f"Provider is {settings.provider.value}, nothing to prefetch")
            return None
        if not self.direct_service.is_zone_supported(settings.zone):
            self.logger.warning(f"Zone {settings.zone} is not supported by direct scraping")
            return None
        return self.direct_service.prefetch_remaining_year(settings.zone)

"""
Resolves prayer times through the configured provider with three cache tiers:
an in-memory record for today, the persistent (date, provider_key) store, and
the month completeness check used by the direct scraping service.
"""
import logging
import threading
from concurrent.futures import Future, TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Callable, Dict, Optional, Tuple

import requests

from prayer_clock.core.settings import PrayerSettings, ProviderType
from prayer_clock.errors import NetworkError, PrayerTimesError
from prayer_clock.scraping.direct_scraping import DirectScrapingService
from prayer_clock.times import service
from prayer_clock.times.models import PrayerTimes
from prayer_clock.times.providers import PrayerTimesProvider, create_provider
from prayer_clock.times.timeutils import IqamahTimes, derive_iqamah_times

DEFAULT_WAIT_TIMEOUT = 120.0


@dataclass
class InstantCache:
    record: Optional[PrayerTimes] = None
    date: Optional[date] = None
    cache_key: Optional[str] = None

    def matches(self, on_date: date, cache_key: str) -> bool:
        return self.record is not None and self.date == on_date and self.cache_key == cache_key


def cache_key_for(settings: PrayerSettings) -> str:
    """Provider key of the active configuration; manual has no provider key."""
    return settings.provider_key or ProviderType.MANUAL.value


class PrayerTimesRepository:
    def __init__(
        self,
        settings_provider: Callable[[], PrayerSettings],
        direct_service: Optional[DirectScrapingService] = None,
        session: Optional[requests.Session] = None,
        today: Callable[[], date] = date.today,
        wait_timeout: float = DEFAULT_WAIT_TIMEOUT,
    ):
        self._settings = settings_provider
        self.direct_service = direct_service
        self.session = session or requests.Session()
        self._today = today
        self.wait_timeout = wait_timeout
        self.logger = logging.getLogger(self.__class__.__name__)

        self._lock = threading.Lock()
        self._cache = InstantCache()
        self._generation = 0
        self._in_flight: Dict[Tuple[date, str], Future] = {}

    def resolve_today(self) -> PrayerTimes:
        return self._resolve(self._today())

    def resolve_tomorrow(self) -> PrayerTimes:
        return self._resolve(self._today() + timedelta(days=1))

    def resolve_date(self, on_date: date) -> PrayerTimes:
        return self._resolve(on_date)

    def invalidate(self) -> None:
        """Forget the in-memory record; call whenever provider, zone or region changes."""
        with self._lock:
            self._cache = InstantCache()
            self._generation += 1
        self.logger.info("Prayer times instant cache invalidated")

    def iqamah_times(self, record: PrayerTimes) -> IqamahTimes:
        settings = self._settings()
        return derive_iqamah_times(
            record.azan_times,
            settings.iqamah_gaps.model_dump(),
            record.date,
            bayan_enabled=settings.jumma_night_bayan.enabled,
            bayan_minutes=settings.jumma_night_bayan.minutes,
        )

    def today_with_iqamah(self) -> Tuple[PrayerTimes, IqamahTimes]:
        record = self.resolve_today()
        return record, self.iqamah_times(record)

    def clean_old_prayer_times(self, days: Optional[int] = None) -> int:
        if days is None:
            days = self._settings().retention_days
        cutoff = self._today() - timedelta(days=days)
        service.delete_hijri_months_before(cutoff)
        return service.delete_prayer_times_before(cutoff)

    def _resolve(self, on_date: date) -> PrayerTimes:
        settings = self._settings()
        cache_key = cache_key_for(settings)
        flight_key = (on_date, cache_key)
        is_today = on_date == self._today()

        with self._lock:
            if is_today and self._cache.matches(on_date, cache_key):
                return self._cache.record
            future = self._in_flight.get(flight_key)
            owner = future is None
            if owner:
                future = Future()
                self._in_flight[flight_key] = future
            generation = self._generation

        if not owner:
            self.logger.debug(f"Waiting for in-flight resolution of {cache_key} on {on_date}")
            try:
                return future.result(timeout=self.wait_timeout)
            except FutureTimeoutError:
                raise NetworkError(f"Timed out waiting for {cache_key} on {on_date}")

        try:
            record = self._fetch(settings, on_date)
        except BaseException as e:
            with self._lock:
                self._in_flight.pop(flight_key, None)
            future.set_exception(e)
            raise

        with self._lock:
            self._in_flight.pop(flight_key, None)
            # an invalidate() during the fetch means the result may be for stale settings
            if is_today and generation == self._generation:
                self._cache = InstantCache(record=record, date=on_date, cache_key=cache_key)
        future.set_result(record)
        return record

    def _from_store(self, provider: PrayerTimesProvider, on_date: date) -> Optional[PrayerTimes]:
        if not provider.persist_results:
            return None
        return service.get_prayer_times(on_date, provider.provider_key)

    def _fetch(self, settings: PrayerSettings, on_date: date) -> PrayerTimes:
        provider = create_provider(settings, self.session, self.direct_service, today=self._today)
        stored = self._from_store(provider, on_date)
        if stored is not None:
            self.logger.debug(f"Serving {on_date} ({provider.provider_key}) from store")
            return stored

        try:
            record = provider.resolve(on_date)
        except PrayerTimesError as e:
            fallback = provider.fallback()
            if fallback is None:
                self.logger.error(f"{provider.provider_key} failed for {on_date}: {e}")
                raise
            self.logger.warning(
                f"{provider.provider_key} failed for {on_date} ({e}); falling back to {fallback.provider_key}"
            )
            stored = self._from_store(fallback, on_date)
            if stored is not None:
                return stored
            try:
                record = fallback.resolve(on_date)
            except PrayerTimesError as fallback_error:
                self.logger.error(f"Fallback {fallback.provider_key} failed for {on_date}: {fallback_error}")
                raise
            # tag with whoever actually answered
            record = record.with_provider_key(fallback.provider_key)
            provider = fallback

        if record.date != on_date:
            record = record.with_date(on_date)
        if provider.persist_results:
            service.save_prayer_times(record)
        self.logger.info(f"Resolved prayer times for {on_date} via {record.provider_key or 'manual'}")
        return record

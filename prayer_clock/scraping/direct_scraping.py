"""
Direct-scrape acquisition: serves days from the persistent store and, on a
miss, scrapes and stores the whole month so later days cost no network I/O.
"""
import calendar
import logging
import time
from dataclasses import dataclass, replace
from datetime import date
from typing import Callable, List, Optional, Tuple

from prayer_clock.errors import NotFound, PrayerTimesError
from prayer_clock.scraping.acju_scraper import ACJUScraper, ZONE_MAPPINGS, get_month_name
from prayer_clock.scraping.hijri_scraper import HijriDateInfo, HijriDateScraper
from prayer_clock.scraping.pdf_parser import ApartmentAdjustments, DailyPrayerRow, MonthDocumentMetadata
from prayer_clock.times import service
from prayer_clock.times.models import PrayerTimes
from prayer_clock.times.timeutils import add_minutes

PROVIDER_PREFIX = "DIRECT_SCRAPE"
PREFETCH_NEXT_YEAR_MONTHS = 3
PREFETCH_DELAY_SECONDS = 1.0


def direct_scrape_key(zone: int) -> str:
    return f"{PROVIDER_PREFIX}:{zone}"


def month_bounds(year: int, month: int) -> Tuple[date, date]:
    days = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, days)


def prefetch_window(today: date) -> List[Tuple[int, int]]:
    """Current month through December, then January to March of next year."""
    months = [(today.year, m) for m in range(today.month, 13)]
    months += [(today.year + 1, m) for m in range(1, PREFETCH_NEXT_YEAR_MONTHS + 1)]
    return months


def apply_apartment_adjustments(
    prayer_times: PrayerTimes, adjustments: ApartmentAdjustments = ApartmentAdjustments()
) -> PrayerTimes:
    """Shift Fajr, Sunrise, Maghrib and Isha by the apartment offsets. Dhuhr and Asr are unchanged."""
    return PrayerTimes(
        date=prayer_times.date,
        provider_key=prayer_times.provider_key,
        fajr=add_minutes(prayer_times.fajr, adjustments.fajr),
        sunrise=add_minutes(prayer_times.sunrise, adjustments.sunrise),
        dhuhr=prayer_times.dhuhr,
        asr=prayer_times.asr,
        maghrib=add_minutes(prayer_times.maghrib, adjustments.maghrib),
        isha=add_minutes(prayer_times.isha, adjustments.isha),
        hijri_date=prayer_times.hijri_date,
        location=prayer_times.location,
    )


@dataclass
class PrefetchResult:
    total_months: int
    successful_months: int = 0
    failed_months: int = 0
    skipped_months: int = 0
    unavailable_months: int = 0
    cached_days: int = 0


@dataclass
class CacheStatus:
    total_months: int
    cached_months: int
    total_days: int
    cached_days: int
    is_fully_cached: bool


class DirectScrapingService:
    def __init__(
        self,
        scraper: ACJUScraper,
        hijri_scraper: Optional[HijriDateScraper] = None,
        sleep: Callable[[float], None] = time.sleep,
        today: Callable[[], date] = date.today,
    ):
        self.scraper = scraper
        self.hijri_scraper = hijri_scraper
        self._sleep = sleep
        self._today = today
        self.logger = logging.getLogger(self.__class__.__name__)

    @staticmethod
    def is_zone_supported(zone: int) -> bool:
        return zone in ZONE_MAPPINGS

    def get_day(self, zone: int, on_date: date, apply_apartment: bool = False) -> Optional[PrayerTimes]:
        """Prayer times for one day, scraping the whole month on a store miss.

        Returns None if the month's document has no row for the day. Scrape
        failures (NotFound, FetchError, parsing errors) propagate.
        """
        key = direct_scrape_key(zone)
        record = service.get_prayer_times(on_date, key)
        if record is None:
            self.logger.info(f"No stored times for {on_date} ({key}), scraping {on_date:%Y-%m}")
            month_records = self._scrape_and_store(zone, on_date.year, on_date.month)
            record = next((r for r in month_records if r.date == on_date), None)
            if record is None:
                self.logger.warning(f"Document for zone {zone} has no row for {on_date}")
                return None

        if record.hijri_date is None:
            record = self._with_stored_hijri(record, save=True)
        return apply_apartment_adjustments(record) if apply_apartment else record

    def get_month(
        self, zone: int, year: int, month: int, apply_apartment: bool = False
    ) -> Optional[List[PrayerTimes]]:
        """All days of a month, from the store when complete, else freshly scraped.

        Returns None when the month could not be scraped.
        """
        if self.has_complete_monthly_cache(zone, year, month):
            start, end = month_bounds(year, month)
            records = service.list_prayer_times(direct_scrape_key(zone), start, end)
        else:
            try:
                records = self._scrape_and_store(zone, year, month)
            except PrayerTimesError as e:
                self.logger.error(f"Failed to scrape zone {zone} {get_month_name(month)} {year}: {e}")
                return None
        if apply_apartment:
            records = [apply_apartment_adjustments(r) for r in records]
        return records

    def get_current_hijri_date(self) -> Optional[HijriDateInfo]:
        """Today's Hijri date from the stored month span, looking it up on ACJU only when none covers today."""
        today = self._today()
        info = service.get_hijri_date(today)
        if info is None:
            info = self._refresh_hijri_month(today)
        return info

    def _refresh_hijri_month(self, today: date) -> Optional[HijriDateInfo]:
        if self.hijri_scraper is None:
            return None
        info = self.hijri_scraper.get_hijri_date(today)
        if info is None:
            return None
        if info.month_start_date and info.month_end_date:
            service.save_hijri_month(info)
        return info

    def _with_stored_hijri(self, record: PrayerTimes, save: bool = False) -> PrayerTimes:
        info = service.get_hijri_date(record.date)
        if info is None:
            return record
        enriched = replace(record, hijri_date=info.display)
        if save:
            service.save_prayer_times(enriched)
        return enriched

    def _to_records(
        self, zone: int, year: int, month: int, metadata: MonthDocumentMetadata, rows: List[DailyPrayerRow]
    ) -> List[PrayerTimes]:
        key = direct_scrape_key(zone)
        location = f"Zone {zone} - {', '.join(metadata.districts)}"
        records = []
        for row in rows:
            if (row.date.year, row.date.month) != (year, month):
                continue
            records.append(PrayerTimes(
                date=row.date,
                provider_key=key,
                fajr=row.fajr,
                sunrise=row.sunrise,
                dhuhr=row.dhuhr,
                asr=row.asr,
                maghrib=row.maghrib,
                isha=row.isha,
                location=location,
            ))
        return records

    def _scrape_and_store(self, zone: int, year: int, month: int) -> List[PrayerTimes]:
        metadata, rows = self.scraper.scrape_month(zone, year, month)
        if metadata.zone != zone:
            self.logger.warning(f"Document reports zone {metadata.zone}, requested zone {zone}")
        if metadata.year != year:
            # the index keeps last year's tables until the new ones are published
            raise NotFound(f"Zone {zone} document for {get_month_name(month)} is for {metadata.year}, not {year}")
        records = self._to_records(zone, year, month, metadata, rows)
        self.get_current_hijri_date()
        records = [self._with_stored_hijri(r) for r in records]
        if records:
            service.save_prayer_times_batch(records)
        self.logger.info(f"Stored {len(records)} day(s) for zone {zone}, {get_month_name(month)} {year}")
        return records

    def has_complete_monthly_cache(self, zone: int, year: int, month: int) -> bool:
        start, end = month_bounds(year, month)
        cached = service.count_prayer_times(direct_scrape_key(zone), start, end)
        return cached >= end.day

    def prefetch_remaining_year(self, zone: int) -> PrefetchResult:
        """Scrape every month of the prefetch window that is not fully stored."""
        today = self._today()
        months = prefetch_window(today)
        result = PrefetchResult(total_months=len(months))

        for index, (year, month) in enumerate(months):
            if self.has_complete_monthly_cache(zone, year, month):
                self.logger.debug(f"Skipping {year}-{month:02d} (already stored)")
                result.skipped_months += 1
                continue

            records = self.get_month(zone, year, month)
            if records:
                result.successful_months += 1
                result.cached_days += len(records)
            elif year > today.year:
                # next year's documents are often not published yet
                result.unavailable_months += 1
            else:
                result.failed_months += 1

            if index < len(months) - 1:
                self._sleep(PREFETCH_DELAY_SECONDS)

        self.logger.info(f"Prefetch for zone {zone} finished: {result}")
        return result

    def check_cache_status(self, zone: int) -> CacheStatus:
        key = direct_scrape_key(zone)
        total_months = cached_months = total_days = cached_days = 0
        for year, month in prefetch_window(self._today()):
            start, end = month_bounds(year, month)
            cached = service.count_prayer_times(key, start, end)
            total_months += 1
            total_days += end.day
            cached_days += cached
            if cached >= end.day:
                cached_months += 1
        return CacheStatus(
            total_months=total_months,
            cached_months=cached_months,
            total_days=total_days,
            cached_days=cached_days,
            is_fully_cached=cached_months == total_months,
        )

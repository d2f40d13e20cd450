"""
Prayer time providers. Each variant turns a date into a PrayerTimes record;
the repository decides caching, single-flight and fallback around them.
"""
import logging
import re
from abc import ABC, abstractmethod
from datetime import date
from typing import Any, Callable, Dict, Optional, Type
from urllib.parse import urljoin

import requests

from prayer_clock.core.settings import PrayerSettings, ProviderType, backend_api_key
from prayer_clock.errors import NetworkError, NotFound
from prayer_clock.scraping.direct_scraping import DirectScrapingService, direct_scrape_key
from prayer_clock.times.models import PrayerTimes

TIME_PATTERN = re.compile(r"(\d{1,2}):(\d{2})")

# Region name -> country for the city-based timings endpoint
REGION_COUNTRIES: Dict[str, str] = {
    "Colombo": "Sri Lanka",
    "Kandy": "Sri Lanka",
    "Galle": "Sri Lanka",
    "Jaffna": "Sri Lanka",
    "Kuala Lumpur": "Malaysia",
    "Penang": "Malaysia",
    "Singapore": "Singapore",
    "Jakarta": "Indonesia",
    "Chennai": "India",
    "Mumbai": "India",
    "Delhi": "India",
    "Dubai": "UAE",
    "Riyadh": "Saudi Arabia",
    "Doha": "Qatar",
    "London": "UK",
    "New York": "USA",
    "Toronto": "Canada",
}
DEFAULT_COUNTRY = "Sri Lanka"


def normalize_time(value: Any) -> str:
    """"5:07", "05:07:00" or "05:07 (+0530)" -> "05:07"."""
    match = TIME_PATTERN.search(str(value or ""))
    if not match:
        raise ValueError(f"Not a time: {value!r}")
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        raise ValueError(f"Not a time: {value!r}")
    return f"{hour:02d}:{minute:02d}"


class PrayerTimesProvider(ABC):
    """Base class for prayer time sources"""

    provider_type: ProviderType
    # whether the repository should write successful results to the store
    persist_results = True

    def __init__(self, settings: PrayerSettings, session: Optional[requests.Session] = None,
                 today: Callable[[], date] = date.today):
        self.settings = settings
        self.session = session or requests.Session()
        self._today = today
        self.logger = logging.getLogger(self.__class__.__name__)

    @property
    def provider_key(self) -> Optional[str]:
        return self.settings.provider_key

    @abstractmethod
    def resolve(self, on_date: date) -> PrayerTimes:
        """Return prayer times for on_date or raise a PrayerTimesError"""
        pass

    def fallback(self) -> Optional["PrayerTimesProvider"]:
        """Provider to try once if this one fails."""
        return None

    def _get_json(self, url: str, params: Dict[str, Any], headers: Optional[Dict[str, str]] = None,
                  timeout: float = 30) -> Dict[str, Any]:
        self.logger.info(f"Requesting {url} with params {params}")
        try:
            response = self.session.get(url, params=params, headers=headers, timeout=timeout)
            response.raise_for_status()
            return response.json()
        except (requests.RequestException, ValueError) as e:
            raise NetworkError(f"{self.provider_key}: request to {url} failed: {e}") from e


class ManualProvider(PrayerTimesProvider):
    """Times typed into the config. Free to regenerate, so never persisted."""

    provider_type = ProviderType.MANUAL
    persist_results = False

    def resolve(self, on_date: date) -> PrayerTimes:
        manual = self.settings.manual_times
        return PrayerTimes(
            date=on_date,
            provider_key=None,
            fajr=normalize_time(manual.fajr),
            sunrise=normalize_time(manual.sunrise),
            dhuhr=normalize_time(manual.dhuhr),
            asr=normalize_time(manual.asr),
            maghrib=normalize_time(manual.maghrib),
            isha=normalize_time(manual.isha),
            location="Manual",
        )


class BackendApiProvider(PrayerTimesProvider):
    """Zone-based prayer times from the mosque clock backend service."""

    provider_type = ProviderType.BACKEND_API

    @property
    def provider_key(self) -> str:
        return backend_api_key(self.settings.zone, self.settings.apartment_adjustments)

    def _headers(self) -> Dict[str, str]:
        api_key = self.settings.backend_api.api_key
        return {"Authorization": f"Bearer {api_key}"} if api_key else {}

    def resolve(self, on_date: date) -> PrayerTimes:
        cfg = self.settings.backend_api
        zone = self.settings.zone
        if on_date == self._today():
            data = self._get_json(
                urljoin(cfg.base_url, "api/v1/today/"),
                {"zone": zone, "apartment": str(self.settings.apartment_adjustments).lower()},
                headers=self._headers(),
                timeout=cfg.timeout,
            )
            return self._from_today_payload(data, on_date)

        payload = self._get_json(
            urljoin(cfg.base_url, f"api/v1/prayer-times/{zone}/"),
            {"date": on_date.isoformat()},
            headers=self._headers(),
            timeout=cfg.timeout,
        )
        if not payload.get("success") or not payload.get("data"):
            raise NetworkError(f"{self.provider_key}: no prayer times for {on_date}: {payload.get('message')}")
        entries = payload["data"]
        entry = next((e for e in entries if e.get("date") == on_date.isoformat()), entries[0])
        return self._from_zone_entry(entry, on_date)

    def _from_today_payload(self, data: Dict[str, Any], on_date: date) -> PrayerTimes:
        try:
            return PrayerTimes(
                date=on_date,
                provider_key=self.provider_key,
                fajr=normalize_time(data["fajr"]),
                sunrise=normalize_time(data["sunrise"]),
                dhuhr=normalize_time(data["dhuhr"]),
                asr=normalize_time(data["asr"]),
                # the backend spells it "magrib"
                maghrib=normalize_time(data.get("magrib", data.get("maghrib"))),
                isha=normalize_time(data["isha"]),
                location=f"Zone {self.settings.zone}",
            )
        except (KeyError, ValueError, TypeError) as e:
            raise NetworkError(f"{self.provider_key}: unexpected response shape: {e}") from e

    def _from_zone_entry(self, entry: Dict[str, Any], on_date: date) -> PrayerTimes:
        try:
            return PrayerTimes(
                date=on_date,
                provider_key=self.provider_key,
                fajr=normalize_time(entry["fajr_azan"]),
                sunrise=normalize_time(entry["sunrise"]),
                dhuhr=normalize_time(entry["dhuhr_azan"]),
                asr=normalize_time(entry["asr_azan"]),
                maghrib=normalize_time(entry["maghrib_azan"]),
                isha=normalize_time(entry["isha_azan"]),
                hijri_date=entry.get("hijri_date"),
                location=entry.get("location") or f"Zone {self.settings.zone}",
            )
        except (KeyError, ValueError, TypeError) as e:
            raise NetworkError(f"{self.provider_key}: unexpected response shape: {e}") from e


class DirectScrapeProvider(PrayerTimesProvider):
    """Scrapes the zone's monthly PDF; the scraping service stores whole months itself."""

    provider_type = ProviderType.DIRECT_SCRAPE
    persist_results = False

    def __init__(self, settings: PrayerSettings, session: Optional[requests.Session] = None,
                 today: Callable[[], date] = date.today,
                 direct_service: Optional[DirectScrapingService] = None):
        super().__init__(settings, session, today)
        if direct_service is None:
            raise ValueError("DirectScrapeProvider requires a DirectScrapingService")
        self.direct_service = direct_service

    @property
    def provider_key(self) -> str:
        return direct_scrape_key(self.settings.zone)

    def resolve(self, on_date: date) -> PrayerTimes:
        zone = self.settings.zone
        if not self.direct_service.is_zone_supported(zone):
            raise NotFound(f"Zone {zone} is not supported by direct scraping")
        record = self.direct_service.get_day(zone, on_date, self.settings.apartment_adjustments)
        if record is None:
            raise NotFound(f"No row for {on_date} in zone {zone} document")
        return record

    def fallback(self) -> PrayerTimesProvider:
        return BackendApiProvider(self.settings, self.session, self._today)


class RegionalApiProvider(PrayerTimesProvider):
    """City-based calculated times from the Aladhan API."""

    provider_type = ProviderType.REGIONAL_API

    @property
    def provider_key(self) -> str:
        return f"{ProviderType.REGIONAL_API.value}:{self.settings.region}"

    def resolve(self, on_date: date) -> PrayerTimes:
        cfg = self.settings.regional_api
        region = self.settings.region
        params = {
            "city": region,
            "country": REGION_COUNTRIES.get(region, DEFAULT_COUNTRY),
            "method": cfg.method,
            "school": cfg.school,
            "date": on_date.strftime("%d-%m-%Y"),
        }
        payload = self._get_json(urljoin(cfg.base_url, "v1/timingsByCity"), params, timeout=cfg.timeout)
        try:
            data = payload["data"]
            timings = data["timings"]
            meta = data.get("meta") or {}
            hijri = ((data.get("date") or {}).get("hijri") or {}).get("date")
            return PrayerTimes(
                date=on_date,
                provider_key=self.provider_key,
                fajr=normalize_time(timings["Fajr"]),
                sunrise=normalize_time(timings["Sunrise"]),
                dhuhr=normalize_time(timings["Dhuhr"]),
                asr=normalize_time(timings["Asr"]),
                maghrib=normalize_time(timings["Maghrib"]),
                isha=normalize_time(timings["Isha"]),
                hijri_date=hijri,
                location=f"{meta.get('latitude')}, {meta.get('longitude')}" if meta else region,
            )
        except (KeyError, ValueError, TypeError) as e:
            raise NetworkError(f"{self.provider_key}: unexpected response shape: {e}") from e


_PROVIDERS: Dict[ProviderType, Type[PrayerTimesProvider]] = {
    ProviderType.MANUAL: ManualProvider,
    ProviderType.DIRECT_SCRAPE: DirectScrapeProvider,
    ProviderType.BACKEND_API: BackendApiProvider,
    ProviderType.REGIONAL_API: RegionalApiProvider,
}


def create_provider(
    settings: PrayerSettings,
    session: Optional[requests.Session] = None,
    direct_service: Optional[DirectScrapingService] = None,
    today: Callable[[], date] = date.today,
) -> PrayerTimesProvider:
    provider_class = _PROVIDERS[settings.provider]
    if provider_class is DirectScrapeProvider:
        return DirectScrapeProvider(settings, session, today, direct_service=direct_service)
    return provider_class(settings, session, today)

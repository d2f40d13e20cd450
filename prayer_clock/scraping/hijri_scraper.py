"""
Hijri date lookup from the ACJU calendar pages.

The calendar page embeds the Gregorian start/end dates of the current Hijri
month in a `hijriCalendarData` script variable; the month names come from
the WordPress admin-ajax listing of uploaded calendars.
"""
import json
import logging
import re
from dataclasses import dataclass
from datetime import date
from typing import Dict, Optional

import requests
from bs4 import BeautifulSoup

from prayer_clock.scraping.acju_scraper import PageCache

ACJU_SITE_URL = "https://www.acju.lk"
CALENDAR_URL = f"{ACJU_SITE_URL}/calenders-en/"
ADMIN_AJAX_URL = f"{ACJU_SITE_URL}/wp-admin/admin-ajax.php"
HIJRI_CALENDAR_ACTION = "hijri_calendar_get_uploads_paged"

CALENDAR_DATA_PATTERN = re.compile(r"var hijriCalendarData = (\{[^}]*\});")

AJAX_HEADERS = {
    "User-Agent": "Mozilla/5.0 (X11; Linux x86_64; rv:128.0) Gecko/20100101 Firefox/128.0",
    "Accept": "application/json, text/javascript, */*; q=0.01",
    "X-Requested-With": "XMLHttpRequest",
    "Origin": ACJU_SITE_URL,
    "Referer": CALENDAR_URL,
}


@dataclass(frozen=True)
class HijriDateInfo:
    hijri_day: int
    hijri_month: str
    hijri_year: int
    gregorian_date: date
    month_start_date: Optional[date] = None
    month_end_date: Optional[date] = None

    @property
    def display(self) -> str:
        return f"{self.hijri_day} {self.hijri_month} {self.hijri_year}"


def parse_hijri_description(description: str) -> Optional[tuple]:
    """Split "Rabee`unith Thaani - 1447" into ("Rabee`unith Thaani", 1447)."""
    month, sep, year = description.rpartition(" - ")
    if not sep:
        return None
    try:
        return month.strip(), int(year.strip())
    except ValueError:
        return None


class HijriDateScraper:
    def __init__(
        self,
        session: Optional[requests.Session] = None,
        cache_dir: Optional[str] = None,
        timeout: float = 30,
    ):
        self.session = session or requests.Session()
        self.timeout = timeout
        self.logger = logging.getLogger(self.__class__.__name__)
        self.page_cache = PageCache(cache_dir, "hijri") if cache_dir else None

    def _cached(self, key: str) -> Optional[str]:
        return self.page_cache.get(key) if self.page_cache else None

    def _store(self, key: str, content: str) -> None:
        if self.page_cache:
            self.page_cache.put(key, content)

    def get_month_range(self) -> Optional[Dict[str, date]]:
        """Start and end Gregorian dates of the current Hijri month."""
        html = self._cached(CALENDAR_URL)
        if html is None:
            response = self.session.get(CALENDAR_URL, timeout=self.timeout)
            response.raise_for_status()
            html = response.text
            self._store(CALENDAR_URL, html)

        match = CALENDAR_DATA_PATTERN.search(html)
        if not match:
            self.logger.warning("hijriCalendarData not found on calendar page")
            return None
        data = json.loads(match.group(1).replace("\\/", "/"))
        return {
            "start": date.fromisoformat(data["startDate"]),
            "end": date.fromisoformat(data["endDate"]),
        }

    def get_month_names(self) -> Dict[str, str]:
        """Map of Gregorian "YYYY-MM" titles to Hijri month descriptions."""
        cache_key = f"{ADMIN_AJAX_URL}?action={HIJRI_CALENDAR_ACTION}&page=1"
        html = self._cached(cache_key)
        if html is None:
            response = self.session.post(
                ADMIN_AJAX_URL,
                data={"action": HIJRI_CALENDAR_ACTION, "page": "1"},
                headers=AJAX_HEADERS,
                timeout=self.timeout,
            )
            response.raise_for_status()
            payload = response.json()
            if not payload.get("success"):
                self.logger.warning("Hijri calendar listing returned success=false")
                return {}
            html = (payload.get("data") or {}).get("html") or ""
            self._store(cache_key, html)

        soup = BeautifulSoup(html, "html.parser")
        titles = soup.select("h3.upload_section_media_title")
        descriptions = soup.select("p.upload_section_media_description")
        return {
            t.get_text(strip=True): d.get_text(strip=True)
            for t, d in zip(titles, descriptions)
        }

    def get_hijri_date(self, target: date) -> Optional[HijriDateInfo]:
        """Hijri date for target, or None if unavailable or outside the published month."""
        try:
            month_range = self.get_month_range()
            if not month_range:
                return None
            start, end = month_range["start"], month_range["end"]
            if not start <= target <= end:
                self.logger.debug(f"{target} outside current Hijri month ({start} to {end})")
                return None

            names = self.get_month_names()
            description = names.get(start.strftime("%Y-%m")) or names.get(target.strftime("%Y-%m"))
            parsed = parse_hijri_description(description) if description else None
            if not parsed:
                self.logger.warning(f"No Hijri month name for {start:%Y-%m}")
                return None
        except (requests.RequestException, ValueError, KeyError) as e:
            self.logger.warning(f"Hijri date lookup failed for {target}: {e}")
            return None

        month_name, year = parsed
        return HijriDateInfo(
            hijri_day=(target - start).days + 1,
            hijri_month=month_name,
            hijri_year=year,
            gregorian_date=target,
            month_start_date=start,
            month_end_date=end,
        )

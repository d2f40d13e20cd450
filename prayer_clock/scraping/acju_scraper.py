"""
Locates and downloads the monthly prayer time PDFs published on the ACJU
website, one accordion section per zone with one PDF link per month.
"""
import calendar
import hashlib
import logging
import os
import re
from datetime import date
from typing import Callable, Dict, List, Optional, Tuple
from urllib.parse import urljoin

import requests
from bs4 import BeautifulSoup

from prayer_clock.errors import FetchError, NotFound
from prayer_clock.scraping.pdf_parser import (
    DailyPrayerRow,
    MonthDocumentMetadata,
    extract_text,
    parse_schedule,
)

ACJU_BASE_URL = "https://www.acju.lk/prayer-times/"
REQUEST_TIMEOUT = 30

# Accordion title text for each zone on the prayer times page
ZONE_MAPPINGS: Dict[int, str] = {
    1: "COLOMBO DISTRICT, GAMPAHA DISTRICT, KALUTARA DISTRICT",
    2: "JAFFNA DISTRICT, NALLUR",
    3: "MULLAITIVU DISTRICT (EXCEPT NALLUR), KILINOCHCHI DISTRICT, VAVUNIYA DISTRICT",
    4: "MANNAR DISTRICT, PUTTALAM DISTRICT",
    5: "ANURADHAPURA DISTRICT, POLONNARUWA DISTRICT",
    6: "KURUNEGALA DISTRICT",
    7: "KANDY DISTRICT, MATALE DISTRICT, NUWARA ELIYA DISTRICT",
    8: "BATTICALOA DISTRICT, AMPARA DISTRICT",
    9: "TRINCOMALEE DISTRICT",
    10: "BADULLA DISTRICT, MONARAGALA DISTRICT, PADIYATALAWA ,DEHIATHTHAKANDIYA",
    11: "RATNAPURA DISTRICT, KEGALLE DISTRICT",
    12: "GALLE DISTRICT, MATARA DISTRICT",
    13: "HAMBANTOTA DISTRICT",
}


def _normalize(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip().lower()


def get_month_name(month: int) -> str:
    if 1 <= month <= 12:
        return calendar.month_name[month]
    return "Unknown"


def get_zone_description(zone: int) -> str:
    return ZONE_MAPPINGS.get(zone, f"Zone {zone}")


def get_available_zones() -> Dict[int, str]:
    return dict(ZONE_MAPPINGS)


class PageCache:
    """Fetched page bodies kept on disk until the end of the day they were fetched.

    Files are named by day and key hash; writing drops files from earlier days.
    """

    def __init__(self, cache_dir: str, namespace: str, today: Callable[[], date] = date.today):
        self.directory = os.path.join(os.path.expanduser(cache_dir), namespace)
        os.makedirs(self.directory, exist_ok=True)
        self._today = today
        self.logger = logging.getLogger(self.__class__.__name__)

    def _day_prefix(self) -> str:
        return f"{self._today():%Y%m%d}-"

    def _path(self, key: str) -> str:
        digest = hashlib.sha1(key.encode()).hexdigest()
        return os.path.join(self.directory, f"{self._day_prefix()}{digest}.html")

    def get(self, key: str) -> Optional[str]:
        try:
            with open(self._path(key), encoding="utf-8") as f:
                return f.read() or None
        except FileNotFoundError:
            return None
        except OSError as e:
            self.logger.warning(f"Ignoring unreadable cached page for {key}: {e}")
            return None

    def put(self, key: str, content: str) -> None:
        prefix = self._day_prefix()
        try:
            for name in os.listdir(self.directory):
                if not name.startswith(prefix):
                    os.remove(os.path.join(self.directory, name))
            with open(self._path(key), "w", encoding="utf-8") as f:
                f.write(content)
        except OSError as e:
            self.logger.error(f"Could not cache page for {key}: {e}")


class ACJUScraper:
    """Find a zone's monthly PDF on the index page, download it and parse it."""

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        cache_dir: Optional[str] = None,
        base_url: str = ACJU_BASE_URL,
        timeout: float = REQUEST_TIMEOUT,
    ):
        self.session = session or requests.Session()
        self.base_url = base_url
        self.timeout = timeout
        self.logger = logging.getLogger(self.__class__.__name__)
        self.page_cache = PageCache(cache_dir, "acju") if cache_dir else None

    def _fetch_index_page(self, force_fetch: bool = False) -> Tuple[str, bool]:
        """Return (html, from_cache)."""
        if self.page_cache and not force_fetch:
            cached = self.page_cache.get(self.base_url)
            if cached:
                return cached, True

        self.logger.info(f"Fetching ACJU prayer times index: {self.base_url}")
        try:
            response = self.session.get(self.base_url, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise FetchError(f"Failed to fetch {self.base_url}: {e}") from e

        html = response.text
        if not html:
            raise FetchError(f"Empty response from {self.base_url}")
        if self.page_cache:
            self.page_cache.put(self.base_url, html)
        return html, False

    def _find_pdf_links(self, html: str, zone_text: str) -> List[str]:
        soup = BeautifulSoup(html, "html.parser")
        wanted = _normalize(zone_text)
        title = next(
            (
                el for el in soup.select("div.e-n-accordion-item-title-text")
                if wanted in _normalize(el.get_text(" "))
            ),
            None,
        )
        if title is None:
            raise NotFound(f"Zone section not found for: {zone_text}")

        details = title.find_parent("details")
        if details is None:
            raise NotFound(f"No <details> section around zone title: {zone_text}")

        return [urljoin(self.base_url, a["href"]) for a in details.select('a[href$=".pdf"]')]

    def locate_document_url(self, zone: int, year: int, month: int) -> str:
        """Return the PDF URL for the zone and month.

        Raises NotFound when the zone is unknown, its section is missing, or
        the section holds fewer than `month` PDF links. The year is only used
        for logging; the page lists the current year's documents.
        """
        zone_text = ZONE_MAPPINGS.get(zone)
        if zone_text is None:
            raise NotFound(f"Invalid zone: {zone}")
        if not 1 <= month <= 12:
            raise NotFound(f"Invalid month: {month}")

        self.logger.debug(f"Locating PDF for zone {zone}, {get_month_name(month)} {year}")
        html, from_cache = self._fetch_index_page()
        try:
            links = self._find_pdf_links(html, zone_text)
            if len(links) < month and from_cache:
                raise NotFound("stale cached index")
        except NotFound:
            if not from_cache:
                raise
            # the cached copy may predate a site update
            html, _ = self._fetch_index_page(force_fetch=True)
            links = self._find_pdf_links(html, zone_text)

        if len(links) < month:
            raise NotFound(
                f"Not enough PDF links for zone {zone}: expected at least {month}, found {len(links)}"
            )
        url = links[month - 1]
        self.logger.info(f"Found PDF for zone {zone}, {get_month_name(month)} {year}: {url}")
        return url

    def fetch_bytes(self, url: str) -> bytes:
        """Download a document. Raises FetchError on transport failure or empty body."""
        self.logger.info(f"Downloading PDF from {url}")
        try:
            response = self.session.get(url, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise FetchError(f"Failed to download {url}: {e}") from e
        if not response.content:
            raise FetchError(f"Empty document from {url}")
        self.logger.debug(f"Downloaded {len(response.content)} bytes from {url}")
        return response.content

    def scrape_month(
        self, zone: int, year: int, month: int
    ) -> Tuple[MonthDocumentMetadata, List[DailyPrayerRow]]:
        """Locate, download and parse one month's document."""
        url = self.locate_document_url(zone, year, month)
        text = extract_text(self.fetch_bytes(url))
        return parse_schedule(text)

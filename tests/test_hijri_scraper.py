from datetime import date

import requests

from conftest import FakeResponse, FakeSession
from prayer_clock.scraping.hijri_scraper import (
    ADMIN_AJAX_URL,
    CALENDAR_URL,
    HijriDateScraper,
    parse_hijri_description,
)

CALENDAR_HTML = (
    "<html><script>"
    'var hijriCalendarData = {"startDate":"2025-03-01","endDate":"2025-03-30","pdf":"https:\\/\\/x\\/a.pdf"};'
    "</script></html>"
)
LISTING = {
    "success": True,
    "data": {
        "html": (
            '<h3 class="upload_section_media_title">2025-03</h3>'
            '<p class="upload_section_media_description">Ramadhaan - 1446</p>'
            '<h3 class="upload_section_media_title">2025-02</h3>'
            '<p class="upload_section_media_description">Sha`baan - 1446</p>'
        )
    },
}


def _session(listing=LISTING) -> FakeSession:
    return FakeSession({
        CALENDAR_URL: FakeResponse(text=CALENDAR_HTML),
        ADMIN_AJAX_URL: FakeResponse(json_data=listing),
    })


def test_parse_hijri_description():
    assert parse_hijri_description("Rabee`unith Thaani - 1447") == ("Rabee`unith Thaani", 1447)
    assert parse_hijri_description("no separator") is None


def test_get_hijri_date_counts_from_month_start():
    scraper = HijriDateScraper(session=_session())
    info = scraper.get_hijri_date(date(2025, 3, 10))
    assert info.hijri_day == 10
    assert info.hijri_month == "Ramadhaan"
    assert info.hijri_year == 1446
    assert info.display == "10 Ramadhaan 1446"
    assert info.month_end_date == date(2025, 3, 30)


def test_get_hijri_date_outside_range_is_none():
    scraper = HijriDateScraper(session=_session())
    assert scraper.get_hijri_date(date(2025, 3, 31)) is None
    assert scraper.get_hijri_date(date(2025, 2, 28)) is None


def test_get_hijri_date_failures_are_none():
    failing = FakeSession({CALENDAR_URL: requests.ConnectionError("offline")})
    assert HijriDateScraper(session=failing).get_hijri_date(date(2025, 3, 10)) is None

    unsuccessful = HijriDateScraper(session=_session({"success": False}))
    assert unsuccessful.get_hijri_date(date(2025, 3, 10)) is None


def test_pages_are_cached_per_day(tmp_path):
    session = _session()
    scraper = HijriDateScraper(session=session, cache_dir=str(tmp_path))
    scraper.get_hijri_date(date(2025, 3, 10))
    scraper.get_hijri_date(date(2025, 3, 11))
    assert session.urls().count(CALENDAR_URL) == 1
    assert session.urls().count(ADMIN_AJAX_URL) == 1

import types
from datetime import date

import requests
from fastapi.testclient import TestClient

from conftest import FakeSession
from prayer_clock.api.server import create_app
from prayer_clock.core.settings import PrayerSettings, ProviderType
from prayer_clock.core.task_manager import TaskManager
from prayer_clock.scraping.direct_scraping import CacheStatus, PrefetchResult
from prayer_clock.scraping.hijri_scraper import HijriDateInfo
from prayer_clock.times.models import PrayerTimes
from prayer_clock.times.repository import PrayerTimesRepository


class StubDirectService:
    def __init__(self):
        self.prefetched = []

    @staticmethod
    def is_zone_supported(zone):
        return 1 <= zone <= 13

    def get_month(self, zone, year, month, apply_apartment=False):
        if month == 2:
            return None
        return [PrayerTimes(date(year, month, d), f"DIRECT_SCRAPE:{zone}", "04:50", "06:10", "12:15", "15:30",
                            "18:20", "19:30") for d in (1, 2)]

    def get_current_hijri_date(self):
        return HijriDateInfo(hijri_day=9, hijri_month="Ramadhaan", hijri_year=1446, gregorian_date=date(2025, 3, 9))

    def check_cache_status(self, zone):
        return CacheStatus(total_months=6, cached_months=2, total_days=182, cached_days=61, is_fully_cached=False)

    def prefetch_remaining_year(self, zone):
        self.prefetched.append(zone)
        return PrefetchResult(total_months=6, successful_months=4, skipped_months=2, cached_days=122)


class StubSink:
    def __init__(self):
        self.cancelled = []

    def recent_notifications(self):
        return [{"id": 1, "title": "Fajr Azan in 5 seconds", "body": "Fajr Azan at 04:50", "cancellable": True}]

    def cancel(self, notification_id):
        self.cancelled.append(notification_id)
        return notification_id == 1


def _client(settings: PrayerSettings, session=None):
    holder = {"settings": settings}
    refreshes = []
    prayer_app = types.SimpleNamespace(
        prayer_settings=lambda: holder["settings"],
        direct_service=StubDirectService(),
        sink=StubSink(),
        scheduler=types.SimpleNamespace(refresh=lambda: refreshes.append(1)),
        task_manager=TaskManager(),
    )
    prayer_app.repository = PrayerTimesRepository(
        prayer_app.prayer_settings, direct_service=prayer_app.direct_service, session=session or FakeSession()
    )
    return TestClient(create_app(prayer_app)), prayer_app, refreshes


def test_today_includes_iqamah(db):
    client, _, _ = _client(PrayerSettings(provider=ProviderType.MANUAL))
    rv = client.get("/api/prayer-times/today")
    assert rv.status_code == 200
    data = rv.json()
    assert data["prayer_times"]["fajr"] == "05:30"
    assert data["prayer_times"]["provider_key"] is None
    assert data["prayer_times"]["date"] == date.today().isoformat()
    assert data["iqamah"]["fajr"] == "05:50"


def test_network_error_is_503(db):
    session = FakeSession({"http://127.0.0.1:8000/api/v1/today/": requests.ConnectionError("down")})
    client, _, _ = _client(PrayerSettings(provider=ProviderType.BACKEND_API, zone=1), session)
    assert client.get("/api/prayer-times/today").status_code == 503


def test_month_and_validation(db):
    client, _, _ = _client(PrayerSettings(provider=ProviderType.DIRECT_SCRAPE, zone=1))
    rv = client.get("/api/prayer-times/month/2025/3")
    assert rv.status_code == 200
    assert [d["date"] for d in rv.json()] == ["2025-03-01", "2025-03-02"]
    assert client.get("/api/prayer-times/month/2025/2").status_code == 404
    assert client.get("/api/prayer-times/month/2025/13").status_code == 422


def test_hijri_status_and_zones(db):
    client, _, _ = _client(PrayerSettings(provider=ProviderType.DIRECT_SCRAPE, zone=1))
    assert client.get("/api/prayer-times/hijri").json()["display"] == "9 Ramadhaan 1446"
    status = client.get("/api/prayer-times/cache-status").json()
    assert status["zone"] == 1
    assert status["cached_days"] == 61
    assert status["description"].startswith("COLOMBO")
    zones = client.get("/api/prayer-times/zones").json()
    assert len(zones) == 13
    assert zones["12"].startswith("GALLE DISTRICT")


def test_prefetch_requires_direct_scrape(db):
    client, prayer_app, _ = _client(PrayerSettings(provider=ProviderType.BACKEND_API, zone=1))
    assert client.post("/api/prayer-times/prefetch").status_code == 409

    client, prayer_app, _ = _client(PrayerSettings(provider=ProviderType.DIRECT_SCRAPE, zone=3))
    rv = client.post("/api/prayer-times/prefetch")
    assert rv.status_code == 200
    assert rv.json()["skipped_months"] == 2
    assert prayer_app.direct_service.prefetched == [3]


def test_invalidate_refreshes_scheduler(db):
    client, _, refreshes = _client(PrayerSettings(provider=ProviderType.MANUAL))
    assert client.post("/api/prayer-times/invalidate").json() == {"status": "invalidated"}
    assert refreshes == [1]


def test_tasks_and_notifications(db):
    client, prayer_app, _ = _client(PrayerSettings(provider=ProviderType.MANUAL))
    data = client.get("/api/tasks").json()
    assert data == {"db_schedules": [], "active_timers": []}

    assert client.get("/api/notifications").json()[0]["title"] == "Fajr Azan in 5 seconds"
    assert client.post("/api/notifications/1/cancel").status_code == 200
    assert client.post("/api/notifications/7/cancel").status_code == 404
    assert prayer_app.sink.cancelled == [1, 7]

from datetime import date, datetime, timedelta, timezone

from prayer_clock.core.models import get_all_task_schedules
from prayer_clock.core.settings import PrayerSettings, ProviderType
from prayer_clock.core.task import TaskType, compute_next_run, upsert_task_schedule
from prayer_clock.core.task_manager import TaskManager
from prayer_clock.scraping.direct_scraping import PrefetchResult
from prayer_clock.times import service
from prayer_clock.times.models import PrayerTimes
from prayer_clock.times.repository import PrayerTimesRepository
from prayer_clock.times.task import PrayerTimesCleanupTask, PrayerTimesPrefetchTask


class StubDirectService:
    def __init__(self):
        self.prefetched = []

    @staticmethod
    def is_zone_supported(zone):
        return zone <= 13

    def prefetch_remaining_year(self, zone):
        self.prefetched.append(zone)
        return PrefetchResult(total_months=6, successful_months=6, cached_days=182)


def test_compute_next_run():
    last = datetime(2025, 3, 10, 4, 0)
    assert compute_next_run(TaskType.DAILY, {"time": "03:00"}, last) == datetime(2025, 3, 11, 3, 0)
    assert compute_next_run(TaskType.DAILY, {"time": "05:30"}, last) == datetime(2025, 3, 10, 5, 30)
    assert compute_next_run(TaskType.MONTHLY, {"day": 1, "time": "02:00"}, last) == datetime(2025, 4, 1, 2, 0)
    assert compute_next_run(TaskType.MONTHLY, {"day": 31}, datetime(2025, 12, 30)) == datetime(2026, 1, 28)
    assert compute_next_run(TaskType.INTERVAL_SECONDS, {"interval_seconds": 60}, last) == last + timedelta(minutes=1)


def test_cleanup_task_records_run(db):
    old = date.today() - timedelta(days=45)
    service.save_prayer_times(PrayerTimes(old, "BACKEND_API:1", "04:50", "06:10", "12:15", "15:30", "18:20",
                                          "19:30"))
    repository = PrayerTimesRepository(lambda: PrayerSettings())
    task = PrayerTimesCleanupTask(repository)
    task.ensure_scheduled()
    assert task.execute() == 1

    row = next(r for r in get_all_task_schedules() if r["task_name"] == "prayer_times_cleanup")
    assert row["schedule_type"] == TaskType.DAILY
    assert row["last_run_at"] is not None
    assert row["last_result"] == "1"
    assert row["last_error"] is None
    assert row["next_run_at"].hour == 3


def test_prefetch_task_only_for_direct_scrape(db):
    direct = StubDirectService()
    settings = PrayerSettings(provider=ProviderType.BACKEND_API, zone=1)
    task = PrayerTimesPrefetchTask(direct, lambda: settings)
    assert task.run() is None
    assert direct.prefetched == []

    settings = PrayerSettings(provider=ProviderType.DIRECT_SCRAPE, zone=12)
    task = PrayerTimesPrefetchTask(direct, lambda: settings)
    assert task.run().cached_days == 182
    assert direct.prefetched == [12]


def test_task_manager_schedules_from_persisted_next_run(db):
    repository = PrayerTimesRepository(lambda: PrayerSettings())
    task = PrayerTimesCleanupTask(repository)
    upsert_task_schedule(task.name, task.schedule_type, task.schedule_config,
                         next_run_at=datetime.now(timezone.utc).replace(tzinfo=None) + timedelta(hours=6))
    manager = TaskManager()
    try:
        manager.register_task(task)
        timers = manager.get_active_timers()
        assert [t["name"] for t in timers] == ["prayer_times_cleanup"]
        assert manager.run_task_now("prayer_times_cleanup") == 0
        assert manager.run_task_now("missing") is None
    finally:
        manager.stop()
    assert manager.get_active_timers() == []

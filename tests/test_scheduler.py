import threading
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime, timedelta

from conftest import InlineExecutor
from prayer_clock.core.settings import NotificationSettings, SoundType
from prayer_clock.errors import NetworkError
from prayer_clock.notifications.scheduler import (
    BackgroundValue,
    PrayerEventScheduler,
    SchedulerState,
    tracked_events,
)
from prayer_clock.notifications.sink import NotificationSink
from prayer_clock.times.models import PrayerTimes
from prayer_clock.times.timeutils import derive_iqamah_times

DAY = date(2025, 3, 3)
GAPS = {"fajr": 20, "dhuhr": 10, "asr": 10, "maghrib": 5, "isha": 10}


class RecordingSink(NotificationSink):
    def __init__(self, muted=False):
        self.muted = muted
        self.notifications = []
        self.clips = []
        self.vibrations = 0
        self.wake_acquired = 0
        self.wake_released = 0
        self.stopped = 0

    def show_notification(self, title, body, cancel_action=None):
        self.notifications.append(title)

    def play_clip(self, clip_id):
        self.clips.append(clip_id)
        return True

    def vibrate(self, pattern=None):
        self.vibrations += 1

    def is_playing(self):
        return False

    def is_muted(self):
        return self.muted

    def stop_all(self):
        self.stopped += 1

    def acquire_wake(self):
        self.wake_acquired += 1

    def release_wake(self):
        self.wake_released += 1


def _schedule(fajr="04:50"):
    record = PrayerTimes(DAY, "BACKEND_API:1", fajr, "06:10", "12:15", "15:30", "18:20", "19:30")
    return record, derive_iqamah_times(record.azan_times, GAPS, DAY)


class Clock:
    def __init__(self, start: datetime):
        self.start = start
        self.now = start

    def monotonic(self) -> float:
        return (self.now - self.start).total_seconds()


def _scheduler(sink, settings=None, schedule=None, clock=None):
    clock = clock or Clock(datetime(2025, 3, 3))
    settings = settings or NotificationSettings()
    return PrayerEventScheduler(
        schedule or (lambda: _schedule()),
        lambda: settings,
        sink,
        clock=lambda: clock.now,
        monotonic=clock.monotonic,
        executor=InlineExecutor(),
    ), clock


def _sweep(scheduler, clock, until: datetime):
    while clock.now < until:
        delay = scheduler.tick(clock.now)
        clock.now += timedelta(seconds=delay)


def test_full_day_fires_each_event_once():
    sink = RecordingSink()
    scheduler, clock = _scheduler(sink)
    _sweep(scheduler, clock, datetime(2025, 3, 4))

    counts = Counter(sink.notifications)
    assert len(counts) == 24
    assert all(n == 1 for n in counts.values())
    assert counts["Fajr Azan in 5 seconds"] == 1
    assert counts["Fajr Iqamah time"] == 1
    assert counts["Sunrise in 5 seconds"] == 1
    assert counts["Sunrise time"] == 1
    # countdown ticking is the only sound for the default sound type
    assert sink.clips == ["countdown"] * 12
    assert sink.wake_acquired > 0
    assert sink.wake_acquired == sink.wake_released


def test_events_fire_at_exact_offsets():
    sink = RecordingSink()
    scheduler, clock = _scheduler(sink)
    clock.now = datetime(2025, 3, 3, 4, 49, 0)
    assert scheduler.tick(clock.now) == 1.01
    assert scheduler.state == SchedulerState.FINE_POLLING

    scheduler.tick(datetime(2025, 3, 3, 4, 49, 54))
    assert sink.notifications == []
    scheduler.tick(datetime(2025, 3, 3, 4, 49, 55))
    assert sink.notifications == ["Fajr Azan in 5 seconds"]
    scheduler.tick(datetime(2025, 3, 3, 4, 49, 59))
    scheduler.tick(datetime(2025, 3, 3, 4, 50, 0))
    assert sink.notifications[-1] == "Fajr Azan time"
    scheduler.tick(datetime(2025, 3, 3, 4, 50, 0, 500000))
    assert len(sink.notifications) == 2


def test_coarse_polling_away_from_events():
    sink = RecordingSink()
    scheduler, clock = _scheduler(sink)
    assert scheduler.tick(datetime(2025, 3, 3, 9, 0, 0)) == 10.0
    assert scheduler.state == SchedulerState.COARSE_POLLING


def test_late_tick_still_fires_countdown_once():
    sink = RecordingSink()
    scheduler, clock = _scheduler(sink)
    scheduler.tick(datetime(2025, 3, 3, 4, 49, 50))
    scheduler.tick(datetime(2025, 3, 3, 4, 49, 57))
    scheduler.tick(datetime(2025, 3, 3, 4, 49, 58))
    assert sink.notifications == ["Fajr Azan in 5 seconds"]


def test_event_at_midnight_counts_down_across_rollover():
    sink = RecordingSink()
    scheduler, clock = _scheduler(sink, schedule=lambda: _schedule(fajr="00:00"))
    clock.now = datetime(2025, 3, 2, 23, 59, 0)
    _sweep(scheduler, clock, datetime(2025, 3, 3, 0, 1, 0))
    assert sink.notifications == ["Fajr Azan in 5 seconds", "Fajr Azan time"]


def test_traditional_beep_plays_for_azan_and_iqamah_only():
    sink = RecordingSink()
    settings = NotificationSettings(sound_type=SoundType.TRADITIONAL_BEEP, iqamah_sound_enabled=False)
    scheduler, clock = _scheduler(sink, settings=settings)
    _sweep(scheduler, clock, datetime(2025, 3, 4))
    assert Counter(sink.clips) == {"countdown": 12, "beep": 5}


def test_custom_sound_uses_configured_clip():
    sink = RecordingSink()
    settings = NotificationSettings(sound_type=SoundType.CUSTOM, custom_sound="/sounds/adhan.mp3")
    scheduler, clock = _scheduler(sink, settings=settings)
    _sweep(scheduler, clock, datetime(2025, 3, 3, 5, 0, 0))
    assert sink.clips == ["countdown", "/sounds/adhan.mp3"]


def test_muted_vibrates_and_still_notifies():
    sink = RecordingSink(muted=True)
    settings = NotificationSettings(sound_type=SoundType.TRADITIONAL_BEEP)
    scheduler, clock = _scheduler(sink, settings=settings)
    _sweep(scheduler, clock, datetime(2025, 3, 3, 5, 0, 0))
    assert sink.clips == []
    assert sink.vibrations == 2
    assert sink.notifications == ["Fajr Azan in 5 seconds", "Fajr Azan time"]


def test_disabled_sound_keeps_scheduler_idle():
    sink = RecordingSink()
    scheduler, clock = _scheduler(sink, settings=NotificationSettings(sound_enabled=False))
    _sweep(scheduler, clock, datetime(2025, 3, 3, 5, 0, 0))
    assert scheduler.state == SchedulerState.IDLE
    assert sink.notifications == []


def test_schedule_failure_goes_idle():
    def failing():
        raise NetworkError("backend down")

    sink = RecordingSink()
    scheduler, clock = _scheduler(sink, schedule=failing)
    assert scheduler.tick(datetime(2025, 3, 3, 4, 49, 0)) == 10.0
    assert scheduler.state == SchedulerState.IDLE


def test_schedule_is_memoised_for_ttl():
    loads = []

    def schedule():
        loads.append(1)
        return _schedule()

    sink = RecordingSink()
    scheduler, clock = _scheduler(sink, schedule=schedule)
    _sweep(scheduler, clock, datetime(2025, 3, 3, 0, 10, 0))
    # one load per minute of simulated time
    assert len(loads) == 10


def test_tracked_events_cover_the_day():
    names = [e.name for e in tracked_events(_schedule())]
    assert len(names) == 12
    assert names[0] == "Fajr Azan"
    assert "Sunrise" in names
    assert names[-1] == "Isha Iqamah"


def test_slow_reload_does_not_delay_countdown():
    gate = threading.Event()
    loads = []

    def schedule():
        loads.append(1)
        if len(loads) > 1:
            gate.wait(5)
        return _schedule()

    sink = RecordingSink()
    clock = Clock(datetime(2025, 3, 3, 4, 49, 40))
    executor = ThreadPoolExecutor(max_workers=1)
    scheduler = PrayerEventScheduler(schedule, lambda: NotificationSettings(), sink, clock=lambda: clock.now,
                                     monotonic=clock.monotonic, executor=executor)
    try:
        scheduler.tick(clock.now)
        assert scheduler._schedule.wait(1)

        clock.now = datetime(2025, 3, 3, 4, 49, 51)
        scheduler.refresh()
        while clock.now <= datetime(2025, 3, 3, 4, 50, 0):
            scheduler.tick(clock.now)
            clock.now += timedelta(seconds=1)

        assert scheduler._schedule.loading
        assert sink.notifications == ["Fajr Azan in 5 seconds", "Fajr Azan time"]
    finally:
        gate.set()
        executor.shutdown(wait=True)


def test_background_value_keeps_last_value_when_reload_fails():
    calls = []

    def loader():
        calls.append(1)
        if len(calls) == 2:
            raise RuntimeError("boom")
        return len(calls)

    value = BackgroundValue(loader, 60, InlineExecutor(), clock=lambda: 0.0)
    assert value.get() == 1
    assert value.get() == 1
    value.clear()
    assert value.get() == 1
    # the failed reload leaves the value due
    assert value.get() == 3
    assert value.get() == 3
    assert len(calls) == 3

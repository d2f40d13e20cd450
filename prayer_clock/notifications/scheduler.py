"""
Polls the clock against today's azan, sunrise and iqamah times and fires a
short countdown a few seconds before each event plus the event's own chime at
zero. Polls every few seconds while nothing is close and every second once an
event is inside the lookahead window. Today's schedule is reloaded on a
worker thread; ticks keep using the last loaded schedule meanwhile.
"""
import logging
import threading
import time
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Callable, Generic, List, Optional, Set, Tuple, TypeVar

from prayer_clock.core.settings import NotificationSettings, SoundType
from prayer_clock.errors import PrayerTimesError
from prayer_clock.notifications.sink import BEEP_CLIP, COUNTDOWN_CLIP, VIBRATION_PATTERN, NotificationSink
from prayer_clock.times.models import PrayerTimes
from prayer_clock.times.timeutils import PRAYERS, SECONDS_PER_DAY, IqamahTimes, seconds_of_day

T = TypeVar("T")

Schedule = Tuple[PrayerTimes, IqamahTimes]

FINE_SLEEP_MARGIN = 0.01


class SchedulerState(str, Enum):
    IDLE = "IDLE"
    COARSE_POLLING = "COARSE_POLLING"
    FINE_POLLING = "FINE_POLLING"


class EventKind(str, Enum):
    AZAN = "azan"
    SUNRISE = "sunrise"
    IQAMAH = "iqamah"


@dataclass(frozen=True)
class TrackedEvent:
    prayer: str
    kind: EventKind
    time: str

    @property
    def name(self) -> str:
        if self.kind == EventKind.SUNRISE:
            return "Sunrise"
        return f"{self.prayer.capitalize()} {self.kind.value.capitalize()}"


def tracked_events(schedule: Schedule) -> List[TrackedEvent]:
    """The twelve events of a day: five azan, sunrise and five iqamah."""
    record, iqamah = schedule
    events = [TrackedEvent(p, EventKind.AZAN, getattr(record, p)) for p in PRAYERS]
    events.append(TrackedEvent("sunrise", EventKind.SUNRISE, record.sunrise))
    events += [TrackedEvent(p, EventKind.IQAMAH, getattr(iqamah, p)) for p in PRAYERS]
    return events


class TTLValue(Generic[T]):
    """A loader result remembered for ttl seconds of a monotonic clock."""

    def __init__(self, loader: Callable[[], T], ttl: float, clock: Callable[[], float] = time.monotonic):
        self.loader = loader
        self.ttl = ttl
        self._clock = clock
        self._value: Optional[T] = None
        self._loaded_at: Optional[float] = None

    def get(self) -> T:
        now = self._clock()
        if self._loaded_at is None or now - self._loaded_at >= self.ttl:
            self._value = self.loader()
            self._loaded_at = now
        return self._value

    def peek(self) -> Optional[T]:
        return self._value

    def clear(self) -> None:
        self._value = None
        self._loaded_at = None


class BackgroundValue(Generic[T]):
    """A loader result refreshed on an executor every ttl seconds.

    get() never waits for the loader: it returns the last loaded value (None
    before the first load finishes) and starts a reload when that value is due.
    """

    def __init__(self, loader: Callable[[], T], ttl: float, executor: Executor,
                 clock: Callable[[], float] = time.monotonic):
        self.loader = loader
        self.ttl = ttl
        self._executor = executor
        self._clock = clock
        self.logger = logging.getLogger(self.__class__.__name__)

        self._lock = threading.Lock()
        self._value: Optional[T] = None
        self._loaded_at: Optional[float] = None
        self._loading = False
        self._generation = 0
        self._idle = threading.Event()
        self._idle.set()

    @property
    def loading(self) -> bool:
        with self._lock:
            return self._loading

    def get(self) -> Optional[T]:
        with self._lock:
            due = self._loaded_at is None or self._clock() - self._loaded_at >= self.ttl
            submit = due and not self._loading
            if submit:
                self._loading = True
                self._idle.clear()
                generation = self._generation
        if submit:
            try:
                future = self._executor.submit(self.loader)
            except RuntimeError:
                with self._lock:
                    self._loading = False
                self._idle.set()
                raise
            future.add_done_callback(lambda f: self._on_loaded(f, generation))
        return self.peek()

    def _on_loaded(self, future: Future, generation: int) -> None:
        error = None if future.cancelled() else future.exception()
        with self._lock:
            self._loading = False
            if not future.cancelled() and error is None:
                self._value = future.result()
                # a clear() during the load asks for another one
                self._loaded_at = self._clock() if generation == self._generation else None
        if error is not None:
            self.logger.error(f"Background load failed: {error}", exc_info=error)
        self._idle.set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until no load is running; False on timeout."""
        return self._idle.wait(timeout)

    def peek(self) -> Optional[T]:
        with self._lock:
            return self._value

    def clear(self) -> None:
        """Mark the value due for reload; it is still served until the reload finishes."""
        with self._lock:
            self._loaded_at = None
            self._generation += 1


class PrayerEventScheduler:
    def __init__(
        self,
        schedule_provider: Callable[[], Schedule],
        settings_provider: Callable[[], NotificationSettings],
        sink: NotificationSink,
        clock: Callable[[], datetime] = datetime.now,
        monotonic: Callable[[], float] = time.monotonic,
        cache_ttl: float = 60.0,
        executor: Optional[Executor] = None,
    ):
        self.logger = logging.getLogger(self.__class__.__name__)
        self.sink = sink
        self._clock = clock
        self._settings = TTLValue(settings_provider, cache_ttl, monotonic)
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix="schedule-loader")
        self._schedule = BackgroundValue(
            self._load_schedule_safely(schedule_provider), cache_ttl, self._executor, monotonic
        )

        self.state = SchedulerState.IDLE
        self._fired: Set[Tuple[date, str, str]] = set()
        self._last_tick: Optional[datetime] = None
        self._wake_held = False

        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def _load_schedule_safely(self, schedule_provider: Callable[[], Schedule]) -> Callable[[], Optional[Schedule]]:
        def load() -> Optional[Schedule]:
            try:
                return schedule_provider()
            except PrayerTimesError as e:
                previous = self._schedule.peek()
                self.logger.error(f"Could not load today's prayer times: {e}")
                # keep the last known schedule while it is still for today
                if previous is not None and previous[0].date == self._clock().date():
                    return previous
                return None
        return load

    def refresh(self) -> None:
        """Drop memoised settings and reload the schedule; ticks keep the old one until it arrives."""
        self._settings.clear()
        self._schedule.clear()

    # Loop control

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self.run, name="PrayerEventScheduler", daemon=True)
        self._thread.start()
        self.logger.info("Prayer event scheduler started")

    def stop(self, timeout: float = 5.0) -> None:
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=timeout)
            self._thread = None
        self.logger.info("Prayer event scheduler stopped")

    def close(self) -> None:
        """Stop the loop and the schedule loader thread."""
        self.stop()
        if self._owns_executor:
            self._executor.shutdown(wait=False, cancel_futures=True)

    def run(self) -> None:
        try:
            while not self._stop_event.is_set():
                try:
                    delay = self.tick()
                except Exception as e:
                    self.logger.error(f"Error in scheduler loop: {e}", exc_info=True)
                    delay = self._coarse_interval()
                self._stop_event.wait(delay)
        finally:
            self.sink.stop_all()
            self._release_wake()
            self.state = SchedulerState.IDLE

    def _coarse_interval(self) -> float:
        settings = self._settings.peek()
        return settings.coarse_interval if settings else NotificationSettings().coarse_interval

    # One iteration

    def tick(self, now: Optional[datetime] = None) -> float:
        """Run one polling step at `now` and return how long to sleep."""
        now = now or self._clock()
        settings = self._settings.get()
        window = self._elapsed_window(now, settings.countdown_offset)
        self._last_tick = now

        if not (settings.enabled and settings.sound_enabled):
            self._go_idle()
            return settings.coarse_interval

        schedule = self._schedule.get()
        if schedule is None:
            self._go_idle()
            if self._schedule.loading:
                return min(1.0, settings.coarse_interval)
            return settings.coarse_interval

        events = tracked_events(schedule)
        if not self._is_approaching(events, now, settings.lookahead_minutes):
            if self.state == SchedulerState.FINE_POLLING:
                self.logger.debug("Leaving fine polling")
            self.state = SchedulerState.COARSE_POLLING
            self._release_wake()
            return settings.coarse_interval

        if self.state != SchedulerState.FINE_POLLING:
            self.logger.info(f"Prayer event within {settings.lookahead_minutes} minute(s), polling every second")
            self.state = SchedulerState.FINE_POLLING
            self._acquire_wake()

        for event in events:
            self._check_event(event, now, window, settings)

        return 1.0 - now.microsecond / 1_000_000 + FINE_SLEEP_MARGIN

    def _go_idle(self) -> None:
        self.state = SchedulerState.IDLE
        self._release_wake()

    def _elapsed_window(self, now: datetime, max_window: int) -> int:
        """Whole seconds covered by this tick; 1 when ticks arrive every second.

        A late tick (e.g. after a stalled sleep) covers the skipped seconds so a
        trigger is not lost, up to the countdown lead.
        """
        if self._last_tick is None or self.state != SchedulerState.FINE_POLLING:
            return 1
        elapsed = int((now.replace(microsecond=0) - self._last_tick.replace(microsecond=0)).total_seconds())
        return max(1, min(elapsed, max_window))

    @staticmethod
    def _is_approaching(events: List[TrackedEvent], now: datetime, lookahead_minutes: int) -> bool:
        current = now.hour * 60 + now.minute
        for event in events:
            target = seconds_of_day(event.time)
            if target is None:
                continue
            minutes_ahead = (target // 60 - current) % (24 * 60)
            if minutes_ahead <= lookahead_minutes:
                return True
        return False

    def _check_event(self, event: TrackedEvent, now: datetime, window: int, settings: NotificationSettings) -> None:
        target = seconds_of_day(event.time)
        if target is None:
            self.logger.warning(f"Skipping {event.name}: invalid time {event.time!r}")
            return
        current = now.hour * 3600 + now.minute * 60 + now.second
        diff = target - current
        # the same wall-clock time today, tomorrow or (just past midnight) yesterday
        for candidate in (diff, diff + SECONDS_PER_DAY, diff - SECONDS_PER_DAY):
            occurrence = (now + timedelta(seconds=candidate)).date()
            if self._crossed(candidate, settings.countdown_offset, window):
                self._fire_once(occurrence, event, "countdown", lambda: self._countdown(event, settings))
            if self._crossed(candidate, 0, window):
                self._fire_once(occurrence, event, "primary", lambda: self._primary(event, settings))

    @staticmethod
    def _crossed(remaining: int, trigger: int, window: int) -> bool:
        return remaining <= trigger < remaining + window

    def _fire_once(self, occurrence: date, event: TrackedEvent, action: str, fire: Callable[[], Any]) -> None:
        key = (occurrence, event.name, action)
        if key in self._fired:
            return
        self._fired.add(key)
        self._forget_old(occurrence)
        fire()

    def _forget_old(self, today: date) -> None:
        cutoff = today - timedelta(days=1)
        self._fired = {k for k in self._fired if k[0] >= cutoff}

    # Actions

    def _muted(self, settings: NotificationSettings) -> bool:
        return settings.muted or self.sink.is_muted()

    def _countdown(self, event: TrackedEvent, settings: NotificationSettings) -> None:
        self.logger.info(f"{settings.countdown_offset}s countdown for {event.name} ({event.time})")
        self.sink.show_notification(
            f"{event.name} in {settings.countdown_offset} seconds",
            f"{event.name} at {event.time}",
            cancel_action=self.sink.stop_all,
        )
        if self._muted(settings):
            self.sink.vibrate(VIBRATION_PATTERN)
            return
        if self.sink.is_playing():
            self.logger.debug("Countdown clip already playing")
            return
        self.sink.play_clip(COUNTDOWN_CLIP)

    def _clip_for(self, event: TrackedEvent, settings: NotificationSettings) -> Optional[str]:
        if event.kind == EventKind.SUNRISE:
            return None
        if event.kind == EventKind.AZAN and not settings.azan_sound_enabled:
            return None
        if event.kind == EventKind.IQAMAH and not settings.iqamah_sound_enabled:
            return None
        if settings.sound_type == SoundType.COUNTDOWN_TICKING:
            # the ticking countdown already ends on the event
            return None
        if settings.sound_type == SoundType.CUSTOM and settings.custom_sound:
            return settings.custom_sound
        return BEEP_CLIP

    def _primary(self, event: TrackedEvent, settings: NotificationSettings) -> None:
        self.logger.info(f"{event.name} time ({event.time})")
        self.sink.show_notification(f"{event.name} time", f"It is {event.time}")
        clip = self._clip_for(event, settings)
        if clip is not None:
            if self._muted(settings):
                self.sink.vibrate(VIBRATION_PATTERN)
            elif not self.sink.play_clip(clip) and clip != BEEP_CLIP:
                self.logger.warning(f"Custom sound {clip!r} failed, using beep")
                self.sink.play_clip(BEEP_CLIP)
        self._release_wake()

    def _acquire_wake(self) -> None:
        if not self._wake_held:
            self.sink.acquire_wake()
            self._wake_held = True

    def _release_wake(self) -> None:
        if self._wake_held:
            self.sink.release_wake()
            self._wake_held = False

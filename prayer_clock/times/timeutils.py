"""
Pure time arithmetic on "HH:MM" strings: minute offsets, seconds-until with
midnight rollover, and iqamah derivation.
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Dict, Optional

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400
THURSDAY = 3

PRAYERS = ("fajr", "dhuhr", "asr", "maghrib", "isha")


def parse_hhmm(time_str: str) -> Optional[tuple]:
    """Return (hour, minute) or None if the string is not a valid HH:MM time."""
    try:
        hour_str, minute_str = time_str.strip().split(":")[:2]
        hour, minute = int(hour_str), int(minute_str)
    except (AttributeError, ValueError):
        return None
    if not (0 <= hour < 24 and 0 <= minute < 60):
        return None
    return hour, minute


def add_minutes(time_str: str, minutes: int) -> str:
    """Add minutes to an HH:MM time, wrapping around midnight.

    Invalid input is returned unchanged.
    """
    parsed = parse_hhmm(time_str)
    if parsed is None:
        logger.warning(f"Cannot add {minutes} minutes to invalid time {time_str!r}")
        return time_str
    hour, minute = parsed
    total = (hour * 60 + minute + minutes) % (24 * 60)
    return f"{total // 60:02d}:{total % 60:02d}"


def seconds_of_day(time_str: str) -> Optional[int]:
    parsed = parse_hhmm(time_str)
    if parsed is None:
        return None
    hour, minute = parsed
    return hour * 3600 + minute * 60


def seconds_until(time_str: str, now: datetime) -> Optional[int]:
    """Seconds from now until the next occurrence of time_str.

    Negative differences roll over to the next day, so 23:59:58 -> 00:00:03
    is 5 seconds.
    """
    target = seconds_of_day(time_str)
    if target is None:
        return None
    current = now.hour * 3600 + now.minute * 60 + now.second
    diff = target - current
    if diff < 0:
        diff += SECONDS_PER_DAY
    return diff


@dataclass(frozen=True)
class IqamahTimes:
    fajr: str
    dhuhr: str
    asr: str
    maghrib: str
    isha: str

    def as_dict(self) -> Dict[str, str]:
        return {p: getattr(self, p) for p in PRAYERS}


def derive_iqamah_times(
    azan_times: Dict[str, str],
    gaps: Dict[str, int],
    on_date: date,
    bayan_enabled: bool = False,
    bayan_minutes: int = 0,
) -> IqamahTimes:
    """Iqamah = azan + configured gap for each prayer.

    On Thursday (the night before Jumu'ah) with the bayan override enabled,
    Isha iqamah is pushed to Isha azan + bayan minutes instead.
    """
    iqamah = {p: add_minutes(azan_times[p], int(gaps.get(p, 0))) for p in PRAYERS}
    if bayan_enabled and on_date.weekday() == THURSDAY:
        iqamah["isha"] = add_minutes(azan_times["isha"], int(bayan_minutes))
    return IqamahTimes(**iqamah)

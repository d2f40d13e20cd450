"""
Service layer: the persistent (date, provider_key) store for prayer times and
the Hijri month spans used to date them.
"""
import logging
from datetime import date
from typing import Iterable, List, Optional

from sqlalchemy import delete, func, select

from prayer_clock.core.db import session_scope
from prayer_clock.scraping.hijri_scraper import HijriDateInfo
from prayer_clock.times.models import HijriMonthRecord, PrayerTimes, PrayerTimesRecord, make_record_id

logger = logging.getLogger(__name__)


def get_prayer_times(record_date: date, provider_key: str) -> Optional[PrayerTimes]:
    """Return the stored record for this day and provider, if any."""
    with session_scope() as session:
        row = session.get(PrayerTimesRecord, make_record_id(record_date, provider_key))
        return PrayerTimes.from_record(row) if row else None


def save_prayer_times(prayer_times: PrayerTimes) -> None:
    """Insert or overwrite one record (last write wins)."""
    save_prayer_times_batch([prayer_times])


def save_prayer_times_batch(records: Iterable[PrayerTimes]) -> int:
    """Insert or overwrite many records in one transaction. Returns the count written."""
    count = 0
    with session_scope() as session:
        for prayer_times in records:
            if prayer_times.provider_key is None:
                raise ValueError("Manual prayer times are not persisted")
            session.merge(prayer_times.to_record())
            count += 1
    logger.debug(f"Saved {count} prayer time record(s)")
    return count


def delete_prayer_times_before(cutoff: date) -> int:
    """Delete all records dated before cutoff. Returns the number removed."""
    with session_scope() as session:
        result = session.execute(
            delete(PrayerTimesRecord).where(PrayerTimesRecord.date < cutoff)
        )
        removed = result.rowcount or 0
    logger.info(f"Deleted {removed} prayer time record(s) older than {cutoff}")
    return removed


def count_prayer_times(provider_key: str, start: date, end: date) -> int:
    """Count stored days for a provider with start <= date <= end."""
    with session_scope() as session:
        return session.execute(
            select(func.count())
            .select_from(PrayerTimesRecord)
            .where(
                PrayerTimesRecord.provider_key == provider_key,
                PrayerTimesRecord.date >= start,
                PrayerTimesRecord.date <= end,
            )
        ).scalar_one()


def list_prayer_times(provider_key: str, start: date, end: date) -> List[PrayerTimes]:
    """All stored records for a provider with start <= date <= end, oldest first."""
    with session_scope() as session:
        rows = session.execute(
            select(PrayerTimesRecord)
            .where(
                PrayerTimesRecord.provider_key == provider_key,
                PrayerTimesRecord.date >= start,
                PrayerTimesRecord.date <= end,
            )
            .order_by(PrayerTimesRecord.date)
        ).scalars().all()
        return [PrayerTimes.from_record(row) for row in rows]


def save_hijri_month(info: HijriDateInfo) -> None:
    """Store the Gregorian span of info's Hijri month (replacing any row with the same start)."""
    if info.month_start_date is None or info.month_end_date is None:
        raise ValueError("Hijri date has no month span")
    with session_scope() as session:
        session.merge(HijriMonthRecord(
            start_date=info.month_start_date,
            end_date=info.month_end_date,
            hijri_month=info.hijri_month,
            hijri_year=info.hijri_year,
        ))
    logger.debug(f"Saved Hijri month {info.hijri_month} {info.hijri_year} "
                 f"({info.month_start_date} to {info.month_end_date})")


def get_hijri_date(target: date) -> Optional[HijriDateInfo]:
    """Hijri date for target from a stored month span covering it, without network I/O."""
    with session_scope() as session:
        row = session.execute(
            select(HijriMonthRecord)
            .where(HijriMonthRecord.start_date <= target, HijriMonthRecord.end_date >= target)
            .order_by(HijriMonthRecord.start_date.desc())
        ).scalars().first()
        if row is None:
            return None
        return HijriDateInfo(
            hijri_day=(target - row.start_date).days + 1,
            hijri_month=row.hijri_month,
            hijri_year=row.hijri_year,
            gregorian_date=target,
            month_start_date=row.start_date,
            month_end_date=row.end_date,
        )


def delete_hijri_months_before(cutoff: date) -> int:
    """Delete month spans that ended before cutoff. Returns the number removed."""
    with session_scope() as session:
        result = session.execute(
            delete(HijriMonthRecord).where(HijriMonthRecord.end_date < cutoff)
        )
        removed = result.rowcount or 0
    logger.info(f"Deleted {removed} Hijri month(s) ended before {cutoff}")
    return removed

"""
Prayer time records: the SQLAlchemy row for the persistent store and the
immutable PrayerTimes value passed between the resolver, providers and API.
"""
from dataclasses import dataclass, replace
from datetime import date, datetime, timezone
from typing import Dict, Optional

from sqlalchemy import Column, Date, DateTime, Integer, String

from prayer_clock.core.db import Base


def _utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def make_record_id(record_date: date, provider_key: Optional[str]) -> str:
    return f"{record_date.isoformat()}_{provider_key}"


class PrayerTimesRecord(Base):
    """One day's azan schedule from one provider. Iqamah times are never stored."""
    __tablename__ = "prayer_times_records"

    id = Column(String(128), primary_key=True)  # "<date>_<provider_key>"
    date = Column(Date, nullable=False, index=True)
    provider_key = Column(String(64), nullable=False, index=True)
    fajr = Column(String(5), nullable=False)
    sunrise = Column(String(5), nullable=False)
    dhuhr = Column(String(5), nullable=False)
    asr = Column(String(5), nullable=False)
    maghrib = Column(String(5), nullable=False)
    isha = Column(String(5), nullable=False)
    hijri_date = Column(String(64), nullable=True)
    location = Column(String(255), nullable=True)
    updated_at = Column(DateTime(timezone=False), default=_utc_now, onupdate=_utc_now, nullable=False)


@dataclass(frozen=True)
class PrayerTimes:
    date: date
    provider_key: Optional[str]
    fajr: str
    sunrise: str
    dhuhr: str
    asr: str
    maghrib: str
    isha: str
    hijri_date: Optional[str] = None
    location: Optional[str] = None

    @property
    def id(self) -> str:
        return make_record_id(self.date, self.provider_key)

    @property
    def azan_times(self) -> Dict[str, str]:
        return {
            "fajr": self.fajr,
            "dhuhr": self.dhuhr,
            "asr": self.asr,
            "maghrib": self.maghrib,
            "isha": self.isha,
        }

    def with_provider_key(self, provider_key: Optional[str]) -> "PrayerTimes":
        return replace(self, provider_key=provider_key)

    def with_date(self, record_date: date) -> "PrayerTimes":
        return replace(self, date=record_date)

    @classmethod
    def from_record(cls, record: PrayerTimesRecord) -> "PrayerTimes":
        return cls(
            date=record.date,
            provider_key=record.provider_key,
            fajr=record.fajr,
            sunrise=record.sunrise,
            dhuhr=record.dhuhr,
            asr=record.asr,
            maghrib=record.maghrib,
            isha=record.isha,
            hijri_date=record.hijri_date,
            location=record.location,
        )

    def to_record(self) -> PrayerTimesRecord:
        return PrayerTimesRecord(
            id=self.id,
            date=self.date,
            provider_key=self.provider_key,
            fajr=self.fajr,
            sunrise=self.sunrise,
            dhuhr=self.dhuhr,
            asr=self.asr,
            maghrib=self.maghrib,
            isha=self.isha,
            hijri_date=self.hijri_date,
            location=self.location,
        )


class HijriMonthRecord(Base):
    """Gregorian span of one published Hijri month. Day numbers are derived from start_date."""
    __tablename__ = "hijri_months"

    start_date = Column(Date, primary_key=True)
    end_date = Column(Date, nullable=False, index=True)
    hijri_month = Column(String(64), nullable=False)
    hijri_year = Column(Integer, nullable=False)
    updated_at = Column(DateTime(timezone=False), default=_utc_now, onupdate=_utc_now, nullable=False)

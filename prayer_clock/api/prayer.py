"""
Prayer times API. Mounted at /api/prayer-times/.
PrayerTimes dataclasses are serialized with Pydantic from_attributes.
"""
import datetime
from dataclasses import asdict
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Path
from pydantic import BaseModel, ConfigDict

from prayer_clock.core.settings import ProviderType
from prayer_clock.errors import NetworkError, NotFound, PrayerTimesError
from prayer_clock.scraping.acju_scraper import get_available_zones, get_zone_description
from prayer_clock.times.models import PrayerTimes


class PrayerTimesResponse(BaseModel):
    """Pydantic view of a resolved PrayerTimes record"""

    model_config = ConfigDict(from_attributes=True)

    date: datetime.date
    provider_key: Optional[str] = None
    fajr: str
    sunrise: str
    dhuhr: str
    asr: str
    maghrib: str
    isha: str
    hijri_date: Optional[str] = None
    location: Optional[str] = None


class IqamahResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    fajr: str
    dhuhr: str
    asr: str
    maghrib: str
    isha: str


class DayScheduleResponse(BaseModel):
    prayer_times: PrayerTimesResponse
    iqamah: IqamahResponse


class HijriDateResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    hijri_day: int
    hijri_month: str
    hijri_year: int
    gregorian_date: datetime.date
    display: str


def _http_error(e: PrayerTimesError) -> HTTPException:
    if isinstance(e, NetworkError):
        return HTTPException(status_code=503, detail=str(e))
    if isinstance(e, NotFound):
        return HTTPException(status_code=404, detail=str(e))
    return HTTPException(status_code=502, detail=str(e))


def _zone_for_direct_scrape(prayer_app) -> int:
    settings = prayer_app.prayer_settings()
    if not prayer_app.direct_service.is_zone_supported(settings.zone):
        raise HTTPException(status_code=404, detail=f"Zone {settings.zone} is not supported by direct scraping")
    return settings.zone


def get_router(prayer_app) -> APIRouter:
    """Return router for prayer times; mounted with prefix /api/prayer-times."""
    router = APIRouter(tags=["Prayer Times"])
    repository = prayer_app.repository

    def _day(record: PrayerTimes) -> DayScheduleResponse:
        return DayScheduleResponse(
            prayer_times=PrayerTimesResponse.model_validate(record),
            iqamah=IqamahResponse.model_validate(repository.iqamah_times(record)),
        )

    @router.get("/today", response_model=DayScheduleResponse)
    def get_today() -> DayScheduleResponse:
        """Today's azan times from the active provider plus iqamah times."""
        try:
            return _day(repository.resolve_today())
        except PrayerTimesError as e:
            raise _http_error(e) from e

    @router.get("/tomorrow", response_model=DayScheduleResponse)
    def get_tomorrow() -> DayScheduleResponse:
        try:
            return _day(repository.resolve_tomorrow())
        except PrayerTimesError as e:
            raise _http_error(e) from e

    @router.get("/month/{year}/{month}", response_model=List[PrayerTimesResponse])
    def get_month(
        year: int = Path(..., ge=2000, le=2100),
        month: int = Path(..., ge=1, le=12),
    ) -> List[PrayerTimesResponse]:
        """All days of a month for the configured zone, from the direct-scrape documents."""
        zone = _zone_for_direct_scrape(prayer_app)
        apply_apartment = prayer_app.prayer_settings().apartment_adjustments
        records = prayer_app.direct_service.get_month(zone, year, month, apply_apartment)
        if records is None:
            raise HTTPException(status_code=404, detail=f"No document for zone {zone}, {year}-{month:02d}")
        return [PrayerTimesResponse.model_validate(r) for r in records]

    @router.get("/hijri", response_model=HijriDateResponse)
    def get_hijri() -> HijriDateResponse:
        info = prayer_app.direct_service.get_current_hijri_date()
        if info is None:
            raise HTTPException(status_code=404, detail="Hijri date not available")
        return HijriDateResponse.model_validate(info)

    @router.get("/cache-status")
    def get_cache_status() -> Dict[str, Any]:
        zone = _zone_for_direct_scrape(prayer_app)
        status = prayer_app.direct_service.check_cache_status(zone)
        return {"zone": zone, "description": get_zone_description(zone), **asdict(status)}

    @router.post("/prefetch")
    def prefetch() -> Dict[str, Any]:
        """Scrape the remaining months of the year now (blocks until done)."""
        settings = prayer_app.prayer_settings()
        if settings.provider != ProviderType.DIRECT_SCRAPE:
            raise HTTPException(status_code=409, detail="Prefetch requires the DIRECT_SCRAPE provider")
        zone = _zone_for_direct_scrape(prayer_app)
        return {"zone": zone, **asdict(prayer_app.direct_service.prefetch_remaining_year(zone))}

    @router.post("/invalidate")
    def invalidate() -> Dict[str, str]:
        repository.invalidate()
        prayer_app.scheduler.refresh()
        return {"status": "invalidated"}

    @router.get("/zones")
    def list_zones() -> Dict[int, str]:
        return get_available_zones()

    return router

"""
Typed views over the raw config dict. Built fresh from Config.data on demand so
callers always see the current (hot-reloaded) values.
"""
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class ProviderType(str, Enum):
    MANUAL = "MANUAL"
    DIRECT_SCRAPE = "DIRECT_SCRAPE"
    BACKEND_API = "BACKEND_API"
    REGIONAL_API = "REGIONAL_API"


class SoundType(str, Enum):
    COUNTDOWN_TICKING = "COUNTDOWN_TICKING"
    TRADITIONAL_BEEP = "TRADITIONAL_BEEP"
    CUSTOM = "CUSTOM"


class ManualTimes(BaseModel):
    fajr: str = "05:30"
    sunrise: str = "06:00"
    dhuhr: str = "12:15"
    asr: str = "15:30"
    maghrib: str = "18:30"
    isha: str = "19:45"


class IqamahGaps(BaseModel):
    fajr: int = 20
    dhuhr: int = 10
    asr: int = 10
    maghrib: int = 5
    isha: int = 10


class JummaNightBayan(BaseModel):
    enabled: bool = False
    minutes: int = 30


class BackendApiSettings(BaseModel):
    base_url: str = "http://127.0.0.1:8000/"
    api_key: Optional[str] = None
    timeout: float = 30


class RegionalApiSettings(BaseModel):
    base_url: str = "https://api.aladhan.com/"
    method: int = 2
    school: int = 0
    timeout: float = 30


APARTMENT_KEY_SUFFIX = "apartment"


def backend_api_key(zone: int, apartment: bool = False) -> str:
    """Provider key for backend records; apartment-adjusted times get their own key."""
    key = f"{ProviderType.BACKEND_API.value}:{zone}"
    return f"{key}:{APARTMENT_KEY_SUFFIX}" if apartment else key


class PrayerSettings(BaseModel):
    provider: ProviderType = ProviderType.BACKEND_API
    zone: int = 1
    region: str = "Colombo"
    apartment_adjustments: bool = False
    manual_times: ManualTimes = Field(default_factory=ManualTimes)
    iqamah_gaps: IqamahGaps = Field(default_factory=IqamahGaps)
    jumma_night_bayan: JummaNightBayan = Field(default_factory=JummaNightBayan)
    backend_api: BackendApiSettings = Field(default_factory=BackendApiSettings)
    regional_api: RegionalApiSettings = Field(default_factory=RegionalApiSettings)
    retention_days: int = 30

    @property
    def provider_key(self) -> Optional[str]:
        """Key identifying the active provider and its zone/region; None for manual."""
        if self.provider == ProviderType.MANUAL:
            return None
        if self.provider == ProviderType.REGIONAL_API:
            return f"{self.provider.value}:{self.region}"
        if self.provider == ProviderType.BACKEND_API:
            return backend_api_key(self.zone, self.apartment_adjustments)
        return f"{self.provider.value}:{self.zone}"


class NotificationSettings(BaseModel):
    enabled: bool = True
    sound_enabled: bool = True
    azan_sound_enabled: bool = True
    iqamah_sound_enabled: bool = True
    sound_type: SoundType = SoundType.COUNTDOWN_TICKING
    custom_sound: Optional[str] = None
    muted: bool = False
    volume: float = 0.7
    coarse_interval: float = 10.0
    countdown_offset: int = 5
    lookahead_minutes: int = 1
    cache_ttl: float = 60.0


def load_prayer_settings(config_data: Dict[str, Any]) -> PrayerSettings:
    return PrayerSettings.model_validate(config_data.get("prayer_times") or {})


def load_notification_settings(config_data: Dict[str, Any]) -> NotificationSettings:
    return NotificationSettings.model_validate(config_data.get("notifications") or {})

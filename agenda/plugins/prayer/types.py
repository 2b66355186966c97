"""
Prayer time value types: calculation methods, cache keys, daily time sets, user location.
"""
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Tuple

from agenda.core.errors import DecodeError

# Latitude/longitude precision of cache keys: 4 decimal places is about 11 m
LOCATION_PRECISION = 4

CANONICAL_PRAYERS: Tuple[str, ...] = ("Fajr", "Dhuhr", "Asr", "Maghrib", "Isha")

# Order the Aladhan API lists its timings in
TIMING_NAMES: Tuple[str, ...] = (
    "Imsak", "Fajr", "Sunrise", "Dhuhr", "Asr", "Sunset",
    "Maghrib", "Isha", "Midnight", "Firstthird", "Lastthird",
)

_HH_MM = re.compile(r"^\s*(\d{1,2}):(\d{2})")


class CalculationMethod(Enum):
    """Astronomical convention used by the remote API to compute prayer times."""

    KARACHI = "KARACHI"  # University of Islamic Sciences, Karachi
    ISNA = "ISNA"  # Islamic Society of North America
    MWL = "MWL"  # Muslim World League
    EGYPT = "EGYPT"  # Egyptian General Authority of Survey
    MAKKAH = "MAKKAH"  # Umm Al-Qura University, Makkah
    TEHRAN = "TEHRAN"  # Institute of Geophysics, University of Tehran
    JAFARI = "JAFARI"  # Shia Ithna-Ashari, Leva Institute, Qum

    @property
    def api_id(self) -> int:
        return _METHOD_IDS[self]

    @property
    def display_name(self) -> str:
        return _METHOD_DISPLAY_NAMES[self]

    @classmethod
    def parse(cls, value: "str | CalculationMethod") -> "CalculationMethod":
        """Case-insensitive lookup by name; raises ValueError for unknown methods."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            names = ", ".join(m.value for m in cls)
            raise ValueError(f"Unknown calculation method {value!r}; expected one of {names}") from None


_METHOD_IDS: Dict[CalculationMethod, int] = {
    CalculationMethod.JAFARI: 0,
    CalculationMethod.KARACHI: 1,
    CalculationMethod.ISNA: 2,
    CalculationMethod.MWL: 3,
    CalculationMethod.MAKKAH: 4,
    CalculationMethod.EGYPT: 5,
    CalculationMethod.TEHRAN: 7,
}

_METHOD_DISPLAY_NAMES: Dict[CalculationMethod, str] = {
    CalculationMethod.KARACHI: "Karachi",
    CalculationMethod.ISNA: "ISNA",
    CalculationMethod.MWL: "Muslim World League",
    CalculationMethod.EGYPT: "Egypt",
    CalculationMethod.MAKKAH: "Makkah",
    CalculationMethod.TEHRAN: "Tehran",
    CalculationMethod.JAFARI: "Jafari",
}

DEFAULT_METHOD = CalculationMethod.KARACHI


def round_coordinate(value: float) -> float:
    return round(float(value), LOCATION_PRECISION)


@dataclass(frozen=True)
class PrayerCacheKey:
    """Identifies one cacheable computation. Build with PrayerCacheKey.create to get rounded coordinates."""

    day: date
    latitude: float
    longitude: float
    method: CalculationMethod

    @classmethod
    def create(cls, day: date, latitude: float, longitude: float, method: "str | CalculationMethod") -> "PrayerCacheKey":
        return cls(
            day=day,
            latitude=round_coordinate(latitude),
            longitude=round_coordinate(longitude),
            method=CalculationMethod.parse(method),
        )


def normalize_time_string(name: str, value: object) -> str:
    """'05:15 (BST)' -> '05:15'. Raises DecodeError for anything that is not HH:MM."""
    match = _HH_MM.match(str(value)) if value is not None else None
    if not match:
        raise DecodeError("aladhan", f"Invalid time for {name}: {value!r}")
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        raise DecodeError("aladhan", f"Invalid time for {name}: {value!r}")
    return f"{hour:02d}:{minute:02d}"


def normalize_timings(raw: Mapping[str, object]) -> Dict[str, str]:
    """Keep known timing names in API order, normalised to HH:MM. The five prayers are required."""
    missing = [name for name in CANONICAL_PRAYERS if name not in raw]
    if missing:
        raise DecodeError("aladhan", f"Timings missing {', '.join(missing)}")
    return {name: normalize_time_string(name, raw[name]) for name in TIMING_NAMES if name in raw}


@dataclass(frozen=True)
class PrayerTimeSet:
    """Prayer times of one day at one location and method. Values are "HH:MM" in local civil time."""

    day: date
    latitude: float
    longitude: float
    method: CalculationMethod
    timings: Mapping[str, str] = field(hash=False)

    def __post_init__(self):
        # Shared by every caller of a cached day, so never mutable
        object.__setattr__(self, "timings", MappingProxyType(dict(self.timings)))

    @classmethod
    def from_key(cls, key: PrayerCacheKey, timings: Mapping[str, object]) -> "PrayerTimeSet":
        return cls(
            day=key.day,
            latitude=key.latitude,
            longitude=key.longitude,
            method=key.method,
            timings=normalize_timings(timings),
        )

    @property
    def key(self) -> PrayerCacheKey:
        return PrayerCacheKey(self.day, self.latitude, self.longitude, self.method)

    def time_of(self, name: str) -> Optional[str]:
        return self.timings.get(name)

    @property
    def fajr(self) -> str:
        return self.timings["Fajr"]

    @property
    def dhuhr(self) -> str:
        return self.timings["Dhuhr"]

    @property
    def asr(self) -> str:
        return self.timings["Asr"]

    @property
    def maghrib(self) -> str:
        return self.timings["Maghrib"]

    @property
    def isha(self) -> str:
        return self.timings["Isha"]


@dataclass(frozen=True)
class UserLocation:
    latitude: float
    longitude: float
    city: Optional[str] = None
    country: Optional[str] = None
    calculation_method: CalculationMethod = DEFAULT_METHOD
    updated_at: Optional[datetime] = None

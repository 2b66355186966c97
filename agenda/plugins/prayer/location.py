"""
The single active user location and its reverse geocoding.
"""
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple, Union

import requests
from sqlalchemy import delete, select

from agenda.core.db import Database
from agenda.core.errors import DecodeError, ProviderError
from agenda.plugins.prayer.models import UserLocationRecord
from agenda.plugins.prayer.types import DEFAULT_METHOD, CalculationMethod, UserLocation


class Geocoder(ABC):
    """Resolves coordinates to (city, country)."""

    @abstractmethod
    def reverse(self, latitude: float, longitude: float) -> Tuple[Optional[str], Optional[str]]:
        pass


class NominatimGeocoder(Geocoder):
    """Reverse geocoding through OpenStreetMap Nominatim."""

    URL = "https://nominatim.openstreetmap.org/reverse"

    def __init__(self, config: Dict[str, Any], session: Optional[requests.Session] = None):
        self.config = config
        self.session = session or requests.Session()
        self.logger = logging.getLogger(self.__class__.__name__)

    def reverse(self, latitude: float, longitude: float) -> Tuple[Optional[str], Optional[str]]:
        headers = {"User-Agent": self.config.get("user_agent", "personal-agenda/0.1")}
        params = {"lat": latitude, "lon": longitude, "format": "jsonv2", "zoom": 10}
        try:
            response = self.session.get(
                self.config.get("url", self.URL), params=params, headers=headers,
                timeout=self.config.get("timeout", 15),
            )
        except requests.exceptions.RequestException as e:
            raise ProviderError("nominatim", f"Network error: {e}") from e
        if response.status_code != 200:
            raise ProviderError("nominatim", response.reason or "HTTP error", status=response.status_code)
        try:
            address = response.json().get("address") or {}
        except (ValueError, AttributeError) as e:
            raise DecodeError("nominatim", f"Unexpected response: {e}") from e
        city = address.get("city") or address.get("town") or address.get("village") or address.get("county")
        return city, address.get("country")


class LocationService:
    def __init__(self, database: Database, geocoder: Optional[Geocoder] = None):
        self.database = database
        self.geocoder = geocoder
        self.logger = logging.getLogger(self.__class__.__name__)

    def get_location(self) -> Optional[UserLocation]:
        with self.database.session_scope() as session:
            row = session.execute(
                select(UserLocationRecord).order_by(UserLocationRecord.updated_at.desc()).limit(1)
            ).scalars().first()
            return _row_to_location(row) if row else None

    def set_location(
        self,
        latitude: float,
        longitude: float,
        method: Union[str, CalculationMethod] = DEFAULT_METHOD,
        city: Optional[str] = None,
        country: Optional[str] = None,
    ) -> UserLocation:
        """Replace the active location. Missing city/country are reverse geocoded when a geocoder is set."""
        latitude, longitude = float(latitude), float(longitude)
        if not (-90 <= latitude <= 90) or not (-180 <= longitude <= 180):
            raise ValueError("Latitude must be between -90 and 90, longitude between -180 and 180")
        method = CalculationMethod.parse(method)

        if self.geocoder is not None and (city is None or country is None):
            try:
                found_city, found_country = self.geocoder.reverse(latitude, longitude)
                city = city or found_city
                country = country or found_country
            except ProviderError as e:
                self.logger.warning(f"Reverse geocoding failed for {latitude},{longitude}: {e}")

        updated_at = datetime.now(timezone.utc).replace(tzinfo=None)
        with self.database.session_scope() as session:
            session.execute(delete(UserLocationRecord))
            session.add(
                UserLocationRecord(
                    latitude=latitude,
                    longitude=longitude,
                    city=city,
                    country=country,
                    calculation_method=method.value,
                    updated_at=updated_at,
                )
            )
        self.logger.info(f"Location set to {latitude},{longitude} ({city or '?'}, {country or '?'}) using {method.value}")
        return UserLocation(latitude, longitude, city, country, method, updated_at)


def _row_to_location(r: UserLocationRecord) -> UserLocation:
    return UserLocation(
        latitude=r.latitude,
        longitude=r.longitude,
        city=r.city,
        country=r.country,
        calculation_method=CalculationMethod.parse(r.calculation_method),
        updated_at=r.updated_at,
    )

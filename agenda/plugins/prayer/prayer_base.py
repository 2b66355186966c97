import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import requests

from agenda.core.errors import DecodeError, ProviderError
from agenda.plugins.prayer.types import CalculationMethod


class PrayerBackend(ABC):
    """Base class for remote prayer time computation backends"""

    def __init__(self, config: Dict[str, Any], session: Optional[requests.Session] = None):
        self.config = config
        self.logger = logging.getLogger(self.__class__.__name__)
        self.session = session or requests.Session()

    @abstractmethod
    async def fetch_timings(
        self, timestamp: int, latitude: float, longitude: float, method: CalculationMethod
    ) -> Dict[str, str]:
        """Compute the timings of the day containing timestamp.
        Args:
            timestamp: Unix timestamp of the day's local midnight
        Returns:
            Raw {name: time string} mapping as returned by the provider
        Raises:
            ProviderError on failure, DecodeError on malformed responses
        """
        pass


class AladhanBackend(PrayerBackend):
    """Prayer times backend using api.aladhan.com"""

    DEFAULT_BASE_URL = "https://api.aladhan.com/v1"
    DEFAULT_TIMEOUT = 20

    async def fetch_timings(
        self, timestamp: int, latitude: float, longitude: float, method: CalculationMethod
    ) -> Dict[str, str]:
        return await asyncio.to_thread(self._get_api_timings, timestamp, latitude, longitude, method)

    def _get_api_timings(
        self, timestamp: int, latitude: float, longitude: float, method: CalculationMethod
    ) -> Dict[str, str]:
        base_url = (self.config.get("base_url") or self.DEFAULT_BASE_URL).rstrip("/")
        url = f"{base_url}/timings/{int(timestamp)}"
        params = {
            "latitude": latitude,
            "longitude": longitude,
            "method": method.api_id,
        }
        timeout = self.config.get("timeout", self.DEFAULT_TIMEOUT)

        self.logger.info(f"Making API request to {url} with params {params}")
        try:
            response = self.session.get(url, params=params, timeout=timeout)
        except requests.exceptions.Timeout as e:
            raise ProviderError("aladhan", f"Request timed out after {timeout}s") from e
        except requests.exceptions.RequestException as e:
            raise ProviderError("aladhan", f"Network error: {e}") from e

        if response.status_code != 200:
            raise ProviderError("aladhan", response.text[:200] or response.reason or "HTTP error",
                                status=response.status_code)

        try:
            data = response.json()
        except ValueError as e:
            raise DecodeError("aladhan", f"Response is not JSON: {e}", status=response.status_code) from e

        if not isinstance(data, dict):
            raise DecodeError("aladhan", "Response envelope is not an object")
        if data.get("code") != 200 or data.get("status") != "OK":
            raise ProviderError("aladhan", str(data.get("data") or data.get("status")), status=data.get("code"))

        payload = data.get("data")
        timings = payload.get("timings") if isinstance(payload, dict) else None
        if not isinstance(timings, dict):
            raise DecodeError("aladhan", "Response missing data.timings")

        self.logger.debug(f"Timings for {timestamp} at {latitude},{longitude}: {timings}")
        return timings


_BACKENDS = {
    "aladhan": AladhanBackend,
}


def get_backend(backend_type: str, config: Dict[str, Any], session: Optional[requests.Session] = None) -> Optional[PrayerBackend]:
    """Factory: return backend instance for given type."""
    cls = _BACKENDS.get((backend_type or "").lower())
    if not cls:
        return None
    return cls(config, session=session)

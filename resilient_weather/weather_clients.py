"""
OpenWeatherMap client.

API logic lives here, not in the FastAPI endpoints, so the fallback policy
can be tested against a fake client and the HTTP details against
httpx.MockTransport.

Every call runs through a ResilienceGuard (rate limit, circuit breaker,
retry, timeout). Failures come out as one of three WeatherError subclasses:
- UpstreamClientError: 4xx, our request is wrong; never retried
- UpstreamServerError: 5xx or an unusable payload; retried, fallback-eligible
- UpstreamUnavailable: timeout, network error, open circuit, rate limited
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import logging

import httpx

from .resilience import CallNotPermitted, CircuitState, ResilienceGuard

logger = logging.getLogger(__name__)

RESILIENCE_NAME = "openweather-api"

# Basic country code to name mapping for common countries
COUNTRY_NAMES: Dict[str, str] = {
    "US": "United States",
    "GB": "United Kingdom",
    "CA": "Canada",
    "AU": "Australia",
    "DE": "Germany",
    "FR": "France",
    "IT": "Italy",
    "ES": "Spain",
    "JP": "Japan",
    "CN": "China",
    "IN": "India",
    "BR": "Brazil",
    "RU": "Russia",
    "MX": "Mexico",
}


def country_name(country_code: str) -> str:
    return COUNTRY_NAMES.get(country_code, country_code)


@dataclass(frozen=True)
class CityEntry:
    """
    A selectable city. Two entries are the same city when
    name, country and country code match.
    """
    name: str
    country: str
    country_code: str
    state: str = field(default="", compare=False)
    latitude: float = field(default=0.0, compare=False)
    longitude: float = field(default=0.0, compare=False)

    @property
    def display_name(self) -> str:
        parts = [self.name]
        if self.state:
            parts.append(self.state)
        if self.country:
            parts.append(self.country)
        return ", ".join(parts)


class WeatherError(RuntimeError):
    """Base class for upstream weather lookup failures."""
    status_code: Optional[int] = None


class UpstreamClientError(WeatherError):
    """Upstream rejected the request (4xx)."""

    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.status_code = status_code


class UpstreamServerError(WeatherError):
    """Upstream failed to produce a usable answer (5xx, empty payload)."""

    def __init__(self, message: str, status_code: int = 500):
        super().__init__(message)
        self.status_code = status_code


class UpstreamUnavailable(WeatherError):
    """Upstream could not be reached, timed out, or the guard refused the call."""
    pass


class OpenWeatherClient:
    """
    OpenWeatherMap wrapper.

    Endpoints used:
    - 5-day forecast (3-hour increments):
        /data/2.5/forecast?q=...&units=metric&cnt=...&appid=KEY
    - Direct geocoding (city autocomplete):
        /geo/1.0/direct?q=...&limit=10&appid=KEY
    - Current weather (health probe only):
        /data/2.5/weather?q=London&appid=KEY
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.openweathermap.org",
        timeout_s: float = 10.0,
        connect_timeout_s: float = 5.0,
        forecast_days: int = 3,
        guard: Optional[ResilienceGuard] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.base = base_url.rstrip("/")
        self.timeout = httpx.Timeout(timeout_s, connect=connect_timeout_s)
        self.connect_timeout_s = connect_timeout_s
        self.forecast_days = forecast_days
        self.guard = guard or ResilienceGuard(
            RESILIENCE_NAME,
            transient_errors=(UpstreamUnavailable, UpstreamServerError),
            call_timeout=timeout_s,
        )
        # Tests inject httpx.MockTransport here.
        self.transport = transport

    def _client(self, timeout: Optional[httpx.Timeout] = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout or self.timeout, transport=self.transport)

    async def _get_json(self, path: str, params: Dict[str, Any], what: str) -> Any:
        """One GET, with HTTP/transport failures translated into the error taxonomy."""
        try:
            async with self._client() as client:
                r = await client.get(f"{self.base}{path}", params={**params, "appid": self.api_key})
        except httpx.TimeoutException as e:
            raise UpstreamUnavailable(f"{what} timed out: {e}") from e
        except httpx.TransportError as e:
            raise UpstreamUnavailable(f"{what} failed to connect: {e}") from e
        except httpx.DecodingError as e:
            raise UpstreamServerError(f"{what} returned an undecodable body: {e}") from e

        if 400 <= r.status_code < 500:
            logger.error("Client error while calling weather API (%s): %s", what, r.status_code)
            raise UpstreamClientError(f"Invalid request to weather API ({r.status_code}): {r.text}", r.status_code)
        if r.status_code >= 500:
            logger.error("Server error while calling weather API (%s): %s", what, r.status_code)
            raise UpstreamServerError(f"Weather API server error ({r.status_code})", r.status_code)

        try:
            return r.json()
        except ValueError as e:
            raise UpstreamServerError(f"{what} returned invalid JSON") from e

    async def _guarded(self, fn):
        try:
            return await self.guard.call(fn)
        except CallNotPermitted as e:
            raise UpstreamUnavailable(str(e)) from e
        except TimeoutError as e:
            raise UpstreamUnavailable(str(e)) from e

    async def fetch_forecast(self, city: str) -> List[Dict[str, Any]]:
        """
        3-hour forecast samples for a city, covering forecast_days days.
        An empty sample list counts as a server-side failure.
        """
        logger.info("Fetching weather data from external API for city: %s", city)
        params = {"q": city, "units": "metric", "cnt": self.forecast_days * 8}

        async def call() -> List[Dict[str, Any]]:
            data = await self._get_json("/data/2.5/forecast", params, "Forecast")
            if not isinstance(data, dict):
                raise UpstreamServerError("Unexpected forecast payload from weather API")
            samples = data.get("list") or []
            if not samples:
                raise UpstreamServerError("Empty response from weather API", 204)
            return samples

        samples = await self._guarded(call)
        logger.info("Successfully fetched %d samples for city: %s", len(samples), city)
        return samples

    async def search_cities(self, query: str, limit: int = 10) -> List[CityEntry]:
        """Direct geocoding; each match becomes a CityEntry with a readable country name."""
        params = {"q": query, "limit": limit}

        async def call() -> List[Dict[str, Any]]:
            data = await self._get_json("/geo/1.0/direct", params, "City search") or []
            if not isinstance(data, list):
                raise UpstreamServerError("Unexpected geocoding payload from weather API")
            return data

        results = await self._guarded(call)

        cities: List[CityEntry] = []
        for item in results:
            try:
                code = item.get("country", "")
                cities.append(CityEntry(
                    name=item["name"],
                    country=country_name(code),
                    country_code=code,
                    state=item.get("state", "") or "",
                    latitude=float(item["lat"]),
                    longitude=float(item["lon"]),
                ))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping malformed geocoding result %r: %s", item, e)
        return cities

    async def ping(self) -> bool:
        """
        True when the API answers a current-weather call.
        Reports False without calling out while the circuit is open.
        """
        if self.guard.breaker.state is CircuitState.OPEN:
            return False
        try:
            async with self._client(httpx.Timeout(self.connect_timeout_s)) as client:
                r = await client.get(f"{self.base}/data/2.5/weather", params={"q": "London", "appid": self.api_key})
            return r.status_code == 200
        except httpx.HTTPError as e:
            logger.debug("Weather API health check failed: %s", e)
            return False

"""
City search / autocomplete.

Live results come from OpenWeather geocoding. A static table of popular
cities answers short queries and stands in whenever geocoding fails.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Tuple
import logging

from .weather_clients import CityEntry, OpenWeatherClient, WeatherError

logger = logging.getLogger(__name__)

MIN_QUERY_LENGTH = 2
MAX_RESULTS = 8

POPULAR_CITIES: Tuple[CityEntry, ...] = (
    CityEntry("London", "United Kingdom", "GB", "England", 51.5074, -0.1278),
    CityEntry("New York", "United States", "US", "New York", 40.7128, -74.0060),
    CityEntry("Tokyo", "Japan", "JP", "Tokyo", 35.6762, 139.6503),
    CityEntry("Paris", "France", "FR", "Île-de-France", 48.8566, 2.3522),
    CityEntry("Berlin", "Germany", "DE", "Berlin", 52.5200, 13.4050),
    CityEntry("Sydney", "Australia", "AU", "New South Wales", -33.8688, 151.2093),
    CityEntry("Toronto", "Canada", "CA", "Ontario", 43.6532, -79.3832),
    CityEntry("Mumbai", "India", "IN", "Maharashtra", 19.0760, 72.8777),
    CityEntry("Beijing", "China", "CN", "Beijing", 39.9042, 116.4074),
    CityEntry("São Paulo", "Brazil", "BR", "São Paulo", -23.5505, -46.6333),
    CityEntry("Moscow", "Russia", "RU", "Moscow", 55.7558, 37.6176),
    CityEntry("Mexico City", "Mexico", "MX", "Mexico City", 19.4326, -99.1332),
    CityEntry("Cairo", "Egypt", "EG", "Cairo", 30.0444, 31.2357),
    CityEntry("Lagos", "Nigeria", "NG", "Lagos", 6.5244, 3.3792),
    CityEntry("Bangkok", "Thailand", "TH", "Bangkok", 13.7563, 100.5018),
)

POPULAR = "popular_cities"
FALLBACK = "fallback_search"
LIVE = "live_search"

MESSAGES = {
    POPULAR: "Showing popular cities. Enter at least 2 characters to search.",
    FALLBACK: "Search service temporarily unavailable. Showing matching popular cities.",
    LIVE: "Live search results from geocoding service.",
}


@dataclass(frozen=True)
class CitySearchResult:
    cities: List[CityEntry]
    kind: str

    @property
    def message(self) -> str:
        return MESSAGES[self.kind]


def popular_cities() -> List[CityEntry]:
    """The quick-pick list shown before the user types anything."""
    return list(POPULAR_CITIES[:MAX_RESULTS])


def match_popular_cities(query: Optional[str]) -> List[CityEntry]:
    """Popular cities whose name or country contains the query (case-insensitive)."""
    if query is None or not query.strip():
        return popular_cities()

    needle = query.strip().lower()
    matches = [c for c in POPULAR_CITIES if needle in c.name.lower() or needle in c.country.lower()]
    return matches[:MAX_RESULTS]


def _dedupe(cities: List[CityEntry]) -> List[CityEntry]:
    seen = set()
    out: List[CityEntry] = []
    for c in cities:
        if c not in seen:
            seen.add(c)
            out.append(c)
    return out


class CitySearchService:
    def __init__(self, client: OpenWeatherClient):
        self.client = client

    async def search(self, query: Optional[str]) -> CitySearchResult:
        """
        Tiered search:
        - fewer than 2 characters: popular cities, geocoding is not called
        - geocoding hits: live results, de-duplicated, at most 8
        - no hits or any upstream failure: popular cities matching the query
        """
        logger.info("Searching cities for query: %s", query)

        if query is None or len(query.strip()) < MIN_QUERY_LENGTH:
            return CitySearchResult(match_popular_cities(query), POPULAR)

        try:
            found = await self.client.search_cities(query.strip())
        except WeatherError as e:
            logger.warning("City search fallback triggered for query %s due to: %s", query, e)
            return CitySearchResult(match_popular_cities(query), FALLBACK)

        if not found:
            logger.warning("No cities found for query: %s", query)
            return CitySearchResult(match_popular_cities(query), FALLBACK)

        cities = _dedupe(found)[:MAX_RESULTS]
        logger.info("Found %d cities for query: %s", len(cities), query)
        return CitySearchResult(cities, LIVE)

import asyncio

import pytest

from resilient_weather.cities import (
    FALLBACK,
    LIVE,
    POPULAR,
    POPULAR_CITIES,
    CitySearchService,
    match_popular_cities,
    popular_cities,
)
from resilient_weather.weather_clients import CityEntry, UpstreamClientError, UpstreamUnavailable


def search(fake_client, query):
    return asyncio.run(CitySearchService(fake_client).search(query))


@pytest.mark.parametrize("query", [None, "", " ", "L", " L "])
def test_short_queries_never_reach_geocoding(fake_client, query):
    result = search(fake_client, query)

    assert result.kind == POPULAR
    assert result.cities
    assert all(c in POPULAR_CITIES for c in result.cities)
    assert fake_client.search_calls == []


def test_single_letter_filters_popular_cities():
    names = [c.name for c in match_popular_cities("L")]
    assert names == ["London", "Berlin", "Sydney", "São Paulo", "Lagos", "Bangkok"]


def test_popular_list_is_the_first_eight():
    assert [c.name for c in popular_cities()] == [c.name for c in POPULAR_CITIES[:8]]


def test_live_results_are_deduplicated_and_capped(fake_client):
    london = CityEntry("London", "United Kingdom", "GB", "England", 51.5, -0.12)
    fake_client.cities = [london, london] + [CityEntry(f"Town {i}", "Canada", "CA") for i in range(10)]

    result = search(fake_client, "Lon")

    assert result.kind == LIVE
    assert len(result.cities) == 8
    assert result.cities[0] == london
    assert result.cities.count(london) == 1
    assert fake_client.search_calls == ["Lon"]


@pytest.mark.parametrize("error", [UpstreamUnavailable("down"), UpstreamClientError("bad key", 401)])
def test_upstream_failure_falls_back_to_matching_popular_cities(fake_client, error):
    fake_client.error = error

    result = search(fake_client, "par")

    assert result.kind == FALLBACK
    assert [c.name for c in result.cities] == ["Paris"]
    assert "temporarily unavailable" in result.message


def test_no_geocoding_hits_falls_back(fake_client):
    fake_client.cities = []

    result = search(fake_client, "japan")

    assert result.kind == FALLBACK
    assert [c.name for c in result.cities] == ["Tokyo"]

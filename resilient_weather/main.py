"""
FastAPI entrypoint.

This file focuses on:
- routing
- request/response handling
- wiring together DB + upstream client + services

Run with: uvicorn resilient_weather.main:app
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime
import logging

from fastapi import APIRouter, FastAPI, Depends, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from .settings import settings
from .db import Base, engine, get_db
from .logging_config import configure_logging
from .schemas import (
    CityOut,
    CitySearchResponse,
    ErrorOut,
    ForecastOut,
    ForecastResponse,
    PopularCitiesResponse,
)
from .weather_clients import CityEntry, OpenWeatherClient, RESILIENCE_NAME, UpstreamServerError, UpstreamUnavailable
from .resilience import ResilienceGuard
from .forecast_service import ForecastService, InvalidRequestError, Provenance, ServiceUnavailableError
from .cities import CitySearchService, popular_cities

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.log_level)
    Base.metadata.create_all(bind=engine)
    logger.info("%s started (fallback enabled: %s)", settings.app_name, settings.fallback_enabled)
    yield


app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
    max_age=3600,
)

# Upstream client and services (constructed once, shared by all requests).
guard = ResilienceGuard(
    RESILIENCE_NAME,
    transient_errors=(UpstreamUnavailable, UpstreamServerError),
    max_attempts=settings.retry_max_attempts,
    min_wait=settings.retry_min_wait_s,
    max_wait=settings.retry_max_wait_s,
    call_timeout=settings.http_timeout_s,
    failure_threshold=settings.circuit_failure_threshold,
    reset_timeout=settings.circuit_reset_timeout_s,
    rate_per_second=settings.rate_limit_per_second,
    burst=settings.rate_limit_burst,
    rate_limit_timeout=settings.rate_limit_timeout_s,
)
owm = OpenWeatherClient(
    settings.openweather_api_key,
    base_url=settings.openweather_base_url,
    timeout_s=settings.http_timeout_s,
    connect_timeout_s=settings.connect_timeout_s,
    forecast_days=settings.forecast_days,
    guard=guard,
)
forecast_service = ForecastService(
    owm,
    forecast_days=settings.forecast_days,
    fresh_window_minutes=settings.fresh_window_minutes,
    data_age_threshold_minutes=settings.data_age_threshold_minutes,
    fallback_enabled=settings.fallback_enabled,
    emergency_fallback_enabled=settings.emergency_fallback_enabled,
)
city_service = CitySearchService(owm)


def get_forecast_service() -> ForecastService:
    return forecast_service


def get_city_service() -> CitySearchService:
    return city_service


def error_response(message: str, status_code: int, service: str = "weather-service") -> JSONResponse:
    body = ErrorOut(message=message, statusCode=status_code, timestamp=datetime.now(), service=service)
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))


def city_to_out(city: CityEntry) -> CityOut:
    return CityOut.model_validate(city)


@app.exception_handler(ServiceUnavailableError)
async def service_unavailable_handler(request: Request, exc: ServiceUnavailableError):
    logger.error("Service unavailable for %s: %s", request.url.path, exc)
    return error_response(
        "Weather service is temporarily unavailable. Please try again in a few minutes.", 503
    )


@app.exception_handler(InvalidRequestError)
async def invalid_request_handler(request: Request, exc: InvalidRequestError):
    logger.error("Invalid weather request for %s: %s", request.url.path, exc)
    return error_response(
        "Weather data not found for the specified city. Please check the city name.", 404
    )


# -------------------------
# Weather APIs
# -------------------------

weather = APIRouter(prefix="/weather", tags=["Weather Forecast"])


def forecast_response(city: str, forecasts: list, provenance: Provenance, offline: bool) -> ForecastResponse:
    from_cache = offline or provenance in (Provenance.FRESH_CACHE, Provenance.STALE_CACHE, Provenance.OFFLINE)
    notice = None
    if not offline and provenance in (Provenance.STALE_CACHE, Provenance.SYNTHETIC):
        notice = "External weather service unavailable. Showing cached data."
    return ForecastResponse(
        city=city,
        forecasts=[ForecastOut.model_validate(f) for f in forecasts],
        offline_mode=offline,
        from_cache=from_cache,
        provenance=provenance.value,
        total_days=len(forecasts),
        timestamp=datetime.now(),
        notice=notice,
    )


@weather.get("/forecast", response_model=ForecastResponse, response_model_exclude_none=True)
async def get_weather_forecast(
    city: str = Query(..., min_length=1, max_length=255),
    offline: bool = False,
    db: Session = Depends(get_db),
    service: ForecastService = Depends(get_forecast_service),
):
    """
    3-day forecast for a city.
    Falls back to cached, then synthetic data when the upstream API is down.
    """
    logger.info("Received weather forecast request for city: %s, offline: %s", city, offline)
    if offline:
        result = service.offline_forecast(db, city)
    else:
        result = await service.resolve_forecast(db, city)

    if not result.records:
        return error_response(f"No weather data available for {city}", 404)
    return forecast_response(city, result.records, result.provenance, offline)


@weather.get("/offline/{city}", response_model=ForecastResponse, response_model_exclude_none=True)
def get_offline_weather(
    city: str,
    db: Session = Depends(get_db),
    service: ForecastService = Depends(get_forecast_service),
):
    """Stored forecasts for a city, without calling upstream."""
    logger.info("Received offline weather request for city: %s", city)
    result = service.offline_forecast(db, city)
    if not result.records:
        return error_response(f"No cached weather data available for {city}", 404)
    return forecast_response(city, result.records, result.provenance, offline=True)


@weather.get("/health")
async def weather_health(db: Session = Depends(get_db), service: ForecastService = Depends(get_forecast_service)):
    """Database + upstream availability. 503 while degraded."""
    health = await service.health(db)
    health["service"] = "weather-service"
    health["timestamp"] = datetime.now().isoformat()
    return JSONResponse(status_code=200 if health["status"] == "UP" else 503, content=health)


@weather.get("/status")
async def weather_status(db: Session = Depends(get_db), service: ForecastService = Depends(get_forecast_service)):
    """Health plus the active resilience configuration."""
    status = {
        "service": "weather-service",
        "version": settings.app_version,
        "timestamp": datetime.now().isoformat(),
    }
    status.update(await service.health(db))
    status["resilience"] = {**service.client.guard.get_status(), "fallback": "Enabled" if service.fallback_enabled else "Disabled"}
    return status


# -------------------------
# City search APIs
# -------------------------

cities = APIRouter(prefix="/cities", tags=["City Search"])


@cities.get("/search", response_model=CitySearchResponse)
async def search_cities(
    q: str | None = Query(None, max_length=100),
    service: CitySearchService = Depends(get_city_service),
):
    """Autocomplete. Short queries and upstream failures fall back to popular cities."""
    logger.info("Received city search request for query: %s", q)
    result = await service.search(q)
    return CitySearchResponse(
        query=q,
        cities=[city_to_out(c) for c in result.cities],
        count=len(result.cities),
        type=result.kind,
        message=result.message,
        timestamp=datetime.now(),
    )


@cities.get("/popular", response_model=PopularCitiesResponse)
def get_popular_cities():
    """Quick-pick list."""
    found = popular_cities()
    return PopularCitiesResponse(cities=[city_to_out(c) for c in found], count=len(found), timestamp=datetime.now())


@cities.get("/health")
async def cities_health(service: CitySearchService = Depends(get_city_service)):
    result = await service.search("test")
    return {
        "status": "UP",
        "service": "city-search-service",
        "test_search": "WORKING" if result.cities else "LIMITED",
        "search_type": result.kind,
        "fallback_enabled": True,
        "popular_cities_count": len(popular_cities()),
        "timestamp": datetime.now().isoformat(),
    }


app.include_router(weather, prefix=settings.api_prefix)
app.include_router(cities, prefix=settings.api_prefix)

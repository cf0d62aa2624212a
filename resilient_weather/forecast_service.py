"""
Forecast retrieval with tiered fallback.

resolve_forecast() decides, per request, where the answer comes from:

  fresh-cache  stored rows updated within the freshness window; no upstream call
  live         upstream answered; aggregated days are upserted and returned
  stale-cache  upstream unavailable, stored rows younger than the age threshold,
               advisory text prefixed with an offline marker
  synthetic    upstream unavailable and nothing usable stored; placeholder
               days that are never persisted

A 4xx from upstream is the caller's problem and never falls back.
"""

from __future__ import annotations

import enum
import logging
import random
from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta
from typing import Callable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import crud, models
from .aggregation import aggregate_daily
from .db import ping_database
from .weather_clients import OpenWeatherClient, UpstreamClientError, WeatherError

logger = logging.getLogger(__name__)

OFFLINE_PREFIX = "⚠️ Offline data - "
OFFLINE_DEFAULT = "Weather service temporarily unavailable"
EMERGENCY_NOTICE = "⚠️ Emergency fallback - Weather service unavailable. Check weather conditions manually."


class Provenance(str, enum.Enum):
    FRESH_CACHE = "fresh-cache"
    LIVE = "live"
    STALE_CACHE = "stale-cache"
    SYNTHETIC = "synthetic"
    OFFLINE = "offline"


class InvalidRequestError(Exception):
    """Upstream rejected the city (4xx). Surfaced to the user, no fallback."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ServiceUnavailableError(Exception):
    """No live, cached or synthetic data may be served for this request."""
    pass


@dataclass(frozen=True)
class ForecastRecord:
    """Detached, read-only view of one day's forecast."""
    city: str
    forecast_date: date
    high_temp: float
    low_temp: float
    description: Optional[str]
    weather_condition: Optional[str]
    wind_speed: Optional[float]
    humidity: Optional[int]
    pressure: Optional[float]
    special_condition: Optional[str]

    @classmethod
    def from_model(cls, m: models.WeatherForecast) -> "ForecastRecord":
        return cls(
            city=m.city,
            forecast_date=m.forecast_date,
            high_temp=m.high_temp,
            low_temp=m.low_temp,
            description=m.description,
            weather_condition=m.weather_condition,
            wind_speed=m.wind_speed,
            humidity=m.humidity,
            pressure=m.pressure,
            special_condition=m.special_condition,
        )

    def marked_offline(self) -> "ForecastRecord":
        return replace(self, special_condition=OFFLINE_PREFIX + (self.special_condition or OFFLINE_DEFAULT))


@dataclass(frozen=True)
class ForecastResult:
    records: List[ForecastRecord]
    provenance: Provenance

    @property
    def degraded(self) -> bool:
        return self.provenance in (Provenance.STALE_CACHE, Provenance.SYNTHETIC)


def _age_minutes(now: datetime, then: datetime) -> int:
    return int((now - then).total_seconds() // 60)


class ForecastService:
    def __init__(
        self,
        client: OpenWeatherClient,
        forecast_days: int = 3,
        fresh_window_minutes: int = 30,
        data_age_threshold_minutes: int = 1440,
        fallback_enabled: bool = True,
        emergency_fallback_enabled: bool = True,
        clock: Callable[[], datetime] = models.utcnow,
        rng: Optional[random.Random] = None,
    ):
        self.client = client
        self.forecast_days = forecast_days
        self.fresh_window = timedelta(minutes=fresh_window_minutes)
        self.data_age_threshold = timedelta(minutes=data_age_threshold_minutes)
        self.fallback_enabled = fallback_enabled
        self.emergency_fallback_enabled = emergency_fallback_enabled
        self.clock = clock
        self.rng = rng or random.Random()

    async def resolve_forecast(self, db: Session, city: str, today: Optional[date] = None) -> ForecastResult:
        """Forecast for `city` over [today, today + forecast_days), labelled with its provenance."""
        logger.info("Getting weather forecast for city: %s", city)
        now = self.clock()
        today = today or now.date()
        end = today + timedelta(days=self.forecast_days)

        cached = crud.find_forecasts_in_range(db, city, today, end)
        if cached and now - cached[0].updated_at < self.fresh_window:
            logger.info("Returning cached weather data for %s", city)
            return ForecastResult([ForecastRecord.from_model(m) for m in cached], Provenance.FRESH_CACHE)

        try:
            samples = await self.client.fetch_forecast(city)
            days = aggregate_daily(samples)
            saved = crud.save_daily_forecasts(db, city, days, now)
        except UpstreamClientError as e:
            logger.error("Weather API rejected request for %s: %s", city, e)
            raise InvalidRequestError(f"Invalid request: {e}", e.status_code) from e
        except WeatherError as e:
            logger.warning("External weather API unavailable for %s: %s", city, e)
            return self._fallback(city, cached, now, today)
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("Failed to store forecast for %s: %s", city, e)
            return self._fallback(city, cached, now, today)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.error("Unusable forecast payload for %s: %r", city, e)
            return self._fallback(city, cached, now, today)

        in_window = [m for m in saved if today <= m.forecast_date < end] or saved
        logger.info("Successfully fetched fresh weather data for %s (%d days)", city, len(in_window))
        return ForecastResult([ForecastRecord.from_model(m) for m in in_window], Provenance.LIVE)

    def _fallback(self, city: str, cached: List[models.WeatherForecast], now: datetime, today: date) -> ForecastResult:
        if not self.fallback_enabled:
            logger.error("Fallback disabled; no data served for %s", city)
            raise ServiceUnavailableError("Weather service is temporarily unavailable and fallback is disabled")

        if cached:
            age = now - cached[0].updated_at
            if age < self.data_age_threshold:
                logger.info("Using cached fallback data for %s (age: %d minutes)", city, _age_minutes(now, cached[0].updated_at))
                records = [ForecastRecord.from_model(m).marked_offline() for m in cached]
                return ForecastResult(records, Provenance.STALE_CACHE)
            logger.warning(
                "Cached data for %s is too old (age: %d minutes), threshold: %d minutes",
                city, _age_minutes(now, cached[0].updated_at), int(self.data_age_threshold.total_seconds() // 60),
            )

        if self.emergency_fallback_enabled:
            logger.warning("Generating emergency fallback data for %s", city)
            return ForecastResult(self.synthetic_forecast(city, today), Provenance.SYNTHETIC)

        logger.error("No suitable fallback data for %s", city)
        raise ServiceUnavailableError(f"Weather data not available for {city} and no suitable fallback data found")

    def synthetic_forecast(self, city: str, today: date) -> List[ForecastRecord]:
        """Placeholder days with a 20-30°C high. Never written to the store."""
        records = []
        for i in range(self.forecast_days):
            high = 20.0 + self.rng.random() * 10
            records.append(ForecastRecord(
                city=city,
                forecast_date=today + timedelta(days=i),
                high_temp=high,
                low_temp=high - 10,
                description="Weather data temporarily unavailable",
                weather_condition="Unknown",
                wind_speed=5.0,
                humidity=60,
                pressure=1013.25,
                special_condition=EMERGENCY_NOTICE,
            ))
        return records

    def offline_forecast(self, db: Session, city: str) -> ForecastResult:
        """Everything stored for the city, whatever its age; synthetic data if nothing is stored."""
        logger.info("Getting offline weather data for city: %s", city)
        stored = crud.find_forecasts_by_city(db, city)
        if stored:
            return ForecastResult([ForecastRecord.from_model(m) for m in stored], Provenance.OFFLINE)

        logger.warning("No offline data available for %s", city)
        if self.emergency_fallback_enabled:
            return ForecastResult(self.synthetic_forecast(city, self.clock().date()), Provenance.SYNTHETIC)
        raise ServiceUnavailableError(f"No offline weather data available for {city}")

    async def health(self, db: Session) -> dict:
        """Service health: database probe, upstream probe, fallback setting."""
        try:
            database = "UP" if ping_database(db) else "DOWN"
        except SQLAlchemyError as e:
            logger.error("Database health check failed: %s", e)
            database = "DOWN"

        external_api = "UP" if await self.client.ping() else "DOWN"

        health = {
            "status": "UP" if database == "UP" and external_api == "UP" else "DEGRADED",
            "database": database,
            "externalApi": external_api,
            "fallbackEnabled": self.fallback_enabled,
        }
        if external_api != "UP":
            health["message"] = "External weather API unavailable - using fallback data"
        return health

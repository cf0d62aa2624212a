"""
Forecast store.

Plain functions over a SQLAlchemy Session so the fallback policy stays
readable and the queries are easy to test against an in-memory database.
City names are matched case-insensitively everywhere.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import List

from sqlalchemy import func
from sqlalchemy.orm import Session

from . import models
from .aggregation import DailyForecast


def _city_matches(city: str):
    return func.lower(models.WeatherForecast.city) == city.lower()


def find_forecasts_in_range(db: Session, city: str, start: date, end: date) -> List[models.WeatherForecast]:
    """Records for a city with start <= forecast_date < end, oldest date first."""
    return (
        db.query(models.WeatherForecast)
        .filter(
            _city_matches(city),
            models.WeatherForecast.forecast_date >= start,
            models.WeatherForecast.forecast_date < end,
        )
        .order_by(models.WeatherForecast.forecast_date.asc())
        .all()
    )


def find_forecasts_by_city(db: Session, city: str) -> List[models.WeatherForecast]:
    """Every stored record for a city, oldest date first."""
    return (
        db.query(models.WeatherForecast)
        .filter(_city_matches(city))
        .order_by(models.WeatherForecast.forecast_date.asc())
        .all()
    )


def get_forecast(db: Session, city: str, forecast_date: date) -> models.WeatherForecast | None:
    """Fetch the record for (city, date), if any."""
    return (
        db.query(models.WeatherForecast)
        .filter(_city_matches(city), models.WeatherForecast.forecast_date == forecast_date)
        .first()
    )


def upsert_forecast(db: Session, city: str, day: DailyForecast, now: datetime) -> models.WeatherForecast:
    """
    Insert or update the record for (city, day.forecast_date).

    An existing row keeps its id, created_at and stored city casing.
    Concurrent writers for the same key are last-write-wins.
    """
    record = get_forecast(db, city, day.forecast_date)
    if record is None:
        record = models.WeatherForecast(city=city, forecast_date=day.forecast_date, created_at=now)
        db.add(record)

    record.high_temp = day.high_temp
    record.low_temp = day.low_temp
    record.description = day.description
    record.weather_condition = day.weather_condition
    record.wind_speed = day.wind_speed
    record.humidity = day.humidity
    record.pressure = day.pressure
    record.special_condition = day.special_condition
    record.updated_at = now
    return record


def save_daily_forecasts(db: Session, city: str, days: List[DailyForecast], now: datetime) -> List[models.WeatherForecast]:
    """Upsert a batch of days in one transaction."""
    records = [upsert_forecast(db, city, day, now) for day in days]
    db.commit()
    for record in records:
        db.refresh(record)
    return records

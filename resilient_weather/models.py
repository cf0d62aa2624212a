"""
ORM models.

One row per (city, forecast date). Rows are created on the first successful
upstream fetch and updated in place afterwards.
"""

from sqlalchemy import String, Integer, Float, Date, DateTime, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from datetime import date, datetime, timezone
from typing import Optional
from .db import Base


def utcnow() -> datetime:
    """Naive UTC timestamp, the format stored in created_at/updated_at."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class WeatherForecast(Base):
    __tablename__ = "weather_forecasts"
    __table_args__ = (
        UniqueConstraint("city", "forecast_date", name="uq_weather_forecasts_city_date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)

    # Stored as first seen; lookups compare lower(city)
    city: Mapped[str] = mapped_column(String(255), index=True)
    forecast_date: Mapped[date] = mapped_column(Date, index=True)

    high_temp: Mapped[float] = mapped_column(Float)
    low_temp: Mapped[float] = mapped_column(Float)
    description: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    weather_condition: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    wind_speed: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    humidity: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    pressure: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    # Advisory text (rain, wind, storm warnings...), derived by aggregation
    special_condition: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    def __repr__(self):
        return f"<WeatherForecast {self.id} {self.city} {self.forecast_date}>"

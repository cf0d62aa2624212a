"""
Pydantic schemas.

Define the JSON contract of the REST endpoints. Field names follow the
wire format the frontend already consumes (snake_case, except forecastDate).
"""

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from datetime import date, datetime
from typing import List, Optional


class ForecastOut(BaseModel):
    """One day of forecast as served to clients."""
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    city: str
    forecast_date: date = Field(
        validation_alias=AliasChoices("forecast_date", "forecastDate"),
        serialization_alias="forecastDate",
    )
    high_temp: float
    low_temp: float
    description: Optional[str] = None
    weather_condition: Optional[str] = None
    wind_speed: Optional[float] = None
    humidity: Optional[int] = None
    pressure: Optional[float] = None
    special_condition: Optional[str] = None


class ForecastResponse(BaseModel):
    city: str
    forecasts: List[ForecastOut]
    offline_mode: bool
    from_cache: bool
    provenance: str
    total_days: int
    timestamp: datetime
    notice: Optional[str] = None


class CityOut(BaseModel):
    """City entry for autocomplete; display_name is derived."""
    model_config = ConfigDict(from_attributes=True)

    name: str
    country: str
    country_code: str
    state: str = ""
    latitude: float
    longitude: float
    display_name: str


class CitySearchResponse(BaseModel):
    query: Optional[str] = None
    cities: List[CityOut]
    count: int
    type: str
    message: str
    timestamp: datetime


class PopularCitiesResponse(BaseModel):
    cities: List[CityOut]
    count: int
    type: str = "popular_cities"
    message: str = "Most popular cities worldwide"
    timestamp: datetime


class ErrorOut(BaseModel):
    error: bool = True
    message: str
    statusCode: int
    timestamp: datetime
    service: str

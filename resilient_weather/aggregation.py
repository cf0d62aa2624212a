"""
Daily aggregation of OpenWeather 3-hour forecast samples.

The /data/2.5/forecast endpoint returns one sample every 3 hours. We collapse
them into one record per calendar day:
- high = max of per-sample temp_max, low = min of per-sample temp_min
- wind / humidity / pressure = mean across the day's samples
- description and condition come from the FIRST sample of the day
- advisory text derived from the daily values
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Dict, List

SUNSCREEN = "Use sunscreen lotion"
HIGH_WIND = "It's too windy, watch out!"
UMBRELLA = "Carry umbrella"
STORM = "Don't step out! A Storm is brewing!"
PLEASANT = "Have a great day!"

HOT_DAY_C = 40.0
WINDY_MS = 10.0


@dataclass(frozen=True)
class DailyForecast:
    """One aggregated day, ready to be upserted into the store."""
    forecast_date: date
    high_temp: float
    low_temp: float
    description: str
    weather_condition: str
    wind_speed: float
    humidity: int
    pressure: float
    special_condition: str


def sample_date(sample: Dict[str, Any]) -> date:
    """Calendar day of a sample: the date part of dt_txt, else the UTC date of dt."""
    dt_txt = sample.get("dt_txt")
    if dt_txt:
        return date.fromisoformat(dt_txt.split(" ")[0])
    return datetime.fromtimestamp(int(sample["dt"]), tz=timezone.utc).date()


def _has_rain(sample: Dict[str, Any]) -> bool:
    rain = sample.get("rain") or {}
    return float(rain.get("3h") or 0.0) > 0


def advisory_text(high_temp: float, weather_condition: str, wind_speed: float, samples: List[Dict[str, Any]]) -> str:
    """Comma-joined list of every triggered advisory, or a pleasant default."""
    conditions: List[str] = []
    condition = (weather_condition or "").lower()

    if high_temp > HOT_DAY_C:
        conditions.append(SUNSCREEN)
    if wind_speed > WINDY_MS:
        conditions.append(HIGH_WIND)
    if any(_has_rain(s) for s in samples) or condition == "rain":
        conditions.append(UMBRELLA)
    if condition == "thunderstorm":
        conditions.append(STORM)

    return ", ".join(conditions) if conditions else PLEASANT


def _mean(values: List[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def summarize_day(day: date, samples: List[Dict[str, Any]]) -> DailyForecast:
    """Reduce one day's samples to a DailyForecast."""
    mains = [s.get("main") or {} for s in samples]

    high_temp = max(float(m["temp_max"]) for m in mains)
    low_temp = min(float(m["temp_min"]) for m in mains)
    wind_speed = _mean([float((s.get("wind") or {}).get("speed", 0.0)) for s in samples])
    humidity = int(_mean([float(m.get("humidity", 0)) for m in mains]))
    pressure = _mean([float(m.get("pressure", 0.0)) for m in mains])

    # First sample wins; not the most frequent condition of the day.
    first = (samples[0].get("weather") or [{}])[0]
    weather_condition = first.get("main", "")
    description = first.get("description", "")

    return DailyForecast(
        forecast_date=day,
        high_temp=high_temp,
        low_temp=low_temp,
        description=description,
        weather_condition=weather_condition,
        wind_speed=wind_speed,
        humidity=humidity,
        pressure=pressure,
        special_condition=advisory_text(high_temp, weather_condition, wind_speed, samples),
    )


def aggregate_daily(samples: List[Dict[str, Any]]) -> List[DailyForecast]:
    """Group samples by calendar day (in upstream order) and summarize each, oldest day first."""
    grouped: Dict[date, List[Dict[str, Any]]] = {}
    for sample in samples:
        grouped.setdefault(sample_date(sample), []).append(sample)

    return [summarize_day(d, grouped[d]) for d in sorted(grouped.keys())]

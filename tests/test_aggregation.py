from datetime import date, datetime, timedelta, timezone

from tests.factories import TODAY, make_sample
from resilient_weather.aggregation import (
    HIGH_WIND,
    PLEASANT,
    STORM,
    SUNSCREEN,
    UMBRELLA,
    advisory_text,
    aggregate_daily,
    sample_date,
)


def test_eight_three_hourly_samples_collapse_to_one_day():
    maxes = [18, 20, 25, 24, 23, 19, 17, 16]
    mins = [m - 8 for m in maxes]
    samples = [
        make_sample(TODAY, hour=3 * i, temp_max=hi, temp_min=lo, wind=2.0 + i, humidity=40 + i, pressure=1000.0 + i)
        for i, (hi, lo) in enumerate(zip(maxes, mins))
    ]

    days = aggregate_daily(samples)

    assert len(days) == 1
    day = days[0]
    assert day.forecast_date == TODAY
    assert day.high_temp == 25
    assert day.low_temp == min(mins)
    assert day.wind_speed == sum(2.0 + i for i in range(8)) / 8
    assert day.humidity == int(sum(40 + i for i in range(8)) / 8)
    assert day.pressure == sum(1000.0 + i for i in range(8)) / 8
    assert day.special_condition == PLEASANT


def test_condition_comes_from_first_sample_not_majority():
    samples = [make_sample(TODAY, 0, condition="Clouds", description="few clouds")]
    samples += [make_sample(TODAY, h, condition="Clear", description="clear sky") for h in (3, 6, 9)]

    day = aggregate_daily(samples)[0]

    assert day.weather_condition == "Clouds"
    assert day.description == "few clouds"


def test_days_are_grouped_and_sorted():
    tomorrow = TODAY + timedelta(days=1)
    samples = [make_sample(tomorrow, 0, temp_max=30), make_sample(TODAY, 21, temp_max=15), make_sample(tomorrow, 3, temp_max=31)]

    days = aggregate_daily(samples)

    assert [d.forecast_date for d in days] == [TODAY, tomorrow]
    assert days[1].high_temp == 31


def test_sample_date_falls_back_to_unix_timestamp():
    ts = int(datetime(2026, 10, 18, 6, 0, tzinfo=timezone.utc).timestamp())
    assert sample_date({"dt": ts}) == date(2026, 10, 18)


def test_every_triggered_advisory_is_included():
    samples = [make_sample(TODAY, 12, temp_max=42, wind=12.0, rain_3h=0.4)]

    day = aggregate_daily(samples)[0]

    assert day.special_condition == ", ".join([SUNSCREEN, HIGH_WIND, UMBRELLA])


def test_rain_condition_without_volume_still_means_umbrella():
    assert advisory_text(20.0, "rain", 3.0, [make_sample(TODAY)]) == UMBRELLA


def test_thunderstorm_warning():
    text = advisory_text(25.0, "Thunderstorm", 3.0, [make_sample(TODAY)])
    assert text == STORM


def test_zero_rain_volume_is_not_precipitation():
    assert advisory_text(25.0, "Clouds", 3.0, [make_sample(TODAY, rain_3h=0.0)]) == PLEASANT


def test_boundaries_are_strict():
    assert advisory_text(40.0, "Clear", 10.0, [make_sample(TODAY)]) == PLEASANT

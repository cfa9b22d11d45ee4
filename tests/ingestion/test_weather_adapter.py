from __future__ import annotations

import json
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import httpx
import pytest

from ingestion.connectors.base import ParseError
from ingestion.connectors.fixtures import BUNDLED_FIXTURES_DIR
from ingestion.connectors.weather import WeatherAdapter, health_recommendation
from ingestion.models.domain import Category, Severity, SourceDTO, SourceKind

ALMATY = ZoneInfo("Asia/Almaty")


def _source(**config) -> SourceDTO:
    return SourceDTO(
        id="almaty-weather",
        name="Almaty Weather",
        kind=SourceKind.JSON,
        url="https://api.open-meteo.com/v1/forecast",
        polling_interval_seconds=3600,
        config={"adapter": "weather", **config},
    )


@pytest.fixture()
def payload() -> dict:
    return json.loads((BUNDLED_FIXTURES_DIR / "weather.json").read_text(encoding="utf-8"))


def test_parse_payload_emits_current_and_daily_items(app_env, payload):
    adapter = WeatherAdapter(_source(), app_env)

    items = adapter.parse_payload(payload)

    assert [item["id"] for item in items] == [
        "weather_current_2025-01-15T14:00",
        "weather_daily_2025-01-15",
        "weather_daily_2025-01-16",
        "weather_daily_2025-01-17",
    ]
    assert items[2]["temperature_max"] == 1.4


def test_current_conditions_event(app_env, payload):
    adapter = WeatherAdapter(_source(), app_env)
    current = adapter.parse_payload(payload)[0]

    event = adapter.normalize(current)

    assert event.title == "Snow in Almaty"
    assert event.category == Category.WEATHER
    assert event.severity == Severity.HIGH
    assert event.start_time == datetime(2025, 1, 15, 14, 0, tzinfo=ALMATY)
    assert event.end_time is None
    assert event.description.startswith("Current temperature: -4.5°C. Cold weather")
    assert event.location_name == "Almaty"
    assert event.latitude == 43.222


def test_daily_forecast_event_spans_local_day(app_env, payload):
    adapter = WeatherAdapter(_source(), app_env)
    daily = adapter.parse_payload(payload)[1]

    event = adapter.normalize(daily)

    assert event.title == "Snow forecast for Wednesday, January 15"
    assert event.description.startswith("Temperature: -9.8°C to -2.1°C, Precipitation: 4.2mm. ")
    assert event.start_time == datetime(2025, 1, 15, tzinfo=ALMATY)
    assert event.end_time == datetime(2025, 1, 15, 23, 59, 59, tzinfo=ALMATY)


def test_dry_day_omits_precipitation(app_env, payload):
    adapter = WeatherAdapter(_source(), app_env)

    event = adapter.normalize(adapter.parse_payload(payload)[2])

    assert event.title == "Overcast forecast for Thursday, January 16"
    assert "Precipitation" not in event.description
    assert event.severity == Severity.LOW


@pytest.mark.parametrize("temperature", [-30.0, 0.0, 40.0])
def test_thunderstorm_is_always_critical(app_env, payload, temperature):
    adapter = WeatherAdapter(_source(), app_env)
    raw = dict(adapter.parse_payload(payload)[0], weathercode=95, temperature=temperature)

    event = adapter.normalize(raw)

    assert event.severity == Severity.CRITICAL
    assert event.title == "Thunderstorm in Almaty"
    assert "Thunderstorm warning" in event.description


def test_unknown_code_and_configured_city(app_env, payload):
    adapter = WeatherAdapter(_source(cityEn="Astana"), app_env)
    raw = dict(adapter.parse_payload(payload)[0], weathercode=42)

    event = adapter.normalize(raw)

    assert event.title == "Unknown weather in Astana"
    assert event.severity == Severity.MEDIUM


def test_health_recommendation_combines_notes():
    text = health_recommendation(66, -25.0)

    assert text.startswith("Extreme cold")
    assert "Freezing conditions" in text
    assert health_recommendation(0, 20.0) == "Normal weather conditions."


def test_non_object_payload_is_parse_error(app_env):
    adapter = WeatherAdapter(_source(), app_env)

    with pytest.raises(ParseError):
        adapter.parse_payload([1, 2, 3])


def test_malformed_live_payload_is_parse_error(app_env, monkeypatch):
    adapter = WeatherAdapter(_source(), app_env)
    response = httpx.Response(200, json={"daily": {"time": 5}}, request=httpx.Request("GET", adapter.source.url))
    monkeypatch.setattr(adapter, "_get", lambda url: response)

    with pytest.raises(ParseError, match="malformed payload"):
        adapter.fetch()


def test_naive_times_follow_config_timezone(app_env, payload):
    payload.pop("timezone")
    adapter = WeatherAdapter(_source(timezone="UTC"), app_env)

    event = adapter.normalize(adapter.parse_payload(payload)[0])

    assert event.start_time == datetime(2025, 1, 15, 14, 0, tzinfo=timezone.utc)

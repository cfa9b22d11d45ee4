"""Open-Meteo forecast adapter: current conditions plus one event per forecast day."""

from __future__ import annotations

from datetime import datetime, time
from typing import Any, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import httpx

from ingestion.models.domain import Category, EventStatus, NormalizedEvent, SourceDTO
from ingestion.settings import Settings
from ingestion.utils.dates import parse_local, utcnow

from . import mappings
from .base import BaseAdapter, Clock, FixtureSource, ParseError, RawItem, format_number
from .config import WeatherConfig, parse_config


def health_recommendation(code: int, temperature: Optional[float]) -> str:
    notes: List[str] = []
    if temperature is not None:
        if temperature < -20:
            notes.append("Extreme cold: Avoid prolonged outdoor exposure. Risk of frostbite within minutes.")
        elif temperature < -10:
            notes.append("Very cold: Dress warmly in layers. Limit outdoor activities.")
        elif temperature < 0:
            notes.append("Cold weather: Wear warm clothing and stay dry.")
        if temperature > 35:
            notes.append("Extreme heat: Stay hydrated and avoid prolonged sun exposure.")
        elif temperature > 30:
            notes.append("Hot weather: Drink plenty of water and take breaks in shade.")
    if code >= 95:
        notes.append("Thunderstorm warning: Stay indoors, avoid open areas and metal objects.")
    elif code >= 80:
        notes.append("Heavy precipitation: Exercise caution on roads and walkways.")
    elif code >= 66:
        notes.append("Freezing conditions: Be extremely careful, roads may be icy.")
    elif code >= 45:
        notes.append("Low visibility: Drive carefully and use fog lights.")
    return " ".join(notes) if notes else "Normal weather conditions."


class WeatherAdapter(BaseAdapter):
    kind = "weather"
    fixture_name = "weather"

    def __init__(
        self,
        source: SourceDTO,
        settings: Optional[Settings] = None,
        *,
        fixtures: Optional[FixtureSource] = None,
        clock: Clock = utcnow,
    ):
        super().__init__(source, settings, fixtures=fixtures, clock=clock)
        self.config = parse_config(WeatherConfig, source.config)

    def parse_response(self, response: httpx.Response) -> List[RawItem]:
        return self.parse_payload(self._json(response))

    def parse_fixture(self, payload: Any) -> List[RawItem]:
        return self.parse_payload(payload)

    def parse_payload(self, data: Any) -> List[RawItem]:
        if not isinstance(data, dict):
            raise ParseError("weather payload must be a JSON object")
        zone_name = data.get("timezone") or self.config.timezone
        latitude = data.get("latitude", self.config.latitude)
        longitude = data.get("longitude", self.config.longitude)
        items: List[RawItem] = []

        current = data.get("current_weather")
        if isinstance(current, dict) and current.get("time"):
            items.append(
                {
                    "id": f"weather_current_{current['time']}",
                    "time": current["time"],
                    "weathercode": current.get("weathercode"),
                    "temperature": current.get("temperature"),
                    "windspeed": current.get("windspeed"),
                    "is_current": True,
                    "timezone": zone_name,
                    "latitude": latitude,
                    "longitude": longitude,
                }
            )

        daily = data.get("daily") or {}
        if not isinstance(daily, dict):
            raise ParseError("weather 'daily' block must be an object")
        days = daily.get("time") or []
        for index, day in enumerate(days):
            items.append(
                {
                    "id": f"weather_daily_{day}",
                    "time": day,
                    "weathercode": _at(daily.get("weathercode"), index),
                    "temperature_max": _at(daily.get("temperature_2m_max"), index),
                    "temperature_min": _at(daily.get("temperature_2m_min"), index),
                    "precipitation": _at(daily.get("precipitation_sum"), index),
                    "is_current": False,
                    "timezone": zone_name,
                    "latitude": latitude,
                    "longitude": longitude,
                }
            )
        return items

    def normalize(self, raw: RawItem) -> NormalizedEvent:
        code = int(raw.get("weathercode") or 0)
        is_current = bool(raw.get("is_current"))
        local_zone = self._zone(raw.get("timezone"))
        start = parse_local(raw.get("time"), local_zone)
        condition = mappings.weather_condition(code)
        end: Optional[datetime] = None

        if is_current:
            temperature = raw.get("temperature")
            title = f"{condition} in {self.config.city}"
            description = (
                f"Current temperature: {_fmt(temperature)}°C. "
                f"{health_recommendation(code, _float(temperature))}"
            )
        else:
            t_max = raw.get("temperature_max")
            t_min = raw.get("temperature_min")
            precipitation = _float(raw.get("precipitation")) or 0.0
            title = f"{condition} forecast for {_day_label(start, local_zone, raw.get('time'))}"
            description = f"Temperature: {_fmt(t_min)}°C to {_fmt(t_max)}°C"
            if precipitation > 0:
                description += f", Precipitation: {format_number(precipitation)}mm"
            description += f". {health_recommendation(code, _float(t_max))}"
            if start is not None:
                local_day = start.astimezone(local_zone).date()
                end = datetime.combine(local_day, time(23, 59, 59), tzinfo=local_zone)

        return NormalizedEvent(
            source_id=self.source_id,
            original_id=str(raw.get("id") or f"weather_{raw.get('time')}_{code}"),
            title=title,
            description=description,
            severity=mappings.weather_severity(code),
            category=Category.WEATHER,
            status=EventStatus.ACTIVE,
            start_time=start,
            end_time=end,
            location_name=self.config.city,
            latitude=_float(raw.get("latitude"), self.config.latitude),
            longitude=_float(raw.get("longitude"), self.config.longitude),
            raw_payload=dict(raw),
        )

    def _zone(self, name: Any) -> ZoneInfo:
        try:
            return ZoneInfo(str(name)) if name else ZoneInfo(self.config.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            return ZoneInfo(self.config.timezone)


def _at(values: Any, index: int) -> Any:
    if isinstance(values, list) and index < len(values):
        return values[index]
    return None


def _float(value: Any, default: Optional[float] = None) -> Optional[float]:
    if value is None:
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _fmt(value: Any) -> str:
    number = _float(value)
    return "?" if number is None else format_number(number)


def _day_label(start: Optional[datetime], local_zone: ZoneInfo, fallback: Any) -> str:
    if start is None:
        return str(fallback)
    local = start.astimezone(local_zone)
    return f"{local:%A, %B} {local.day}"



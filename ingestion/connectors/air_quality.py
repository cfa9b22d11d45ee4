"""air.org.kz district/station air-quality adapter with US EPA AQI computation."""

from __future__ import annotations

import math
from typing import Any, Dict, List, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo

import httpx

from ingestion.models.domain import Category, EventStatus, NormalizedEvent, SourceDTO
from ingestion.settings import Settings
from ingestion.utils.dates import parse_local, utcnow

from . import mappings
from .base import BaseAdapter, Clock, FixtureSource, ParseError, RawItem, normalize_district
from .config import AirQualityConfig, parse_config

Breakpoints = Sequence[Tuple[float, float, int, int]]


def _sub_index(concentration: float, table: Breakpoints) -> int:
    if concentration < 0:
        return 0
    for low, high, index_low, index_high in table:
        if low <= concentration <= high:
            value = (index_high - index_low) / (high - low) * (concentration - low) + index_low
            return int(math.floor(value + 0.5))
    if concentration > table[-1][1]:
        return mappings.AQI_MAX
    # Between two bands after float truncation.
    for low, _high, index_low, _index_high in table:
        if concentration < low:
            return index_low
    return mappings.AQI_MAX


def calculate_aqi(pm25: float, pm10: Optional[float] = None) -> int:
    """US EPA AQI from PM2.5 (and PM10 when present); the highest sub-index wins.

    Concentrations are truncated first (PM2.5 to 0.1 µg/m³, PM10 to 1 µg/m³),
    the linear interpolation is rounded half-up and the result clamped to 500.
    """
    return min(max(_sub_indices(pm25, pm10).values()), mappings.AQI_MAX)


def primary_pollutant(pm25: float, pm10: Optional[float] = None) -> str:
    """Pollutant whose sub-index sets the AQI; PM2.5 on a tie."""
    indices = _sub_indices(pm25, pm10)
    return "PM10" if indices.get("PM10", -1) > indices["PM2.5"] else "PM2.5"


def _sub_indices(pm25: float, pm10: Optional[float]) -> Dict[str, int]:
    indices = {"PM2.5": _sub_index(math.floor(float(pm25) * 10) / 10, mappings.PM25_BREAKPOINTS)}
    if pm10 is not None:
        indices["PM10"] = _sub_index(math.floor(float(pm10)), mappings.PM10_BREAKPOINTS)
    return indices


class AirQualityAdapter(BaseAdapter):
    kind = "air_quality"
    fixture_name = "air_quality"

    def __init__(
        self,
        source: SourceDTO,
        settings: Optional[Settings] = None,
        *,
        fixtures: Optional[FixtureSource] = None,
        clock: Clock = utcnow,
    ):
        super().__init__(source, settings, fixtures=fixtures, clock=clock)
        self.config = parse_config(AirQualityConfig, source.config)

    def parse_response(self, response: httpx.Response) -> List[RawItem]:
        return self.parse_records(self._json(response))

    def parse_fixture(self, payload: Any) -> List[RawItem]:
        return self.parse_records(payload)

    def parse_records(self, data: Any) -> List[RawItem]:
        if isinstance(data, dict) and isinstance(data.get("data"), list):
            data = data["data"]
        if isinstance(data, dict):
            records = [data]
        elif isinstance(data, list):
            records = data
        else:
            raise ParseError("air-quality payload must be an object or a list")

        items: List[RawItem] = []
        for record in records:
            if not isinstance(record, dict) or record.get("pm25") is None:
                continue
            try:
                pm25 = float(record["pm25"])
                pm10 = float(record["pm10"]) if record.get("pm10") is not None else None
            except (TypeError, ValueError):
                continue
            items.append(
                {
                    "id": record.get("id") or f"aqi_{record.get('district')}_{record.get('datetime')}",
                    "station_name": record.get("name") or record.get("district"),
                    "district": record.get("district"),
                    "pm25": pm25,
                    "pm10": pm10,
                    "aqi": calculate_aqi(pm25, pm10),
                    "latitude": record.get("lat"),
                    "longitude": record.get("lon"),
                    "datetime": record.get("datetime"),
                    "station_count": record.get("station_count"),
                    "origin": record.get("origin") or self.config.origin,
                }
            )
        return items

    def normalize(self, raw: RawItem) -> NormalizedEvent:
        pm25 = float(raw.get("pm25") or 0.0)
        pm10 = raw.get("pm10")
        aqi = raw.get("aqi")
        if aqi is None:
            aqi = calculate_aqi(pm25, pm10)
        aqi = int(aqi)
        status_label, recommendation = mappings.aqi_band(aqi)
        station = raw.get("station_name") or "Unknown Station"
        district = raw.get("district")
        start = parse_local(raw.get("datetime"), ZoneInfo(self.config.timezone))

        parts = [f"AQI: {aqi}", f"PM2.5: {pm25:.1f} µg/m³"]
        if pm10:
            parts.append(f"PM10: {float(pm10):.1f} µg/m³")
        parts.append(f"Primary pollutant: {primary_pollutant(pm25, pm10)}")
        parts.append(f"Health recommendation: {recommendation}")

        return NormalizedEvent(
            source_id=self.source_id,
            original_id=str(raw.get("id") or f"aqi_{district}_{raw.get('datetime')}"),
            title=f"Air Quality {status_label} - {station}",
            description=", ".join(parts),
            severity=mappings.aqi_severity(aqi),
            category=Category.HEALTH,
            status=EventStatus.ACTIVE,
            start_time=start,
            district=normalize_district(district),
            location_name=station,
            latitude=raw.get("latitude"),
            longitude=raw.get("longitude"),
            raw_payload=dict(raw),
        )

"""Default source registry for Almaty."""

from __future__ import annotations

import os
from typing import List, Optional

from ingestion.db.session import session_scope
from ingestion.models.domain import SourceKind, SourceSeed
from ingestion.repositories import sources as source_repo
from ingestion.settings import Settings, get_settings
from ingestion.utils.logging import get_logger

logger = get_logger(__name__)

ALMATY_LAT = "43.2220"
ALMATY_LNG = "76.8512"


def almaty_sources(lat: Optional[str] = None, lng: Optional[str] = None) -> List[SourceSeed]:
    """Weather, air quality and planned outage sources; ALMATY_LAT/ALMATY_LNG override the point."""
    lat = lat or os.getenv("ALMATY_LAT", ALMATY_LAT)
    lng = lng or os.getenv("ALMATY_LNG", ALMATY_LNG)
    weather_url = (
        "https://api.open-meteo.com/v1/forecast"
        f"?latitude={lat}&longitude={lng}&current_weather=true"
        "&daily=temperature_2m_max,temperature_2m_min,precipitation_sum,weathercode"
        "&timezone=Asia/Almaty"
    )
    return [
        SourceSeed(
            id="almaty-weather",
            name="Almaty Weather (Open Meteo)",
            kind=SourceKind.JSON,
            url=weather_url,
            polling_interval_seconds=3600,
            config={
                "adapter": "weather",
                "cityEn": "Almaty",
                "latitude": float(lat),
                "longitude": float(lng),
                "timezone": "Asia/Almaty",
            },
        ),
        SourceSeed(
            id="almaty-air-quality",
            name="Almaty Air Quality (air.org.kz)",
            kind=SourceKind.JSON,
            url="https://api.air.org.kz/api/city/districts",
            polling_interval_seconds=1800,
            config={
                "adapter": "air_quality",
                "endpoint": "city/districts",
                "timezone": "Asia/Almaty",
            },
        ),
        SourceSeed(
            id="almaty-energy",
            name="AZhK Energy Outages",
            kind=SourceKind.HTML,
            url="https://www.azhk.kz/ru/spetsialnye-razdely/all-graphics",
            polling_interval_seconds=21600,
            config={
                "cityEn": "Almaty",
                "locale": "ru",
                "idPrefix": "azhk",
                "timezone": "Asia/Almaty",
            },
        ),
    ]


def seed_sources(seeds: Optional[List[SourceSeed]] = None, settings: Optional[Settings] = None) -> List[str]:
    """Upsert `seeds` (default: the Almaty set) and return their ids."""
    config = settings or get_settings()
    entries = seeds if seeds is not None else almaty_sources()
    with session_scope(config) as session:
        for seed in entries:
            source_repo.upsert_source(session, seed)
            logger.info("seed.source.upserted", extra={"source_id": seed.id, "kind": seed.kind.value})
    return [seed.id for seed in entries]

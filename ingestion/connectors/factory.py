"""Adapter selection by source kind."""

from __future__ import annotations

from typing import Callable, Dict, Optional, Type

from ingestion.models.domain import SourceDTO, SourceKind
from ingestion.settings import Settings, get_settings

from .air_quality import AirQualityAdapter
from .base import BaseAdapter, ConnectorError, FixtureSource
from .feed import FeedAdapter
from .fixtures import FixtureLoader
from .html_outage import OutageHtmlAdapter
from .weather import WeatherAdapter

# JSON sources pick their adapter through config["adapter"] (or the legacy config["kind"]).
JSON_ADAPTERS: Dict[str, Type[BaseAdapter]] = {
    "weather": WeatherAdapter,
    "air_quality": AirQualityAdapter,
    "air-quality": AirQualityAdapter,
}
DEFAULT_JSON_ADAPTER = "weather"

AdapterFactory = Callable[[SourceDTO], BaseAdapter]


class UnsupportedSourceError(ConnectorError):
    """No adapter is registered for the source kind/config."""


def adapter_class_for(source: SourceDTO) -> Type[BaseAdapter]:
    if source.kind == SourceKind.FEED:
        return FeedAdapter
    if source.kind == SourceKind.HTML:
        return OutageHtmlAdapter
    if source.kind == SourceKind.JSON:
        key = str(source.config.get("adapter") or source.config.get("kind") or DEFAULT_JSON_ADAPTER).lower()
        try:
            return JSON_ADAPTERS[key]
        except KeyError:
            raise UnsupportedSourceError(f"no JSON adapter named {key!r} for source {source.id}") from None
    raise UnsupportedSourceError(f"unsupported source kind: {source.kind}")


def create_adapter(
    source: SourceDTO,
    settings: Optional[Settings] = None,
    *,
    fixtures: Optional[FixtureSource] = None,
) -> BaseAdapter:
    config = settings or get_settings()
    loader = fixtures if fixtures is not None else FixtureLoader(config)
    return adapter_class_for(source)(source, config, fixtures=loader)

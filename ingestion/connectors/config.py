"""Typed per-kind adapter configuration parsed from the registry's config map."""

from __future__ import annotations

from typing import Any, Dict, Optional, Type, TypeVar
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, PositiveInt, ValidationError, field_validator

from .base import ParseError


class _AdapterConfig(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True, populate_by_name=True)

    timezone: str = Field("Asia/Almaty", description="IANA zone used for naive upstream times.")

    @field_validator("timezone")
    @classmethod
    def _validate_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"unknown timezone: {value}") from exc
        return value


class FeedConfig(_AdapterConfig):
    timezone: str = "UTC"
    max_items: Optional[PositiveInt] = Field(None, alias="maxItems", description="Cap on items taken per fetch.")


class WeatherConfig(_AdapterConfig):
    city: str = Field("Almaty", alias="cityEn")
    latitude: float = 43.2220
    longitude: float = 76.8512


class AirQualityConfig(_AdapterConfig):
    endpoint: str = "city/districts"
    origin: str = "air.org.kz"


class OutageHtmlConfig(_AdapterConfig):
    city: str = Field("Almaty", alias="cityEn")
    locale: str = "ru"
    id_prefix: str = Field("outage", alias="idPrefix")


ConfigT = TypeVar("ConfigT", bound=_AdapterConfig)


def parse_config(model: Type[ConfigT], raw: Optional[Dict[str, Any]]) -> ConfigT:
    try:
        return model.model_validate(raw or {})
    except ValidationError as exc:
        raise ParseError(f"invalid {model.__name__}: {exc}") from exc

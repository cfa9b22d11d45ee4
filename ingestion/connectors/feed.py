"""RSS/Atom and JSON Feed adapter."""

from __future__ import annotations

import hashlib
import re
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo

import feedparser
import httpx
from bs4 import BeautifulSoup

from ingestion.models.domain import EventStatus, NormalizedEvent, SourceDTO
from ingestion.settings import Settings
from ingestion.utils.dates import parse_local, utcnow

from . import mappings
from .base import BaseAdapter, Clock, FixtureSource, ParseError, RawItem, normalize_district
from .config import FeedConfig, parse_config

MAX_TITLE_CHARS = 500
MAX_DESCRIPTION_CHARS = 5000
DEFAULT_TITLE = "Untitled Alert"
DISTRICT_RE = re.compile(r"^([\w\s]+?)\s*-\s*\w+")


def clean_text(text: Optional[str]) -> str:
    return " ".join((text or "").split())[:MAX_TITLE_CHARS]


def strip_html(text: Optional[str]) -> str:
    if not text:
        return ""
    return BeautifulSoup(text, "lxml").get_text(" ", strip=True)[:MAX_DESCRIPTION_CHARS]


def parse_coordinates(item: Dict[str, Any]) -> Tuple[Optional[float], Optional[float]]:
    """GeoRSS point ("lat lon" or "lat,lon") or separate geo:lat/geo:long fields."""
    latitude = longitude = None
    if item.get("geo_lat") not in (None, "") and item.get("geo_long") not in (None, ""):
        try:
            latitude, longitude = float(item["geo_lat"]), float(item["geo_long"])
        except (TypeError, ValueError):
            latitude = longitude = None
    point = item.get("point")
    if point:
        parts = [p for p in re.split(r"[,\s]+", str(point).strip()) if p]
        if len(parts) == 2:
            try:
                latitude, longitude = float(parts[0]), float(parts[1])
            except ValueError:
                pass
    return latitude, longitude


def parse_district(category: Optional[str]) -> Optional[str]:
    if not category:
        return None
    match = DISTRICT_RE.match(category)
    return normalize_district(match.group(1)) if match else None


class FeedAdapter(BaseAdapter):
    kind = "feed"
    accept = "application/rss+xml, application/atom+xml, application/feed+json, application/json, application/xml, text/xml"

    def __init__(
        self,
        source: SourceDTO,
        settings: Optional[Settings] = None,
        *,
        fixtures: Optional[FixtureSource] = None,
        clock: Clock = utcnow,
    ):
        super().__init__(source, settings, fixtures=fixtures, clock=clock)
        self.config = parse_config(FeedConfig, source.config)

    def parse_response(self, response: httpx.Response) -> List[RawItem]:
        content_type = response.headers.get("content-type", "")
        if "json" in content_type:
            items = self.parse_json_feed(self._json(response))
        else:
            items = self.parse_xml_feed(response.content)
        if self.config.max_items:
            items = items[: self.config.max_items]
        return items

    def parse_json_feed(self, data: Any) -> List[RawItem]:
        if not isinstance(data, dict):
            raise ParseError("JSON feed must be an object")
        entries = data.get("items") or data.get("entries") or []
        if not isinstance(entries, list):
            raise ParseError("JSON feed 'items' must be a list")
        items: List[RawItem] = []
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            tags = entry.get("tags") or entry.get("category") or []
            if isinstance(tags, str):
                tags = [tags]
            items.append(
                {
                    "guid": entry.get("id") or entry.get("guid"),
                    "link": entry.get("url") or entry.get("link"),
                    "title": entry.get("title"),
                    "description": entry.get("content_html")
                    or entry.get("content_text")
                    or entry.get("summary")
                    or entry.get("description"),
                    "published": entry.get("date_published")
                    or entry.get("pubDate")
                    or entry.get("date_modified")
                    or entry.get("updated"),
                    "categories": [str(tag) for tag in tags],
                    "geo_lat": entry.get("geo_lat") or entry.get("lat"),
                    "geo_long": entry.get("geo_long") or entry.get("lng") or entry.get("lon"),
                    "point": entry.get("point"),
                }
            )
        return items

    def parse_xml_feed(self, content: bytes) -> List[RawItem]:
        parsed = feedparser.parse(content)
        if parsed.bozo and not parsed.entries:
            raise ParseError(f"unparseable feed: {parsed.get('bozo_exception')}")
        items: List[RawItem] = []
        for entry in parsed.entries:
            description = entry.get("summary") or entry.get("description")
            if not description and entry.get("content"):
                description = entry["content"][0].get("value")
            point = entry.get("georss_point")
            where = entry.get("where")
            if not point and isinstance(where, dict) and where.get("type") == "Point":
                lon, lat = where["coordinates"][:2]
                point = f"{lat} {lon}"
            items.append(
                {
                    "guid": entry.get("id") or entry.get("guid") or entry.get("link"),
                    "link": entry.get("link"),
                    "title": entry.get("title"),
                    "description": description,
                    "published": entry.get("published") or entry.get("updated"),
                    "categories": [tag.get("term") for tag in entry.get("tags", []) if tag.get("term")],
                    "geo_lat": entry.get("geo_lat"),
                    "geo_long": entry.get("geo_long"),
                    "point": point,
                }
            )
        return items

    def normalize(self, raw: RawItem) -> NormalizedEvent:
        title = clean_text(raw.get("title")) or DEFAULT_TITLE
        categories = raw.get("categories") or []
        category_label = categories[0] if categories else None
        latitude, longitude = parse_coordinates(raw)
        original_id = raw.get("guid") or raw.get("link") or _title_id(title)

        return NormalizedEvent(
            source_id=self.source_id,
            original_id=str(original_id),
            title=title,
            description=strip_html(raw.get("description")) or None,
            severity=mappings.severity_for(category_label),
            category=mappings.category_for(category_label),
            status=EventStatus.ACTIVE,
            start_time=self._published(raw.get("published")),
            district=parse_district(category_label),
            latitude=latitude,
            longitude=longitude,
            origin_url=raw.get("link"),
            raw_payload=dict(raw),
        )

    def _published(self, value: Any) -> Optional[datetime]:
        """RFC 822 (RSS) or ISO-8601 (Atom/JSON Feed); None when absent or unreadable."""
        if not value:
            return None
        text = str(value).strip()
        try:
            parsed = parsedate_to_datetime(text)
        except (TypeError, ValueError, IndexError):
            parsed = None
        if parsed is not None:
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=ZoneInfo(self.config.timezone))
            return parsed.astimezone(timezone.utc)
        return parse_local(text, ZoneInfo(self.config.timezone))


def _title_id(title: str) -> str:
    return "title_" + hashlib.sha256(title.encode("utf-8")).hexdigest()[:16]

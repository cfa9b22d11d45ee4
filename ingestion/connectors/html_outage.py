"""Planned utility-outage schedules scraped from an HTML page."""

from __future__ import annotations

import hashlib
import re
from datetime import datetime, timedelta
from typing import Any, List, Optional
from zoneinfo import ZoneInfo

import httpx
from bs4 import BeautifulSoup

from ingestion.models.domain import Category, EventStatus, NormalizedEvent, Severity, SourceDTO
from ingestion.settings import Settings
from ingestion.utils.dates import iso_utc, parse_iso, utcnow

from .base import BaseAdapter, Clock, FixtureSource, ParseError, RawItem, normalize_district
from .config import OutageHtmlConfig, parse_config

ROW_SELECTOR = "table tr, .outage-row, .schedule-item"
MIN_CELLS = 3
DEFAULT_REASON = "Плановые работы"
DEFAULT_HOUR, DEFAULT_MINUTE = 9, 0

ADDRESS_RE = re.compile(r"(ул\.|пр\.|мкр\.|улица|проспект|микрорайон)", re.IGNORECASE)
DISTRICT_RE = re.compile(r"(?:р-н\s+|район\s+)([А-Яа-яЁёA-Za-z]+)", re.IGNORECASE)
DATE_RE = re.compile(r"(\d{1,2})[.\-/](\d{1,2})[.\-/](\d{2,4})")
DATE_HINT_RE = re.compile(r"\d{1,2}\.\d{1,2}\.\d{2,4}")
TIME_RE = re.compile(r"(\d{1,2}):(\d{2})")
REASON_RE = re.compile(r"(ремонт|замена|обслуживание|модернизация|плановые|работы)", re.IGNORECASE)
AFFECTED_RE = re.compile(r"^\s*(\d+)\s*(?:абонент\w*|потребител\w*|домов|дом\w*)?\s*$", re.IGNORECASE)

# Duration in hours / affected customers above which an outage is escalated.
HIGH_HOURS, HIGH_AFFECTED = 8, 500
MEDIUM_HOURS, MEDIUM_AFFECTED = 4, 300


def outage_severity(duration: timedelta, affected: Optional[int]) -> Severity:
    hours = duration.total_seconds() / 3600
    count = affected or 0
    if hours > HIGH_HOURS or count > HIGH_AFFECTED:
        return Severity.HIGH
    if hours > MEDIUM_HOURS or count > MEDIUM_AFFECTED:
        return Severity.MEDIUM
    return Severity.LOW


def _local_datetime(date_text: str, time_text: Optional[str], zone: ZoneInfo) -> Optional[datetime]:
    date_match = DATE_RE.search(date_text)
    if not date_match:
        return None
    day, month, year = (int(part) for part in date_match.groups())
    if year < 100:
        year += 2000
    hour, minute = DEFAULT_HOUR, DEFAULT_MINUTE
    if time_text:
        time_match = TIME_RE.search(time_text)
        if time_match:
            hour, minute = int(time_match.group(1)), int(time_match.group(2))
    try:
        return datetime(year, month, day, hour, minute, tzinfo=zone)
    except ValueError:
        return None


def _affected(value: Any) -> Optional[int]:
    if value is None:
        return None
    match = re.search(r"\d+", str(value))
    return int(match.group(0)) if match else None


class OutageHtmlAdapter(BaseAdapter):
    """Classifies table cells by pattern; layouts vary between pages, so no fixed columns."""

    kind = "html_outage"
    accept = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"
    fixture_name = "energy"

    def __init__(
        self,
        source: SourceDTO,
        settings: Optional[Settings] = None,
        *,
        fixtures: Optional[FixtureSource] = None,
        clock: Clock = utcnow,
    ):
        super().__init__(source, settings, fixtures=fixtures, clock=clock)
        self.config = parse_config(OutageHtmlConfig, source.config)
        self._zone = ZoneInfo(self.config.timezone)

    def _headers(self):
        headers = super()._headers()
        headers["Accept-Language"] = f"{self.config.locale}-RU,{self.config.locale};q=0.9,en;q=0.8"
        return headers

    def parse_response(self, response: httpx.Response) -> List[RawItem]:
        return self.parse_html(response.text)

    def parse_html(self, html: str) -> List[RawItem]:
        soup = BeautifulSoup(html, "lxml")
        items: List[RawItem] = []
        for row in soup.select(ROW_SELECTOR):
            item = self._parse_row([cell.get_text(" ", strip=True) for cell in row.find_all("td")])
            if item is not None:
                items.append(item)
        return items

    def parse_fixture(self, payload: Any) -> List[RawItem]:
        if not isinstance(payload, dict) or not isinstance(payload.get("outages"), list):
            raise ParseError("outage fixture must contain an 'outages' list")
        items: List[RawItem] = []
        for outage in payload["outages"]:
            items.append(
                {
                    "id": outage.get("id"),
                    "address": outage.get("address"),
                    "district": outage.get("district"),
                    "start_time": outage.get("start_time"),
                    "end_time": outage.get("end_time"),
                    "reason": outage.get("reason"),
                    "type": outage.get("type", "planned"),
                    "affected_count": outage.get("affected_count"),
                }
            )
        return items

    def _parse_row(self, cells: List[str]) -> Optional[RawItem]:
        if len(cells) < MIN_CELLS:
            return None
        address = date_text = time_text = reason = district = ""
        affected: Optional[int] = None
        for text in cells:
            if ADDRESS_RE.search(text):
                address = text
                district_match = DISTRICT_RE.search(text)
                if district_match:
                    district = district_match.group(1)
            if DATE_HINT_RE.search(text):
                date_text = text
            if TIME_RE.search(text):
                time_text = text
            if REASON_RE.search(text):
                reason = text
            affected_match = AFFECTED_RE.match(text)
            if affected_match:
                affected = int(affected_match.group(1))

        if not address or not date_text:
            return None

        # Times may share the date cell, so strip the date before splitting the range.
        range_text = DATE_RE.sub(" ", time_text)
        times = TIME_RE.findall(range_text)
        start_clock = ":".join(times[0]) if times else None
        end_clock = ":".join(times[1]) if len(times) > 1 else None
        start = _local_datetime(date_text, start_clock, self._zone)
        if start is None:
            return None
        end = _local_datetime(date_text, end_clock, self._zone) if end_clock else start
        if end is None:
            return None
        if end < start:
            # Overnight window such as 22:00-02:00 ends on the next day.
            end = end + timedelta(days=1)

        digest = hashlib.sha1(f"{address}{date_text}{time_text}".encode("utf-8")).hexdigest()[:12]
        return {
            "id": f"{self.config.id_prefix}_{digest}",
            "address": address,
            "district": district or None,
            "start_time": iso_utc(start),
            "end_time": iso_utc(end),
            "reason": reason or DEFAULT_REASON,
            "type": "planned",
            "affected_count": affected,
        }

    def normalize(self, raw: RawItem) -> NormalizedEvent:
        address = raw.get("address") or "Unknown Address"
        start = parse_iso(raw.get("start_time"))
        end = parse_iso(raw.get("end_time"))
        reason = raw.get("reason") or DEFAULT_REASON
        affected = _affected(raw.get("affected_count"))

        duration = (end - start) if (start and end) else timedelta(0)
        status = EventStatus.RESOLVED if end is not None and self._clock() > end else EventStatus.ACTIVE

        parts = [f"Причина: {reason}"]
        if start and end:
            parts.append(f"Время: {self._clock_text(start)} - {self._clock_text(end)}")
        if affected is not None:
            parts.append(f"Затронуто: {affected}")

        return NormalizedEvent(
            source_id=self.source_id,
            original_id=str(raw.get("id") or f"energy_{address}_{iso_utc(start)}"),
            title=f"Электроснабжение: {address}",
            description=". ".join(parts),
            severity=outage_severity(duration, affected),
            category=Category.UTILITY,
            status=status,
            start_time=start,
            end_time=end,
            district=normalize_district(raw.get("district")),
            location_name=address,
            raw_payload=dict(raw),
        )

    def _clock_text(self, value: datetime) -> str:
        return value.astimezone(self._zone).strftime("%H:%M")

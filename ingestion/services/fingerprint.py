"""Event identity and change detection.

The fingerprint deliberately ignores title and description so that a source
fixing a typo updates the existing event instead of creating a duplicate.
"""

from __future__ import annotations

import hashlib
from datetime import datetime, timedelta
from typing import Any, List, Optional, Protocol

from ingestion.models.domain import NormalizedEvent
from ingestion.utils.dates import as_utc, iso_utc

START_TIME_TOLERANCE = timedelta(seconds=60)

# Compared for audit purposes; raw_payload is excluded on purpose.
AUDITED_FIELDS = (
    "source_id",
    "original_id",
    "title",
    "description",
    "severity",
    "category",
    "status",
    "start_time",
    "end_time",
    "district",
    "location_name",
    "latitude",
    "longitude",
    "origin_url",
)


class StoredEventLike(Protocol):
    severity: Any
    status: Any
    latitude: Optional[str]
    longitude: Optional[str]
    start_time: datetime


def fingerprint(event: NormalizedEvent) -> str:
    """Deterministic identity of `event`: hash of source, original id, category, start time."""
    if event.start_time is None:
        raise ValueError("cannot fingerprint an event without start_time")
    data = "|".join(
        (
            event.source_id,
            event.original_id,
            event.category.value,
            iso_utc(event.start_time) or "",
        )
    )
    return "fp_" + hashlib.sha256(data.encode("utf-8")).hexdigest()[:16]


def coordinate_text(value: Optional[float]) -> Optional[str]:
    """Text form used to store coordinates; `repr` keeps the shortest exact decimal."""
    if value is None:
        return None
    return repr(float(value))


def _coordinate_changed(stored: Optional[str], incoming: Optional[float]) -> bool:
    if stored is None or incoming is None:
        return (stored is None) != (incoming is None)
    try:
        return float(stored) != float(incoming)
    except ValueError:
        return True


def has_meaningful_change(stored: StoredEventLike, incoming: NormalizedEvent) -> bool:
    """True when a change warrants an audit row and a notification.

    Severity, status, coordinates (including appearing/disappearing) and a
    start time shift beyond one minute count; title and description do not.
    """
    if _value(stored.severity) != incoming.severity.value:
        return True
    if _value(stored.status) != incoming.status.value:
        return True
    if _coordinate_changed(stored.latitude, incoming.latitude):
        return True
    if _coordinate_changed(stored.longitude, incoming.longitude):
        return True
    if incoming.start_time is None:
        return True
    return abs(as_utc(stored.start_time) - as_utc(incoming.start_time)) > START_TIME_TOLERANCE


def changed_fields(stored: Any, incoming: NormalizedEvent) -> List[str]:
    """Names of every audited field whose value differs between the two versions."""
    changes: List[str] = []
    for name in AUDITED_FIELDS:
        before = _comparable(name, getattr(stored, name, None))
        after = _comparable(name, getattr(incoming, name, None))
        if before != after:
            changes.append(name)
    return changes


def change_snapshot(source: Any) -> dict:
    """Values of the change-detection fields, JSON-ready."""
    return {
        "severity": _value(source.severity),
        "status": _value(source.status),
        "latitude": _coordinate_field(source.latitude),
        "longitude": _coordinate_field(source.longitude),
        "start_time": iso_utc(source.start_time),
    }


def _value(value: Any) -> Any:
    return getattr(value, "value", value)


def _coordinate_field(value: Any) -> Optional[str]:
    if value is None or isinstance(value, str):
        return value
    return coordinate_text(value)


def _comparable(name: str, value: Any) -> Any:
    if name in ("latitude", "longitude"):
        text = _coordinate_field(value)
        return None if text is None else float(text)
    if isinstance(value, datetime):
        return as_utc(value)
    return _value(value)

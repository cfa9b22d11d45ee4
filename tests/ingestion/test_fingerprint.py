from __future__ import annotations

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from ingestion.models.domain import Category, EventStatus, NormalizedEvent, Severity
from ingestion.services.fingerprint import (
    change_snapshot,
    changed_fields,
    coordinate_text,
    fingerprint,
    has_meaningful_change,
)

START = datetime(2025, 1, 15, 9, 0, tzinfo=timezone.utc)


def _event(**overrides) -> NormalizedEvent:
    data = dict(
        source_id="almaty-weather",
        original_id="weather_daily_2025-01-15",
        title="Snow forecast",
        description="Heavy snow expected",
        severity=Severity.HIGH,
        category=Category.WEATHER,
        start_time=START,
        latitude=43.222,
        longitude=76.8512,
    )
    data.update(overrides)
    return NormalizedEvent(**data)


def _stored(event: NormalizedEvent, **overrides) -> SimpleNamespace:
    data = dict(
        source_id=event.source_id,
        original_id=event.original_id,
        title=event.title,
        description=event.description,
        severity=event.severity,
        category=event.category,
        status=event.status,
        start_time=event.start_time,
        end_time=event.end_time,
        district=event.district,
        location_name=event.location_name,
        latitude=coordinate_text(event.latitude),
        longitude=coordinate_text(event.longitude),
        origin_url=event.origin_url,
    )
    data.update(overrides)
    return SimpleNamespace(**data)


def test_fingerprint_is_deterministic_and_prefixed():
    first = fingerprint(_event())
    second = fingerprint(_event())

    assert first == second
    assert first.startswith("fp_")
    assert len(first) == 3 + 16


def test_fingerprint_ignores_title_and_description():
    base = fingerprint(_event())

    assert fingerprint(_event(title="Snow forecast (updated)", description="Typo fixed")) == base
    assert fingerprint(_event(severity=Severity.CRITICAL)) == base


@pytest.mark.parametrize(
    "overrides",
    [
        {"source_id": "other-source"},
        {"original_id": "weather_daily_2025-01-16"},
        {"category": Category.HEALTH},
        {"start_time": START + timedelta(seconds=1)},
    ],
)
def test_fingerprint_changes_with_identity_fields(overrides):
    assert fingerprint(_event(**overrides)) != fingerprint(_event())


def test_fingerprint_normalizes_timezones():
    almaty = START.astimezone(timezone(timedelta(hours=5)))

    assert fingerprint(_event(start_time=almaty)) == fingerprint(_event())


def test_fingerprint_requires_start_time():
    with pytest.raises(ValueError):
        fingerprint(_event(start_time=None))


def test_no_meaningful_change_for_text_edits():
    event = _event()
    stored = _stored(event, title="Old title", description="Old description")

    assert has_meaningful_change(stored, event) is False
    assert changed_fields(stored, event) == ["title", "description"]


@pytest.mark.parametrize(
    "stored_overrides",
    [
        {"severity": Severity.MEDIUM},
        {"status": EventStatus.RESOLVED},
        {"latitude": "43.3"},
        {"longitude": None},
    ],
)
def test_meaningful_change_detected(stored_overrides):
    event = _event()

    assert has_meaningful_change(_stored(event, **stored_overrides), event) is True


def test_start_time_shift_boundary():
    event = _event()

    assert has_meaningful_change(_stored(event, start_time=START - timedelta(seconds=59)), event) is False
    assert has_meaningful_change(_stored(event, start_time=START - timedelta(seconds=61)), event) is True


def test_coordinates_appearing_is_meaningful():
    event = _event()
    stored = _stored(event, latitude=None, longitude=None)

    assert has_meaningful_change(stored, event) is True
    assert set(changed_fields(stored, event)) == {"latitude", "longitude"}


def test_naive_stored_start_time_is_read_as_utc():
    event = _event()
    stored = _stored(event, start_time=START.replace(tzinfo=None))

    assert has_meaningful_change(stored, event) is False


def test_change_snapshot_is_json_ready():
    snapshot = change_snapshot(_event())

    assert snapshot == {
        "severity": "high",
        "status": "active",
        "latitude": "43.222",
        "longitude": "76.8512",
        "start_time": "2025-01-15T09:00:00.000000Z",
    }

"""Event store: fingerprint-keyed upsert path and change audits."""

from __future__ import annotations

import uuid
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from ingestion.db.models import Event, EventUpdate
from ingestion.models.domain import NormalizedEvent
from ingestion.services.fingerprint import change_snapshot, coordinate_text
from ingestion.utils.dates import utcnow


def find_by_fingerprint(session: Session, fp: str) -> Optional[Event]:
    stmt = select(Event).where(Event.fingerprint == fp)
    return session.execute(stmt).scalars().first()


def insert_event(session: Session, fp: str, event: NormalizedEvent) -> Event:
    entity = Event(
        fingerprint=fp,
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
        raw_payload=_json_ready(event),
    )
    session.add(entity)
    # Surfaces the unique-constraint violation inside the caller's try block.
    session.flush()
    return entity


def update_mutable_fields(session: Session, stored: Event, event: NormalizedEvent) -> Event:
    """Refresh the fields a later sighting is allowed to change."""
    stored.title = event.title
    stored.description = event.description
    stored.status = event.status
    stored.end_time = event.end_time
    stored.raw_payload = _json_ready(event)
    # Keeps a detected change from being re-reported on every later poll.
    stored.severity = event.severity
    stored.latitude = coordinate_text(event.latitude)
    stored.longitude = coordinate_text(event.longitude)
    stored.updated_at = utcnow()
    session.add(stored)
    session.flush()
    return stored


def insert_change_audit(
    session: Session,
    *,
    event_id: uuid.UUID,
    changed: Sequence[str],
    previous_data: dict,
    incoming: NormalizedEvent,
) -> EventUpdate:
    row = EventUpdate(
        event_id=event_id,
        changed_fields=list(changed),
        previous_data=previous_data,
        new_data=change_snapshot(incoming),
        detected_at=utcnow(),
    )
    session.add(row)
    session.flush()
    return row


def list_change_audits(session: Session, event_id: uuid.UUID) -> list[EventUpdate]:
    stmt = select(EventUpdate).where(EventUpdate.event_id == event_id).order_by(EventUpdate.detected_at)
    return list(session.execute(stmt).scalars().all())


def _json_ready(event: NormalizedEvent) -> dict:
    return event.model_dump(mode="json")["raw_payload"]

"""Source registry and ingestion log persistence."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ingestion.db.models import IngestionLog, Source
from ingestion.models.domain import BatchResult, IngestionStatus, SourceDTO, SourceSeed
from ingestion.utils.dates import utcnow


def list_enabled_sources(session: Session) -> List[SourceDTO]:
    stmt = select(Source).where(Source.enabled.is_(True)).order_by(Source.id)
    return [SourceDTO.model_validate(row) for row in session.execute(stmt).scalars()]


def get_source(session: Session, source_id: str) -> Optional[SourceDTO]:
    row = session.get(Source, source_id)
    return SourceDTO.model_validate(row) if row is not None else None


def upsert_source(session: Session, seed: SourceSeed) -> Source:
    """Create or refresh a registry row; poll state is left untouched on refresh."""
    row = session.get(Source, seed.id)
    if row is None:
        row = Source(id=seed.id, failure_count=0)
    row.name = seed.name
    row.kind = seed.kind
    row.url = seed.url
    row.polling_interval_seconds = seed.polling_interval_seconds
    row.enabled = seed.enabled
    row.config = dict(seed.config)
    session.add(row)
    session.flush()
    return row


def set_enabled(session: Session, source_id: str, enabled: bool) -> bool:
    """Manually enable/disable a source; re-enabling also clears the failure counter."""
    row = session.get(Source, source_id)
    if row is None:
        return False
    row.enabled = enabled
    if enabled:
        row.failure_count = 0
    session.add(row)
    return True


def touch_poll(session: Session, source_id: str, *, success: bool, failure_threshold: int = 10) -> Optional[SourceDTO]:
    """Record a finished poll.

    Success stamps `last_success_at` and resets the failure counter. Failure
    increments it and disables the source once it reaches `failure_threshold`.
    """
    row = session.get(Source, source_id)
    if row is None:
        return None
    now = utcnow()
    row.last_poll_at = now
    if success:
        row.last_success_at = now
        row.failure_count = 0
    else:
        row.failure_count = (row.failure_count or 0) + 1
        if row.failure_count >= failure_threshold:
            row.enabled = False
    session.add(row)
    session.flush()
    return SourceDTO.model_validate(row)


def append_ingestion_log(
    session: Session,
    *,
    source_id: str,
    status: IngestionStatus,
    result: BatchResult,
    message: str,
    started_at: Optional[datetime] = None,
) -> IngestionLog:
    row = IngestionLog(
        source_id=source_id,
        status=status,
        message=message[:1024],
        events_found=result.found,
        events_created=result.created,
        events_updated=result.updated,
        error_count=len(result.errors),
        started_at=started_at or utcnow(),
        completed_at=utcnow(),
    )
    session.add(row)
    session.flush()
    return row

"""Insert-or-update of one source batch against the event store."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Iterable, Optional, Protocol, Sequence

from sqlalchemy.exc import SQLAlchemyError

from ingestion.db.session import session_scope
from ingestion.models.domain import (
    BatchResult,
    IngestionStatus,
    NormalizedEvent,
    NotificationJob,
    SourceDTO,
)
from ingestion.repositories import events as event_repo
from ingestion.repositories import sources as source_repo
from ingestion.services.fingerprint import change_snapshot, changed_fields, fingerprint, has_meaningful_change
from ingestion.settings import Settings, get_settings
from ingestion.utils.dates import utcnow
from ingestion.utils.logging import get_logger

logger = get_logger(__name__)


class StoreError(Exception):
    """A single event could not be written to the event store."""


class CircuitOpenError(Exception):
    """The source was disabled after too many consecutive failures."""

    def __init__(self, source_id: str, failure_count: int):
        super().__init__(f"source {source_id} disabled after {failure_count} consecutive failures")
        self.source_id = source_id
        self.failure_count = failure_count


class NotificationSink(Protocol):
    def enqueue(self, job: NotificationJob, delay_seconds: float = 0) -> None: ...


def is_ingestible(event: NormalizedEvent) -> bool:
    return bool(event.title and event.title.strip()) and event.start_time is not None


class IngestionCoordinator:
    """Applies a normalized batch: upsert, change audit, notification, log, poll state."""

    def __init__(self, queue: NotificationSink, settings: Optional[Settings] = None):
        self._queue = queue
        self._settings = settings or get_settings()

    def process_batch(
        self,
        source: SourceDTO,
        events: Iterable[NormalizedEvent],
        *,
        started_at: Optional[datetime] = None,
        fixture_fallback: bool = False,
    ) -> BatchResult:
        started = started_at or utcnow()
        batch: Sequence[NormalizedEvent] = list(events)
        trace_id = str(uuid.uuid4())
        result = BatchResult(source_id=source.id, found=len(batch), fixture_fallback=fixture_fallback)
        logger.info("ingest.batch.start", extra={"trace_id": trace_id, "source_id": source.id, "events_found": len(batch)})

        for index, event in enumerate(batch):
            try:
                created, job = self._apply(event)
            except StoreError as exc:
                result.errors.append(f"{event.original_id}: {exc}")
                logger.warning(
                    "ingest.event.failed",
                    extra={"trace_id": trace_id, "source_id": source.id, "index": index, "error": str(exc)},
                )
                continue
            if created:
                result.created += 1
            else:
                result.updated += 1
            if job is not None and not self._enqueue(job, trace_id):
                result.notifications_failed += 1

        message = _batch_message(result)
        with session_scope(self._settings) as session:
            source_repo.append_ingestion_log(
                session,
                source_id=source.id,
                status=result.status,
                result=result,
                message=message,
                started_at=started,
            )
            source_repo.touch_poll(
                session,
                source.id,
                success=True,
                failure_threshold=self._settings.source_failure_threshold,
            )

        logger.info(
            "ingest.batch.completed",
            extra={
                "trace_id": trace_id,
                "source_id": source.id,
                "status": result.status.value,
                "events_found": result.found,
                "events_created": result.created,
                "events_updated": result.updated,
                "errors": len(result.errors),
                "notifications_failed": result.notifications_failed,
            },
        )
        return result

    def record_failure(self, source: SourceDTO, exc: BaseException, *, started_at: Optional[datetime] = None) -> Optional[SourceDTO]:
        """Log a failed poll and advance the circuit breaker; returns the refreshed source."""
        with session_scope(self._settings) as session:
            source_repo.append_ingestion_log(
                session,
                source_id=source.id,
                status=IngestionStatus.ERROR,
                result=BatchResult(source_id=source.id, errors=[str(exc)]),
                message=f"{type(exc).__name__}: {exc}",
                started_at=started_at,
            )
            refreshed = source_repo.touch_poll(
                session,
                source.id,
                success=False,
                failure_threshold=self._settings.source_failure_threshold,
            )
        if refreshed is not None and not refreshed.enabled:
            logger.error(
                "ingest.source.disabled",
                extra={"source_id": source.id, "failure_count": refreshed.failure_count},
            )
        return refreshed

    def _apply(self, event: NormalizedEvent) -> tuple[bool, Optional[NotificationJob]]:
        fp = fingerprint(event)
        try:
            with session_scope(self._settings) as session:
                stored = event_repo.find_by_fingerprint(session, fp)
                if stored is None:
                    event_repo.insert_event(session, fp, event)
                    return True, NotificationJob.for_event(event, fp)

                meaningful = has_meaningful_change(stored, event)
                changed = changed_fields(stored, event)
                previous = change_snapshot(stored)
                event_repo.update_mutable_fields(session, stored, event)
                if not meaningful:
                    return False, None
                event_repo.insert_change_audit(
                    session,
                    event_id=stored.id,
                    changed=changed,
                    previous_data=previous,
                    incoming=event,
                )
                return False, NotificationJob.for_event(event, fp)
        except SQLAlchemyError as exc:
            raise StoreError(str(exc)) from exc

    def _enqueue(self, job: NotificationJob, trace_id: str) -> bool:
        try:
            self._queue.enqueue(job)
        except Exception as exc:
            logger.error(
                "ingest.enqueue_failed",
                extra={"trace_id": trace_id, "job_id": job.job_id, "error": str(exc)},
            )
            return False
        return True


def _batch_message(result: BatchResult) -> str:
    if result.errors:
        message = f"Completed with {len(result.errors)} errors"
    else:
        message = "Completed successfully"
    if result.fixture_fallback:
        message += " (fixture fallback)"
    return message

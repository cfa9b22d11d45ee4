"""Per-source polling scheduler built on cancellable one-shot timers."""

from __future__ import annotations

import random
import threading
import time
import uuid
from datetime import datetime
from typing import Callable, Dict, List, Optional, Protocol, Set

from ingestion.connectors.base import MALFORMED_PAYLOAD_ERRORS, BaseAdapter, ConnectorError, RawItem
from ingestion.connectors.factory import create_adapter
from ingestion.connectors.fixtures import FixtureLoader
from ingestion.db.session import session_scope
from ingestion.models.domain import BatchResult, NormalizedEvent, SourceDTO
from ingestion.repositories import sources as source_repo
from ingestion.services.coordinator import CircuitOpenError, IngestionCoordinator, is_ingestible
from ingestion.settings import Settings, get_settings
from ingestion.utils.dates import utcnow
from ingestion.utils.logging import get_logger

logger = get_logger(__name__)


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


TimerFactory = Callable[[float, Callable[[], None]], TimerHandle]
AdapterFactory = Callable[[SourceDTO], BaseAdapter]


def thread_timer(delay_seconds: float, callback: Callable[[], None]) -> TimerHandle:
    timer = threading.Timer(delay_seconds, callback)
    timer.daemon = True
    timer.start()
    return timer


class Scheduler:
    """Keeps one pending timer per enabled source.

    Lifecycle per source: unscheduled -> scheduled -> polling -> scheduled ...
    until the source is disabled or removed from the registry. A source is
    never polled twice concurrently; different sources poll in parallel on
    their own timer threads.
    """

    def __init__(
        self,
        coordinator: IngestionCoordinator,
        settings: Optional[Settings] = None,
        *,
        adapter_factory: Optional[AdapterFactory] = None,
        timer_factory: TimerFactory = thread_timer,
        rng: Callable[[], float] = random.random,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self._settings = settings or get_settings()
        self._coordinator = coordinator
        if adapter_factory is None:
            fixtures = FixtureLoader(self._settings)
            adapter_factory = lambda source: create_adapter(source, self._settings, fixtures=fixtures)  # noqa: E731
        self._adapter_factory = adapter_factory
        self._timer_factory = timer_factory
        self._rng = rng
        self._monotonic = monotonic
        self._lock = threading.RLock()
        self._timers: Dict[str, TimerHandle] = {}
        self._sources: Dict[str, SourceDTO] = {}
        self._in_flight: Set[str] = set()
        self._reconcile_timer: Optional[TimerHandle] = None
        self._running = False

    @property
    def scheduled_source_ids(self) -> List[str]:
        with self._lock:
            return sorted(self._timers)

    def start(self) -> None:
        with self._lock:
            if self._running:
                return
            self._running = True
        logger.info("scheduler.start")
        self._reconcile_tick()

    def stop(self) -> None:
        """Cancel every pending timer; polls already running finish on their own."""
        with self._lock:
            self._running = False
            for source_id, timer in self._timers.items():
                timer.cancel()
                logger.info("scheduler.source.stopped", extra={"source_id": source_id})
            self._timers.clear()
            if self._reconcile_timer is not None:
                self._reconcile_timer.cancel()
                self._reconcile_timer = None
        logger.info("scheduler.stop")

    def reconcile(self) -> None:
        """Sync timers with the registry: schedule new sources, drop disabled ones."""
        with session_scope(self._settings) as session:
            enabled = source_repo.list_enabled_sources(session)
        with self._lock:
            if not self._running:
                return
            enabled_ids = {source.id for source in enabled}
            for source in enabled:
                self._sources[source.id] = source
                if source.id in self._timers or source.id in self._in_flight:
                    continue
                delay = self._rng() * float(self._settings.scheduler_stagger_max_seconds)
                self._schedule_locked(source.id, delay)
                logger.info(
                    "scheduler.source.scheduled",
                    extra={"source_id": source.id, "source_name": source.name, "first_poll_in": round(delay, 3)},
                )
            for source_id in [sid for sid in self._timers if sid not in enabled_ids]:
                self._timers.pop(source_id).cancel()
                self._sources.pop(source_id, None)
                logger.info("scheduler.source.unscheduled", extra={"source_id": source_id})

    def poll_source(self, source_id: str) -> Optional[BatchResult]:
        """Run one poll of `source_id` and arm its next timer."""
        with self._lock:
            if source_id in self._in_flight:
                logger.info("scheduler.poll.skipped", extra={"source_id": source_id, "reason": "in_flight"})
                return None
            self._in_flight.add(source_id)
            self._timers.pop(source_id, None)

        started = self._monotonic()
        started_at = utcnow()
        trace_id = str(uuid.uuid4())
        reschedule = True
        result: Optional[BatchResult] = None
        try:
            source = self._fresh_source(source_id)
            if source is None:
                reschedule = False
                logger.info("scheduler.source.removed", extra={"source_id": source_id})
            elif not source.enabled:
                raise CircuitOpenError(source.id, source.failure_count)
            else:
                result, reschedule = self._poll(source, trace_id, started_at)
        except CircuitOpenError as exc:
            reschedule = False
            logger.error(
                "scheduler.circuit_open",
                extra={"source_id": exc.source_id, "failure_count": exc.failure_count, "error": str(exc)},
            )
        except Exception:
            logger.exception("scheduler.poll.crashed", extra={"trace_id": trace_id, "source_id": source_id})
        finally:
            elapsed = self._monotonic() - started
            with self._lock:
                self._in_flight.discard(source_id)
                if reschedule and self._running:
                    delay = self.next_delay(source_id, elapsed)
                    self._schedule_locked(source_id, delay)
                    logger.info("scheduler.poll.next", extra={"source_id": source_id, "delay_seconds": round(delay, 3)})
                elif not reschedule:
                    self._sources.pop(source_id, None)
        return result

    def next_delay(self, source_id: str, elapsed_seconds: float) -> float:
        """max(interval - elapsed, min interval), in seconds."""
        floor = float(self._settings.scheduler_min_interval_seconds)
        source = self._sources.get(source_id)
        interval = float(source.polling_interval_seconds) if source is not None else floor
        return max(interval - elapsed_seconds, floor)

    def _poll(self, source: SourceDTO, trace_id: str, started_at: datetime) -> tuple[Optional[BatchResult], bool]:
        logger.info(
            "scheduler.poll.start",
            extra={"trace_id": trace_id, "source_id": source.id, "kind": source.kind.value},
        )
        try:
            adapter = self._adapter_factory(source)
            raw_items = adapter.fetch()
            events = self._normalize(adapter, raw_items, trace_id)
        except ConnectorError as exc:
            logger.warning(
                "scheduler.poll.failed",
                extra={"trace_id": trace_id, "source_id": source.id, "error": str(exc), "error_type": type(exc).__name__},
            )
            return None, self._record_failure(source, exc, started_at)
        except Exception as exc:
            logger.exception(
                "scheduler.poll.crashed",
                extra={"trace_id": trace_id, "source_id": source.id, "error_type": type(exc).__name__},
            )
            return None, self._record_failure(source, exc, started_at)

        logger.info(
            "scheduler.poll.fetched",
            extra={"trace_id": trace_id, "source_id": source.id, "fetched": len(raw_items), "valid": len(events)},
        )
        fallback = any(item.get("_origin") == "fixture" for item in raw_items)
        result = self._coordinator.process_batch(source, events, started_at=started_at, fixture_fallback=fallback)
        return result, True

    def _normalize(self, adapter: BaseAdapter, raw_items: List[RawItem], trace_id: str) -> List[NormalizedEvent]:
        events: List[NormalizedEvent] = []
        for raw in raw_items:
            try:
                event = adapter.normalize(raw)
            except (ConnectorError, *MALFORMED_PAYLOAD_ERRORS) as exc:
                logger.warning(
                    "scheduler.normalize_failed",
                    extra={"trace_id": trace_id, "source_id": adapter.source_id, "error": str(exc)},
                )
                continue
            if is_ingestible(event):
                events.append(event)
        return events

    def _record_failure(self, source: SourceDTO, exc: BaseException, started_at: datetime) -> bool:
        refreshed = self._coordinator.record_failure(source, exc, started_at=started_at)
        if refreshed is None:
            return False
        if not refreshed.enabled:
            logger.error(
                "scheduler.source.disabled",
                extra={"source_id": source.id, "failure_count": refreshed.failure_count},
            )
            return False
        return True

    def _fresh_source(self, source_id: str) -> Optional[SourceDTO]:
        with session_scope(self._settings) as session:
            source = source_repo.get_source(session, source_id)
        if source is not None:
            with self._lock:
                self._sources[source_id] = source
        return source

    def _schedule_locked(self, source_id: str, delay_seconds: float) -> None:
        existing = self._timers.pop(source_id, None)
        if existing is not None:
            existing.cancel()
        self._timers[source_id] = self._timer_factory(delay_seconds, lambda: self.poll_source(source_id))

    def _reconcile_tick(self) -> None:
        try:
            self.reconcile()
        except Exception:
            logger.exception("scheduler.reconcile.failed")
        with self._lock:
            if self._running:
                self._reconcile_timer = self._timer_factory(
                    float(self._settings.scheduler_reconcile_seconds), self._reconcile_tick
                )

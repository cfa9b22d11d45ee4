"""Ingestion worker entry point: scheduler plus coordinator in one process."""

from __future__ import annotations

import argparse
import signal
import threading
from typing import List, Optional

from ingestion.db.models import Base
from ingestion.db.session import get_engine
from ingestion.scheduler import Scheduler
from ingestion.services.coordinator import IngestionCoordinator, NotificationSink
from ingestion.settings import Settings, get_settings
from ingestion.utils.logging import configure_logging, get_logger
from publish.dispatcher import CeleryNotificationQueue, InMemoryNotificationQueue

logger = get_logger("ingestion.worker")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="alertflow-worker", description="Poll configured sources and ingest events.")
    parser.add_argument(
        "--create-schema",
        action="store_true",
        help="Create missing tables before starting (development only; use Alembic in deployment).",
    )
    parser.add_argument(
        "--in-memory-queue",
        action="store_true",
        help="Keep notification jobs in process instead of publishing them to Celery.",
    )
    return parser


def build_queue(in_memory: bool = False) -> NotificationSink:
    if in_memory:
        return InMemoryNotificationQueue()
    from ingestion.celery_app import get_celery_app

    return CeleryNotificationQueue(get_celery_app())


def build_scheduler(settings: Settings, queue: NotificationSink) -> Scheduler:
    return Scheduler(IngestionCoordinator(queue, settings), settings)


def run(scheduler: Scheduler, stop_event: threading.Event) -> None:
    """Start `scheduler` and block until `stop_event` is set."""
    scheduler.start()
    logger.info("worker.started")
    try:
        stop_event.wait()
    finally:
        scheduler.stop()
        logger.info("worker.stopped")


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    configure_logging(settings.structlog_level, json_enabled=settings.log_json)

    if args.create_schema:
        Base.metadata.create_all(get_engine(settings))
        logger.info("worker.schema.created")

    queue = build_queue(in_memory=args.in_memory_queue)
    scheduler = build_scheduler(settings, queue)

    stop_event = threading.Event()

    def _handle_signal(signum, frame):  # noqa: ANN001
        logger.info("worker.signal", extra={"signal": signal.Signals(signum).name})
        stop_event.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)
    run(scheduler, stop_event)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

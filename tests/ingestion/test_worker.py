from __future__ import annotations

import threading

from ingestion.worker import build_parser, build_queue, build_scheduler, run
from publish.dispatcher import InMemoryNotificationQueue


def test_parser_flags():
    args = build_parser().parse_args(["--create-schema", "--in-memory-queue"])

    assert args.create_schema is True
    assert args.in_memory_queue is True
    assert build_parser().parse_args([]).create_schema is False


def test_run_starts_and_stops_scheduler(db_settings):
    queue = build_queue(in_memory=True)
    assert isinstance(queue, InMemoryNotificationQueue)
    scheduler = build_scheduler(db_settings, queue)
    stop_event = threading.Event()
    stop_event.set()

    run(scheduler, stop_event)

    assert scheduler.scheduled_source_ids == []

"""Celery application bootstrap for the notification workers."""

from __future__ import annotations

import logging

from celery import Celery, signals

from publish.dispatcher import DELIVER_TASK_NAME, NOTIFY_QUEUE

from .settings import Settings, get_settings
from .utils.logging import configure_logging

_CELERY_APP: Celery | None = None


def create_celery_app(settings: Settings | None = None) -> Celery:
    """Build a Celery instance from settings."""
    config = settings or get_settings()
    configure_logging(config.structlog_level, json_enabled=config.log_json)

    app = Celery("alertflow", broker=config.redis_url, backend=config.redis_url)
    app.conf.update(
        task_default_queue=NOTIFY_QUEUE,
        task_default_exchange="publish",
        task_default_routing_key=NOTIFY_QUEUE,
        task_routes={DELIVER_TASK_NAME: {"queue": NOTIFY_QUEUE}},
        task_annotations={DELIVER_TASK_NAME: {"rate_limit": config.notify_rate_limit}},
        # At-least-once: a job is acked only after the dispatcher returns.
        task_acks_late=True,
        task_reject_on_worker_lost=True,
        worker_prefetch_multiplier=1,
        worker_concurrency=config.notify_concurrency,
        task_serializer="json",
        accept_content=["json"],
        result_serializer="json",
        timezone="UTC",
        enable_utc=True,
        worker_send_task_events=True,
        task_send_sent_event=True,
    )

    app.autodiscover_tasks(["ingestion.tasks"], related_name="deliver")
    _install_signal_handlers()
    return app


def get_celery_app() -> Celery:
    """Return the singleton Celery instance."""
    global _CELERY_APP
    if _CELERY_APP is None:
        _CELERY_APP = create_celery_app()
    return _CELERY_APP


def _install_signal_handlers() -> None:
    logger = logging.getLogger("ingestion.worker")

    @signals.worker_shutdown.connect(weak=False, dispatch_uid="alertflow.worker_shutdown")  # type: ignore[attr-defined]
    def _on_worker_shutdown(sender=None, **kwargs):  # noqa: ANN001
        logger.info("celery.worker.shutdown", extra={"sender": str(sender)})

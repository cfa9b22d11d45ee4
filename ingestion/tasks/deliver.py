"""Celery tasks for the notification delivery stage."""

from __future__ import annotations

from typing import Any, Callable, Dict

from celery import shared_task

from ingestion.models.domain import NotificationJob
from ingestion.settings import get_settings
from ingestion.utils.logging import get_logger
from publish.channels import build_channel
from publish.dispatcher import (
    DELIVER_TASK_NAME,
    NOTIFY_QUEUE,
    CeleryNotificationQueue,
    NotificationDispatcher,
)

# Dispatcher factory is kept pluggable for tests.
DISPATCHER_FACTORY: Callable[[], NotificationDispatcher] | None = None


def _get_dispatcher() -> NotificationDispatcher:
    if DISPATCHER_FACTORY is not None:
        return DISPATCHER_FACTORY()
    from ingestion.celery_app import get_celery_app

    settings = get_settings()
    return NotificationDispatcher(build_channel(settings), CeleryNotificationQueue(get_celery_app()), settings)


def deliver_core(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Validate a queued payload and hand it to the dispatcher; test-friendly."""
    job = NotificationJob.model_validate(payload)
    logger = get_logger(__name__)
    logger.info("notify.job.start", extra={"job_id": job.job_id, "attempt": job.attempt})
    return _get_dispatcher().handle(job).as_dict()


@shared_task(name=DELIVER_TASK_NAME, queue=NOTIFY_QUEUE, acks_late=True)
def deliver_notification(payload: Dict[str, Any]) -> Dict[str, Any]:  # pragma: no cover - thin Celery wrapper
    return deliver_core(payload)

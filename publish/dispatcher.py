"""Notification fan-out with job-level retries."""

from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Tuple

from sqlalchemy.exc import SQLAlchemyError

from ingestion.db.models import DeliveryStatus, NotificationDelivery
from ingestion.db.session import session_scope
from ingestion.models.domain import NotificationJob
from ingestion.settings import Settings, get_settings
from ingestion.utils.logging import get_logger

from publish.channels import Channel
from publish.notifier import format_alert, load_recipients

DELIVER_TASK_NAME = "ingestion.tasks.deliver.deliver_notification"
NOTIFY_QUEUE = "publish.notify"

logger = get_logger(__name__)


class NotificationQueue(Protocol):
    def enqueue(self, job: NotificationJob, delay_seconds: float = 0) -> None: ...


class InMemoryNotificationQueue:
    """Process-local queue for local runs and tests."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._items: List[Tuple[NotificationJob, float]] = []

    def enqueue(self, job: NotificationJob, delay_seconds: float = 0) -> None:
        with self._lock:
            self._items.append((job, float(delay_seconds)))

    def drain(self) -> List[Tuple[NotificationJob, float]]:
        with self._lock:
            items, self._items = self._items, []
        return items

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


class CeleryNotificationQueue:
    """Publishes jobs to the durable `publish.notify` Celery queue."""

    def __init__(self, app: Any):
        self._app = app

    def enqueue(self, job: NotificationJob, delay_seconds: float = 0) -> None:
        self._app.send_task(
            DELIVER_TASK_NAME,
            args=[job.model_dump(mode="json")],
            queue=NOTIFY_QUEUE,
            countdown=delay_seconds or None,
        )


@dataclass
class DispatchOutcome:
    job_id: str
    attempt: int
    sent: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    retry_delay_seconds: Optional[float] = None
    permanently_failed: bool = False
    error: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "attempt": self.attempt,
            "sent": len(self.sent),
            "failed": len(self.failed),
            "retry_delay_seconds": self.retry_delay_seconds,
            "permanently_failed": self.permanently_failed,
            "error": self.error,
        }


class NotificationDispatcher:
    """Resolves subscribers for a job, formats the alert and delivers it per subscriber.

    Subscribers that fail are retried by re-enqueueing a copy of the job that
    only targets them, with `attempt + 1` and a `base * 2**attempt` delay. Once
    the attempt budget is spent the remaining failures are recorded as `failed`
    deliveries and logged.

    A store failure while resolving or recording the job retries the whole job
    on the same schedule; on the last attempt it is logged and re-raised.
    """

    def __init__(self, channel: Channel, queue: NotificationQueue, settings: Optional[Settings] = None):
        self._channel = channel
        self._queue = queue
        self._settings = settings or get_settings()

    def backoff_seconds(self, attempt: int) -> float:
        return float(self._settings.notify_backoff_base_seconds) * (2 ** attempt)

    def handle(self, job: NotificationJob) -> DispatchOutcome:
        try:
            return self._deliver(job)
        except SQLAlchemyError as exc:
            if job.attempt + 1 >= self._settings.notify_max_attempts:
                logger.error(
                    "notify.job.failed",
                    extra={"job_id": job.job_id, "attempt": job.attempt, "error": str(exc)},
                )
                raise
            delay = self.backoff_seconds(job.attempt)
            self._queue.enqueue(job.model_copy(update={"attempt": job.attempt + 1}), delay_seconds=delay)
            logger.warning(
                "notify.job.retry",
                extra={"job_id": job.job_id, "attempt": job.attempt + 1, "delay_seconds": delay, "error": str(exc)},
            )
            return DispatchOutcome(job_id=job.job_id, attempt=job.attempt, retry_delay_seconds=delay, error=str(exc))

    def _deliver(self, job: NotificationJob) -> DispatchOutcome:
        outcome = DispatchOutcome(job_id=job.job_id, attempt=job.attempt)
        with session_scope(self._settings) as session:
            targets = [(str(sub.id), sub.chat_id) for sub in load_recipients(session, job)]

        text = format_alert(job, tz_name=self._settings.notify_timezone)
        errors: Dict[str, str] = {}
        chats: Dict[str, str] = {}
        for subscription_id, chat_id in targets:
            chats[subscription_id] = chat_id
            try:
                self._channel.send(chat_id, text)
            except Exception as exc:
                errors[subscription_id] = str(exc)
                outcome.failed.append(subscription_id)
                logger.warning(
                    "notify.delivery.failed",
                    extra={"job_id": job.job_id, "subscription_id": subscription_id, "attempt": job.attempt, "error": str(exc)},
                )
            else:
                outcome.sent.append(subscription_id)

        failure_status = DeliveryStatus.FAILED
        if outcome.failed and job.attempt + 1 < self._settings.notify_max_attempts:
            delay = self.backoff_seconds(job.attempt)
            retry = job.model_copy(update={"attempt": job.attempt + 1, "pending_subscription_ids": list(outcome.failed)})
            try:
                self._queue.enqueue(retry, delay_seconds=delay)
            except Exception as exc:
                logger.error("notify.retry.enqueue_failed", extra={"job_id": job.job_id, "error": str(exc)})
            else:
                failure_status = DeliveryStatus.RETRYING
                outcome.retry_delay_seconds = delay
                logger.info(
                    "notify.job.retry",
                    extra={"job_id": job.job_id, "attempt": job.attempt + 1, "delay_seconds": delay, "pending": len(outcome.failed)},
                )

        if outcome.failed and failure_status == DeliveryStatus.FAILED:
            outcome.permanently_failed = True
            logger.error(
                "notify.job.failed",
                extra={"job_id": job.job_id, "attempt": job.attempt, "failed": len(outcome.failed), "errors": errors},
            )

        self._record(job, outcome, chats, errors, failure_status)
        logger.info(
            "notify.job.completed",
            extra={"job_id": job.job_id, "attempt": job.attempt, "sent": len(outcome.sent), "failed": len(outcome.failed)},
        )
        return outcome

    def _record(
        self,
        job: NotificationJob,
        outcome: DispatchOutcome,
        chats: Dict[str, str],
        errors: Dict[str, str],
        failure_status: DeliveryStatus,
    ) -> None:
        if not outcome.sent and not outcome.failed:
            return
        with session_scope(self._settings) as session:
            for subscription_id in outcome.sent:
                session.add(_delivery_row(job, subscription_id, chats, DeliveryStatus.SENT, None))
            for subscription_id in outcome.failed:
                session.add(_delivery_row(job, subscription_id, chats, failure_status, errors.get(subscription_id)))


def _delivery_row(
    job: NotificationJob,
    subscription_id: str,
    chats: Dict[str, str],
    status: DeliveryStatus,
    error: Optional[str],
) -> NotificationDelivery:
    return NotificationDelivery(
        job_id=job.job_id,
        subscription_id=uuid.UUID(subscription_id),
        chat_id=chats.get(subscription_id),
        attempt=job.attempt,
        status=status,
        error_message=error[:512] if error else None,
    )

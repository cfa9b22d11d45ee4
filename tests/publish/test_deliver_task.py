from __future__ import annotations

import pytest

pytest.importorskip("celery")

from ingestion.db.models import Subscription
from ingestion.db.session import session_scope
from ingestion.models.domain import Category, NotificationJob, Severity
from ingestion.tasks import deliver as deliver_mod
from publish.dispatcher import InMemoryNotificationQueue, NotificationDispatcher


class RecordingChannel:
    name = "fake"

    def __init__(self) -> None:
        self.sent = []

    def send(self, chat_id: str, text: str) -> None:
        self.sent.append(chat_id)


@pytest.fixture()
def channel(monkeypatch, db_settings) -> RecordingChannel:
    recorder = RecordingChannel()
    queue = InMemoryNotificationQueue()
    monkeypatch.setattr(
        deliver_mod,
        "DISPATCHER_FACTORY",
        lambda: NotificationDispatcher(recorder, queue, db_settings),
    )
    return recorder


def test_deliver_core_validates_and_dispatches(channel):
    with session_scope() as session:
        session.add(Subscription(user_id="u1", chat_id="555"))

    job = NotificationJob(
        job_id="almaty-air-quality:aqi_Almaly_2025-01-15T14:00:00",
        category=Category.HEALTH,
        severity=Severity.HIGH,
        title="Air Quality Unhealthy for Sensitive Groups - Almaly",
    )

    result = deliver_mod.deliver_core(job.model_dump(mode="json"))

    assert channel.sent == ["555"]
    assert result["sent"] == 1
    assert result["failed"] == 0
    assert result["permanently_failed"] is False


def test_deliver_core_rejects_bad_payload(channel):
    with pytest.raises(ValueError):
        deliver_mod.deliver_core({"job_id": "x"})

from __future__ import annotations

from typing import Dict, List, Set

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from ingestion.db.models import DeliveryStatus, NotificationDelivery, Subscription
from ingestion.db.session import session_scope
from ingestion.models.domain import Category, NotificationJob, Severity
from publish.channels import DeliveryError
from publish import dispatcher as dispatcher_mod
from publish.dispatcher import InMemoryNotificationQueue, NotificationDispatcher


class RecordingChannel:
    name = "fake"

    def __init__(self, failing: Set[str] = frozenset()):
        self.failing = set(failing)
        self.sent: List[tuple] = []

    def send(self, chat_id: str, text: str) -> None:
        if chat_id in self.failing:
            raise DeliveryError(f"chat {chat_id} unreachable")
        self.sent.append((chat_id, text))


def _job(**overrides) -> NotificationJob:
    data = dict(
        job_id="almaty-weather:weather_current_2025-01-15T14:00",
        category=Category.WEATHER,
        severity=Severity.CRITICAL,
        title="Thunderstorm in Almaty",
    )
    data.update(overrides)
    return NotificationJob(**data)


@pytest.fixture()
def subscriptions(db_settings) -> Dict[str, str]:
    with session_scope() as session:
        rows = [Subscription(user_id=f"u{i}", chat_id=str(chat)) for i, chat in enumerate((100, 200, 300))]
        session.add_all(rows)
        session.flush()
        return {row.chat_id: str(row.id) for row in rows}


def _deliveries() -> List[NotificationDelivery]:
    with session_scope() as session:
        return list(session.scalars(select(NotificationDelivery).order_by(NotificationDelivery.chat_id)))


def test_delivers_to_every_matching_subscriber(subscriptions, db_settings):
    channel = RecordingChannel()
    queue = InMemoryNotificationQueue()

    outcome = NotificationDispatcher(channel, queue, db_settings).handle(_job())

    assert sorted(chat for chat, _text in channel.sent) == ["100", "200", "300"]
    assert len({text for _chat, text in channel.sent}) == 1
    assert outcome.as_dict()["sent"] == 3
    assert outcome.permanently_failed is False
    assert len(queue) == 0
    assert [row.status for row in _deliveries()] == [DeliveryStatus.SENT] * 3


def test_failed_subscriber_is_retried_alone_with_backoff(subscriptions, db_settings):
    channel = RecordingChannel(failing={"200"})
    queue = InMemoryNotificationQueue()
    dispatcher = NotificationDispatcher(channel, queue, db_settings)

    outcome = dispatcher.handle(_job())

    assert outcome.failed == [subscriptions["200"]]
    assert outcome.retry_delay_seconds == 1.0
    (retry, delay), = queue.drain()
    assert retry.attempt == 1
    assert retry.pending_subscription_ids == [subscriptions["200"]]
    assert delay == 1.0
    statuses = {row.chat_id: row.status for row in _deliveries()}
    assert statuses == {"100": DeliveryStatus.SENT, "200": DeliveryStatus.RETRYING, "300": DeliveryStatus.SENT}

    # The retry only targets the failed subscription.
    channel.failing.clear()
    channel.sent.clear()
    dispatcher.handle(retry)
    assert [chat for chat, _text in channel.sent] == ["200"]


def test_backoff_doubles_per_attempt(db_settings):
    dispatcher = NotificationDispatcher(RecordingChannel(), InMemoryNotificationQueue(), db_settings)

    assert [dispatcher.backoff_seconds(n) for n in range(3)] == [1.0, 2.0, 4.0]


def test_last_attempt_failure_is_permanent(subscriptions, db_settings, caplog):
    channel = RecordingChannel(failing={"100", "200", "300"})
    queue = InMemoryNotificationQueue()
    dispatcher = NotificationDispatcher(channel, queue, db_settings)

    with caplog.at_level("ERROR", logger="publish.dispatcher"):
        outcome = dispatcher.handle(_job(attempt=db_settings.notify_max_attempts - 1))

    assert outcome.permanently_failed is True
    assert len(queue) == 0
    assert any(record.getMessage() == "notify.job.failed" for record in caplog.records)
    rows = _deliveries()
    assert {row.status for row in rows} == {DeliveryStatus.FAILED}
    assert rows[0].error_message == "chat 100 unreachable"


def test_retry_enqueue_failure_marks_failed(subscriptions, db_settings):
    class BrokenQueue:
        def enqueue(self, job, delay_seconds=0):
            raise ConnectionError("broker down")

    outcome = NotificationDispatcher(RecordingChannel(failing={"300"}), BrokenQueue(), db_settings).handle(_job())

    assert outcome.permanently_failed is True
    statuses = {row.chat_id: row.status for row in _deliveries()}
    assert statuses["300"] == DeliveryStatus.FAILED


def test_no_subscribers_records_nothing(db_settings):
    outcome = NotificationDispatcher(RecordingChannel(), InMemoryNotificationQueue(), db_settings).handle(_job())

    assert outcome.sent == [] and outcome.failed == []
    assert _deliveries() == []


def _store_down(session, job):
    raise OperationalError("SELECT subscriptions", {}, Exception("database is locked"))


def test_store_failure_requeues_whole_job(db_settings, monkeypatch):
    monkeypatch.setattr(dispatcher_mod, "load_recipients", _store_down)
    channel = RecordingChannel()
    queue = InMemoryNotificationQueue()

    outcome = NotificationDispatcher(channel, queue, db_settings).handle(_job(attempt=1))

    assert channel.sent == []
    assert outcome.retry_delay_seconds == 2.0
    assert "database is locked" in outcome.error
    (retry, delay), = queue.drain()
    assert retry.attempt == 2
    assert retry.pending_subscription_ids is None
    assert delay == 2.0


def test_store_failure_on_last_attempt_is_logged_and_raised(db_settings, monkeypatch, caplog):
    monkeypatch.setattr(dispatcher_mod, "load_recipients", _store_down)
    queue = InMemoryNotificationQueue()
    dispatcher = NotificationDispatcher(RecordingChannel(), queue, db_settings)

    with caplog.at_level("ERROR", logger="publish.dispatcher"):
        with pytest.raises(OperationalError):
            dispatcher.handle(_job(attempt=db_settings.notify_max_attempts - 1))

    assert len(queue) == 0
    assert any(record.getMessage() == "notify.job.failed" for record in caplog.records)

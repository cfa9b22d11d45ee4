"""SQLAlchemy models for the source registry, event store and delivery log."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import Uuid

from ingestion.models.domain import Category, EventStatus, IngestionStatus, Severity, SourceKind


class Base(DeclarativeBase):
    """Base class for ORM models."""


class TimestampMixin:
    """Adds created_at/updated_at columns."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )


class DeliveryStatus(str, Enum):
    SENT = "sent"
    RETRYING = "retrying"
    FAILED = "failed"


def _enum(enum_cls: type[Enum], name: str, length: int = 16) -> SAEnum:
    return SAEnum(
        enum_cls,
        name=name,
        native_enum=False,
        length=length,
        values_callable=lambda members: [m.value for m in members],
    )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Source(TimestampMixin, Base):
    """Configured external feed polled by the scheduler."""

    __tablename__ = "sources"
    __table_args__ = (Index("ix_sources_enabled", "enabled"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    kind: Mapped[SourceKind] = mapped_column(_enum(SourceKind, "source_kind", 8), nullable=False)
    url: Mapped[str] = mapped_column(String(2048), nullable=False)
    polling_interval_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=300)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    config: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    last_poll_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    last_success_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    failure_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class Event(TimestampMixin, Base):
    """Persisted event, one row per fingerprint."""

    __tablename__ = "events"
    __table_args__ = (
        UniqueConstraint("fingerprint", name="uq_events_fingerprint"),
        Index("ix_events_category_status", "category", "status"),
        Index("ix_events_start_time", "start_time"),
        Index("ix_events_source_id", "source_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    fingerprint: Mapped[str] = mapped_column(String(64), nullable=False)
    source_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("sources.id", ondelete="CASCADE"), nullable=False
    )
    original_id: Mapped[str] = mapped_column(String(512), nullable=False)
    title: Mapped[str] = mapped_column(String(512), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    severity: Mapped[Severity] = mapped_column(_enum(Severity, "severity", 8), nullable=False)
    category: Mapped[Category] = mapped_column(_enum(Category, "event_category"), nullable=False)
    status: Mapped[EventStatus] = mapped_column(
        _enum(EventStatus, "event_status"), nullable=False, default=EventStatus.ACTIVE
    )
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    district: Mapped[str | None] = mapped_column(String(120))
    location_name: Mapped[str | None] = mapped_column(String(512))
    # Text keeps the decimal form the source reported.
    latitude: Mapped[str | None] = mapped_column(String(32))
    longitude: Mapped[str | None] = mapped_column(String(32))
    origin_url: Mapped[str | None] = mapped_column(String(2048))
    raw_payload: Mapped[dict | None] = mapped_column(JSON)


class EventUpdate(Base):
    """Append-only audit of a meaningful change between two sightings."""

    __tablename__ = "event_updates"
    __table_args__ = (
        Index("ix_event_updates_event_id", "event_id"),
        Index("ix_event_updates_detected_at", "detected_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    event_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("events.id", ondelete="CASCADE"), nullable=False
    )
    changed_fields: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    previous_data: Mapped[dict | None] = mapped_column(JSON)
    new_data: Mapped[dict | None] = mapped_column(JSON)
    detected_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )


class IngestionLog(Base):
    """One row per source poll."""

    __tablename__ = "ingestion_logs"
    __table_args__ = (
        Index("ix_ingestion_logs_source_id", "source_id"),
        Index("ix_ingestion_logs_status", "status"),
        Index("ix_ingestion_logs_started_at", "started_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    source_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("sources.id", ondelete="CASCADE"), nullable=False
    )
    status: Mapped[IngestionStatus] = mapped_column(_enum(IngestionStatus, "ingestion_status"), nullable=False)
    message: Mapped[str | None] = mapped_column(String(1024))
    events_found: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    events_created: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    events_updated: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


class Subscription(TimestampMixin, Base):
    """Chat subscriber with category and district filters ('*' matches all)."""

    __tablename__ = "subscriptions"
    __table_args__ = (
        UniqueConstraint("user_id", "chat_id", name="uq_subscriptions_user_chat"),
        Index("ix_subscriptions_active", "active"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    chat_id: Mapped[str] = mapped_column(String(64), nullable=False)
    categories: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=lambda: ["*"])
    district: Mapped[str] = mapped_column(String(120), nullable=False, default="*")
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class NotificationDelivery(Base):
    """Outcome of one delivery attempt to one subscription."""

    __tablename__ = "notification_deliveries"
    __table_args__ = (
        Index("ix_notification_deliveries_job", "job_id"),
        Index("ix_notification_deliveries_status", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    job_id: Mapped[str] = mapped_column(String(600), nullable=False)
    subscription_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True))
    chat_id: Mapped[str | None] = mapped_column(String(64))
    attempt: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[DeliveryStatus] = mapped_column(_enum(DeliveryStatus, "delivery_status"), nullable=False)
    error_message: Mapped[str | None] = mapped_column(String(512))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )

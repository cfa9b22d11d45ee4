"""Create source registry, event store, audit and delivery tables"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op


revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "sources",
        sa.Column("id", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("kind", sa.String(length=8), nullable=False),
        sa.Column("url", sa.String(length=2048), nullable=False),
        sa.Column("polling_interval_seconds", sa.Integer(), nullable=False, server_default="300"),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("config", sa.JSON(), nullable=False, server_default=sa.text("'{}'")),
        sa.Column("last_poll_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_success_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("failure_count", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
    )
    op.create_index("ix_sources_enabled", "sources", ["enabled"], unique=False)

    op.create_table(
        "events",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("fingerprint", sa.String(length=64), nullable=False),
        sa.Column("source_id", sa.String(length=64), sa.ForeignKey("sources.id", ondelete="CASCADE"), nullable=False),
        sa.Column("original_id", sa.String(length=512), nullable=False),
        sa.Column("title", sa.String(length=512), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("severity", sa.String(length=8), nullable=False),
        sa.Column("category", sa.String(length=16), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="active"),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("district", sa.String(length=120), nullable=True),
        sa.Column("location_name", sa.String(length=512), nullable=True),
        sa.Column("latitude", sa.String(length=32), nullable=True),
        sa.Column("longitude", sa.String(length=32), nullable=True),
        sa.Column("origin_url", sa.String(length=2048), nullable=True),
        sa.Column("raw_payload", sa.JSON(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("fingerprint", name="uq_events_fingerprint"),
    )
    op.create_index("ix_events_category_status", "events", ["category", "status"], unique=False)
    op.create_index("ix_events_start_time", "events", ["start_time"], unique=False)
    op.create_index("ix_events_source_id", "events", ["source_id"], unique=False)

    op.create_table(
        "event_updates",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("event_id", sa.Uuid(), sa.ForeignKey("events.id", ondelete="CASCADE"), nullable=False),
        sa.Column("changed_fields", sa.JSON(), nullable=False, server_default=sa.text("'[]'")),
        sa.Column("previous_data", sa.JSON(), nullable=True),
        sa.Column("new_data", sa.JSON(), nullable=True),
        sa.Column("detected_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
    )
    op.create_index("ix_event_updates_event_id", "event_updates", ["event_id"], unique=False)
    op.create_index("ix_event_updates_detected_at", "event_updates", ["detected_at"], unique=False)

    op.create_table(
        "ingestion_logs",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("source_id", sa.String(length=64), sa.ForeignKey("sources.id", ondelete="CASCADE"), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("message", sa.String(length=1024), nullable=True),
        sa.Column("events_found", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("events_created", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("events_updated", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("started_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_ingestion_logs_source_id", "ingestion_logs", ["source_id"], unique=False)
    op.create_index("ix_ingestion_logs_status", "ingestion_logs", ["status"], unique=False)
    op.create_index("ix_ingestion_logs_started_at", "ingestion_logs", ["started_at"], unique=False)

    op.create_table(
        "subscriptions",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("chat_id", sa.String(length=64), nullable=False),
        sa.Column("categories", sa.JSON(), nullable=False, server_default=sa.text("'[\"*\"]'")),
        sa.Column("district", sa.String(length=120), nullable=False, server_default="*"),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "chat_id", name="uq_subscriptions_user_chat"),
    )
    op.create_index("ix_subscriptions_active", "subscriptions", ["active"], unique=False)

    op.create_table(
        "notification_deliveries",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("job_id", sa.String(length=600), nullable=False),
        sa.Column("subscription_id", sa.Uuid(), nullable=True),
        sa.Column("chat_id", sa.String(length=64), nullable=True),
        sa.Column("attempt", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("error_message", sa.String(length=512), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
    )
    op.create_index("ix_notification_deliveries_job", "notification_deliveries", ["job_id"], unique=False)
    op.create_index("ix_notification_deliveries_status", "notification_deliveries", ["status"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_notification_deliveries_status", table_name="notification_deliveries")
    op.drop_index("ix_notification_deliveries_job", table_name="notification_deliveries")
    op.drop_table("notification_deliveries")
    op.drop_index("ix_subscriptions_active", table_name="subscriptions")
    op.drop_table("subscriptions")
    op.drop_index("ix_ingestion_logs_started_at", table_name="ingestion_logs")
    op.drop_index("ix_ingestion_logs_status", table_name="ingestion_logs")
    op.drop_index("ix_ingestion_logs_source_id", table_name="ingestion_logs")
    op.drop_table("ingestion_logs")
    op.drop_index("ix_event_updates_detected_at", table_name="event_updates")
    op.drop_index("ix_event_updates_event_id", table_name="event_updates")
    op.drop_table("event_updates")
    op.drop_index("ix_events_source_id", table_name="events")
    op.drop_index("ix_events_start_time", table_name="events")
    op.drop_index("ix_events_category_status", table_name="events")
    op.drop_table("events")
    op.drop_index("ix_sources_enabled", table_name="sources")
    op.drop_table("sources")

"""Database utilities for the event store."""

from .models import (  # noqa: F401
    Base,
    DeliveryStatus,
    Event,
    EventUpdate,
    IngestionLog,
    NotificationDelivery,
    Source,
    Subscription,
)
from .session import get_engine, get_sessionmaker, session_scope  # noqa: F401

__all__ = [
    "Base",
    "DeliveryStatus",
    "Event",
    "EventUpdate",
    "IngestionLog",
    "NotificationDelivery",
    "Source",
    "Subscription",
    "get_engine",
    "get_sessionmaker",
    "session_scope",
]

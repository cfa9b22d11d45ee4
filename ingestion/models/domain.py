"""Domain DTOs for the ingestion pipeline."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class Category(str, Enum):
    WEATHER = "weather"
    TRAFFIC = "traffic"
    PUBLIC_SAFETY = "public_safety"
    HEALTH = "health"
    UTILITY = "utility"
    OTHER = "other"


class EventStatus(str, Enum):
    ACTIVE = "active"
    UPDATED = "updated"
    RESOLVED = "resolved"
    CANCELLED = "cancelled"


class SourceKind(str, Enum):
    FEED = "feed"
    JSON = "json"
    HTML = "html"


class IngestionStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    ERROR = "error"


class NormalizedEvent(BaseModel):
    """Canonical, source-agnostic event produced by an adapter."""

    model_config = ConfigDict(frozen=True)

    source_id: str
    original_id: str
    title: str
    description: Optional[str] = None
    severity: Severity
    category: Category
    status: EventStatus = EventStatus.ACTIVE
    start_time: Optional[datetime] = Field(None, description="None when the source gave no usable time.")
    end_time: Optional[datetime] = None
    district: Optional[str] = None
    location_name: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    origin_url: Optional[str] = None
    raw_payload: Dict[str, Any] = Field(default_factory=dict, description="Raw item as fetched, kept for audit.")


class SourceDTO(BaseModel):
    """Snapshot of one registry row as seen by the scheduler."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: str
    name: str
    kind: SourceKind
    url: str
    polling_interval_seconds: int
    enabled: bool = True
    config: Dict[str, Any] = Field(default_factory=dict)
    failure_count: int = 0
    last_poll_at: Optional[datetime] = None
    last_success_at: Optional[datetime] = None

    @field_validator("config", mode="before")
    @classmethod
    def _none_config_to_empty(cls, value: Any) -> Any:
        return {} if value is None else value


class SourceSeed(BaseModel):
    """Registry entry as provided by configuration/seeding."""

    id: str = Field(..., min_length=1, max_length=64)
    name: str = Field(..., min_length=1)
    kind: SourceKind
    url: str = Field(..., min_length=1)
    polling_interval_seconds: int = Field(300, ge=60)
    enabled: bool = True
    config: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("id")
    @classmethod
    def _normalize_id(cls, value: str) -> str:
        source_id = value.strip()
        if not source_id:
            raise ValueError("source id cannot be blank")
        return source_id


class BatchResult(BaseModel):
    """Outcome of one ingestion batch for a single source."""

    source_id: str
    found: int = 0
    created: int = 0
    updated: int = 0
    errors: List[str] = Field(default_factory=list)
    notifications_failed: int = 0
    fixture_fallback: bool = False

    @property
    def status(self) -> IngestionStatus:
        return IngestionStatus.PARTIAL if self.errors else IngestionStatus.SUCCESS


class NotificationJob(BaseModel):
    """Unit of work consumed by the notification dispatcher."""

    job_id: str = Field(..., description="Logical event identity: <source_id>:<original_id>.")
    fingerprint: Optional[str] = None
    category: Category
    severity: Severity
    title: str
    description: Optional[str] = None
    district: Optional[str] = None
    location_name: Optional[str] = None
    start_time: Optional[datetime] = None
    origin_url: Optional[str] = None
    attempt: int = Field(0, ge=0)
    pending_subscription_ids: Optional[List[str]] = Field(
        None,
        description="Restricts a retried job to the subscriptions that failed.",
    )

    @classmethod
    def for_event(cls, event: NormalizedEvent, fingerprint: Optional[str] = None) -> "NotificationJob":
        return cls(
            job_id=f"{event.source_id}:{event.original_id}",
            fingerprint=fingerprint,
            category=event.category,
            severity=event.severity,
            title=event.title,
            description=event.description,
            district=event.district,
            location_name=event.location_name,
            start_time=event.start_time,
            origin_url=event.origin_url,
        )

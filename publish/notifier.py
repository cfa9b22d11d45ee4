from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable, Optional
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.orm import Session

from ingestion.db.models import Subscription
from ingestion.models.domain import NotificationJob

WILDCARD = "*"

SEVERITY_ICONS = {
    "low": "🔵",
    "medium": "🟡",
    "high": "🟠",
    "critical": "🔴",
}
SEVERITY_LABELS = {
    "low": "Low",
    "medium": "Medium",
    "high": "High",
    "critical": "CRITICAL",
}
CATEGORY_LABELS = {
    "weather": "Weather",
    "traffic": "Traffic",
    "public_safety": "Public Safety",
    "health": "Health",
    "utility": "Utility",
    "other": "Other",
}


def subscription_matches(subscription: Subscription, job: NotificationJob) -> bool:
    if not subscription.active:
        return False
    categories = subscription.categories or [WILDCARD]
    if WILDCARD not in categories and job.category.value not in categories:
        return False
    district = subscription.district or WILDCARD
    return district == WILDCARD or district == job.district


def load_recipients(session: Session, job: NotificationJob) -> list[Subscription]:
    """Active subscriptions matching the job, restricted to the retry set when present."""
    subscribers: Iterable[Subscription] = session.scalars(
        select(Subscription).where(Subscription.active.is_(True)).order_by(Subscription.created_at, Subscription.id)
    )
    pending = set(job.pending_subscription_ids) if job.pending_subscription_ids is not None else None
    result: list[Subscription] = []
    for sub in subscribers:
        if pending is not None and str(sub.id) not in pending:
            continue
        if subscription_matches(sub, job):
            result.append(sub)
    return result


def format_alert(job: NotificationJob, *, tz_name: str = "Asia/Almaty", now: Optional[datetime] = None) -> str:
    severity = job.severity.value
    category = job.category.value
    icon = SEVERITY_ICONS.get(severity, "⚠️")
    severity_text = SEVERITY_LABELS.get(severity, severity.upper())
    category_text = CATEGORY_LABELS.get(category, category)

    message = f"{icon} {severity_text} {category_text}\n"
    message += f"*{job.title}*\n"
    if job.description:
        message += f"\n{job.description}\n"

    location = job.location_name or job.district or "Unknown location"
    message += f"\n📍 {location} | ⏰ {_display_time(job.start_time or now, tz_name)}"
    if job.origin_url:
        message += f"\n🔗 [More info]({job.origin_url})"
    return message


def _display_time(value: Optional[datetime], tz_name: str) -> str:
    moment = value or datetime.now(timezone.utc)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(ZoneInfo(tz_name)).strftime("%d.%m.%Y %H:%M")

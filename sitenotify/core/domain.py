# sitenotify/core/domain.py
from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


SYSTEM_SENDER = "system"


# ============================================================================
# ENUMS
# ============================================================================

class NotificationType(str, Enum):
    MATERIAL_APPROVAL = "material_approval"
    DAILY_REPORT_REMINDER = "daily_report_reminder"
    DAILY_REPORT_SUBMISSION = "daily_report_submission"
    DAILY_REPORT_APPROVAL = "daily_report_approval"
    DAILY_REPORT_REJECTION = "daily_report_rejection"
    SAFETY_ALERT = "safety_alert"
    EQUIPMENT_MAINTENANCE = "equipment_maintenance"
    SITE_ANNOUNCEMENT = "site_announcement"
    SYSTEM_NOTICE = "system_notice"


class Channel(str, Enum):
    PUSH = "push"
    EMAIL = "email"
    IN_APP = "in_app"  # Log-only, read by the in-app notification centre


class DeliveryStatus(str, Enum):
    DELIVERED = "delivered"
    FAILED = "failed"


class Urgency(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


# ============================================================================
# RECIPIENT
# ============================================================================

@dataclass
class Recipient:
    """A profile row as seen by the dispatch engine."""
    id: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    role: Optional[str] = None
    site_id: Optional[str] = None
    push_subscription: Any = None  # Opaque {endpoint, keys} object, dict or JSON string
    notification_preferences: dict[str, Any] = field(default_factory=dict)

    def preference(self, key: str) -> Any:
        """Raw preference value, None when unset"""
        return (self.notification_preferences or {}).get(key)


def parse_push_subscription(raw: Any) -> dict[str, Any] | None:
    """
    Normalize a stored subscription into a dict with a usable endpoint.

    Returns None for anything that cannot be addressed: missing value,
    unparseable JSON, non-object JSON, or an endpoint that is not an
    http(s) URL.
    """
    if raw is None:
        return None

    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError:
            return None

    if not isinstance(raw, dict):
        return None

    endpoint = raw.get("endpoint")
    if not isinstance(endpoint, str) or not endpoint.startswith(("https://", "http://")):
        return None

    return raw


# ============================================================================
# PAYLOAD
# ============================================================================

@dataclass(frozen=True)
class NotificationAction:
    action: str
    title: str
    icon: Optional[str] = None

    def to_dict(self) -> dict[str, str]:
        result = {"action": self.action, "title": self.title}
        if self.icon:
            result["icon"] = self.icon
        return result


@dataclass(frozen=True)
class NotificationPayload:
    """
    Channel-agnostic message content.

    Frozen: per-recipient enrichment goes through ``for_recipient()``,
    which returns a copy with its own ``data`` dict.
    """
    title: str
    body: str
    icon: str = "/icons/icon-192x192.png"
    badge: str = "/icons/badge-icon.png"
    url: Optional[str] = None
    type: Optional[str] = None
    data: dict[str, Any] = field(default_factory=dict)
    actions: tuple[NotificationAction, ...] = ()
    tag: Optional[str] = None
    require_interaction: bool = False
    silent: bool = False
    vibrate: tuple[int, ...] = ()
    urgency: Urgency = Urgency.MEDIUM
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self) -> None:
        # Accept the plain JSON shapes callers build (strings, lists, action dicts)
        object.__setattr__(self, "urgency", Urgency(self.urgency))
        object.__setattr__(self, "actions", tuple(
            a if isinstance(a, NotificationAction) else NotificationAction(**a)
            for a in (self.actions or ())
        ))
        object.__setattr__(self, "vibrate", tuple(self.vibrate or ()))

    def for_recipient(self, recipient_id: str, notification_type: str) -> "NotificationPayload":
        data = dict(self.data)
        data["notificationType"] = notification_type
        data["userId"] = recipient_id
        return replace(self, data=data)

    @property
    def link(self) -> Optional[str]:
        """Deep link path: data.url wins over the top-level url"""
        return self.data.get("url") or self.url

    def to_push_json(self) -> str:
        """Serialize to the JSON document the service worker expects."""
        document: dict[str, Any] = {
            "title": self.title,
            "body": self.body,
            "icon": self.icon,
            "badge": self.badge,
            "data": {**self.data, "url": self.link or "/dashboard"},
            "requireInteraction": self.require_interaction,
            "silent": self.silent,
            "urgency": self.urgency.value,
            "timestamp": int(self.timestamp.timestamp() * 1000),
        }
        if self.type:
            document["data"].setdefault("type", self.type)
        if self.actions:
            document["actions"] = [a.to_dict() for a in self.actions]
        if self.tag:
            document["tag"] = self.tag
        if self.vibrate:
            document["vibrate"] = list(self.vibrate)
        return json.dumps(document, ensure_ascii=False, default=str)


# ============================================================================
# REQUEST / RESULT
# ============================================================================

@dataclass(frozen=True)
class DedupeKey:
    """Metadata field checked against prior log rows (e.g. work_date)."""
    key: str
    value: str


@dataclass
class DispatchRequest:
    recipient_ids: list[str]
    payload: NotificationPayload
    notification_type: NotificationType
    sender_id: str = SYSTEM_SENDER
    dedupe: Optional[DedupeKey] = None
    metadata: dict[str, Any] = field(default_factory=dict)
    deadline_seconds: Optional[float] = None

    def __post_init__(self) -> None:
        # Accept plain strings from callers, reject unknown types early
        self.notification_type = NotificationType(self.notification_type)
        if not self.recipient_ids:
            raise ValueError("recipient_ids must not be empty")
        if len(set(self.recipient_ids)) != len(self.recipient_ids):
            raise ValueError("recipient_ids must be unique")
        if not self.sender_id:
            self.sender_id = SYSTEM_SENDER


@dataclass
class NotificationLogEntry:
    """One immutable audit row per recipient outcome."""
    recipient_id: str
    notification_type: str
    title: str
    body: str
    status: DeliveryStatus
    channel: Channel
    sent_by: str
    sent_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    target_role: Optional[str] = None
    target_site_id: Optional[str] = None
    error_message: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class RecipientOutcome:
    """What happened to one recipient in one dispatch call."""
    recipient_id: str
    channel: Optional[Channel] = None  # None = opted out / no row written
    status: Optional[DeliveryStatus] = None
    error: Optional[str] = None
    opted_out: bool = False
    subscription_cleared: bool = False
    log_error: Optional[str] = None


@dataclass
class DispatchResult:
    """Counts for one dispatch call. ``skipped`` is opted_out + deduped; ``missing`` is reported on its own."""
    total: int
    push_count: int = 0
    email_count: int = 0
    in_app_count: int = 0
    failed_count: int = 0
    processed: int = 0
    skipped: int = 0
    deduped: int = 0
    opted_out: int = 0
    missing: int = 0
    errors: int = 0
    timed_out: int = 0
    log_failures: int = 0
    outcomes: list[RecipientOutcome] = field(default_factory=list)

    def to_dict(self) -> dict[str, int]:
        return {
            "pushCount": self.push_count,
            "emailCount": self.email_count,
            "inAppCount": self.in_app_count,
            "failedCount": self.failed_count,
            "skipped": self.skipped,
            "processed": self.processed,
            "total": self.total,
        }

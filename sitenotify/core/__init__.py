# sitenotify/core/__init__.py
"""
Dispatch core -- provider-agnostic notification logic.

Domain models, collaborator protocols (ports), preference evaluation,
channel selection and the dispatch orchestrator. Storage and delivery
implementations live in ``sitenotify.infra``.

Canonical imports:
    from sitenotify.core import NotificationDispatcher, DispatchRequest
"""
from sitenotify.core.dispatcher import NotificationDispatcher
from sitenotify.core.domain import (
    Channel,
    DedupeKey,
    DeliveryStatus,
    DispatchRequest,
    DispatchResult,
    NotificationPayload,
    NotificationType,
    Recipient,
    Urgency,
)
from sitenotify.core.errors import EmailSendError, PushSendError, RecipientFetchError

__all__ = [
    "Channel",
    "DedupeKey",
    "DeliveryStatus",
    "DispatchRequest",
    "DispatchResult",
    "EmailSendError",
    "NotificationDispatcher",
    "NotificationPayload",
    "NotificationType",
    "PushSendError",
    "Recipient",
    "RecipientFetchError",
    "Urgency",
]

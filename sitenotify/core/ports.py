# sitenotify/core/ports.py
from __future__ import annotations
from typing import Any, Protocol, Sequence

from sitenotify.core.domain import DedupeKey, NotificationLogEntry, Recipient, Urgency


# ============================================================================
# STORAGE PROTOCOLS (asyncpg implementations live in sitenotify.infra)
# ============================================================================

class AsyncRecipientStore(Protocol):
    async def fetch_recipients(self, ids: Sequence[str]) -> list[Recipient]:
        """Bulk read. Raises on any storage failure, never returns a partial list."""
        ...

    async def clear_push_subscription(self, recipient_id: str) -> None:
        """Null the stored subscription. Idempotent."""
        ...

    async def find_recipient_ids(
        self,
        *,
        site_ids: Sequence[str] | None = None,
        roles: Sequence[str] | None = None,
    ) -> list[str]: ...


class AsyncNotificationLogRepository(Protocol):
    async def append(self, entry: NotificationLogEntry) -> None: ...

    async def find_notified_recipient_ids(
        self,
        recipient_ids: Sequence[str],
        notification_type: str,
        dedupe: DedupeKey,
    ) -> set[str]:
        """IDs with a prior row for this type whose metadata[key] == value."""
        ...


# ============================================================================
# DELIVERY PROTOCOLS
# ============================================================================

class PushSender(Protocol):
    def is_configured(self) -> bool: ...

    async def send(
        self,
        subscription: dict[str, Any],
        payload: str,
        *,
        urgency: Urgency = Urgency.MEDIUM,
    ) -> None:
        """Raises PushSendError on provider failure."""
        ...


class EmailSender(Protocol):
    def is_configured(self) -> bool: ...

    async def send(
        self,
        to: str,
        subject: str,
        body: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Raises EmailSendError on provider failure."""
        ...

# sitenotify/infra/push_sender.py
"""
Web Push delivery adapter (VAPID, via pywebpush).

Error classification (PushSendError.is_stale):
- 404 Not Found / 410 Gone → subscription expired or was revoked by the
  browser; the stored subscription must be cleared.
- Anything else (413 payload too large, 429, 5xx, timeouts, malformed
  subscription keys) → failure for this attempt only, subscription kept.

No retries here: a failed recipient is re-notified only when the caller
re-triggers the whole dispatch.

pywebpush is synchronous (requests); sends run in the loop's default
executor so the dispatch fan-out is not blocked.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any

import requests
from pywebpush import WebPushException, webpush

from sitenotify.config import Settings
from sitenotify.core.domain import Urgency
from sitenotify.core.errors import STALE_STATUS_CODES, PushSendError
from sitenotify.infra.logging_config import get_logger

logger = get_logger(__name__)

# RFC 8030 Urgency header values
_URGENCY_HEADER = {
    Urgency.CRITICAL: "high",
    Urgency.HIGH: "high",
    Urgency.MEDIUM: "normal",
    Urgency.LOW: "low",
}


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PushConfig:
    """Process-wide VAPID signing configuration, built once at startup."""
    subject: str | None
    public_key: str | None
    private_key: str | None
    timeout_seconds: float = 10.0
    ttl_seconds: int = 86400

    @classmethod
    def from_settings(cls, s: Settings) -> "PushConfig":
        return cls(
            subject=s.vapid_subject,
            public_key=s.vapid_public_key,
            private_key=s.vapid_private_key,
            timeout_seconds=s.push_timeout_seconds,
            ttl_seconds=s.push_ttl_seconds,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.subject and self.public_key and self.private_key)


# ---------------------------------------------------------------------------
# Sender
# ---------------------------------------------------------------------------

class WebPushSender:
    """Sends one encrypted Web Push message per call."""

    def __init__(self, config: PushConfig):
        self._config = config

    def is_configured(self) -> bool:
        return self._config.is_configured

    async def send(
        self,
        subscription: dict[str, Any],
        payload: str,
        *,
        urgency: Urgency = Urgency.MEDIUM,
    ) -> None:
        """
        Deliver ``payload`` to one subscription.

        Raises:
            PushSendError: provider rejected the message or the request failed.
        """
        if not self.is_configured():
            raise PushSendError("Push provider is not configured (missing VAPID keys)")

        loop = asyncio.get_running_loop()
        await loop.run_in_executor(
            None, self._send_blocking, subscription, payload, Urgency(urgency),
        )

    def _send_blocking(self, subscription: dict[str, Any], payload: str, urgency: Urgency) -> None:
        try:
            webpush(
                subscription_info=subscription,
                data=payload,
                vapid_private_key=self._config.private_key,
                # pywebpush adds aud/exp to the claims dict, give it a fresh one
                vapid_claims={"sub": self._config.subject},
                ttl=self._config.ttl_seconds,
                timeout=self._config.timeout_seconds,
                headers={"Urgency": _URGENCY_HEADER[urgency]},
            )
        except WebPushException as exc:
            response = getattr(exc, "response", None)
            status_code = getattr(response, "status_code", None)
            raise PushSendError(
                _describe_failure(status_code, exc), status_code=status_code,
            ) from exc
        except requests.RequestException as exc:
            raise PushSendError(f"Push request failed: {type(exc).__name__}: {exc}") from exc
        except (TypeError, ValueError) as exc:
            # Raised for subscriptions with missing/invalid keys
            raise PushSendError(f"Invalid push subscription: {exc}") from exc


def _describe_failure(status_code: int | None, exc: Exception) -> str:
    if status_code in STALE_STATUS_CODES:
        return f"Push subscription expired ({status_code})"
    if status_code is not None:
        return f"Push service error {status_code}: {exc}"
    return f"Push send failed: {exc}"

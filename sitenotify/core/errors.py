# sitenotify/core/errors.py
from __future__ import annotations

STALE_STATUS_CODES = frozenset({404, 410})


class RecipientFetchError(Exception):
    """Recipient store could not be read; the whole dispatch is aborted."""


class PushSendError(Exception):
    """Error delivering a push message.

    Attributes:
        status_code: HTTP status from the push service (None for network
                     errors and client-side failures).
    """

    def __init__(self, message: str, *, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)

    @property
    def is_stale(self) -> bool:
        """404/410: the subscription no longer exists and must be cleared."""
        return self.status_code in STALE_STATUS_CODES


class EmailSendError(Exception):
    """SMTP delivery failed."""

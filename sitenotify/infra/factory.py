# sitenotify/infra/factory.py
"""
Wiring: settings → adapters → NotificationDispatcher.

Provider configuration is read from settings exactly once, here, and
passed down explicitly; nothing below this module reads global state to
decide whether push is available.
"""
from __future__ import annotations

from sitenotify.config import Settings, settings as default_settings
from sitenotify.core.dispatcher import NotificationDispatcher
from sitenotify.core.notification_helpers import NotificationHelpers
from sitenotify.infra.email_sender import SmtpConfig, SmtpEmailSender
from sitenotify.infra.pg_notification_log_repo_async import AsyncPostgresNotificationLogRepository
from sitenotify.infra.pg_recipient_repo_async import AsyncPostgresRecipientStore
from sitenotify.infra.push_sender import PushConfig, WebPushSender

_dispatcher: NotificationDispatcher | None = None
_recipient_store: AsyncPostgresRecipientStore | None = None


def build_dispatcher(s: Settings | None = None) -> NotificationDispatcher:
    """Create a dispatcher backed by Postgres, pywebpush and SMTP."""
    global _recipient_store

    s = s or default_settings
    if _recipient_store is None:
        _recipient_store = AsyncPostgresRecipientStore()

    return NotificationDispatcher(
        recipients=_recipient_store,
        logs=AsyncPostgresNotificationLogRepository(),
        push=WebPushSender(PushConfig.from_settings(s)),
        email=SmtpEmailSender(SmtpConfig.from_settings(s)),
        max_concurrency=s.dispatch_max_concurrency,
        deadline_seconds=s.dispatch_deadline_seconds,
        in_app_fallback=s.in_app_fallback_enabled,
        app_base_url=s.app_base_url,
        email_subject_prefix=s.email_subject_prefix,
        email_default_path=s.email_default_path,
    )


def get_dispatcher() -> NotificationDispatcher:
    """Process-wide dispatcher, created on first use."""
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = build_dispatcher()
    return _dispatcher


def get_notification_helpers() -> NotificationHelpers:
    dispatcher = get_dispatcher()
    return NotificationHelpers(dispatcher, _recipient_store)

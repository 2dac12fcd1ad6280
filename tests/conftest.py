# tests/conftest.py
"""Pytest configuration and in-memory fakes for the dispatch ports"""
import asyncio
import sys
from pathlib import Path

import pytest

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from sitenotify.core.domain import NotificationLogEntry, Recipient  # noqa: E402
from sitenotify.core.errors import EmailSendError, PushSendError  # noqa: E402


class FakeRecipientStore:
    def __init__(self, recipients=None, *, fail_fetch: Exception | None = None):
        self.recipients: dict[str, Recipient] = {r.id: r for r in (recipients or [])}
        self.fail_fetch = fail_fetch
        self.fail_clear: Exception | None = None
        self.cleared: list[str] = []
        self.fetch_calls: list[list[str]] = []

    async def fetch_recipients(self, ids):
        self.fetch_calls.append(list(ids))
        if self.fail_fetch is not None:
            raise self.fail_fetch
        return [self.recipients[i] for i in ids if i in self.recipients]

    async def clear_push_subscription(self, recipient_id):
        if self.fail_clear is not None:
            raise self.fail_clear
        self.cleared.append(recipient_id)
        if recipient_id in self.recipients:
            self.recipients[recipient_id].push_subscription = None

    async def find_recipient_ids(self, *, site_ids=None, roles=None):
        result = []
        for r in self.recipients.values():
            if site_ids and r.site_id not in site_ids:
                continue
            if roles and r.role not in roles:
                continue
            result.append(r.id)
        return result


class FakeLogRepository:
    def __init__(self):
        self.entries: list[NotificationLogEntry] = []
        self.fail_append_for: set[str] = set()
        self.fail_lookup: Exception | None = None

    async def append(self, entry):
        if entry.recipient_id in self.fail_append_for:
            raise ConnectionError("log store unavailable")
        self.entries.append(entry)

    async def find_notified_recipient_ids(self, recipient_ids, notification_type, dedupe):
        if self.fail_lookup is not None:
            raise self.fail_lookup
        return {
            e.recipient_id for e in self.entries
            if e.notification_type == notification_type
            and e.metadata.get(dedupe.key) == dedupe.value
            and e.recipient_id in recipient_ids
        }

    def for_recipient(self, recipient_id):
        return [e for e in self.entries if e.recipient_id == recipient_id]


class FakePushSender:
    def __init__(self, configured: bool = True):
        self.configured = configured
        self.sent: list[tuple[dict, str, object]] = []
        self.errors: dict[str, Exception] = {}  # endpoint -> exception
        self.delays: dict[str, float] = {}  # endpoint -> seconds
        self.in_flight = 0
        self.max_in_flight = 0

    def is_configured(self):
        return self.configured

    async def send(self, subscription, payload, *, urgency=None):
        endpoint = subscription["endpoint"]
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delays.get(endpoint, 0))
            if endpoint in self.errors:
                raise self.errors[endpoint]
            self.sent.append((subscription, payload, urgency))
        finally:
            self.in_flight -= 1


class FakeEmailSender:
    def __init__(self, configured: bool = True):
        self.configured = configured
        self.sent: list[dict] = []
        self.fail_for: set[str] = set()

    def is_configured(self):
        return self.configured

    async def send(self, to, subject, body, metadata=None):
        if to in self.fail_for:
            raise EmailSendError(f"SMTP send to {to} failed: 550 mailbox unavailable")
        self.sent.append({"to": to, "subject": subject, "body": body, "metadata": metadata})


@pytest.fixture
def recipient_store():
    return FakeRecipientStore()


@pytest.fixture
def log_repo():
    return FakeLogRepository()


@pytest.fixture
def push_sender():
    return FakePushSender()


@pytest.fixture
def email_sender():
    return FakeEmailSender()


@pytest.fixture
def make_dispatcher(recipient_store, log_repo, push_sender, email_sender):
    from sitenotify.core.dispatcher import NotificationDispatcher

    def _make(**kwargs):
        kwargs.setdefault("app_base_url", "https://site.example.com")
        return NotificationDispatcher(recipient_store, log_repo, push_sender, email_sender, **kwargs)

    return _make


@pytest.fixture
def stale_push_error():
    return PushSendError("Push subscription expired (410)", status_code=410)


@pytest.fixture
def unconfigured_push_sender():
    return FakePushSender(configured=False)

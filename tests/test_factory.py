# tests/test_factory.py
"""Tests for dispatcher wiring in sitenotify/infra/factory.py"""
from sitenotify.config import Settings
from sitenotify.infra.factory import build_dispatcher


def test_build_dispatcher_without_vapid_reports_push_disabled():
    s = Settings(smtp_host="smtp.example.com", smtp_from="noreply@example.com", _env_file=None)

    dispatcher = build_dispatcher(s)

    assert dispatcher.push_available is False
    assert dispatcher.email_available is True


def test_build_dispatcher_with_vapid():
    s = Settings(
        vapid_subject="mailto:ops@example.com",
        vapid_public_key="pub",
        vapid_private_key="priv",
        email_notifications_enabled=False,
        smtp_host="smtp.example.com",
        smtp_from="noreply@example.com",
        dispatch_max_concurrency=0,
        _env_file=None,
    )

    dispatcher = build_dispatcher(s)

    assert dispatcher.push_available is True
    assert dispatcher.email_available is False
    assert dispatcher._max_concurrency == 1

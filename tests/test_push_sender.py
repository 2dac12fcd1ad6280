# tests/test_push_sender.py
"""Tests for the Web Push adapter in sitenotify/infra/push_sender.py"""
from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
import requests
from pywebpush import WebPushException

from sitenotify.core.domain import Urgency
from sitenotify.core.errors import PushSendError
from sitenotify.infra.push_sender import PushConfig, WebPushSender

SUB = {"endpoint": "https://fcm.googleapis.com/fcm/send/abc", "keys": {"p256dh": "k", "auth": "a"}}


@pytest.fixture
def config():
    return PushConfig(
        subject="mailto:ops@example.com",
        public_key="BPublicKey",
        private_key="private-key",
        timeout_seconds=5.0,
        ttl_seconds=3600,
    )


def _web_push_error(status_code: int) -> WebPushException:
    response = MagicMock()
    response.status_code = status_code
    return WebPushException(f"Push failed: {status_code}", response=response)


class TestPushConfig:
    def test_configured(self, config):
        assert config.is_configured is True

    @pytest.mark.parametrize("missing", ["subject", "public_key", "private_key"])
    def test_missing_key(self, config, missing):
        values = {"subject": config.subject, "public_key": config.public_key, "private_key": config.private_key}
        values[missing] = None
        assert PushConfig(**values).is_configured is False

    def test_from_settings(self):
        s = SimpleNamespace(
            vapid_subject="mailto:a@b.c",
            vapid_public_key="pub",
            vapid_private_key="priv",
            push_timeout_seconds=7.0,
            push_ttl_seconds=60,
        )
        cfg = PushConfig.from_settings(s)
        assert cfg.is_configured
        assert cfg.timeout_seconds == 7.0
        assert cfg.ttl_seconds == 60


class TestWebPushSender:
    @pytest.mark.asyncio
    async def test_send_calls_webpush(self, config):
        sender = WebPushSender(config)

        with patch("sitenotify.infra.push_sender.webpush") as mock_webpush:
            await sender.send(SUB, '{"title": "t"}', urgency=Urgency.CRITICAL)

        kwargs = mock_webpush.call_args.kwargs
        assert kwargs["subscription_info"] == SUB
        assert kwargs["data"] == '{"title": "t"}'
        assert kwargs["vapid_private_key"] == "private-key"
        assert kwargs["vapid_claims"] == {"sub": "mailto:ops@example.com"}
        assert kwargs["ttl"] == 3600
        assert kwargs["timeout"] == 5.0
        assert kwargs["headers"] == {"Urgency": "high"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("urgency,header", [
        (Urgency.HIGH, "high"),
        (Urgency.MEDIUM, "normal"),
        (Urgency.LOW, "low"),
        ("low", "low"),
    ])
    async def test_urgency_header(self, config, urgency, header):
        with patch("sitenotify.infra.push_sender.webpush") as mock_webpush:
            await WebPushSender(config).send(SUB, "{}", urgency=urgency)
        assert mock_webpush.call_args.kwargs["headers"]["Urgency"] == header

    @pytest.mark.asyncio
    async def test_not_configured_raises(self):
        sender = WebPushSender(PushConfig(subject=None, public_key=None, private_key=None))
        assert sender.is_configured() is False

        with patch("sitenotify.infra.push_sender.webpush") as mock_webpush:
            with pytest.raises(PushSendError, match="not configured"):
                await sender.send(SUB, "{}")
        mock_webpush.assert_not_called()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status_code", [404, 410])
    async def test_gone_subscription_is_stale(self, config, status_code):
        with patch("sitenotify.infra.push_sender.webpush", side_effect=_web_push_error(status_code)):
            with pytest.raises(PushSendError) as exc_info:
                await WebPushSender(config).send(SUB, "{}")

        assert exc_info.value.status_code == status_code
        assert exc_info.value.is_stale is True
        assert "expired" in str(exc_info.value)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status_code", [400, 413, 429, 500, 503])
    async def test_other_status_is_not_stale(self, config, status_code):
        with patch("sitenotify.infra.push_sender.webpush", side_effect=_web_push_error(status_code)):
            with pytest.raises(PushSendError) as exc_info:
                await WebPushSender(config).send(SUB, "{}")

        assert exc_info.value.status_code == status_code
        assert exc_info.value.is_stale is False

    @pytest.mark.asyncio
    async def test_network_error(self, config):
        error = requests.ConnectionError("connection refused")
        with patch("sitenotify.infra.push_sender.webpush", side_effect=error):
            with pytest.raises(PushSendError) as exc_info:
                await WebPushSender(config).send(SUB, "{}")

        assert exc_info.value.status_code is None
        assert exc_info.value.is_stale is False

    @pytest.mark.asyncio
    async def test_web_push_error_without_response(self, config):
        with patch("sitenotify.infra.push_sender.webpush", side_effect=WebPushException("bad")):
            with pytest.raises(PushSendError) as exc_info:
                await WebPushSender(config).send(SUB, "{}")

        assert exc_info.value.status_code is None

    @pytest.mark.asyncio
    async def test_invalid_subscription_keys(self, config):
        with patch("sitenotify.infra.push_sender.webpush", side_effect=ValueError("Incorrect padding")):
            with pytest.raises(PushSendError, match="Invalid push subscription"):
                await WebPushSender(config).send(SUB, "{}")

# sitenotify/infra/email_sender.py
"""
Email delivery adapter (SMTP).

Used as the fallback channel when a recipient cannot receive push but has
opted into email. One message per call, no retries.
"""
from __future__ import annotations

import asyncio
import smtplib
from dataclasses import dataclass
from email.header import Header
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr
from typing import Any

from sitenotify.config import Settings
from sitenotify.core.errors import EmailSendError
from sitenotify.infra.logging_config import get_logger, mask_email

logger = get_logger(__name__)


@dataclass(frozen=True)
class SmtpConfig:
    host: str | None
    port: int = 587
    user: str | None = None
    password: str | None = None
    sender: str | None = None
    starttls: bool = True
    timeout_seconds: float = 15.0
    sender_name: str = "현장 알림"

    @classmethod
    def from_settings(cls, s: Settings) -> "SmtpConfig":
        return cls(
            host=s.smtp_host if s.email_notifications_enabled else None,
            port=s.smtp_port,
            user=s.smtp_user,
            password=s.smtp_password,
            sender=s.smtp_from or s.smtp_user,
            starttls=s.smtp_starttls,
            timeout_seconds=s.smtp_timeout_seconds,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.host and self.sender)


class SmtpEmailSender:
    """Sends plain-text UTF-8 mail through a single SMTP relay."""

    def __init__(self, config: SmtpConfig):
        self._config = config

    def is_configured(self) -> bool:
        return self._config.is_configured

    async def send(
        self,
        to: str,
        subject: str,
        body: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        if not self.is_configured():
            raise EmailSendError("SMTP is not configured")

        msg = self._build_message(to, subject, body, metadata or {})

        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._send_smtp, msg, to)
        except (smtplib.SMTPException, OSError) as exc:
            raise EmailSendError(f"SMTP send to {mask_email(to)} failed: {type(exc).__name__}: {exc}") from exc

        logger.debug("Email sent to %s", mask_email(to))

    def _build_message(self, to: str, subject: str, body: str, metadata: dict[str, Any]) -> MIMEMultipart:
        msg = MIMEMultipart()
        msg["From"] = formataddr((str(Header(self._config.sender_name, "utf-8")), self._config.sender))
        msg["To"] = to
        msg["Subject"] = str(Header(subject, "utf-8"))

        # Trace headers let bounces be matched back to the log row
        notification_type = metadata.get("notification_type")
        if notification_type:
            msg["X-Notification-Type"] = str(notification_type)
        recipient_id = metadata.get("recipient_id")
        if recipient_id:
            msg["X-Recipient-Id"] = str(recipient_id)

        msg.attach(MIMEText(body, "plain", "utf-8"))
        return msg

    def _send_smtp(self, msg: MIMEMultipart, to: str) -> None:
        """Send via SMTP (blocking)"""
        if self._config.port == 465:
            server = smtplib.SMTP_SSL(self._config.host, self._config.port, timeout=self._config.timeout_seconds)
        else:
            server = smtplib.SMTP(self._config.host, self._config.port, timeout=self._config.timeout_seconds)

        with server:
            if self._config.starttls and self._config.port != 465:
                server.starttls()
            if self._config.user and self._config.password:
                server.login(self._config.user, self._config.password)
            server.send_message(msg, from_addr=self._config.sender, to_addrs=[to])


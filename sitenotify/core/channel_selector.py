# sitenotify/core/channel_selector.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from sitenotify.core.domain import Channel, Recipient, parse_push_subscription
from sitenotify.core.preferences import email_allowed, push_allowed


@dataclass(frozen=True)
class ChannelDecision:
    channel: Optional[Channel]  # None = no channel eligible
    subscription: Optional[dict[str, Any]] = None
    reason: str = ""


def select_channel(
    recipient: Recipient,
    *,
    push_available: bool,
    email_available: bool,
) -> ChannelDecision:
    """
    Pick exactly one delivery channel for a recipient.

    Push first, email as fallback, otherwise nothing. The decision is made
    up front and never revisited after a delivery failure, so one dispatch
    never produces both a push and an email for the same recipient.
    """
    subscription = parse_push_subscription(recipient.push_subscription)

    if subscription is not None and push_allowed(recipient) and push_available:
        return ChannelDecision(Channel.PUSH, subscription=subscription)

    if email_allowed(recipient) and recipient.email and email_available:
        return ChannelDecision(Channel.EMAIL)

    if subscription is None:
        reason = "no_subscription"
    elif not push_allowed(recipient):
        reason = "push_disabled_by_user"
    else:
        reason = "push_provider_unconfigured"
    return ChannelDecision(None, reason=reason)

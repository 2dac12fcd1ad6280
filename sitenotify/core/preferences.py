# sitenotify/core/preferences.py
"""
Preference evaluation: which profile flag gates which notification type.

Every NotificationType must have an entry in PREFERENCE_KEYS. Types that
no flag can silence map to None explicitly, so adding a new type without
deciding its preference key fails at import time instead of silently
bypassing opt-out.
"""
from __future__ import annotations

from sitenotify.core.domain import NotificationType, Recipient

PUSH_ENABLED = "push_enabled"
EMAIL_ENABLED = "email_enabled"

PREFERENCE_KEYS: dict[NotificationType, str | None] = {
    NotificationType.MATERIAL_APPROVAL: "material_approvals",
    NotificationType.DAILY_REPORT_REMINDER: "daily_report_reminders",
    NotificationType.DAILY_REPORT_SUBMISSION: "daily_report_updates",
    NotificationType.DAILY_REPORT_APPROVAL: "daily_report_updates",
    NotificationType.DAILY_REPORT_REJECTION: "daily_report_updates",
    NotificationType.SAFETY_ALERT: "safety_alerts",
    NotificationType.EQUIPMENT_MAINTENANCE: "equipment_maintenance",
    NotificationType.SITE_ANNOUNCEMENT: "site_announcements",
    NotificationType.SYSTEM_NOTICE: None,
}

_unmapped = set(NotificationType) - set(PREFERENCE_KEYS)
if _unmapped:
    raise RuntimeError(
        f"Notification types without a preference key decision: {sorted(t.value for t in _unmapped)}"
    )


def preference_key_for(notification_type: NotificationType | str) -> str | None:
    return PREFERENCE_KEYS[NotificationType(notification_type)]


def is_opted_out(recipient: Recipient, notification_type: NotificationType | str) -> bool:
    """True only when the mapped category flag is explicitly False."""
    key = preference_key_for(notification_type)
    if key is None:
        return False
    return recipient.preference(key) is False


def push_allowed(recipient: Recipient) -> bool:
    """Push defaults to enabled."""
    return recipient.preference(PUSH_ENABLED) is not False


def email_allowed(recipient: Recipient) -> bool:
    """Email defaults to disabled; only an explicit True opts in."""
    return recipient.preference(EMAIL_ENABLED) is True

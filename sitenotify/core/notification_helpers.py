# sitenotify/core/notification_helpers.py
"""
Canned notifications used by the site workflows.

The ``build_*`` functions return a ready DispatchRequest; the
NotificationHelpers wrapper resolves site/role targets through the
recipient store and dispatches.
"""
from __future__ import annotations

from datetime import date, datetime
from typing import Literal, Sequence
from urllib.parse import quote

from sitenotify.core.dispatcher import NotificationDispatcher
from sitenotify.core.domain import (
    SYSTEM_SENDER,
    DedupeKey,
    DispatchRequest,
    DispatchResult,
    NotificationAction,
    NotificationPayload,
    NotificationType,
    Urgency,
)
from sitenotify.core.ports import AsyncRecipientStore
from sitenotify.infra.logging_config import get_logger

logger = get_logger(__name__)

MaintenanceType = Literal["routine", "urgent", "inspection"]
AnnouncementPriority = Literal["low", "normal", "high", "critical", "urgent"]

ANNOUNCEMENT_BODY_LIMIT = 200

_MAINTENANCE_LABELS = {
    "routine": "정기 점검",
    "urgent": "긴급 점검",
    "inspection": "특별 점검",
}


def build_material_approval(
    request_id: str,
    user_ids: Sequence[str],
    material_name: str,
    *,
    sender_id: str = SYSTEM_SENDER,
) -> DispatchRequest:
    url = "/dashboard/admin/materials?tab=requests"
    if request_id:
        url += f"&search={quote(request_id, safe='')}"
    payload = NotificationPayload(
        title="자재 요청 승인 필요",
        body=f"{material_name} 자재 요청이 승인을 기다리고 있습니다",
        icon="/icons/material-approval-icon.png",
        badge="/icons/badge-material.png",
        type=NotificationType.MATERIAL_APPROVAL.value,
        urgency=Urgency.HIGH,
        require_interaction=True,
        actions=(
            NotificationAction("approve", "승인", "/icons/approve-icon.png"),
            NotificationAction("reject", "거부", "/icons/reject-icon.png"),
            NotificationAction("view", "상세보기"),
        ),
        data={"requestId": request_id, "url": url},
    )
    return DispatchRequest(
        recipient_ids=_unique(user_ids),
        payload=payload,
        notification_type=NotificationType.MATERIAL_APPROVAL,
        sender_id=sender_id,
        metadata={"material_request_id": request_id},
    )


def build_daily_report_reminder(
    user_ids: Sequence[str],
    work_date: date | str,
    *,
    sender_id: str = SYSTEM_SENDER,
) -> DispatchRequest:
    """Reminder deduplicated per work date, so cron re-runs notify each worker once."""
    work_date_value = work_date.isoformat() if isinstance(work_date, date) else str(work_date)
    payload = NotificationPayload(
        title="작업일지 작성 리마인더",
        body="오늘의 작업일지를 작성해주세요",
        icon="/icons/daily-report-icon.png",
        badge="/icons/badge-report.png",
        type=NotificationType.DAILY_REPORT_REMINDER.value,
        urgency=Urgency.MEDIUM,
        tag=f"daily-report-reminder-{work_date_value}",
        data={"url": "/dashboard/daily-reports/new", "workDate": work_date_value},
    )
    return DispatchRequest(
        recipient_ids=_unique(user_ids),
        payload=payload,
        notification_type=NotificationType.DAILY_REPORT_REMINDER,
        sender_id=sender_id,
        dedupe=DedupeKey("work_date", work_date_value),
    )


def build_safety_alert(
    user_ids: Sequence[str],
    message: str,
    alert_id: str,
    *,
    sender_id: str = SYSTEM_SENDER,
) -> DispatchRequest:
    payload = NotificationPayload(
        title="⚠️ 안전 경고",
        body=message,
        icon="/icons/safety-alert-icon.png",
        badge="/icons/badge-safety.png",
        type=NotificationType.SAFETY_ALERT.value,
        urgency=Urgency.CRITICAL,
        require_interaction=True,
        vibrate=(500, 200, 500, 200, 500),
        actions=(
            NotificationAction("acknowledge", "확인", "/icons/acknowledge-icon.png"),
            NotificationAction("details", "상세정보"),
        ),
        data={"alertId": alert_id, "url": f"/dashboard/safety/alerts/{alert_id}"},
    )
    return DispatchRequest(
        recipient_ids=_unique(user_ids),
        payload=payload,
        notification_type=NotificationType.SAFETY_ALERT,
        sender_id=sender_id,
        dedupe=DedupeKey("alert_id", alert_id),
    )


def build_equipment_maintenance(
    user_id: str,
    equipment_name: str,
    maintenance_type: MaintenanceType,
    scheduled_date: date | datetime | str,
    maintenance_id: str,
    *,
    sender_id: str = SYSTEM_SENDER,
) -> DispatchRequest:
    if maintenance_type not in _MAINTENANCE_LABELS:
        raise ValueError(f"Unknown maintenance type: {maintenance_type}")

    if isinstance(scheduled_date, str):
        scheduled_date = datetime.fromisoformat(scheduled_date)
    if isinstance(scheduled_date, datetime):
        scheduled_date = scheduled_date.date()

    is_urgent = maintenance_type == "urgent"
    payload = NotificationPayload(
        title="🚨 긴급 장비 점검" if is_urgent else "🔧 장비 점검 일정",
        body=f"{equipment_name} - {_korean_date(scheduled_date)} {_MAINTENANCE_LABELS[maintenance_type]}",
        icon="/icons/maintenance-icon.png",
        badge="/icons/badge-maintenance.png",
        type=NotificationType.EQUIPMENT_MAINTENANCE.value,
        urgency=Urgency.HIGH if is_urgent else Urgency.MEDIUM,
        require_interaction=is_urgent,
        actions=(
            NotificationAction("schedule", "일정잡기"),
            NotificationAction("view", "상세보기"),
        ),
        data={
            "maintenanceId": maintenance_id,
            "equipmentName": equipment_name,
            "maintenanceType": maintenance_type,
            "scheduledDate": scheduled_date.isoformat(),
            "url": f"/dashboard/equipment/maintenance/{maintenance_id}",
        },
    )
    return DispatchRequest(
        recipient_ids=[user_id],
        payload=payload,
        notification_type=NotificationType.EQUIPMENT_MAINTENANCE,
        sender_id=sender_id,
        metadata={"maintenance_id": maintenance_id},
    )


def build_site_announcement(
    user_ids: Sequence[str],
    title: str,
    content: str,
    priority: AnnouncementPriority,
    announcement_id: str,
    *,
    sender_id: str = SYSTEM_SENDER,
) -> DispatchRequest:
    is_urgent = priority in ("urgent", "high", "critical")
    body = content[:ANNOUNCEMENT_BODY_LIMIT]
    if len(content) > ANNOUNCEMENT_BODY_LIMIT:
        body += "..."
    payload = NotificationPayload(
        title=f"📢 {title}",
        body=body,
        icon="/icons/announcement-icon.png",
        badge="/icons/badge-announcement.png",
        type=NotificationType.SITE_ANNOUNCEMENT.value,
        urgency=Urgency.HIGH if is_urgent else Urgency.LOW,
        require_interaction=is_urgent,
        actions=(
            NotificationAction("read", "읽기"),
            NotificationAction("dismiss", "무시"),
        ),
        data={
            "announcementId": announcement_id,
            "priority": priority,
            "url": f"/dashboard/announcements/{announcement_id}",
        },
    )
    return DispatchRequest(
        recipient_ids=_unique(user_ids),
        payload=payload,
        notification_type=NotificationType.SITE_ANNOUNCEMENT,
        sender_id=sender_id,
        dedupe=DedupeKey("announcement_id", announcement_id),
    )


class NotificationHelpers:
    """
    Workflow-facing entry points.

    Usage:
        helpers = NotificationHelpers(dispatcher, recipient_store)
        await helpers.send_safety_alert_to_sites([site_id], "...", alert_id)
    """

    def __init__(self, dispatcher: NotificationDispatcher, recipients: AsyncRecipientStore):
        self._dispatcher = dispatcher
        self._recipients = recipients

    async def resolve_targets(
        self,
        *,
        user_ids: Sequence[str] | None = None,
        site_ids: Sequence[str] | None = None,
        roles: Sequence[str] | None = None,
    ) -> list[str]:
        """Union of explicit user IDs and site/role matches, order-preserving."""
        ids = list(user_ids or [])
        if site_ids or roles:
            ids.extend(await self._recipients.find_recipient_ids(site_ids=site_ids, roles=roles))
        return _unique(ids)

    async def _send(self, request: DispatchRequest) -> DispatchResult:
        return await self._dispatcher.dispatch(request)

    async def send_material_approval(
        self, request_id: str, user_ids: Sequence[str], material_name: str, *, sender_id: str = SYSTEM_SENDER,
    ) -> DispatchResult:
        return await self._send(build_material_approval(request_id, user_ids, material_name, sender_id=sender_id))

    async def send_daily_report_reminder(
        self,
        work_date: date | str,
        *,
        user_ids: Sequence[str] | None = None,
        site_ids: Sequence[str] | None = None,
        roles: Sequence[str] | None = None,
    ) -> DispatchResult | None:
        targets = await self.resolve_targets(user_ids=user_ids, site_ids=site_ids, roles=roles)
        if not targets:
            logger.info(f"Daily report reminder for {work_date}: no recipients")
            return None
        return await self._send(build_daily_report_reminder(targets, work_date))

    async def send_safety_alert(
        self, site_ids: Sequence[str], message: str, alert_id: str, *, sender_id: str = SYSTEM_SENDER,
    ) -> DispatchResult | None:
        targets = await self.resolve_targets(site_ids=site_ids)
        if not targets:
            logger.warning(f"Safety alert {alert_id}: no recipients on sites {list(site_ids)}")
            return None
        return await self._send(build_safety_alert(targets, message, alert_id, sender_id=sender_id))

    async def send_equipment_maintenance(
        self,
        user_id: str,
        equipment_name: str,
        maintenance_type: MaintenanceType,
        scheduled_date: date | datetime | str,
        maintenance_id: str,
    ) -> DispatchResult:
        return await self._send(build_equipment_maintenance(
            user_id, equipment_name, maintenance_type, scheduled_date, maintenance_id,
        ))

    async def send_site_announcement(
        self,
        site_ids: Sequence[str] | None,
        title: str,
        content: str,
        priority: AnnouncementPriority,
        announcement_id: str,
        *,
        user_ids: Sequence[str] | None = None,
        sender_id: str = SYSTEM_SENDER,
    ) -> DispatchResult | None:
        """Announce to everyone on ``site_ids`` plus any explicit ``user_ids``."""
        targets = await self.resolve_targets(user_ids=user_ids, site_ids=site_ids)
        if not targets:
            logger.info(f"Announcement {announcement_id}: no recipients")
            return None
        return await self._send(build_site_announcement(
            targets, title, content, priority, announcement_id, sender_id=sender_id,
        ))


def _unique(ids: Sequence[str]) -> list[str]:
    return list(dict.fromkeys(i for i in ids if i))


def _korean_date(value: date) -> str:
    """2024-03-21 → 2024. 3. 21. (ko-KR locale date format)"""
    return f"{value.year}. {value.month}. {value.day}."

# sitenotify/core/dispatcher.py
"""
Multi-channel notification dispatch.

One ``dispatch()`` call:
1. bulk-fetches recipients (fatal on failure)
2. drops recipients already logged for the request's dedupe key
3. fans out one unit of work per remaining recipient, bounded by a
   semaphore: preference check → channel selection → delivery → audit row
4. aggregates the settled units into a DispatchResult

Units never raise into the orchestrator; provider errors become ``failed``
log rows. The batch is not atomic: a crash mid fan-out leaves some
recipients logged and others not, and a later re-run with the same
dedupe key picks up the rest.
"""
from __future__ import annotations

import asyncio
import uuid
from typing import Any, Sequence

from sitenotify.core.channel_selector import ChannelDecision, select_channel
from sitenotify.core.domain import (
    Channel,
    DedupeKey,
    DeliveryStatus,
    DispatchRequest,
    DispatchResult,
    NotificationLogEntry,
    NotificationPayload,
    NotificationType,
    Recipient,
    RecipientOutcome,
)
from sitenotify.core.errors import EmailSendError, PushSendError, RecipientFetchError
from sitenotify.core.ports import (
    AsyncNotificationLogRepository,
    AsyncRecipientStore,
    EmailSender,
    PushSender,
)
from sitenotify.core.preferences import is_opted_out
from sitenotify.infra.logging_config import LogContext, get_logger, mask_email
from sitenotify.infra.metrics import DispatchMetrics, Timer

logger = get_logger(__name__)

DEFAULT_EMAIL_PATH = "/dashboard"


def compose_email(
    payload: NotificationPayload,
    *,
    base_url: str,
    subject_prefix: str = "[알림] ",
    default_path: str = DEFAULT_EMAIL_PATH,
) -> tuple[str, str]:
    """Build (subject, body) for the email fallback."""
    target = payload.link or default_path
    if not target.startswith(("http://", "https://")):
        target = f"{base_url.rstrip('/')}/{target.lstrip('/')}"
    subject = f"{subject_prefix}{payload.title}"
    body = f"{payload.body}\n\n자세히 보기: {target}\n"
    return subject, body


class NotificationDispatcher:
    """
    Decides and performs per-recipient delivery for one notification.

    All collaborators are injected. Provider availability is read once
    here; a dispatcher built without VAPID keys reports push as disabled
    and routes every recipient to the email/in_app fallback.
    """

    def __init__(
        self,
        recipients: AsyncRecipientStore,
        logs: AsyncNotificationLogRepository,
        push: PushSender,
        email: EmailSender,
        *,
        max_concurrency: int = 20,
        deadline_seconds: float | None = None,
        in_app_fallback: bool = True,
        app_base_url: str = "",
        email_subject_prefix: str = "[알림] ",
        email_default_path: str = DEFAULT_EMAIL_PATH,
    ):
        self._recipients = recipients
        self._logs = logs
        self._push = push
        self._email = email
        self._max_concurrency = max(1, max_concurrency)
        self._deadline_seconds = deadline_seconds
        self._in_app_fallback = in_app_fallback
        self._app_base_url = app_base_url
        self._email_subject_prefix = email_subject_prefix
        self._email_default_path = email_default_path

        self._push_available = push.is_configured()
        self._email_available = email.is_configured()
        if not self._push_available:
            logger.warning("Push delivery disabled: VAPID signing keys are not configured")
        if not self._email_available:
            logger.info("Email fallback disabled: SMTP is not configured")

    @property
    def push_available(self) -> bool:
        return self._push_available

    @property
    def email_available(self) -> bool:
        return self._email_available

    # ------------------------------------------------------------------
    # Dedup
    # ------------------------------------------------------------------

    async def filter_already_notified(
        self,
        recipient_ids: Sequence[str],
        notification_type: NotificationType | str,
        dedupe: DedupeKey | None,
    ) -> list[str]:
        """
        Remove recipients that already have a log row for this event.

        A failing lookup is logged and treated as "nobody notified yet":
        a duplicate notification is preferred over a silently dropped one.
        """
        if dedupe is None or not recipient_ids:
            return list(recipient_ids)

        type_value = NotificationType(notification_type).value
        try:
            notified = await self._logs.find_notified_recipient_ids(
                recipient_ids, type_value, dedupe,
            )
        except Exception as exc:
            logger.warning(
                f"Dedup lookup failed, proceeding without dedup: "
                f"{dedupe.key}={dedupe.value}: {type(exc).__name__}: {exc}",
                extra={"notification_type": type_value},
            )
            return list(recipient_ids)

        return [rid for rid in recipient_ids if rid not in notified]

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def dispatch(self, request: DispatchRequest) -> DispatchResult:
        dispatch_id = uuid.uuid4().hex
        notification_type = request.notification_type.value
        ctx = LogContext(logger, dispatch_id=dispatch_id, notification_type=notification_type)
        result = DispatchResult(total=len(request.recipient_ids))

        with Timer("dispatch_duration_seconds", type=notification_type):
            try:
                recipients = await self._recipients.fetch_recipients(request.recipient_ids)
            except Exception as exc:
                ctx.error(f"Recipient fetch failed, aborting dispatch: {type(exc).__name__}: {exc}")
                raise RecipientFetchError(f"Could not load recipients: {exc}") from exc

            by_id = {r.id: r for r in recipients}
            found_ids = [rid for rid in request.recipient_ids if rid in by_id]
            result.missing = len(request.recipient_ids) - len(found_ids)
            if result.missing:
                ctx.warning(f"{result.missing} recipient(s) not found in profile store")

            remaining = await self.filter_already_notified(
                found_ids, request.notification_type, request.dedupe,
            )
            result.deduped = len(found_ids) - len(remaining)
            DispatchMetrics.deduped(notification_type, result.deduped)

            await self._fan_out(request, [by_id[rid] for rid in remaining], dispatch_id, ctx, result)

        result.skipped = result.opted_out + result.deduped
        ctx.info(
            f"Dispatch complete: total={result.total}, processed={result.processed}, "
            f"push={result.push_count}, email={result.email_count}, in_app={result.in_app_count}, "
            f"failed={result.failed_count}, skipped={result.skipped} "
            f"(deduped={result.deduped}, opted_out={result.opted_out}, missing={result.missing}), "
            f"errors={result.errors}, timed_out={result.timed_out}"
        )
        return result

    async def _fan_out(
        self,
        request: DispatchRequest,
        recipients: list[Recipient],
        dispatch_id: str,
        ctx: LogContext,
        result: DispatchResult,
    ) -> None:
        if not recipients:
            return

        semaphore = asyncio.Semaphore(self._max_concurrency)
        tasks = [
            asyncio.create_task(
                self._run_unit(semaphore, recipient, request, dispatch_id, ctx),
                name=f"notify:{recipient.id}",
            )
            for recipient in recipients
        ]

        deadline = request.deadline_seconds if request.deadline_seconds is not None else self._deadline_seconds
        try:
            _, pending = await asyncio.wait(tasks, timeout=deadline)
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            raise

        if pending:
            ctx.warning(f"Dispatch deadline of {deadline}s reached, cancelling {len(pending)} unit(s)")
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        for recipient, task in zip(recipients, tasks):
            if task.cancelled():
                result.timed_out += 1
                continue
            exc = task.exception()
            if exc is not None:
                result.errors += 1
                ctx.error(
                    f"Unit for recipient {recipient.id[:8]} raised: {type(exc).__name__}: {exc}",
                    exc_info=(type(exc), exc, exc.__traceback__),
                )
                continue
            self._aggregate(task.result(), result)

    @staticmethod
    def _aggregate(outcome: RecipientOutcome, result: DispatchResult) -> None:
        result.outcomes.append(outcome)
        if outcome.opted_out:
            result.opted_out += 1
            return

        result.processed += 1
        if outcome.log_error:
            result.log_failures += 1
        if outcome.status is DeliveryStatus.FAILED:
            result.failed_count += 1
        elif outcome.channel is Channel.PUSH:
            result.push_count += 1
        elif outcome.channel is Channel.EMAIL:
            result.email_count += 1
        elif outcome.channel is Channel.IN_APP:
            result.in_app_count += 1

    # ------------------------------------------------------------------
    # Per-recipient unit of work
    # ------------------------------------------------------------------

    async def _run_unit(
        self,
        semaphore: asyncio.Semaphore,
        recipient: Recipient,
        request: DispatchRequest,
        dispatch_id: str,
        ctx: LogContext,
    ) -> RecipientOutcome:
        async with semaphore:
            return await self._process_recipient(recipient, request, dispatch_id, ctx)

    async def _process_recipient(
        self,
        recipient: Recipient,
        request: DispatchRequest,
        dispatch_id: str,
        ctx: LogContext,
    ) -> RecipientOutcome:
        notification_type = request.notification_type
        rctx = ctx.bind(recipient_id=recipient.id)

        if is_opted_out(recipient, notification_type):
            DispatchMetrics.opted_out(notification_type.value)
            rctx.debug("Recipient opted out of this notification category")
            return RecipientOutcome(recipient.id, opted_out=True)

        decision = select_channel(
            recipient,
            push_available=self._push_available,
            email_available=self._email_available,
        )
        payload = request.payload.for_recipient(recipient.id, notification_type.value)
        metadata = self._entry_metadata(request, dispatch_id)
        outcome = RecipientOutcome(recipient.id, channel=decision.channel)

        if decision.channel is Channel.PUSH:
            await self._deliver_push(recipient, decision, payload, outcome, rctx)
        elif decision.channel is Channel.EMAIL:
            await self._deliver_email(recipient, payload, outcome, rctx)
        elif self._in_app_fallback:
            outcome.channel = Channel.IN_APP
            outcome.status = DeliveryStatus.DELIVERED
            metadata["fallback_reason"] = decision.reason
        else:
            rctx.debug(f"No eligible channel ({decision.reason}), nothing logged")
            return outcome

        if outcome.subscription_cleared:
            metadata["subscription_cleared"] = True

        if outcome.status is DeliveryStatus.DELIVERED:
            DispatchMetrics.delivered(outcome.channel.value, notification_type.value)
        else:
            DispatchMetrics.failed(outcome.channel.value, notification_type.value)

        entry = NotificationLogEntry(
            recipient_id=recipient.id,
            notification_type=notification_type.value,
            title=payload.title,
            body=payload.body,
            status=outcome.status,
            channel=outcome.channel,
            sent_by=request.sender_id,
            target_role=recipient.role,
            target_site_id=recipient.site_id,
            error_message=outcome.error,
            metadata=metadata,
        )
        outcome.log_error = await self._append_log(entry, rctx)
        return outcome

    async def _deliver_push(
        self,
        recipient: Recipient,
        decision: ChannelDecision,
        payload: NotificationPayload,
        outcome: RecipientOutcome,
        rctx: LogContext,
    ) -> None:
        try:
            await self._push.send(decision.subscription, payload.to_push_json(), urgency=payload.urgency)
        except PushSendError as exc:
            outcome.status = DeliveryStatus.FAILED
            outcome.error = str(exc)
            rctx.warning(f"Push failed (status={exc.status_code}): {exc}", extra={"channel": "push"})
            if exc.is_stale:
                outcome.subscription_cleared = await self._clear_subscription(recipient, rctx)
            return
        except Exception as exc:
            outcome.status = DeliveryStatus.FAILED
            outcome.error = f"{type(exc).__name__}: {exc}"
            rctx.error(f"Unexpected push adapter error: {outcome.error}", extra={"channel": "push"}, exc_info=True)
            return

        outcome.status = DeliveryStatus.DELIVERED

    async def _clear_subscription(self, recipient: Recipient, rctx: LogContext) -> bool:
        try:
            await self._recipients.clear_push_subscription(recipient.id)
        except Exception as exc:
            rctx.warning(f"Could not clear stale push subscription: {type(exc).__name__}: {exc}")
            return False
        DispatchMetrics.subscription_cleared()
        return True

    async def _deliver_email(
        self,
        recipient: Recipient,
        payload: NotificationPayload,
        outcome: RecipientOutcome,
        rctx: LogContext,
    ) -> None:
        subject, body = compose_email(
            payload,
            base_url=self._app_base_url,
            subject_prefix=self._email_subject_prefix,
            default_path=self._email_default_path,
        )
        try:
            await self._email.send(
                recipient.email,
                subject,
                body,
                {
                    "recipient_id": recipient.id,
                    "notification_type": payload.data.get("notificationType"),
                },
            )
        except EmailSendError as exc:
            outcome.status = DeliveryStatus.FAILED
            outcome.error = str(exc)
            rctx.warning(
                f"Email to {mask_email(recipient.email)} failed: {outcome.error}",
                extra={"channel": "email"},
            )
            return
        except Exception as exc:
            outcome.status = DeliveryStatus.FAILED
            outcome.error = f"{type(exc).__name__}: {exc}"
            rctx.error(f"Unexpected email adapter error: {outcome.error}", extra={"channel": "email"}, exc_info=True)
            return

        outcome.status = DeliveryStatus.DELIVERED

    async def _append_log(self, entry: NotificationLogEntry, rctx: LogContext) -> str | None:
        """Write the audit row; a failure is reported, never raised."""
        try:
            await self._logs.append(entry)
        except Exception as exc:
            DispatchMetrics.log_write_failed()
            message = f"{type(exc).__name__}: {exc}"
            rctx.warning(
                f"Audit log write failed (delivery outcome {entry.channel.value}/{entry.status.value} kept): {message}"
            )
            return message
        return None

    @staticmethod
    def _entry_metadata(request: DispatchRequest, dispatch_id: str) -> dict[str, Any]:
        metadata: dict[str, Any] = dict(request.metadata)
        metadata["dispatch_id"] = dispatch_id
        metadata["urgency"] = request.payload.urgency.value
        if request.payload.tag:
            metadata["tag"] = request.payload.tag
        if request.dedupe is not None:
            metadata[request.dedupe.key] = request.dedupe.value
        return metadata

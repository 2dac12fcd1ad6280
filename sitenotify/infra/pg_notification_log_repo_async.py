# sitenotify/infra/pg_notification_log_repo_async.py
"""
Append-only audit log of notification outcomes (``notification_logs``).

Rows are never updated or deleted by the dispatch engine. The same table
answers the dedup question "was this recipient already notified for
this logical event?".
"""
from __future__ import annotations

from typing import Sequence

from sitenotify.core.domain import DedupeKey, NotificationLogEntry
from sitenotify.infra.db_async import db_conn
from sitenotify.infra.db_resilience_async import retry_on_transient_error
from sitenotify.infra.logging_config import get_logger

logger = get_logger(__name__)


class AsyncPostgresNotificationLogRepository:

    async def append(self, entry: NotificationLogEntry) -> None:
        # Not retried: a replay after an ambiguous failure could duplicate the row
        async with db_conn() as conn:
            await conn.execute(
                """
                INSERT INTO notification_logs (
                    user_id, notification_type, title, body, status, channel,
                    sent_at, sent_by, target_role, target_site_id,
                    error_message, metadata
                )
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12)
                """,
                entry.recipient_id,
                entry.notification_type,
                entry.title,
                entry.body,
                entry.status.value,
                entry.channel.value,
                entry.sent_at,
                entry.sent_by,
                entry.target_role,
                entry.target_site_id,
                entry.error_message[:2000] if entry.error_message else None,
                entry.metadata,
            )

    @retry_on_transient_error(max_retries=1)
    async def find_notified_recipient_ids(
        self,
        recipient_ids: Sequence[str],
        notification_type: str,
        dedupe: DedupeKey,
    ) -> set[str]:
        if not recipient_ids:
            return set()
        async with db_conn() as conn:
            rows = await conn.fetch(
                """
                SELECT DISTINCT user_id::text AS user_id
                FROM notification_logs
                WHERE notification_type = $1
                  AND metadata ->> $2 = $3
                  AND user_id::text = ANY($4::text[])
                """,
                notification_type,
                dedupe.key,
                dedupe.value,
                list(recipient_ids),
            )
        return {row["user_id"] for row in rows}

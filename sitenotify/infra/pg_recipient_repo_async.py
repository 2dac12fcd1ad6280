# sitenotify/infra/pg_recipient_repo_async.py
"""
Async Postgres adapter over the profile store.

The dispatch engine reads recipient rows in bulk and performs exactly one
write: clearing a push subscription the push service reported as gone.
"""
from __future__ import annotations

import json
from typing import Any, Sequence

from sitenotify.core.domain import Recipient
from sitenotify.infra.db_async import db_conn
from sitenotify.infra.db_resilience_async import retry_on_transient_error
from sitenotify.infra.logging_config import get_logger

logger = get_logger(__name__)


def _row_to_recipient(row) -> Recipient:
    """Convert an asyncpg Record to a Recipient."""
    preferences: Any = row["notification_preferences"]
    if isinstance(preferences, str):
        preferences = json.loads(preferences)
    return Recipient(
        id=str(row["id"]),
        email=row["email"],
        display_name=row["full_name"],
        role=row["role"],
        site_id=str(row["site_id"]) if row["site_id"] is not None else None,
        push_subscription=row["push_subscription"],
        notification_preferences=preferences or {},
    )


class AsyncPostgresRecipientStore:
    """Reads recipients from ``profiles``."""

    @retry_on_transient_error(max_retries=2)
    async def fetch_recipients(self, ids: Sequence[str]) -> list[Recipient]:
        if not ids:
            return []
        async with db_conn() as conn:
            rows = await conn.fetch(
                """
                SELECT id, email, full_name, role, site_id,
                       push_subscription, notification_preferences
                FROM profiles
                WHERE id::text = ANY($1::text[])
                """,
                list(ids),
            )
        return [_row_to_recipient(row) for row in rows]

    @retry_on_transient_error(max_retries=2)
    async def clear_push_subscription(self, recipient_id: str) -> None:
        async with db_conn() as conn:
            await conn.execute(
                """
                UPDATE profiles
                SET push_subscription = NULL,
                    push_subscription_updated_at = now()
                WHERE id::text = $1
                  AND push_subscription IS NOT NULL
                """,
                recipient_id,
            )
        logger.info(
            f"Cleared stale push subscription: recipient={recipient_id[:8]}",
            extra={"recipient_id": recipient_id},
        )

    @retry_on_transient_error(max_retries=2)
    async def find_recipient_ids(
        self,
        *,
        site_ids: Sequence[str] | None = None,
        roles: Sequence[str] | None = None,
    ) -> list[str]:
        """
        Resolve site/role targeting to profile IDs.

        Both filters are ANDed when given. Only active profiles are returned.
        """
        if not site_ids and not roles:
            return []

        clauses = ["COALESCE(status, 'active') = 'active'"]
        args: list[Any] = []
        if site_ids:
            args.append(list(site_ids))
            clauses.append(f"site_id::text = ANY(${len(args)}::text[])")
        if roles:
            args.append(list(roles))
            clauses.append(f"role = ANY(${len(args)}::text[])")

        async with db_conn() as conn:
            rows = await conn.fetch(
                f"SELECT id FROM profiles WHERE {' AND '.join(clauses)} ORDER BY id",
                *args,
            )
        return [str(row["id"]) for row in rows]

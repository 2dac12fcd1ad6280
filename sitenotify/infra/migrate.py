#!/usr/bin/env python3
# sitenotify/infra/migrate.py
"""
Standalone migration runner.

    python -m sitenotify.infra.migrate

Creates the notification columns on ``profiles`` and the
``notification_logs`` table. Run it before the first dispatch and after
every upgrade; the dispatcher itself never alters the schema.
"""
import asyncio
import sys

from sitenotify.config import settings
from sitenotify.infra.db_async import close_pool, init_pool
from sitenotify.infra.logging_config import get_logger, setup_logging
from sitenotify.infra.migrations_async import apply_migrations

logger = get_logger(__name__)


async def main() -> int:
    logger.info(f"Migrating {settings.pghost}:{settings.pgport}/{settings.pgdatabase} (env={settings.app_env})")

    await init_pool()
    try:
        result = await apply_migrations()
    except Exception as exc:
        logger.critical(f"MIGRATION FAILED: {type(exc).__name__}: {exc}", exc_info=True)
        return 1
    finally:
        await close_pool()

    if result["applied"]:
        for migration in result["applied"]:
            logger.info(f"  ✓ {migration}")
    else:
        logger.info("No new migrations to apply")
    return 0


if __name__ == "__main__":
    setup_logging(level=settings.log_level, use_json=settings.log_json)
    sys.exit(asyncio.run(main()))

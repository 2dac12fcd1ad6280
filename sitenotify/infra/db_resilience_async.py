# sitenotify/infra/db_resilience_async.py
"""
Retry logic for transient asyncpg errors.

Only idempotent reads and writes are wrapped: re-running an INSERT after
an ambiguous connection drop could write a second audit row.
"""
from __future__ import annotations
import asyncio
from typing import TypeVar, Callable
from functools import wraps

import asyncpg
from sitenotify.infra.logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar('T')


def is_transient_error(exc: Exception) -> bool:
    """
    Check if database error is transient (should retry).

    Transient errors:
    - Connection errors / server closed connection
    - Too many connections
    - Deadlock
    """
    if isinstance(exc, (asyncpg.PostgresConnectionError, asyncpg.TooManyConnectionsError,
                        asyncpg.DeadlockDetectedError)):
        return True

    if isinstance(exc, (ConnectionError, asyncio.TimeoutError)):
        return True

    if not isinstance(exc, asyncpg.PostgresError):
        return False

    error_message = str(exc).lower()
    transient_patterns = [
        "connection",
        "timeout",
        "server closed",
        "deadlock",
        "too many connections",
    ]
    return any(pattern in error_message for pattern in transient_patterns)


def retry_on_transient_error(
    max_retries: int = 3,
    initial_delay: float = 0.1,
    backoff_factor: float = 2.0,
    max_delay: float = 2.0
):
    """
    Decorator to retry an async function on transient database errors.

    Example:
        @retry_on_transient_error(max_retries=3)
        async def fetch_recipients(self, ids):
            async with db_conn() as conn:
                return await conn.fetch(...)
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args, **kwargs):
            delay = initial_delay

            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)
                except Exception as exc:
                    if not is_transient_error(exc):
                        raise

                    if attempt >= max_retries:
                        logger.error(
                            f"Max retries ({max_retries}) exceeded in {func.__name__}: {exc}"
                        )
                        raise

                    logger.warning(
                        f"Transient error in {func.__name__} (attempt {attempt + 1}/{max_retries}): {exc}. "
                        f"Retrying in {delay:.2f}s..."
                    )
                    await asyncio.sleep(delay)
                    delay = min(delay * backoff_factor, max_delay)

        return wrapper
    return decorator

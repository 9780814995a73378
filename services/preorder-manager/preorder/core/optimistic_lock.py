"""
PreOrder Manager — Optimistic locking retry decorator

Queue counters and order statuses are written with compare-and-set UPDATEs
(``WHERE version_id = :seen`` / ``WHERE status = :seen``). When another
transaction for the same vendor or order commits first the UPDATE matches no
row and the write site raises StaleDataError without touching the session.
The decorator then rolls the session back and replays the whole unit of work
with exponential backoff plus jitter. Different vendors never contend.
"""
import asyncio
import functools
import logging
import random

from sqlalchemy.ext.asyncio import AsyncSession

from preorder.core.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)


class StaleDataError(Exception):
    """A compare-and-set write lost the race against a concurrent transaction."""


def _session_of(args, kwargs) -> AsyncSession | None:
    for value in (kwargs.get("db"), *args):
        if isinstance(value, AsyncSession):
            return value
    return None


def backoff_delay(attempt: int) -> float:
    base_delay = settings.OPT_LOCK_BASE_DELAY_MS / 1000.0
    max_delay = settings.OPT_LOCK_MAX_DELAY_MS / 1000.0
    jitter = random.uniform(0, settings.OPT_LOCK_JITTER_MS / 1000.0)
    return min(base_delay * (2 ** attempt), max_delay) + jitter


def with_optimistic_retry(max_retries: int | None = None):
    """
    Decorator for async unit-of-work functions taking an ``AsyncSession``.

    On StaleDataError the session is rolled back (every loaded row is expired)
    and the function runs again from the top, so it must re-read whatever it
    writes. The last conflict is re-raised after the rollback.

    Usage:
        @with_optimistic_retry()
        async def _admit(db, ...):
            ...
    """
    _max = max_retries or settings.OPT_LOCK_MAX_RETRIES

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            db = _session_of(args, kwargs)
            for attempt in range(1, _max + 1):
                try:
                    return await func(*args, **kwargs)
                except StaleDataError as exc:
                    if db is not None:
                        await db.rollback()
                    if attempt == _max:
                        logger.error("%s: conflict unresolved after %d attempts (%s)", func.__name__, _max, exc)
                        raise
                    delay = backoff_delay(attempt)
                    logger.warning(
                        "%s: %s; replaying (attempt %d/%d) in %.3fs",
                        func.__name__, exc, attempt + 1, _max, delay,
                    )
                    await asyncio.sleep(delay)
        return wrapper
    return decorator

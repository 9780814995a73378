"""
PreOrder Manager — Celery tasks (daily recurring materialization)

Celery tasks are not async-native: each run gets its own event loop via
asyncio.run and its own NullPool engine, so no connection outlives the loop.

The run date is fixed before the first attempt and carried into retries.
Templates that already got that day's order are skipped, so a retry or a
late-acked redelivery never materializes a template twice.
"""
import asyncio
import logging
from datetime import date

import redis.asyncio as aioredis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from preorder.core.celery_app import celery_app
from preorder.core.clock import to_local, utcnow
from preorder.core.config import get_settings
from preorder.db.template_ops import materialize_due_templates
from preorder.services.change_feed import ChangeFeed


settings = get_settings()
logger = logging.getLogger(__name__)


async def _run(today: date) -> list[str]:
    engine = create_async_engine(settings.database_url, poolclass=NullPool)
    redis = aioredis.from_url(settings.redis_url, decode_responses=True)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    try:
        async with session_factory() as db:
            orders = await materialize_due_templates(db, today, feed=ChangeFeed(redis), skip_materialized=True)
            return [order.id for order in orders]
    finally:
        await redis.aclose()
        await engine.dispose()


@celery_app.task(
    name="materialize_recurring_preorders",
    bind=True,
    max_retries=3,
    default_retry_delay=60,
    acks_late=True,
)
def materialize_recurring_preorders(self, today: str | None = None):
    """
    Turn today's due recurring templates into pre-orders.
    ``today`` (ISO date) overrides the vendor-local calendar day.
    """
    run_date = date.fromisoformat(today) if today else to_local(utcnow()).date()
    try:
        order_ids = asyncio.run(_run(run_date))
    except Exception as exc:
        logger.exception("Recurring materialization for %s failed", run_date.isoformat())
        raise self.retry(exc=exc, kwargs={"today": run_date.isoformat()})
    logger.info("Recurring materialization created %d pre-orders", len(order_ids))
    return order_ids

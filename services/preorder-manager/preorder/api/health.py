"""
PreOrder Manager — Health endpoint

Probes the order database and the Redis instance behind the change feed and
the Celery broker. Any failing probe reports the service as degraded (503).
"""
import asyncio
import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import text

from preorder.core.config import get_settings
from preorder.core.redis_client import get_redis
from preorder.db.database import engine

settings = get_settings()
logger = logging.getLogger(__name__)
router = APIRouter(tags=["health"])


async def _ping_database() -> None:
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))


async def _ping_redis() -> None:
    await get_redis().ping()


PROBES = {
    "postgresql": _ping_database,
    "redis": _ping_redis,
}


@router.get("/health")
async def health_check():
    deps: dict[str, str] = {}
    for name, probe in PROBES.items():
        try:
            await asyncio.wait_for(probe(), timeout=settings.HEALTH_CHECK_TIMEOUT)
            deps[name] = "ok"
        except Exception as e:
            logger.warning("Health probe %s failed: %s", name, e)
            deps[name] = f"error: {str(e)[:100]}"

    healthy = all(state == "ok" for state in deps.values())
    return JSONResponse(
        content={
            "status": "healthy" if healthy else "degraded",
            "service": settings.SERVICE_NAME,
            "version": settings.SERVICE_VERSION,
            "timezone": settings.TIMEZONE,
            "dependencies": deps,
        },
        status_code=200 if healthy else 503,
    )

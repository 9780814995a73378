"""
PreOrder Manager — SSE change feed for dashboards

Architecture:
  - The pipeline publishes snapshots to Redis channel: {collection}:{vendor_id}
  - This endpoint subscribes (one vendor or all) and streams them to the
    browser EventSource, applying the console filters to pre-order snapshots
  - Client disconnect leaves the subscription context, which unsubscribes
"""
import asyncio
import json
import logging
from collections.abc import AsyncGenerator

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse

from preorder.core.clock import utcnow
from preorder.core.config import get_settings
from preorder.core.errors import InvalidArgument
from preorder.models.preorder import PreOrderStatus
from preorder.services.change_feed import COLLECTIONS, ChangeFeed, get_feed
from preorder.services.filters import PreOrderFilter, matches

settings = get_settings()
logger = logging.getLogger(__name__)
router = APIRouter(prefix="/stream", tags=["stream"])


async def _sse_generator(
    feed: ChangeFeed,
    collection: str,
    vendor_id: str | None,
    flt: PreOrderFilter | None,
    request: Request,
) -> AsyncGenerator[str, None]:
    predicate = None
    if flt is not None:
        window = flt.window(utcnow())
        predicate = lambda data: matches(data, flt, window)  # noqa: E731

    async with feed.subscribe(collection, vendor_id, predicate) as subscription:
        yield f": connected to {collection}:{vendor_id or '*'}\n\n"
        yield f"retry: {settings.SSE_RETRY_MILLISECONDS}\n\n"

        # keepalive after SSE_KEEPALIVE_INTERVAL_SECONDS of wall time without a frame
        loop = asyncio.get_running_loop()
        last_sent = loop.time()
        while not await request.is_disconnected():
            event = await subscription.next_event(timeout=1.0)
            if event is None:
                if loop.time() - last_sent >= settings.SSE_KEEPALIVE_INTERVAL_SECONDS:
                    last_sent = loop.time()
                    yield ": keepalive\n\n"
                continue
            last_sent = loop.time()
            yield f"event: {collection}_update\ndata: {json.dumps(event['data'])}\n\n"
    logger.info("SSE client left %s feed (vendor=%s)", collection, vendor_id or "*")


@router.get("/{collection}")
async def stream(
    collection: str,
    request: Request,
    vendor_id: str | None = None,
    date_range: str = Query("all", pattern="^(today|tomorrow|week|all)$"),
    status: PreOrderStatus | None = None,
    recurring: bool | None = None,
    search: str | None = Query(None, max_length=100),
    feed: ChangeFeed = Depends(get_feed),
):
    """
    SSE endpoint for live dashboards. ``collection`` is one of preorder,
    queue or template; filters apply to the preorder collection only.
    """
    if collection not in COLLECTIONS:
        raise InvalidArgument(f"Unknown feed collection: {collection!r}")

    flt = None
    if collection == "preorder":
        flt = PreOrderFilter(date_range=date_range, status=status, recurring=recurring, search=search)

    return StreamingResponse(
        _sse_generator(feed, collection, vendor_id, flt, request),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",  # Disable Nginx buffering
            "Connection": "keep-alive",
        },
    )

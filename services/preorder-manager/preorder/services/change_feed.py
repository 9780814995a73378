"""
PreOrder Manager — Live change feed over Redis pub/sub

Architecture:
  - The pipeline publishes a snapshot after every commit to
    ``{collection}:{vendor_id}`` (collections: preorder, queue, template)
  - Dashboards subscribe per vendor or to every vendor (pattern subscribe)
  - Leaving the ``subscribe()`` context unsubscribes and closes the pub/sub
    connection; nothing is delivered after that

Snapshots of one order are published in commit order by the request that
committed them, so a subscriber sees that order's transitions in sequence.
"""
import json
import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager

import redis.asyncio as aioredis

from preorder.core.errors import InvalidArgument
from preorder.core.redis_client import get_redis
from preorder.models.preorder import PreOrder, RecurringTemplate, VendorQueueState
from preorder.schemas.preorder import PreOrderOut, QueueStateOut, TemplateOut

logger = logging.getLogger(__name__)

COLLECTIONS: tuple[str, ...] = ("preorder", "queue", "template")


def channel_for(collection: str, vendor_id: str) -> str:
    return f"{collection}:{vendor_id}"


class FeedSubscription:
    """Iterator over snapshots received on one subscription."""

    def __init__(self, pubsub, predicate: Callable[[dict], bool] | None = None):
        self._pubsub = pubsub
        self._predicate = predicate
        self.closed = False

    async def next_event(self, timeout: float = 1.0) -> dict | None:
        """Next matching event, or ``None`` if nothing matching arrived within ``timeout``."""
        if self.closed:
            return None
        message = await self._pubsub.get_message(ignore_subscribe_messages=True, timeout=timeout)
        if not message or message["type"] not in ("message", "pmessage"):
            return None
        event = json.loads(message["data"])
        if self._predicate is not None and not self._predicate(event["data"]):
            return None
        return event

    async def __aiter__(self):
        while not self.closed:
            event = await self.next_event()
            if event is not None:
                yield event


class ChangeFeed:
    def __init__(self, redis: aioredis.Redis):
        self.redis = redis

    async def publish(self, collection: str, vendor_id: str, data: dict) -> None:
        channel = channel_for(collection, vendor_id)
        message = json.dumps({"collection": collection, "vendor_id": vendor_id, "data": data})
        try:
            await self.redis.publish(channel, message)
        except Exception as exc:
            # the write is already committed; subscribers catch up on their next read
            logger.warning("Change feed publish to %s failed: %s", channel, exc)

    async def publish_preorder(self, order: PreOrder) -> None:
        data = PreOrderOut.model_validate(order).model_dump(mode="json")
        await self.publish("preorder", order.vendor_id, data)

    async def publish_queue_state(self, state: VendorQueueState) -> None:
        data = QueueStateOut.model_validate(state).model_dump(mode="json")
        await self.publish("queue", state.vendor_id, data)

    async def publish_template(self, template: RecurringTemplate) -> None:
        data = TemplateOut.model_validate(template).model_dump(mode="json")
        await self.publish("template", template.vendor_id, data)

    @asynccontextmanager
    async def subscribe(
        self,
        collection: str,
        vendor_id: str | None = None,
        predicate: Callable[[dict], bool] | None = None,
    ) -> AsyncIterator[FeedSubscription]:
        if collection not in COLLECTIONS:
            raise InvalidArgument(f"Unknown feed collection: {collection!r}")

        pubsub = self.redis.pubsub()
        if vendor_id:
            await pubsub.subscribe(channel_for(collection, vendor_id))
        else:
            await pubsub.psubscribe(channel_for(collection, "*"))

        subscription = FeedSubscription(pubsub, predicate)
        try:
            yield subscription
        finally:
            subscription.closed = True
            await pubsub.unsubscribe()
            await pubsub.punsubscribe()
            await pubsub.aclose()


def get_feed() -> ChangeFeed:
    return ChangeFeed(get_redis())

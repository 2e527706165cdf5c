"""
Redis Pub/Sub Change Notifier

Production transport: every API worker publishes to one Redis channel
and every kitchen display connection listens on it, so a transition made
through any worker reaches every terminal.

Requirements:
    - REDIS_URL reachable from every API worker
"""

import logging
from typing import Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from orderflow.core.config import get_settings
from orderflow.services.notifications.base import BaseChangeNotifier, ChangeEvent

logger = logging.getLogger(__name__)


class _RedisSubscription:
    """Already subscribed to the channel when handed out."""

    def __init__(self, channel: str, pubsub):
        self._channel = channel
        self._pubsub = pubsub
        self._messages = pubsub.listen()

    def __aiter__(self):
        return self

    async def __anext__(self) -> ChangeEvent:
        async for message in self._messages:
            if message.get("type") == "message":
                return ChangeEvent(order_id=message.get("data") or None)
        raise StopAsyncIteration

    async def aclose(self) -> None:
        await self._messages.aclose()
        await self._pubsub.unsubscribe(self._channel)
        await self._pubsub.aclose()


class RedisChangeNotifier(BaseChangeNotifier):
    """Change notifications over a Redis pub/sub channel."""

    def __init__(self, redis_url: Optional[str] = None, channel: Optional[str] = None):
        settings = get_settings()
        self.channel = channel or settings.change_channel
        self._client = aioredis.from_url(
            redis_url or settings.redis_url,
            decode_responses=True,
        )
        logger.info(f"RedisChangeNotifier initialized (channel={self.channel})")

    @property
    def provider_name(self) -> str:
        return "redis"

    async def publish(self, order_id: Optional[str] = None) -> None:
        await self._client.publish(self.channel, order_id or "")

    async def subscribe(self) -> "_RedisSubscription":
        pubsub = self._client.pubsub()
        await pubsub.subscribe(self.channel)
        return _RedisSubscription(self.channel, pubsub)

    async def health_check(self) -> bool:
        try:
            return bool(await self._client.ping())
        except RedisError as e:
            logger.error(f"Redis health check failed: {e}")
            return False

    async def close(self) -> None:
        await self._client.aclose()

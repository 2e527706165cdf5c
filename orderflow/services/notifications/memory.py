"""
In-Process Change Notifier

Fans change events out to asyncio queues, one per subscriber. Used in
development mode and in tests; it only reaches subscribers inside the
same process.
"""

import asyncio
import logging
from typing import Optional

from orderflow.services.notifications.base import BaseChangeNotifier, ChangeEvent

logger = logging.getLogger(__name__)


class _Subscription:
    """Registered on creation, so no event published after subscribe() is missed."""

    def __init__(self, owner: "InMemoryChangeNotifier", queue: asyncio.Queue):
        self._owner = owner
        self._queue = queue

    def __aiter__(self):
        return self

    async def __anext__(self) -> ChangeEvent:
        return await self._queue.get()

    async def aclose(self) -> None:
        self._owner._subscribers.discard(self._queue)


class InMemoryChangeNotifier(BaseChangeNotifier):
    """
    Attributes:
        max_backlog: Events buffered per subscriber before old ones are dropped.
            A dropped event is harmless: any later event triggers a full
            re-projection.
    """

    def __init__(self, max_backlog: int = 100):
        self.max_backlog = max_backlog
        self._subscribers: set[asyncio.Queue] = set()
        self.published = 0

    @property
    def provider_name(self) -> str:
        return "memory"

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def publish(self, order_id: Optional[str] = None) -> None:
        event = ChangeEvent(order_id=order_id)
        self.published += 1
        for queue in list(self._subscribers):
            if queue.full():
                queue.get_nowait()
            queue.put_nowait(event)
        logger.debug(f"Change published for {order_id} to {len(self._subscribers)} subscribers")

    async def subscribe(self) -> _Subscription:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.max_backlog)
        self._subscribers.add(queue)
        return _Subscription(self, queue)

    async def health_check(self) -> bool:
        return True

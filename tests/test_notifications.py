"""
Change Notifier Tests

In-process fan-out and failure isolation for writers.
"""
import asyncio

from orderflow.services.notifications import notify_changed
from orderflow.services.notifications.memory import InMemoryChangeNotifier


class BrokenNotifier(InMemoryChangeNotifier):
    async def publish(self, order_id=None):
        raise ConnectionError("redis down")


class TestInMemoryNotifier:
    """Fan-out to every subscriber"""

    async def test_every_subscriber_receives_event(self, notifier):
        first = await notifier.subscribe()
        second = await notifier.subscribe()

        await notifier.publish("order-1")

        assert (await asyncio.wait_for(first.__anext__(), 1)).order_id == "order-1"
        assert (await asyncio.wait_for(second.__anext__(), 1)).order_id == "order-1"
        await first.aclose()
        await second.aclose()

    async def test_closed_subscription_is_removed(self, notifier):
        subscription = await notifier.subscribe()
        assert notifier.subscriber_count == 1
        await subscription.aclose()
        assert notifier.subscriber_count == 0

    async def test_backlog_drops_oldest(self):
        notifier = InMemoryChangeNotifier(max_backlog=2)
        subscription = await notifier.subscribe()
        for order_id in ("a", "b", "c"):
            await notifier.publish(order_id)

        received = [(await subscription.__anext__()).order_id for _ in range(2)]
        assert received == ["b", "c"]


class TestNotifyChanged:
    """Writers never fail because of the notifier"""

    async def test_failure_is_reported_not_raised(self):
        assert await notify_changed(BrokenNotifier(), "order-1") is False

    async def test_success(self, notifier):
        assert await notify_changed(notifier, "order-1") is True
        assert notifier.published == 1

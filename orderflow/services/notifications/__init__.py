"""
Change Notification Factory

Returns the in-process or the Redis notifier based on ENV_MODE.
"""

import logging
from functools import lru_cache
from typing import Optional

from orderflow.core.config import get_settings
from orderflow.services.notifications.base import BaseChangeNotifier, ChangeEvent
from orderflow.services.notifications.memory import InMemoryChangeNotifier
from orderflow.services.notifications.redis_pubsub import RedisChangeNotifier

logger = logging.getLogger(__name__)


def create_change_notifier() -> BaseChangeNotifier:
    """
    Build a new notifier for the current ENV_MODE.

    Processes that run a fresh event loop per job (Celery tasks) build
    their own instead of sharing the cached one.
    """
    settings = get_settings()

    if settings.is_development:
        logger.info("Change Notifier: Using InMemoryChangeNotifier (development mode)")
        return InMemoryChangeNotifier()
    else:
        logger.info(f"Change Notifier: Using RedisChangeNotifier ({settings.env_mode.value} mode)")
        return RedisChangeNotifier()


@lru_cache()
def get_change_notifier() -> BaseChangeNotifier:
    """Get the configured change notifier (cached)."""
    return create_change_notifier()


def reset_change_notifier() -> None:
    """Clear the cached notifier instance."""
    get_change_notifier.cache_clear()


async def notify_changed(notifier: BaseChangeNotifier, order_id: Optional[str]) -> bool:
    """
    Publish a change, degrading to a stale projection on failure.

    Readers re-project on the next event or poll, so a lost
    notification is logged and never propagated to the writer.
    """
    try:
        await notifier.publish(order_id)
        return True
    except Exception as e:
        logger.warning(f"Change notification for {order_id} failed ({notifier.provider_name}): {e}")
        return False


__all__ = [
    "create_change_notifier",
    "get_change_notifier",
    "reset_change_notifier",
    "notify_changed",
    "BaseChangeNotifier",
    "ChangeEvent",
    "InMemoryChangeNotifier",
    "RedisChangeNotifier",
]

"""
Change Notification Abstract Base Class

Defines the "an order changed" channel between writers (lifecycle,
webhooks, admin overrides) and readers (kitchen queue projector).

An event only says that something changed and, when known, which
order. Consumers must re-fetch; no payload is guaranteed.
"""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional


@dataclass
class ChangeEvent:
    """Result of a subscription read."""
    order_id: Optional[str] = None
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class BaseChangeNotifier(ABC):
    """Abstract base class for change notification transports."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the transport name."""
        pass

    @abstractmethod
    async def publish(self, order_id: Optional[str] = None) -> None:
        """Announce that an order changed."""
        pass

    @abstractmethod
    async def subscribe(self) -> AsyncIterator[ChangeEvent]:
        """
        Register a subscriber. Returns an async iterator, closed with
        ``aclose()``, yielding one event per change published after this
        call returns.
        """
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Check transport connectivity."""
        pass

    async def close(self) -> None:
        """Release transport resources."""
        return None

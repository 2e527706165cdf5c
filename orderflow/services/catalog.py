"""
Catalog Collaborator

The menu itself is owned elsewhere (catalog CRUD is not part of this
service). This module defines the provider interface the order flow
reads through, a JSON-file provider, and an explicit TTL cache with an
invalidation call.
"""

import asyncio
import json
import logging
import time
from functools import lru_cache
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Optional

from orderflow.core.config import get_settings
from orderflow.core.exceptions import ValidationError
from orderflow.services.cart import Product

logger = logging.getLogger(__name__)


class BaseCatalogProvider(ABC):
    """Source of the menu: a list of categories, each with products."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        pass

    @abstractmethod
    async def fetch_menu(self) -> list[dict[str, Any]]:
        pass


class FileCatalogProvider(BaseCatalogProvider):
    """Reads the menu from a JSON file (``[{"name": ..., "items": [...]}]``)."""

    def __init__(self, path: str):
        self.path = Path(path)

    @property
    def provider_name(self) -> str:
        return "file"

    async def fetch_menu(self) -> list[dict[str, Any]]:
        if not self.path.exists():
            logger.warning(f"Menu file {self.path} not found; serving empty menu")
            return []
        content = await asyncio.to_thread(self.path.read_text, encoding="utf-8")
        return json.loads(content)


class CatalogCache:
    """
    Menu cache with a time-to-live and explicit invalidation.

    Attributes:
        provider: Where a fresh menu comes from
        ttl_seconds: How long a fetched menu is served without refetching
    """

    def __init__(
        self,
        provider: BaseCatalogProvider,
        ttl_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.provider = provider
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._menu: Optional[list[dict[str, Any]]] = None
        self._fetched_at = 0.0
        self._lock = asyncio.Lock()

    @property
    def is_fresh(self) -> bool:
        return (
            self._menu is not None
            and self._clock() - self._fetched_at < self.ttl_seconds
        )

    async def get_menu(self) -> list[dict[str, Any]]:
        if self.is_fresh:
            return self._menu

        async with self._lock:
            if not self.is_fresh:
                self._menu = await self.provider.fetch_menu()
                self._fetched_at = self._clock()
                logger.debug(
                    f"Menu refreshed from {self.provider.provider_name} "
                    f"({len(self._menu)} categories)"
                )
        return self._menu

    async def get_product(self, product_id: str) -> Product:
        for category in await self.get_menu():
            for item in category.get("items", []):
                if str(item.get("id")) == str(product_id):
                    return Product.from_dict(item)
        raise ValidationError(f"Product {product_id} not in menu", fields=["product_id"])

    def invalidate(self) -> None:
        """Drop the cached menu; the next read refetches."""
        self._menu = None
        self._fetched_at = 0.0
        logger.info("Menu cache invalidated")


@lru_cache()
def get_catalog_cache() -> CatalogCache:
    """Process-wide catalog cache built from settings."""
    settings = get_settings()
    return CatalogCache(
        FileCatalogProvider(settings.menu_file),
        ttl_seconds=settings.menu_cache_ttl_seconds,
    )

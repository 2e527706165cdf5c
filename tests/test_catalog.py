"""
Catalog Cache Tests

TTL expiry, explicit invalidation and product lookup.
"""
import pytest

from orderflow.core.exceptions import ValidationError
from orderflow.services.catalog import BaseCatalogProvider, CatalogCache, FileCatalogProvider


class CountingProvider(BaseCatalogProvider):
    def __init__(self):
        self.calls = 0

    @property
    def provider_name(self):
        return "counting"

    async def fetch_menu(self):
        self.calls += 1
        return [{"name": "Lanches", "items": [{"id": "x", "name": f"X v{self.calls}", "price": 10}]}]


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class TestCatalogCache:
    """Cache freshness"""

    async def test_served_from_cache_within_ttl(self):
        provider, clock = CountingProvider(), FakeClock()
        cache = CatalogCache(provider, ttl_seconds=60, clock=clock)

        await cache.get_menu()
        clock.now += 59
        await cache.get_menu()

        assert provider.calls == 1

    async def test_refetched_after_ttl(self):
        provider, clock = CountingProvider(), FakeClock()
        cache = CatalogCache(provider, ttl_seconds=60, clock=clock)

        await cache.get_menu()
        clock.now += 61
        menu = await cache.get_menu()

        assert provider.calls == 2
        assert menu[0]["items"][0]["name"] == "X v2"

    async def test_invalidate_forces_refetch(self):
        provider = CountingProvider()
        cache = CatalogCache(provider, ttl_seconds=60)

        await cache.get_menu()
        cache.invalidate()
        assert not cache.is_fresh
        await cache.get_menu()

        assert provider.calls == 2


class TestProductLookup:
    """Products from the shipped sample menu"""

    async def test_get_product_builds_choice_groups(self, catalog):
        product = await catalog.get_product("x-burger")
        assert product.name == "X-Burger"
        assert product.get_group("ponto").min == 1
        assert product.get_group("adicionais").max == 3

    async def test_unknown_product(self, catalog):
        with pytest.raises(ValidationError):
            await catalog.get_product("lasanha")

    async def test_missing_file_serves_empty_menu(self, tmp_path):
        provider = FileCatalogProvider(str(tmp_path / "nope.json"))
        assert await provider.fetch_menu() == []

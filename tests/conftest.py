"""
Shared fixtures.

Environment variables are set before anything from orderflow is
imported, so the module-level settings, engine and factories all see
an in-memory SQLite database and development-mode services.
"""
import os
from contextlib import asynccontextmanager
from pathlib import Path

os.environ["ENV_MODE"] = "development"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["DEBUG"] = "false"
os.environ["MENU_FILE"] = str(Path(__file__).resolve().parent.parent / "data" / "menu.json")

import httpx
import pytest

from orderflow.database import build_engine, build_session_maker, init_db
from orderflow.models import BillingType, ServiceType
from orderflow.services.billing.mock import MockBillingService
from orderflow.services.catalog import CatalogCache, FileCatalogProvider
from orderflow.services.notifications.memory import InMemoryChangeNotifier
from orderflow.services.orders import create_order
from orderflow.services.store import OrderStore

MENU_FILE = os.environ["MENU_FILE"]


@pytest.fixture
async def engine():
    engine = build_engine("sqlite+aiosqlite://")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return build_session_maker(engine)


@pytest.fixture
async def session(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
def store(session):
    return OrderStore(session)


@pytest.fixture
def notifier():
    return InMemoryChangeNotifier()


@pytest.fixture
def billing():
    return MockBillingService(failure_rate=0.0, min_latency=0.0, max_latency=0.0)


@pytest.fixture
def catalog():
    return CatalogCache(FileCatalogProvider(MENU_FILE), ttl_seconds=60)


@pytest.fixture
def make_order(store):
    """Create a persisted order; defaults to one X-Burger 2 x 25.00 at the counter."""
    async def _make(**overrides):
        fields = {
            "items": [{"product_name": "X-Burger", "quantity": 2, "price": 25.0}],
            "service_type": ServiceType.BALCAO,
            "billing_type": BillingType.DINHEIRO,
        }
        fields.update(overrides)
        return await create_order(store, **fields)

    return _make


@pytest.fixture
def queued_retries():
    return []


@pytest.fixture
async def client(session_maker, notifier, billing, catalog, queued_retries):
    """HTTP client over the ASGI app with every collaborator swapped for a test double."""
    from orderflow import main
    from orderflow.database import get_db

    async def override_get_db():
        async with session_maker() as session:
            yield session

    def override_store_factory():
        @asynccontextmanager
        async def open_store():
            async with session_maker() as session:
                yield OrderStore(session)

        return open_store

    def record_retry(order_id, payer):
        queued_retries.append((order_id, payer))
        return True

    main.app.dependency_overrides[get_db] = override_get_db
    main.app.dependency_overrides[main.get_notifier] = lambda: notifier
    main.app.dependency_overrides[main.get_billing] = lambda: billing
    main.app.dependency_overrides[main.get_catalog] = lambda: catalog
    main.app.dependency_overrides[main.get_charge_retry] = lambda: record_retry
    main.app.dependency_overrides[main.get_store_factory] = override_store_factory

    transport = httpx.ASGITransport(app=main.app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    main.app.dependency_overrides.clear()

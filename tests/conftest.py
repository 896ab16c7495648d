"""Shared fixtures for the ecommerce test suite."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal

import pytest
import pytest_asyncio

from ecommerce.bus.memory_bus import InMemoryEventBus
from ecommerce.cache.invalidation import CacheInvalidationService
from ecommerce.cache.memory_cache import InMemoryCacheService
from ecommerce.core.clock import ManualClock
from ecommerce.core.config import CacheConfig, OutboxConfig
from ecommerce.domain.customer import Customer
from ecommerce.domain.product import Product
from ecommerce.search.store import InMemoryProjectionStore
from ecommerce.storage.postgres.connection import (
    create_all,
    create_engine,
    create_session_factory,
)
from ecommerce.storage.postgres.unit_of_work import UnitOfWork


# ---------------------------------------------------------------------------
# Clock / config
# ---------------------------------------------------------------------------

@pytest.fixture
def manual_clock() -> ManualClock:
    return ManualClock(datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def cache_config() -> CacheConfig:
    return CacheConfig(backend="memory", product_ttl_seconds=60, search_ttl_seconds=30)


# ---------------------------------------------------------------------------
# In-memory transports
# ---------------------------------------------------------------------------

@pytest.fixture
def memory_bus() -> InMemoryEventBus:
    return InMemoryEventBus(shutdown_timeout=2.0)


@pytest.fixture
def memory_cache(cache_config, manual_clock) -> InMemoryCacheService:
    return InMemoryCacheService(cache_config, manual_clock)


@pytest.fixture
def invalidation(memory_cache) -> CacheInvalidationService:
    return CacheInvalidationService(memory_cache)


@pytest.fixture
def projection_store() -> InMemoryProjectionStore:
    return InMemoryProjectionStore()


# ---------------------------------------------------------------------------
# Database (aiosqlite file per test)
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def db_engine(tmp_path):
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'ecommerce.db'}")
    await create_all(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return create_session_factory(db_engine)


@pytest.fixture
def uow_factory(session_factory, memory_bus, manual_clock):
    def factory(**kwargs) -> UnitOfWork:
        return UnitOfWork(session_factory, memory_bus, clock=manual_clock, **kwargs)

    return factory


@pytest.fixture
def outbox_config() -> OutboxConfig:
    return OutboxConfig(enabled=True, grace_period_seconds=30, batch_size=10, max_attempts=3)


# ---------------------------------------------------------------------------
# Aggregates
# ---------------------------------------------------------------------------

@pytest.fixture
def sample_product() -> Product:
    """A fresh product with stock 5; its ProductCreated event is pending."""
    return Product.create(
        name="Laptop Pro 14",
        sku="lap-14",
        price=Decimal("1299.00"),
        description="14 inch laptop",
        category_id=uuid.UUID("00000000-0000-0000-0000-00000000c0de"),
        stock_quantity=5,
        minimum_stock_level=2,
    )


@pytest.fixture
def sample_customer() -> Customer:
    return Customer.register(
        email="Ada.Lovelace@Example.com",
        first_name="Ada",
        last_name="Lovelace",
    )

"""Cache-aside decorators over query handlers and readers."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import ClassVar

import pytest

from ecommerce.application.dto import PagedResult, ProductDTO
from ecommerce.application.queries import GetProduct, GetProducts
from ecommerce.cache import keys
from ecommerce.cache.decorators import CachedQueryHandler, CachedRepository
from ecommerce.core.config import CacheConfig


def _dto(product_id: uuid.UUID) -> ProductDTO:
    now = datetime(2025, 3, 1, tzinfo=timezone.utc)
    return ProductDTO(
        id=product_id, name="Laptop", sku="LAP", price=Decimal("5.00"),
        created_at=now, updated_at=now,
    )


class FakeProductsHandler:
    result_type: ClassVar = PagedResult[ProductDTO]

    def __init__(self) -> None:
        self.calls = 0

    async def handle(self, query: GetProducts) -> PagedResult[ProductDTO]:
        self.calls += 1
        return PagedResult[ProductDTO](
            items=[_dto(uuid.uuid4())], page=query.page, page_size=query.page_size, total_count=1,
        )


class FakeReader:
    def __init__(self, product_id: uuid.UUID) -> None:
        self.product_id = product_id
        self.get_calls = 0
        self.exists_calls = 0

    async def get(self, entity_id):
        self.get_calls += 1
        return _dto(entity_id) if entity_id == self.product_id else None

    async def exists(self, entity_id):
        self.exists_calls += 1
        return entity_id == self.product_id

    async def list(self, page=1, page_size=20):
        return "forwarded"


class TestCachedQueryHandler:
    @pytest.mark.asyncio
    async def test_second_call_served_from_cache(self, memory_cache, cache_config):
        inner = FakeProductsHandler()
        handler = CachedQueryHandler(inner, memory_cache, cache_config)
        query = GetProducts(page=1, page_size=20, search_term="Laptop")

        first = await handler.handle(query)
        second = await handler.handle(query)

        assert inner.calls == 1
        assert second == first
        assert isinstance(second, PagedResult)
        assert await memory_cache.exists("products:list:1:20:search:laptop")

    @pytest.mark.asyncio
    async def test_uses_category_ttl(self, memory_cache, cache_config, manual_clock):
        from datetime import timedelta

        inner = FakeProductsHandler()
        handler = CachedQueryHandler(inner, memory_cache, cache_config)
        await handler.handle(GetProducts())
        manual_clock.advance(timedelta(seconds=cache_config.product_ttl_seconds))
        await handler.handle(GetProducts())
        assert inner.calls == 2

    @pytest.mark.asyncio
    async def test_disabled_is_pure_passthrough(self, memory_cache):
        inner = FakeProductsHandler()
        handler = CachedQueryHandler(inner, memory_cache, CacheConfig(enabled=False))
        await handler.handle(GetProducts())
        await handler.handle(GetProducts())
        assert inner.calls == 2
        assert memory_cache.keys() == []


class TestCachedRepository:
    @pytest.mark.asyncio
    async def test_get_cached_under_point_key(self, memory_cache, cache_config):
        pid = uuid.uuid4()
        reader = FakeReader(pid)
        repo = CachedRepository(reader, memory_cache, cache_config, "product", ProductDTO)

        assert (await repo.get(pid)).id == pid
        assert (await repo.get(pid)).id == pid
        assert reader.get_calls == 1
        assert await memory_cache.exists(keys.product(pid))

    @pytest.mark.asyncio
    async def test_same_key_as_point_query(self, memory_cache, cache_config):
        pid = uuid.uuid4()
        assert GetProduct(pid).cache_key() == keys.product(pid)

    @pytest.mark.asyncio
    async def test_exists_cached_separately(self, memory_cache, cache_config):
        pid = uuid.uuid4()
        reader = FakeReader(pid)
        repo = CachedRepository(reader, memory_cache, cache_config, "product", ProductDTO)
        assert await repo.exists(pid) is True
        assert await repo.exists(pid) is True
        assert reader.exists_calls == 1
        assert await memory_cache.exists(f"product:{pid}:exists")

    @pytest.mark.asyncio
    async def test_invalidate_clears_get_and_exists(self, memory_cache, cache_config):
        pid = uuid.uuid4()
        repo = CachedRepository(FakeReader(pid), memory_cache, cache_config, "product", ProductDTO)
        await repo.get(pid)
        await repo.exists(pid)
        await repo.invalidate(pid)
        assert memory_cache.keys() == []

    @pytest.mark.asyncio
    async def test_missing_entity_not_cached(self, memory_cache, cache_config):
        reader = FakeReader(uuid.uuid4())
        repo = CachedRepository(reader, memory_cache, cache_config, "product", ProductDTO)
        other = uuid.uuid4()
        assert await repo.get(other) is None
        assert await repo.get(other) is None
        assert reader.get_calls == 2

    @pytest.mark.asyncio
    async def test_other_methods_forwarded(self, memory_cache, cache_config):
        repo = CachedRepository(FakeReader(uuid.uuid4()), memory_cache, cache_config, "product", ProductDTO)
        assert await repo.list() == "forwarded"

    def test_unknown_entity_rejected(self, memory_cache, cache_config):
        with pytest.raises(ValueError):
            CachedRepository(FakeReader(uuid.uuid4()), memory_cache, cache_config, "widget", ProductDTO)

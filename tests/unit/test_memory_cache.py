"""In-memory cache service: TTL, cache-aside and pattern removal."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from ecommerce.application.dto import PagedResult, ProductDTO


def _dto(name: str = "Laptop") -> ProductDTO:
    now = datetime(2025, 3, 1, tzinfo=timezone.utc)
    return ProductDTO(
        id=uuid.uuid4(), name=name, sku="SKU-1", price=Decimal("10.00"),
        created_at=now, updated_at=now,
    )


class Counter:
    def __init__(self, value):
        self.value = value
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        return self.value


class TestGetSet:
    @pytest.mark.asyncio
    async def test_miss_returns_none(self, memory_cache):
        assert await memory_cache.get("product:missing") is None

    @pytest.mark.asyncio
    async def test_roundtrip_model(self, memory_cache):
        dto = _dto()
        await memory_cache.set("product:1", dto)
        assert await memory_cache.get("product:1", ProductDTO) == dto

    @pytest.mark.asyncio
    async def test_overwrite(self, memory_cache):
        await memory_cache.set("k", 1)
        await memory_cache.set("k", 2)
        assert await memory_cache.get("k", int) == 2

    @pytest.mark.asyncio
    async def test_expiry_follows_clock(self, memory_cache, manual_clock):
        await memory_cache.set("k", "v", timedelta(seconds=10))
        manual_clock.advance(timedelta(seconds=9))
        assert await memory_cache.exists("k")
        manual_clock.advance(timedelta(seconds=1))
        assert not await memory_cache.exists("k")
        assert await memory_cache.get("k") is None


class TestGetOrSet:
    @pytest.mark.asyncio
    async def test_hit_skips_factory(self, memory_cache):
        factory = Counter(_dto())
        first = await memory_cache.get_or_set("product:a", factory, timedelta(minutes=1), ProductDTO)
        second = await memory_cache.get_or_set("product:a", factory, timedelta(minutes=1), ProductDTO)
        assert factory.calls == 1
        assert first == second

    @pytest.mark.asyncio
    async def test_factory_runs_again_after_expiry(self, memory_cache, manual_clock):
        factory = Counter(7)
        await memory_cache.get_or_set("k", factory, timedelta(seconds=5), int)
        manual_clock.advance(timedelta(seconds=6))
        await memory_cache.get_or_set("k", factory, timedelta(seconds=5), int)
        assert factory.calls == 2

    @pytest.mark.asyncio
    async def test_returned_value_equals_cached_value(self, memory_cache):
        page = PagedResult[ProductDTO](items=[_dto()], total_count=1)
        returned = await memory_cache.get_or_set(
            "products:list:1:20", Counter(page), None, PagedResult[ProductDTO],
        )
        assert await memory_cache.get("products:list:1:20", PagedResult[ProductDTO]) == returned

    @pytest.mark.asyncio
    async def test_none_is_not_cached(self, memory_cache):
        factory = Counter(None)
        await memory_cache.get_or_set("product:x", factory)
        await memory_cache.get_or_set("product:x", factory)
        assert factory.calls == 2
        assert not await memory_cache.exists("product:x")

    @pytest.mark.asyncio
    async def test_false_is_cached(self, memory_cache):
        factory = Counter(False)
        assert await memory_cache.get_or_set("product:x:exists", factory, value_type=bool) is False
        assert await memory_cache.get_or_set("product:x:exists", factory, value_type=bool) is False
        assert factory.calls == 1

    @pytest.mark.asyncio
    async def test_factory_error_propagates(self, memory_cache):
        async def boom():
            raise LookupError("db down")

        with pytest.raises(LookupError):
            await memory_cache.get_or_set("k", boom)


class TestRemoval:
    @pytest.mark.asyncio
    async def test_remove_by_pattern_counts(self, memory_cache):
        for key in ("products:list:1:20", "products:search:a:1:20", "product:1", "orders:list:c:1:20"):
            await memory_cache.set(key, 1)
        removed = await memory_cache.remove_by_pattern("products:*")
        assert removed == 2
        assert sorted(memory_cache.keys()) == ["orders:list:c:1:20", "product:1"]

    @pytest.mark.asyncio
    async def test_remove_point(self, memory_cache):
        await memory_cache.set("product:1", 1)
        await memory_cache.remove("product:1")
        await memory_cache.remove("product:1")
        assert memory_cache.keys() == []

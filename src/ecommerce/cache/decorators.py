"""Cache-aside wrappers around query handlers and read repositories.

Both wrappers hold the inner object and expose the same call surface, so
callers cannot tell whether caching is on.  With ``CacheConfig.enabled``
false every call goes straight to the inner object.
"""

from __future__ import annotations

import uuid
from typing import Any, Generic, Protocol, TypeVar

from ecommerce.core.config import CacheConfig
from ecommerce.core.enums import CacheCategory
from ecommerce.core.interfaces import ICacheService

from . import keys


class CacheableQuery(Protocol):
    cache_category: CacheCategory

    def cache_key(self) -> str: ...


Q = TypeVar("Q", bound=CacheableQuery)
R = TypeVar("R")


class QueryHandler(Protocol[Q, R]):
    async def handle(self, query: Q) -> R: ...


class CachedQueryHandler(Generic[Q, R]):
    """Wrap a query handler with ``get_or_set`` on the query's cache key.

    The query supplies its own key (``cache_key()``) and TTL category;
    ``result_type`` tells the cache how to rebuild the result on a hit
    and defaults to the inner handler's ``result_type`` attribute.
    """

    def __init__(
        self,
        inner: QueryHandler[Q, R],
        cache: ICacheService,
        config: CacheConfig,
        result_type: Any = None,
    ) -> None:
        self._inner = inner
        self._cache = cache
        self._config = config
        self._result_type = result_type or getattr(inner, "result_type", Any)

    @property
    def inner(self) -> QueryHandler[Q, R]:
        return self._inner

    async def handle(self, query: Q) -> R:
        if not self._config.enabled:
            return await self._inner.handle(query)

        key = query.cache_key()
        ttl = self._config.ttl_for(query.cache_category)
        return await self._cache.get_or_set(
            key,
            lambda: self._inner.handle(query),
            ttl,
            value_type=self._result_type,
        )


class PointReader(Protocol[R]):
    async def get(self, entity_id: uuid.UUID) -> R | None: ...

    async def exists(self, entity_id: uuid.UUID) -> bool: ...


_ENTITY_KEYS = {
    "product": (keys.product, CacheCategory.PRODUCT),
    "order": (keys.order, CacheCategory.ORDER),
    "customer": (keys.customer, CacheCategory.CUSTOMER),
}


class CachedRepository(Generic[R]):
    """Cache point lookups (``get`` / ``exists``) of a read repository.

    ``get`` is cached under ``{entity}:{id}`` and ``exists`` under
    ``{entity}:{id}:exists``; anything else is forwarded uncached.
    ``CacheInvalidationService`` evicts both through the point family.
    """

    def __init__(
        self,
        inner: PointReader[R],
        cache: ICacheService,
        config: CacheConfig,
        entity: str,
        result_type: Any,
    ) -> None:
        if entity not in _ENTITY_KEYS:
            raise ValueError(f"Unknown cached entity {entity!r}")
        self._inner = inner
        self._cache = cache
        self._config = config
        self._key_fn, category = _ENTITY_KEYS[entity]
        self._ttl = config.ttl_for(category)
        self._result_type = result_type

    async def get(self, entity_id: uuid.UUID) -> R | None:
        if not self._config.enabled:
            return await self._inner.get(entity_id)
        return await self._cache.get_or_set(
            self._key_fn(entity_id),
            lambda: self._inner.get(entity_id),
            self._ttl,
            value_type=self._result_type,
        )

    async def exists(self, entity_id: uuid.UUID) -> bool:
        if not self._config.enabled:
            return await self._inner.exists(entity_id)
        return await self._cache.get_or_set(
            keys.point_exists(self._key_fn(entity_id)),
            lambda: self._inner.exists(entity_id),
            self._ttl,
            value_type=bool,
        )

    async def invalidate(self, entity_id: uuid.UUID) -> None:
        point = self._key_fn(entity_id)
        await self._cache.remove(point)
        await self._cache.remove_by_pattern(keys.point_family(point))

    def __getattr__(self, name: str) -> Any:
        return getattr(self._inner, name)

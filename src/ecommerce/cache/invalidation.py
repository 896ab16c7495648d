"""Translate domain identities into cache evictions.

================  =================================================
Mutation          Evicted
================  =================================================
product {id}      ``product:{id}``, ``product:{id}:*``, ``products:*``
order {id}        ``order:{id}``, ``order:{id}:*``,
                  ``orders:*:{customer_id}:*`` (``orders:*`` without a
                  customer)
customer {id}     ``customer:{id}``, ``customer:{id}:*``, ``customers:*``
category {id}     ``category:{id}``, ``category:{id}:*``, ``categories:*``,
                  ``products:*``
everything        ``*``
================  =================================================

Called from projection handlers after commit, never from the write path.
Each removal is guarded on its own, so one failing pattern does not
stop the rest.  Failures are logged; TTL expiry bounds the staleness
they leave behind.
"""

from __future__ import annotations

import logging
import uuid

from ecommerce.core.interfaces import ICacheService

from . import keys

logger = logging.getLogger(__name__)


class CacheInvalidationService:
    def __init__(self, cache: ICacheService) -> None:
        self._cache = cache

    async def _evict(self, point: str | None, *patterns: str) -> int:
        removed = 0
        if point is not None:
            await self._remove(point)
            patterns = (keys.point_family(point), *patterns)
        for pattern in patterns:
            removed += await self._remove_pattern(pattern)
        return removed

    async def _remove(self, key: str) -> None:
        try:
            await self._cache.remove(key)
        except Exception:
            logger.exception("Cache invalidation failed key=%s", key)

    async def _remove_pattern(self, pattern: str) -> int:
        try:
            return await self._cache.remove_by_pattern(pattern)
        except Exception:
            logger.exception("Cache invalidation failed pattern=%s", pattern)
            return 0

    async def invalidate_product(self, product_id: uuid.UUID | str) -> None:
        removed = await self._evict(keys.product(product_id), keys.products_pattern())
        logger.info("Invalidated product cache product_id=%s removed=%d", product_id, removed)

    async def invalidate_products(self) -> None:
        """Evict every product list and search entry, keeping point keys."""
        removed = await self._evict(None, keys.products_pattern())
        logger.info("Invalidated product lists removed=%d", removed)

    async def invalidate_order(
        self,
        order_id: uuid.UUID | str,
        customer_id: uuid.UUID | str | None = None,
    ) -> None:
        removed = await self._evict(keys.order(order_id), keys.orders_pattern(customer_id))
        logger.info(
            "Invalidated order cache order_id=%s customer_id=%s removed=%d",
            order_id,
            customer_id,
            removed,
        )

    async def invalidate_customer(self, customer_id: uuid.UUID | str) -> None:
        removed = await self._evict(keys.customer(customer_id), keys.customers_pattern())
        logger.info("Invalidated customer cache customer_id=%s removed=%d", customer_id, removed)

    async def invalidate_category(self, category_id: uuid.UUID | str) -> None:
        """Category changes also reshape category-filtered product lists."""
        removed = await self._evict(
            keys.category(category_id), keys.categories_pattern(), keys.products_pattern(),
        )
        logger.info("Invalidated category cache category_id=%s removed=%d", category_id, removed)

    async def invalidate_all(self) -> None:
        removed = await self._evict(None, keys.ALL_PATTERN)
        logger.warning("Invalidated entire cache removed=%d", removed)

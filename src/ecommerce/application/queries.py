"""Query objects and their handlers (the read path).

Every query knows its own cache key and TTL category, so any handler can
be wrapped in :class:`~ecommerce.cache.decorators.CachedQueryHandler`
without the handler knowing about the cache.  Keys come from
:mod:`ecommerce.cache.keys` and are therefore reachable by pattern
invalidation.

Handlers read from the relational store through the readers; product
search goes to the search read-model and falls back to the relational
store when the search cluster is unavailable.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any, ClassVar

from ecommerce.cache import keys
from ecommerce.core.enums import CacheCategory
from ecommerce.core.errors import SearchStoreError, ValidationError
from ecommerce.core.interfaces import IProjectionStore
from ecommerce.search.documents import PRODUCTS_INDEX, ProductDocument
from ecommerce.storage.postgres.readers import (
    CategoryReader,
    CustomerReader,
    OrderReader,
    ProductReader,
)

from .dto import CategoryDTO, CustomerDTO, OrderDTO, PagedResult, ProductDTO

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


def _check_paging(page: int, page_size: int) -> None:
    if page < 1:
        raise ValidationError("page must be >= 1")
    if not 1 <= page_size <= MAX_PAGE_SIZE:
        raise ValidationError(f"page_size must be between 1 and {MAX_PAGE_SIZE}")


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class GetProducts:
    page: int = 1
    page_size: int = 20
    search_term: str | None = None
    category_id: uuid.UUID | None = None

    cache_category: ClassVar[CacheCategory] = CacheCategory.PRODUCT

    def cache_key(self) -> str:
        return keys.products_list(self.page, self.page_size, self.search_term, self.category_id)


@dataclass(frozen=True)
class SearchProducts:
    search_term: str
    page: int = 1
    page_size: int = 20

    cache_category: ClassVar[CacheCategory] = CacheCategory.SEARCH

    def cache_key(self) -> str:
        return keys.products_search(self.search_term, self.page, self.page_size)


@dataclass(frozen=True)
class GetLowStockProducts:
    limit: int = 50

    cache_category: ClassVar[CacheCategory] = CacheCategory.PRODUCT

    def cache_key(self) -> str:
        return keys.query_key("products", "low_stock", limit=self.limit)


@dataclass(frozen=True)
class GetProduct:
    product_id: uuid.UUID

    cache_category: ClassVar[CacheCategory] = CacheCategory.PRODUCT

    def cache_key(self) -> str:
        return keys.product(self.product_id)


@dataclass(frozen=True)
class GetCategories:
    """Root categories, or the direct children of ``parent_id``."""

    include_inactive: bool = False
    parent_id: uuid.UUID | None = None

    cache_category: ClassVar[CacheCategory] = CacheCategory.PRODUCT

    def cache_key(self) -> str:
        return keys.categories_list(self.include_inactive, self.parent_id)


@dataclass(frozen=True)
class GetCategory:
    category_id: uuid.UUID

    cache_category: ClassVar[CacheCategory] = CacheCategory.PRODUCT

    def cache_key(self) -> str:
        return keys.category(self.category_id)


@dataclass(frozen=True)
class GetOrders:
    customer_id: uuid.UUID
    page: int = 1
    page_size: int = 20

    cache_category: ClassVar[CacheCategory] = CacheCategory.ORDER

    def cache_key(self) -> str:
        return keys.orders_list(self.customer_id, self.page, self.page_size)


@dataclass(frozen=True)
class GetOrder:
    order_id: uuid.UUID

    cache_category: ClassVar[CacheCategory] = CacheCategory.ORDER

    def cache_key(self) -> str:
        return keys.order(self.order_id)


@dataclass(frozen=True)
class GetCustomers:
    page: int = 1
    page_size: int = 20
    search_term: str | None = None

    cache_category: ClassVar[CacheCategory] = CacheCategory.CUSTOMER

    def cache_key(self) -> str:
        return keys.customers_list(self.page, self.page_size, self.search_term)


@dataclass(frozen=True)
class GetCustomer:
    customer_id: uuid.UUID

    cache_category: ClassVar[CacheCategory] = CacheCategory.CUSTOMER

    def cache_key(self) -> str:
        return keys.customer(self.customer_id)


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------

class GetProductsHandler:
    result_type: ClassVar[Any] = PagedResult[ProductDTO]

    def __init__(self, reader: ProductReader) -> None:
        self._reader = reader

    async def handle(self, query: GetProducts) -> PagedResult[ProductDTO]:
        _check_paging(query.page, query.page_size)
        return await self._reader.list(
            query.page, query.page_size, query.search_term, query.category_id,
        )


class SearchProductsHandler:
    result_type: ClassVar[Any] = list[ProductDocument]

    def __init__(self, store: IProjectionStore, reader: ProductReader) -> None:
        self._store = store
        self._reader = reader

    async def handle(self, query: SearchProducts) -> list[ProductDocument]:
        _check_paging(query.page, query.page_size)
        if not query.search_term.strip():
            raise ValidationError("search_term must not be empty")
        try:
            hits = await self._store.search(
                PRODUCTS_INDEX,
                query.search_term,
                filters={"is_active": True},
                size=query.page_size,
                offset=(query.page - 1) * query.page_size,
            )
        except SearchStoreError as exc:
            logger.warning("Search unavailable, falling back to database: %s", exc)
            page = await self._reader.list(query.page, query.page_size, query.search_term)
            return [ProductDocument.from_dto(dto) for dto in page.items]
        return [ProductDocument.model_validate(hit) for hit in hits]


class GetLowStockProductsHandler:
    result_type: ClassVar[Any] = list[ProductDTO]

    def __init__(self, reader: ProductReader) -> None:
        self._reader = reader

    async def handle(self, query: GetLowStockProducts) -> list[ProductDTO]:
        return await self._reader.list_low_stock(query.limit)


class GetProductHandler:
    result_type: ClassVar[Any] = ProductDTO

    def __init__(self, reader: ProductReader) -> None:
        self._reader = reader

    async def handle(self, query: GetProduct) -> ProductDTO | None:
        return await self._reader.get(query.product_id)


class GetCategoriesHandler:
    result_type: ClassVar[Any] = list[CategoryDTO]

    def __init__(self, reader: CategoryReader) -> None:
        self._reader = reader

    async def handle(self, query: GetCategories) -> list[CategoryDTO]:
        return await self._reader.list(query.include_inactive, query.parent_id)


class GetCategoryHandler:
    result_type: ClassVar[Any] = CategoryDTO

    def __init__(self, reader: CategoryReader) -> None:
        self._reader = reader

    async def handle(self, query: GetCategory) -> CategoryDTO | None:
        return await self._reader.get(query.category_id)


class GetOrdersHandler:
    result_type: ClassVar[Any] = PagedResult[OrderDTO]

    def __init__(self, reader: OrderReader) -> None:
        self._reader = reader

    async def handle(self, query: GetOrders) -> PagedResult[OrderDTO]:
        _check_paging(query.page, query.page_size)
        return await self._reader.list_for_customer(
            query.customer_id, query.page, query.page_size,
        )


class GetOrderHandler:
    result_type: ClassVar[Any] = OrderDTO

    def __init__(self, reader: OrderReader) -> None:
        self._reader = reader

    async def handle(self, query: GetOrder) -> OrderDTO | None:
        return await self._reader.get(query.order_id)


class GetCustomersHandler:
    result_type: ClassVar[Any] = PagedResult[CustomerDTO]

    def __init__(self, reader: CustomerReader) -> None:
        self._reader = reader

    async def handle(self, query: GetCustomers) -> PagedResult[CustomerDTO]:
        _check_paging(query.page, query.page_size)
        return await self._reader.list(query.page, query.page_size, query.search_term)


class GetCustomerHandler:
    result_type: ClassVar[Any] = CustomerDTO

    def __init__(self, reader: CustomerReader) -> None:
        self._reader = reader

    async def handle(self, query: GetCustomer) -> CustomerDTO | None:
        return await self._reader.get(query.customer_id)

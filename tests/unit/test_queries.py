"""Query handlers, readers and the cache-aside wrapper."""

from __future__ import annotations

import uuid
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from ecommerce.application.commands import (
    AddCustomerAddress,
    CommandHandlers,
    CreateCategory,
    CreateProduct,
    OrderLineRequest,
    PlaceOrder,
    RegisterCustomer,
    UpdateCategory,
    UpdateProduct,
    UpdateProductStock,
)
from ecommerce.application.queries import (
    GetCategories,
    GetCategoriesHandler,
    GetCategory,
    GetCategoryHandler,
    GetCustomer,
    GetCustomerHandler,
    GetCustomers,
    GetCustomersHandler,
    GetLowStockProducts,
    GetLowStockProductsHandler,
    GetOrders,
    GetOrdersHandler,
    GetProduct,
    GetProductHandler,
    GetProducts,
    GetProductsHandler,
    SearchProducts,
    SearchProductsHandler,
)
from ecommerce.cache.decorators import CachedQueryHandler
from ecommerce.cache.invalidation import CacheInvalidationService
from ecommerce.core.enums import AddressType
from ecommerce.core.errors import SearchStoreError, ValidationError
from ecommerce.search.documents import PRODUCTS_INDEX, ProductDocument, to_fields
from ecommerce.storage.postgres.readers import (
    CategoryReader,
    CustomerReader,
    OrderReader,
    ProductReader,
)


@pytest.fixture
def commands(uow_factory) -> CommandHandlers:
    return CommandHandlers.build(uow_factory)


@pytest.fixture
def products(session_factory) -> ProductReader:
    return ProductReader(session_factory)


async def _seed(commands) -> dict[str, uuid.UUID]:
    ids = {}
    for name, sku, stock in (
        ("Laptop Pro", "lap-14", 5),
        ("Laptop Air", "lap-13", 1),
        ("Wireless Mouse", "m-1", 0),
    ):
        ids[sku] = await commands.create_product.handle(CreateProduct(
            name=name, sku=sku, price=Decimal("10.00"), stock_quantity=stock,
            minimum_stock_level=2,
        ))
    return ids


class TestProductQueries:
    @pytest.mark.asyncio
    async def test_list_and_filter(self, commands, products):
        ids = await _seed(commands)
        await commands.update_product.handle(UpdateProduct(ids["lap-13"], is_active=False))
        handler = GetProductsHandler(products)

        page = await handler.handle(GetProducts(page=1, page_size=10))
        assert [p.name for p in page.items] == ["Laptop Pro", "Wireless Mouse"]
        assert page.total_count == 2

        found = await handler.handle(GetProducts(search_term="LAPTOP"))
        assert [p.sku for p in found.items] == ["LAP-14"]

        second = await handler.handle(GetProducts(page=2, page_size=1))
        assert [p.name for p in second.items] == ["Wireless Mouse"]
        assert second.has_previous_page and not second.has_next_page

    @pytest.mark.asyncio
    @pytest.mark.parametrize("page,page_size", [(0, 20), (1, 0), (1, 101)])
    async def test_paging_bounds(self, products, page, page_size):
        with pytest.raises(ValidationError):
            await GetProductsHandler(products).handle(GetProducts(page=page, page_size=page_size))

    @pytest.mark.asyncio
    async def test_low_stock(self, commands, products):
        await _seed(commands)
        low = await GetLowStockProductsHandler(products).handle(GetLowStockProducts())
        assert [p.sku for p in low] == ["M-1", "LAP-13"]

    @pytest.mark.asyncio
    async def test_missing_product_is_none(self, products):
        assert await GetProductHandler(products).handle(GetProduct(uuid.uuid4())) is None


class TestSearchProducts:
    @pytest.mark.asyncio
    async def test_reads_projection(self, products, projection_store):
        product_id = uuid.uuid4()
        doc = ProductDocument(id=product_id, name="Laptop Pro", sku="LAP-14", is_active=True)
        await projection_store.upsert(PRODUCTS_INDEX, str(product_id), to_fields(doc), 1)

        hits = await SearchProductsHandler(projection_store, products).handle(SearchProducts("laptop"))
        assert [h.id for h in hits] == [product_id]

    @pytest.mark.asyncio
    async def test_falls_back_to_database(self, commands, products):
        await _seed(commands)
        store = AsyncMock()
        store.search.side_effect = SearchStoreError("cluster red")

        hits = await SearchProductsHandler(store, products).handle(SearchProducts("laptop"))

        assert {h.sku for h in hits} == {"LAP-14", "LAP-13"}
        assert all(isinstance(h, ProductDocument) for h in hits)

    @pytest.mark.asyncio
    async def test_blank_term_rejected(self, products, projection_store):
        with pytest.raises(ValidationError):
            await SearchProductsHandler(projection_store, products).handle(SearchProducts("  "))


class TestCachedQueries:
    @pytest.mark.asyncio
    async def test_second_read_served_from_cache(
        self, commands, products, memory_cache, cache_config,
    ):
        ids = await _seed(commands)
        handler = CachedQueryHandler(GetProductHandler(products), memory_cache, cache_config)
        query = GetProduct(ids["lap-14"])

        first = await handler.handle(query)
        await commands.update_product_stock.handle(UpdateProductStock(ids["lap-14"], quantity=0))
        cached = await handler.handle(query)

        assert cached == first
        assert cached.stock_quantity == 5
        assert query.cache_key() in memory_cache.keys()

    @pytest.mark.asyncio
    async def test_paged_result_round_trips(self, commands, products, memory_cache, cache_config):
        await _seed(commands)
        handler = CachedQueryHandler(GetProductsHandler(products), memory_cache, cache_config)
        first = await handler.handle(GetProducts())
        again = await handler.handle(GetProducts())
        assert again == first
        assert again.items[0].price == Decimal("10.00")


class TestOrderAndCustomerQueries:
    @pytest.mark.asyncio
    async def test_orders_for_customer(self, commands, session_factory):
        ids = await _seed(commands)
        ada = await commands.register_customer.handle(
            RegisterCustomer("ada@example.com", "Ada", "Lovelace")
        )
        charles = await commands.register_customer.handle(
            RegisterCustomer("charles@example.com", "Charles", "Babbage")
        )
        order_id = await commands.place_order.handle(
            PlaceOrder(ada, (OrderLineRequest(ids["lap-14"], 2),), "addr")
        )

        handler = GetOrdersHandler(OrderReader(session_factory))
        mine = await handler.handle(GetOrders(ada))
        assert [o.id for o in mine.items] == [order_id]
        assert mine.items[0].items[0].quantity == 2
        assert (await handler.handle(GetOrders(charles))).items == []

        customers = await GetCustomersHandler(CustomerReader(session_factory)).handle(
            GetCustomers(search_term="babb")
        )
        assert [c.id for c in customers.items] == [charles]

    @pytest.mark.asyncio
    async def test_customer_with_addresses(self, commands, session_factory):
        ada = await commands.register_customer.handle(
            RegisterCustomer("ada@example.com", "Ada", "Lovelace")
        )
        await commands.add_customer_address.handle(AddCustomerAddress(
            ada, AddressType.SHIPPING, "1 Analytical Way", "London", "LDN", "N1", "UK",
        ))
        await commands.add_customer_address.handle(AddCustomerAddress(
            ada, AddressType.BILLING, "2 Engine St", "London", "LDN", "N2", "UK",
            street2="Floor 3",
        ))

        dto = await GetCustomerHandler(CustomerReader(session_factory)).handle(GetCustomer(ada))
        assert [a.street1 for a in dto.addresses] == ["1 Analytical Way", "2 Engine St"]
        assert [a.is_primary for a in dto.addresses] == [True, False]
        assert dto.addresses[1].single_line == "2 Engine St, Floor 3, London, LDN N2, UK"


class TestCategoryQueries:
    async def _tree(self, commands) -> dict[str, uuid.UUID]:
        ids = {}
        ids["computers"] = await commands.create_category.handle(
            CreateCategory("Computers", "All computers")
        )
        ids["audio"] = await commands.create_category.handle(CreateCategory("Audio", "Sound"))
        for name in ("Laptops", "Desktops"):
            ids[name.lower()] = await commands.create_category.handle(
                CreateCategory(name, name, parent_id=ids["computers"])
            )
        return ids

    @pytest.mark.asyncio
    async def test_roots_and_children_by_name(self, commands, session_factory):
        ids = await self._tree(commands)
        handler = GetCategoriesHandler(CategoryReader(session_factory))

        roots = await handler.handle(GetCategories())
        assert [c.name for c in roots] == ["Audio", "Computers"]
        assert all(c.is_root for c in roots)

        children = await handler.handle(GetCategories(parent_id=ids["computers"]))
        assert [c.name for c in children] == ["Desktops", "Laptops"]
        assert {c.level for c in children} == {1}

    @pytest.mark.asyncio
    async def test_inactive_hidden_unless_requested(self, commands, session_factory):
        ids = await self._tree(commands)
        await commands.update_category.handle(UpdateCategory(ids["audio"], is_active=False))
        handler = GetCategoriesHandler(CategoryReader(session_factory))

        assert [c.name for c in await handler.handle(GetCategories())] == ["Computers"]
        everything = await handler.handle(GetCategories(include_inactive=True))
        assert [c.name for c in everything] == ["Audio", "Computers"]

    @pytest.mark.asyncio
    async def test_single_category(self, commands, session_factory):
        ids = await self._tree(commands)
        handler = GetCategoryHandler(CategoryReader(session_factory))
        laptops = await handler.handle(GetCategory(ids["laptops"]))
        assert laptops.parent_id == ids["computers"]
        assert await handler.handle(GetCategory(uuid.uuid4())) is None

    @pytest.mark.asyncio
    async def test_cached_list_refreshed_after_invalidation(
        self, commands, session_factory, memory_cache, cache_config,
    ):
        ids = await self._tree(commands)
        handler = CachedQueryHandler(
            GetCategoriesHandler(CategoryReader(session_factory)), memory_cache, cache_config,
        )
        assert len(await handler.handle(GetCategories())) == 2

        await commands.update_category.handle(UpdateCategory(ids["audio"], is_active=False))
        assert len(await handler.handle(GetCategories())) == 2

        await CacheInvalidationService(memory_cache).invalidate_category(ids["audio"])
        assert [c.name for c in await handler.handle(GetCategories())] == ["Computers"]

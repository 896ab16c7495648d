"""Projection rebuild from the relational store."""

from __future__ import annotations

import uuid
from decimal import Decimal

import pytest

from ecommerce.application.commands import (
    ChangeOrderStatus,
    CommandHandlers,
    CreateProduct,
    OrderLineRequest,
    PlaceOrder,
    RegisterCustomer,
)
from ecommerce.core.enums import OrderStatus
from ecommerce.projections.handlers import register_projection_handlers
from ecommerce.projections.rebuild import ProjectionRebuilder
from ecommerce.search.documents import CUSTOMERS_INDEX, ORDERS_INDEX, PRODUCTS_INDEX
from ecommerce.search.store import VERSION_FIELD, InMemoryProjectionStore
from ecommerce.storage.postgres.readers import CustomerReader, OrderReader, ProductReader


@pytest.fixture
def rebuilder_for(session_factory):
    def build(store, batch_size: int = 500) -> ProjectionRebuilder:
        return ProjectionRebuilder(
            ProductReader(session_factory),
            OrderReader(session_factory),
            CustomerReader(session_factory),
            store,
            batch_size=batch_size,
        )

    return build


async def _seed(uow_factory) -> None:
    commands = CommandHandlers.build(uow_factory)
    product_ids = [
        await commands.create_product.handle(CreateProduct(
            name=f"Item {i}", sku=f"itm-{i}", price=Decimal("5.00"), stock_quantity=10,
        ))
        for i in range(5)
    ]
    customer_id = await commands.register_customer.handle(
        RegisterCustomer("ada@example.com", "Ada", "Lovelace")
    )
    await commands.place_order.handle(PlaceOrder(
        customer_id, (OrderLineRequest(product_ids[0], 4),), "1 Analytical Way",
    ))


class TestProjectionRebuilder:
    @pytest.mark.asyncio
    async def test_rebuild_counts_in_batches(self, uow_factory, rebuilder_for, projection_store):
        await _seed(uow_factory)

        report = await rebuilder_for(projection_store, batch_size=2).rebuild_all()

        assert report.counts == {PRODUCTS_INDEX: 5, ORDERS_INDEX: 1, CUSTOMERS_INDEX: 1}
        assert report.total == 7
        assert projection_store.count(PRODUCTS_INDEX) == 5

    @pytest.mark.asyncio
    async def test_rebuild_matches_event_projection(
        self, uow_factory, memory_bus, invalidation, rebuilder_for,
    ):
        live = InMemoryProjectionStore()
        await register_projection_handlers(memory_bus, live, invalidation)
        await memory_bus.start()
        await _seed(uow_factory)

        rebuilt = InMemoryProjectionStore()
        await rebuilder_for(rebuilt).rebuild_all()

        for doc in await live.search(PRODUCTS_INDEX, size=100):
            other = await rebuilt.get(PRODUCTS_INDEX, doc["id"])
            for field in ("name", "sku", "stock_quantity", "is_in_stock", "aggregate_version"):
                assert other[field] == doc[field], field

        (order,) = await live.search(ORDERS_INDEX)
        rebuilt_order = await rebuilt.get(ORDERS_INDEX, order["id"])
        assert rebuilt_order["order_number"] == order["order_number"]
        assert rebuilt_order["status"] == order["status"] == "pending"

    @pytest.mark.asyncio
    async def test_rebuild_is_idempotent(self, uow_factory, rebuilder_for, projection_store):
        await _seed(uow_factory)
        rebuilder = rebuilder_for(projection_store)
        await rebuilder.rebuild_all()
        before = await projection_store.search(PRODUCTS_INDEX, size=100)
        await rebuilder.rebuild_all()
        assert await projection_store.search(PRODUCTS_INDEX, size=100) == before

    @pytest.mark.asyncio
    async def test_rebuild_repairs_diverged_document(
        self, uow_factory, memory_bus, invalidation, rebuilder_for,
    ):
        live = InMemoryProjectionStore()
        await register_projection_handlers(memory_bus, live, invalidation)
        await memory_bus.start()
        await _seed(uow_factory)
        (doc, *_) = await live.search(PRODUCTS_INDEX, "item 1")
        expected = dict(doc)
        await live.upsert(
            PRODUCTS_INDEX,
            doc["id"],
            {"name": "corrupted", "stock_quantity": 999, "is_in_stock": False},
            doc[VERSION_FIELD],
            force=True,
        )

        await rebuilder_for(live).rebuild_all()

        repaired = await live.get(PRODUCTS_INDEX, doc["id"])
        assert repaired["name"] == expected["name"] == "Item 1"
        assert repaired["stock_quantity"] == expected["stock_quantity"] == 10
        assert repaired["is_in_stock"] is True
        assert repaired[VERSION_FIELD] == expected[VERSION_FIELD]

    @pytest.mark.asyncio
    async def test_rebuild_restores_missing_document(
        self, uow_factory, memory_bus, invalidation, rebuilder_for,
    ):
        live = InMemoryProjectionStore()
        await register_projection_handlers(memory_bus, live, invalidation)
        await memory_bus.start()
        await _seed(uow_factory)
        (order,) = await live.search(ORDERS_INDEX)
        await live.delete(ORDERS_INDEX, order["id"])

        await rebuilder_for(live).rebuild_orders()

        restored = await live.get(ORDERS_INDEX, order["id"])
        assert restored["order_number"] == order["order_number"]
        assert Decimal(restored["total_amount"]) == Decimal(order["total_amount"])

    @pytest.mark.asyncio
    async def test_rebuild_keeps_event_only_fields(
        self, uow_factory, memory_bus, invalidation, rebuilder_for,
    ):
        live = InMemoryProjectionStore()
        await register_projection_handlers(memory_bus, live, invalidation)
        await memory_bus.start()
        await _seed(uow_factory)
        (order,) = await live.search(ORDERS_INDEX)
        await CommandHandlers.build(uow_factory).change_order_status.handle(
            ChangeOrderStatus(uuid.UUID(order["id"]), OrderStatus.CONFIRMED)
        )

        await rebuilder_for(live).rebuild_orders()

        rebuilt = await live.get(ORDERS_INDEX, order["id"])
        assert rebuilt["status"] == "confirmed"
        assert rebuilt["confirmed_at"] is not None

"""Property tests: product projections converge whatever order events arrive in."""

from __future__ import annotations

import asyncio
import uuid
from decimal import Decimal
from unittest.mock import AsyncMock

from hypothesis import given, settings
from hypothesis import strategies as st

from ecommerce.domain.product import Product
from ecommerce.projections.handlers import HANDLER_TYPES
from ecommerce.search.documents import PRODUCTS_INDEX
from ecommerce.search.store import VERSION_FIELD, InMemoryProjectionStore

operations = st.lists(
    st.one_of(
        st.tuples(st.just("stock"), st.integers(0, 40)),
        st.tuples(st.just("rename"), st.text(alphabet="abcdefghij ", min_size=1, max_size=12)),
        st.tuples(st.just("price"), st.integers(1, 5000)),
        st.tuples(st.just("review"), st.integers(1, 5)),
        st.tuples(st.just("feature"), st.booleans()),
    ),
    min_size=1,
    max_size=8,
)


def _history(ops) -> tuple[Product, list]:
    product = Product.create(
        name="Widget", sku="w-1", price=Decimal("9.99"), stock_quantity=10, minimum_stock_level=3,
    )
    for op, arg in ops:
        if op == "stock":
            product.set_stock(arg)
        elif op == "rename":
            product.update(name=arg)
        elif op == "price":
            product.update(price=Decimal(arg) / 100)
        elif op == "review":
            product.add_review(customer_id=uuid.uuid4(), rating=arg)
        else:
            product.mark_featured(arg)
    return product, product.pull_domain_events()


async def _project(events) -> dict:
    store = InMemoryProjectionStore()
    invalidation = AsyncMock()
    handlers = {cls.event_type: cls(store, invalidation) for cls in HANDLER_TYPES}
    for event in events:
        await handlers[type(event)].handle(event)
    return await store.get(PRODUCTS_INDEX, str(events[0].aggregate_id))


class TestProductProjectionConvergence:
    @settings(max_examples=60, deadline=None)
    @given(operations, st.data())
    def test_any_delivery_order_matches_in_order_projection(self, ops, data):
        product, events = _history(ops)
        shuffled = data.draw(st.permutations(events))

        in_order = asyncio.run(_project(events))
        reordered = asyncio.run(_project(shuffled))

        assert reordered == in_order

    @settings(max_examples=60, deadline=None)
    @given(operations, st.data())
    def test_reordered_projection_reflects_final_aggregate(self, ops, data):
        product, events = _history(ops)
        shuffled = data.draw(st.permutations(events))
        redelivered = shuffled + data.draw(st.lists(st.sampled_from(events), max_size=4))

        doc = asyncio.run(_project(redelivered))

        assert doc[VERSION_FIELD] == product.version
        assert doc["name"] == product.name
        assert Decimal(doc["price"]) == product.price
        assert doc["stock_quantity"] == product.stock_quantity
        assert doc["is_in_stock"] == (product.stock_quantity > 0)
        assert doc["is_low_stock"] == product.is_low_stock
        assert doc["is_featured"] == product.is_featured
        assert doc["review_count"] == product.review_count
        assert doc["average_rating"] == product.average_rating

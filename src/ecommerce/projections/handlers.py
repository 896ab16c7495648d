"""Projection handlers: event -> search document + cache invalidation.

Each handler subscribes to exactly one event type and performs two
independent side effects:

1. merge the event payload into the aggregate's search document (never
   re-reading the aggregate), or tombstone it when the aggregate is
   deleted;
2. evict the cache entries the mutation made stale.

Categories have no search index; their handlers only evict.

Invalidation runs even when the upsert fails.  An upsert failure is then
re-raised as :class:`ProjectionError` so the bus can redeliver; the
version-guarded merge makes the redelivery harmless.
"""

from __future__ import annotations

import logging
from typing import Any, ClassVar

from pydantic_core import to_jsonable_python

from ecommerce.core.errors import ProjectionError
from ecommerce.core.interfaces import ICacheInvalidationService, IEventBus, IProjectionStore
from ecommerce.domain.events import (
    AddressSnapshot,
    CategoryCreated,
    CategoryDeleted,
    CategoryUpdated,
    CustomerAddressAdded,
    CustomerRegistered,
    CustomerUpdated,
    DomainEvent,
    OrderCancelled,
    OrderConfirmed,
    OrderDelivered,
    OrderPlaced,
    OrderShipped,
    ProductCreated,
    ProductDeleted,
    ProductReviewAdded,
    ProductStockUpdated,
    ProductUpdated,
    event_name,
)
from ecommerce.observability import metrics
from ecommerce.observability.logger import set_trace_id
from ecommerce.search.documents import CUSTOMERS_INDEX, ORDERS_INDEX, PRODUCTS_INDEX

logger = logging.getLogger(__name__)

PROJECTION_GROUP = "projections"


def _lines(lines: tuple[Any, ...]) -> list[dict[str, Any]]:
    return [
        {
            "product_id": line.product_id,
            "product_name": line.product_name,
            "quantity": line.quantity,
            "unit_price": line.unit_price,
        }
        for line in lines
    ]


class ProjectionHandler:
    """Base for all projection handlers.

    Subclasses set ``event_type`` and ``index`` and implement ``fields``
    and ``invalidate``.
    """

    event_type: ClassVar[type[DomainEvent]]
    index: ClassVar[str]

    def __init__(
        self,
        store: IProjectionStore,
        invalidation: ICacheInvalidationService,
    ) -> None:
        self._store = store
        self._invalidation = invalidation

    def fields(self, event: Any) -> dict[str, Any]:
        raise NotImplementedError

    async def invalidate(self, event: Any) -> None:
        raise NotImplementedError

    async def handle(self, event: Any) -> None:
        set_trace_id(event.correlation_id or str(event.event_id))
        name = type(self).__name__
        doc_id = str(event.aggregate_id)
        failure: Exception | None = None
        try:
            applied = await self._store.upsert(
                self.index,
                doc_id,
                to_jsonable_python(self.fields(event)),
                event.aggregate_version,
            )
            metrics.record_projection_upsert(self.index, applied)
            if not applied:
                logger.debug(
                    "%s skipped %s %s (version %d already applied)",
                    name, event_name(event), event.event_id, event.aggregate_version,
                )
        except Exception as exc:
            failure = exc
            logger.error(
                "%s could not project %s %s into %s: %s",
                name, event_name(event), event.event_id, self.index, exc,
            )

        await self.invalidate(event)

        if failure is not None:
            raise ProjectionError(name, event, str(failure)) from failure


class DeletionHandler(ProjectionHandler):
    """Tombstones the document at the event's version instead of merging."""

    async def handle(self, event: Any) -> None:
        set_trace_id(event.correlation_id or str(event.event_id))
        name = type(self).__name__
        failure: Exception | None = None
        try:
            await self._store.delete(self.index, str(event.aggregate_id), event.aggregate_version)
        except Exception as exc:
            failure = exc
            logger.error(
                "%s could not delete %s from %s: %s",
                name, event.aggregate_id, self.index, exc,
            )

        await self.invalidate(event)

        if failure is not None:
            raise ProjectionError(name, event, str(failure)) from failure


class InvalidationHandler(ProjectionHandler):
    """For aggregates without a search document: evict caches only."""

    index = ""

    async def handle(self, event: Any) -> None:
        set_trace_id(event.correlation_id or str(event.event_id))
        await self.invalidate(event)


# ---------------------------------------------------------------------------
# Products
# ---------------------------------------------------------------------------

class ProductCreatedHandler(ProjectionHandler):
    event_type = ProductCreated
    index = PRODUCTS_INDEX

    def fields(self, event: ProductCreated) -> dict[str, Any]:
        return {
            "id": event.aggregate_id,
            "name": event.name,
            "description": event.description,
            "sku": event.sku,
            "price": event.price,
            "currency": event.currency,
            "category_id": event.category_id,
            "stock_quantity": event.stock_quantity,
            "minimum_stock_level": event.minimum_stock_level,
            "is_in_stock": event.stock_quantity > 0,
            "is_low_stock": event.stock_quantity <= event.minimum_stock_level,
            "is_active": True,
            "is_featured": False,
            "average_rating": 0.0,
            "review_count": 0,
            "created_at": event.occurred_at,
            "updated_at": event.occurred_at,
        }

    async def invalidate(self, event: ProductCreated) -> None:
        await self._invalidation.invalidate_product(event.aggregate_id)


class ProductUpdatedHandler(ProjectionHandler):
    event_type = ProductUpdated
    index = PRODUCTS_INDEX

    def fields(self, event: ProductUpdated) -> dict[str, Any]:
        return {
            "id": event.aggregate_id,
            "name": event.name,
            "description": event.description,
            "price": event.price,
            "currency": event.currency,
            "category_id": event.category_id,
            "is_active": event.is_active,
            "is_featured": event.is_featured,
            "updated_at": event.occurred_at,
        }

    async def invalidate(self, event: ProductUpdated) -> None:
        await self._invalidation.invalidate_product(event.aggregate_id)


class ProductStockUpdatedHandler(ProjectionHandler):
    event_type = ProductStockUpdated
    index = PRODUCTS_INDEX

    def fields(self, event: ProductStockUpdated) -> dict[str, Any]:
        return {
            "id": event.aggregate_id,
            "stock_quantity": event.new_stock,
            "minimum_stock_level": event.minimum_stock_level,
            "is_in_stock": event.new_stock > 0,
            "is_low_stock": event.new_stock <= event.minimum_stock_level,
            "updated_at": event.occurred_at,
        }

    async def invalidate(self, event: ProductStockUpdated) -> None:
        await self._invalidation.invalidate_product(event.aggregate_id)


class ProductReviewAddedHandler(ProjectionHandler):
    event_type = ProductReviewAdded
    index = PRODUCTS_INDEX

    def fields(self, event: ProductReviewAdded) -> dict[str, Any]:
        return {
            "id": event.aggregate_id,
            "average_rating": event.average_rating,
            "review_count": event.review_count,
            "updated_at": event.occurred_at,
        }

    async def invalidate(self, event: ProductReviewAdded) -> None:
        await self._invalidation.invalidate_product(event.aggregate_id)


class ProductDeletedHandler(DeletionHandler):
    event_type = ProductDeleted
    index = PRODUCTS_INDEX

    async def invalidate(self, event: ProductDeleted) -> None:
        await self._invalidation.invalidate_product(event.aggregate_id)


# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------

class _CategoryHandler(InvalidationHandler):
    async def invalidate(self, event: Any) -> None:
        await self._invalidation.invalidate_category(event.aggregate_id)


class CategoryCreatedHandler(_CategoryHandler):
    event_type = CategoryCreated


class CategoryUpdatedHandler(_CategoryHandler):
    event_type = CategoryUpdated


class CategoryDeletedHandler(_CategoryHandler):
    event_type = CategoryDeleted


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------

class _OrderHandler(ProjectionHandler):
    index = ORDERS_INDEX

    async def invalidate(self, event: Any) -> None:
        await self._invalidation.invalidate_order(event.aggregate_id, event.customer_id)


class OrderPlacedHandler(_OrderHandler):
    """Stock decrements arrive as their own ``ProductStockUpdated`` events,
    so product caches are left to that handler."""

    event_type = OrderPlaced

    def fields(self, event: OrderPlaced) -> dict[str, Any]:
        return {
            "id": event.aggregate_id,
            "order_number": event.order_number,
            "customer_id": event.customer_id,
            "status": "pending",
            "currency": event.currency,
            "total_amount": event.total_amount,
            "item_count": event.item_count,
            "lines": _lines(event.lines),
            "shipping_address": event.shipping_address,
            "billing_address": event.billing_address,
            "placed_at": event.occurred_at,
        }


class OrderConfirmedHandler(_OrderHandler):
    event_type = OrderConfirmed

    def fields(self, event: OrderConfirmed) -> dict[str, Any]:
        return {
            "id": event.aggregate_id,
            "customer_id": event.customer_id,
            "status": "confirmed",
            "confirmed_at": event.occurred_at,
        }


class OrderShippedHandler(_OrderHandler):
    event_type = OrderShipped

    def fields(self, event: OrderShipped) -> dict[str, Any]:
        return {
            "id": event.aggregate_id,
            "customer_id": event.customer_id,
            "status": "shipped",
            "shipping_address": event.shipping_address,
            "shipped_at": event.occurred_at,
        }


class OrderDeliveredHandler(_OrderHandler):
    event_type = OrderDelivered

    def fields(self, event: OrderDelivered) -> dict[str, Any]:
        return {
            "id": event.aggregate_id,
            "customer_id": event.customer_id,
            "status": "delivered",
            "delivered_at": event.occurred_at,
        }


class OrderCancelledHandler(_OrderHandler):
    event_type = OrderCancelled

    def fields(self, event: OrderCancelled) -> dict[str, Any]:
        return {
            "id": event.aggregate_id,
            "customer_id": event.customer_id,
            "status": "cancelled",
            "cancellation_reason": event.reason,
            "cancelled_at": event.occurred_at,
        }


# ---------------------------------------------------------------------------
# Customers
# ---------------------------------------------------------------------------

class _CustomerHandler(ProjectionHandler):
    index = CUSTOMERS_INDEX

    async def invalidate(self, event: Any) -> None:
        await self._invalidation.invalidate_customer(event.aggregate_id)


class CustomerRegisteredHandler(_CustomerHandler):
    event_type = CustomerRegistered

    def fields(self, event: CustomerRegistered) -> dict[str, Any]:
        return {
            "id": event.aggregate_id,
            "email": event.email,
            "first_name": event.first_name,
            "last_name": event.last_name,
            "full_name": f"{event.first_name} {event.last_name}".strip(),
            "phone_number": event.phone_number,
            "is_active": True,
            "registered_at": event.occurred_at,
        }


class CustomerUpdatedHandler(_CustomerHandler):
    event_type = CustomerUpdated

    def fields(self, event: CustomerUpdated) -> dict[str, Any]:
        return {
            "id": event.aggregate_id,
            "email": event.email,
            "first_name": event.first_name,
            "last_name": event.last_name,
            "full_name": f"{event.first_name} {event.last_name}".strip(),
            "phone_number": event.phone_number,
            "is_active": event.is_active,
        }


def _address(snapshot: AddressSnapshot) -> dict[str, Any]:
    return {
        "id": snapshot.address_id,
        "address_type": snapshot.address_type,
        "street1": snapshot.street1,
        "street2": snapshot.street2,
        "city": snapshot.city,
        "state": snapshot.state,
        "postal_code": snapshot.postal_code,
        "country": snapshot.country,
        "label": snapshot.label,
        "is_primary": snapshot.is_primary,
    }


class CustomerAddressAddedHandler(_CustomerHandler):
    event_type = CustomerAddressAdded

    def fields(self, event: CustomerAddressAdded) -> dict[str, Any]:
        return {
            "id": event.aggregate_id,
            "addresses": [_address(a) for a in event.addresses],
        }


HANDLER_TYPES: tuple[type[ProjectionHandler], ...] = (
    ProductCreatedHandler,
    ProductUpdatedHandler,
    ProductStockUpdatedHandler,
    ProductReviewAddedHandler,
    ProductDeletedHandler,
    CategoryCreatedHandler,
    CategoryUpdatedHandler,
    CategoryDeletedHandler,
    OrderPlacedHandler,
    OrderConfirmedHandler,
    OrderShippedHandler,
    OrderDeliveredHandler,
    OrderCancelledHandler,
    CustomerRegisteredHandler,
    CustomerUpdatedHandler,
    CustomerAddressAddedHandler,
)


async def register_projection_handlers(
    bus: IEventBus,
    store: IProjectionStore,
    invalidation: ICacheInvalidationService,
    group: str = PROJECTION_GROUP,
) -> list[ProjectionHandler]:
    """Instantiate every projection handler and subscribe it to *bus*."""
    handlers = [cls(store, invalidation) for cls in HANDLER_TYPES]
    for handler in handlers:
        await bus.subscribe(handler.event_type, handler.handle, group=group)
    logger.info("Registered %d projection handlers group=%s", len(handlers), group)
    return handlers

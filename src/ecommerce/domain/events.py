"""Canonical domain events for the e-commerce backend.

Design invariants
-----------------
1.  Every event is **immutable** (``frozen=True``).
2.  Events are created only inside aggregate methods; nothing outside an
    aggregate appends to its buffer.
3.  ``event_id`` is a UUID4 generated at creation time; it serves as the
    idempotency / dedup key for consumers and the outbox.
4.  ``aggregate_version`` is the aggregate's version *after* the mutation
    that raised the event.  Projections use it to ignore replays and
    stale redeliveries.
5.  Payloads are denormalized snapshots: a projection never has to reload
    the aggregate to apply an event.

Dispatch is explicit: ``EventKind`` enumerates every event type and
``EVENT_TYPES`` maps each kind to its class.  The bus routes on these, not
on reflection.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import ClassVar

from ecommerce.core.ids import new_id as _uuid
from ecommerce.core.ids import utc_now as _now


class EventKind(str, Enum):
    PRODUCT_CREATED = "ProductCreated"
    PRODUCT_UPDATED = "ProductUpdated"
    PRODUCT_STOCK_UPDATED = "ProductStockUpdated"
    PRODUCT_REVIEW_ADDED = "ProductReviewAdded"
    PRODUCT_DELETED = "ProductDeleted"
    CATEGORY_CREATED = "CategoryCreated"
    CATEGORY_UPDATED = "CategoryUpdated"
    CATEGORY_DELETED = "CategoryDeleted"
    ORDER_PLACED = "OrderPlaced"
    ORDER_CONFIRMED = "OrderConfirmed"
    ORDER_SHIPPED = "OrderShipped"
    ORDER_DELIVERED = "OrderDelivered"
    ORDER_CANCELLED = "OrderCancelled"
    CUSTOMER_REGISTERED = "CustomerRegistered"
    CUSTOMER_UPDATED = "CustomerUpdated"
    CUSTOMER_ADDRESS_ADDED = "CustomerAddressAdded"


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DomainEvent:
    """Immutable base for every domain event.

    Shared fields
    ~~~~~~~~~~~~~
    event_id           Unique identity (UUID4).  Idempotency key.
    aggregate_id       Identity of the aggregate that changed.
    occurred_at        UTC creation time.
    schema_version     Payload schema version, bumped on breaking changes.
    aggregate_version  Aggregate version after the mutation.
    correlation_id     Groups events raised by the same command.
    """

    kind: ClassVar[EventKind]

    event_id: uuid.UUID = field(default_factory=_uuid)
    aggregate_id: uuid.UUID | None = None
    occurred_at: datetime = field(default_factory=_now)
    schema_version: int = 1
    aggregate_version: int = 0
    correlation_id: str = ""


# =========================================================================
# Product aggregate
# =========================================================================

@dataclass(frozen=True)
class ProductCreated(DomainEvent):
    kind: ClassVar[EventKind] = EventKind.PRODUCT_CREATED

    name: str = ""
    description: str = ""
    sku: str = ""
    price: Decimal = Decimal("0")
    currency: str = "USD"
    category_id: uuid.UUID | None = None
    stock_quantity: int = 0
    minimum_stock_level: int = 0


@dataclass(frozen=True)
class ProductUpdated(DomainEvent):
    """Catalogue fields changed (details, price, activation, featuring)."""

    kind: ClassVar[EventKind] = EventKind.PRODUCT_UPDATED

    name: str = ""
    description: str = ""
    price: Decimal = Decimal("0")
    currency: str = "USD"
    category_id: uuid.UUID | None = None
    is_active: bool = True
    is_featured: bool = False


@dataclass(frozen=True)
class ProductStockUpdated(DomainEvent):
    kind: ClassVar[EventKind] = EventKind.PRODUCT_STOCK_UPDATED

    previous_stock: int = 0
    new_stock: int = 0
    minimum_stock_level: int = 0
    reason: str = ""


@dataclass(frozen=True)
class ProductReviewAdded(DomainEvent):
    kind: ClassVar[EventKind] = EventKind.PRODUCT_REVIEW_ADDED

    review_id: uuid.UUID | None = None
    customer_id: uuid.UUID | None = None
    rating: int = 0
    is_verified: bool = False
    average_rating: float = 0.0
    review_count: int = 0


@dataclass(frozen=True)
class ProductDeleted(DomainEvent):
    kind: ClassVar[EventKind] = EventKind.PRODUCT_DELETED

    sku: str = ""
    category_id: uuid.UUID | None = None


# =========================================================================
# Category aggregate
# =========================================================================

@dataclass(frozen=True)
class CategoryCreated(DomainEvent):
    kind: ClassVar[EventKind] = EventKind.CATEGORY_CREATED

    name: str = ""
    description: str = ""
    parent_id: uuid.UUID | None = None
    level: int = 0


@dataclass(frozen=True)
class CategoryUpdated(DomainEvent):
    """Name, description or activation changed; carries the full snapshot."""

    kind: ClassVar[EventKind] = EventKind.CATEGORY_UPDATED

    name: str = ""
    description: str = ""
    parent_id: uuid.UUID | None = None
    is_active: bool = True


@dataclass(frozen=True)
class CategoryDeleted(DomainEvent):
    kind: ClassVar[EventKind] = EventKind.CATEGORY_DELETED

    parent_id: uuid.UUID | None = None


# =========================================================================
# Order aggregate
# =========================================================================

@dataclass(frozen=True)
class OrderLine:
    """Snapshot of one order line at placement time."""

    product_id: uuid.UUID
    product_name: str
    quantity: int
    unit_price: Decimal


@dataclass(frozen=True)
class OrderPlaced(DomainEvent):
    kind: ClassVar[EventKind] = EventKind.ORDER_PLACED
    order_number: str = ""

    customer_id: uuid.UUID | None = None
    lines: tuple[OrderLine, ...] = ()
    total_amount: Decimal = Decimal("0")
    currency: str = "USD"
    item_count: int = 0
    shipping_address: str = ""
    billing_address: str = ""


@dataclass(frozen=True)
class OrderConfirmed(DomainEvent):
    kind: ClassVar[EventKind] = EventKind.ORDER_CONFIRMED

    customer_id: uuid.UUID | None = None
    total_amount: Decimal = Decimal("0")
    currency: str = "USD"


@dataclass(frozen=True)
class OrderShipped(DomainEvent):
    kind: ClassVar[EventKind] = EventKind.ORDER_SHIPPED

    customer_id: uuid.UUID | None = None
    shipping_address: str = ""


@dataclass(frozen=True)
class OrderDelivered(DomainEvent):
    kind: ClassVar[EventKind] = EventKind.ORDER_DELIVERED

    customer_id: uuid.UUID | None = None


@dataclass(frozen=True)
class OrderCancelled(DomainEvent):
    kind: ClassVar[EventKind] = EventKind.ORDER_CANCELLED

    customer_id: uuid.UUID | None = None
    reason: str = ""
    lines: tuple[OrderLine, ...] = ()


# =========================================================================
# Customer aggregate
# =========================================================================

@dataclass(frozen=True)
class CustomerRegistered(DomainEvent):
    kind: ClassVar[EventKind] = EventKind.CUSTOMER_REGISTERED

    email: str = ""
    first_name: str = ""
    last_name: str = ""
    phone_number: str | None = None


@dataclass(frozen=True)
class CustomerUpdated(DomainEvent):
    """Profile, e-mail or activation changed; carries the full snapshot."""

    kind: ClassVar[EventKind] = EventKind.CUSTOMER_UPDATED

    email: str = ""
    first_name: str = ""
    last_name: str = ""
    phone_number: str | None = None
    is_active: bool = True


@dataclass(frozen=True)
class AddressSnapshot:
    """One customer address as carried in events."""

    address_id: uuid.UUID
    address_type: str
    street1: str
    city: str
    state: str
    postal_code: str
    country: str
    street2: str | None = None
    label: str | None = None
    is_primary: bool = False


@dataclass(frozen=True)
class CustomerAddressAdded(DomainEvent):
    """A new address was added; ``addresses`` is the customer's full list."""

    kind: ClassVar[EventKind] = EventKind.CUSTOMER_ADDRESS_ADDED

    address_id: uuid.UUID | None = None
    addresses: tuple[AddressSnapshot, ...] = ()


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

EVENT_TYPES: dict[EventKind, type[DomainEvent]] = {
    EventKind.PRODUCT_CREATED: ProductCreated,
    EventKind.PRODUCT_UPDATED: ProductUpdated,
    EventKind.PRODUCT_STOCK_UPDATED: ProductStockUpdated,
    EventKind.PRODUCT_REVIEW_ADDED: ProductReviewAdded,
    EventKind.PRODUCT_DELETED: ProductDeleted,
    EventKind.CATEGORY_CREATED: CategoryCreated,
    EventKind.CATEGORY_UPDATED: CategoryUpdated,
    EventKind.CATEGORY_DELETED: CategoryDeleted,
    EventKind.ORDER_PLACED: OrderPlaced,
    EventKind.ORDER_CONFIRMED: OrderConfirmed,
    EventKind.ORDER_SHIPPED: OrderShipped,
    EventKind.ORDER_DELIVERED: OrderDelivered,
    EventKind.ORDER_CANCELLED: OrderCancelled,
    EventKind.CUSTOMER_REGISTERED: CustomerRegistered,
    EventKind.CUSTOMER_UPDATED: CustomerUpdated,
    EventKind.CUSTOMER_ADDRESS_ADDED: CustomerAddressAdded,
}


def event_name(event: DomainEvent | type[DomainEvent]) -> str:
    """Runtime type name used as topic / routing key."""
    cls = event if isinstance(event, type) else type(event)
    return cls.__name__


def get_event_class(name: str) -> type[DomainEvent] | None:
    """Look up an event class by its type name (``None`` if unknown)."""
    try:
        return EVENT_TYPES[EventKind(name)]
    except ValueError:
        return None

"""Order aggregate and its status machine.

    PENDING ──confirm──> CONFIRMED ──ship──> SHIPPED ──deliver──> DELIVERED
       │                     │
       └──────cancel─────────┴──> CANCELLED
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from ecommerce.core.enums import OrderStatus
from ecommerce.core.errors import InvalidOrderStateError, ValidationError
from ecommerce.core.ids import utc_now

from .aggregate import AggregateRoot
from .events import (
    OrderCancelled,
    OrderConfirmed,
    OrderDelivered,
    OrderLine,
    OrderPlaced,
    OrderShipped,
)

_CANCELLABLE = frozenset({OrderStatus.PENDING, OrderStatus.CONFIRMED})


@dataclass
class OrderItem:
    product_id: uuid.UUID
    product_name: str
    quantity: int
    unit_price: Decimal

    @property
    def total_price(self) -> Decimal:
        return self.unit_price * self.quantity

    def to_line(self) -> OrderLine:
        return OrderLine(
            product_id=self.product_id,
            product_name=self.product_name,
            quantity=self.quantity,
            unit_price=self.unit_price,
        )


class Order(AggregateRoot):
    def __init__(
        self,
        id: uuid.UUID | None = None,
        *,
        customer_id: uuid.UUID,
        order_number: str,
        items: list[OrderItem],
        currency: str = "USD",
        status: OrderStatus = OrderStatus.PENDING,
        shipping_address: str = "",
        billing_address: str = "",
        notes: str = "",
        cancellation_reason: str = "",
        shipped_at: datetime | None = None,
        delivered_at: datetime | None = None,
        **base,
    ) -> None:
        super().__init__(id, **base)
        self.customer_id = customer_id
        self.order_number = order_number
        self.items = list(items)
        self.currency = currency
        self.status = OrderStatus(status)
        self.shipping_address = shipping_address
        self.billing_address = billing_address
        self.notes = notes
        self.cancellation_reason = cancellation_reason
        self.shipped_at = shipped_at
        self.delivered_at = delivered_at

    @property
    def total_amount(self) -> Decimal:
        return sum((item.total_price for item in self.items), Decimal("0"))

    @property
    def item_count(self) -> int:
        return sum(item.quantity for item in self.items)

    def _lines(self) -> tuple[OrderLine, ...]:
        return tuple(item.to_line() for item in self.items)

    @classmethod
    def place(
        cls,
        *,
        customer_id: uuid.UUID,
        items: list[OrderItem],
        shipping_address: str,
        billing_address: str = "",
        currency: str = "USD",
        notes: str = "",
        correlation_id: str = "",
    ) -> Order:
        if not items:
            raise ValidationError("an order needs at least one item")
        if any(item.quantity <= 0 for item in items):
            raise ValidationError("item quantity must be positive")
        now = utc_now()
        order = cls(
            customer_id=customer_id,
            order_number=f"ORD-{now:%Y%m%d}-{uuid.uuid4().hex[:8].upper()}",
            items=items,
            currency=currency,
            shipping_address=shipping_address,
            billing_address=billing_address or shipping_address,
            notes=notes,
            created_at=now,
            updated_at=now,
        )
        order._add_domain_event(OrderPlaced(
            aggregate_id=order.id,
            aggregate_version=order.version,
            correlation_id=correlation_id,
            order_number=order.order_number,
            customer_id=customer_id,
            lines=order._lines(),
            total_amount=order.total_amount,
            currency=currency,
            item_count=order.item_count,
            shipping_address=order.shipping_address,
            billing_address=order.billing_address,
        ))
        return order

    def _require(self, allowed: set[OrderStatus] | frozenset[OrderStatus], action: str) -> None:
        if self.status not in allowed:
            raise InvalidOrderStateError(self.status.value, action)

    def confirm(self, correlation_id: str = "") -> None:
        self._require({OrderStatus.PENDING}, "confirm")
        self.status = OrderStatus.CONFIRMED
        self._mark_modified()
        self._add_domain_event(OrderConfirmed(
            aggregate_id=self.id,
            aggregate_version=self.version,
            correlation_id=correlation_id,
            customer_id=self.customer_id,
            total_amount=self.total_amount,
            currency=self.currency,
        ))

    def ship(self, correlation_id: str = "") -> None:
        self._require({OrderStatus.CONFIRMED}, "ship")
        self.status = OrderStatus.SHIPPED
        self.shipped_at = utc_now()
        self._mark_modified()
        self._add_domain_event(OrderShipped(
            aggregate_id=self.id,
            aggregate_version=self.version,
            correlation_id=correlation_id,
            customer_id=self.customer_id,
            shipping_address=self.shipping_address,
        ))

    def deliver(self, correlation_id: str = "") -> None:
        self._require({OrderStatus.SHIPPED}, "deliver")
        self.status = OrderStatus.DELIVERED
        self.delivered_at = utc_now()
        self._mark_modified()
        self._add_domain_event(OrderDelivered(
            aggregate_id=self.id,
            aggregate_version=self.version,
            correlation_id=correlation_id,
            customer_id=self.customer_id,
        ))

    def cancel(self, reason: str, correlation_id: str = "") -> None:
        self._require(_CANCELLABLE, "cancel")
        self.status = OrderStatus.CANCELLED
        self.cancellation_reason = reason
        self._mark_modified()
        self._add_domain_event(OrderCancelled(
            aggregate_id=self.id,
            aggregate_version=self.version,
            correlation_id=correlation_id,
            customer_id=self.customer_id,
            reason=reason,
            lines=self._lines(),
        ))

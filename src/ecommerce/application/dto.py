"""Read-side data transfer objects.

These are what query handlers return and what the cache stores.  They
are plain pydantic models so the cache codec can round-trip them.
"""

from __future__ import annotations

import math
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Generic, TypeVar

from pydantic import BaseModel, Field

from ecommerce.core.enums import AddressType, OrderStatus

T = TypeVar("T")


class ProductDTO(BaseModel):
    id: uuid.UUID
    name: str
    description: str = ""
    sku: str
    price: Decimal
    currency: str = "USD"
    category_id: uuid.UUID | None = None
    stock_quantity: int = 0
    minimum_stock_level: int = 0
    is_active: bool = True
    is_featured: bool = False
    average_rating: float = 0.0
    review_count: int = 0
    version: int = 1
    created_at: datetime
    updated_at: datetime

    @property
    def is_in_stock(self) -> bool:
        return self.stock_quantity > 0


class CategoryDTO(BaseModel):
    id: uuid.UUID
    name: str
    description: str
    parent_id: uuid.UUID | None = None
    level: int = 0
    is_active: bool = True
    version: int = 1
    created_at: datetime
    updated_at: datetime

    @property
    def is_root(self) -> bool:
        return self.parent_id is None


class OrderItemDTO(BaseModel):
    product_id: uuid.UUID
    product_name: str
    quantity: int
    unit_price: Decimal

    @property
    def total_price(self) -> Decimal:
        return self.unit_price * self.quantity


class OrderDTO(BaseModel):
    id: uuid.UUID
    order_number: str
    customer_id: uuid.UUID
    status: OrderStatus
    currency: str = "USD"
    total_amount: Decimal
    items: list[OrderItemDTO] = Field(default_factory=list)
    shipping_address: str = ""
    billing_address: str = ""
    notes: str = ""
    cancellation_reason: str = ""
    shipped_at: datetime | None = None
    delivered_at: datetime | None = None
    version: int = 1
    created_at: datetime
    updated_at: datetime


class AddressDTO(BaseModel):
    id: uuid.UUID
    address_type: AddressType
    street1: str
    street2: str | None = None
    city: str
    state: str
    postal_code: str
    country: str
    label: str | None = None
    is_primary: bool = False

    @property
    def single_line(self) -> str:
        street = ", ".join(s for s in (self.street1, self.street2) if s)
        return f"{street}, {self.city}, {self.state} {self.postal_code}, {self.country}"


class CustomerDTO(BaseModel):
    id: uuid.UUID
    email: str
    first_name: str
    last_name: str
    phone_number: str | None = None
    is_active: bool = True
    addresses: list[AddressDTO] = Field(default_factory=list)
    version: int = 1
    created_at: datetime
    updated_at: datetime

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class PagedResult(BaseModel, Generic[T]):
    """One page of a list query."""

    items: list[T] = Field(default_factory=list)
    page: int = 1
    page_size: int = 20
    total_count: int = 0

    @property
    def total_pages(self) -> int:
        if self.page_size <= 0:
            return 0
        return math.ceil(self.total_count / self.page_size)

    @property
    def has_next_page(self) -> bool:
        return self.page < self.total_pages

    @property
    def has_previous_page(self) -> bool:
        return self.page > 1

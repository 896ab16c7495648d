"""Denormalized search documents.

One document per aggregate, keyed by the aggregate id.  Every document
carries ``aggregate_version``: the version of the newest event merged into
it.  Documents are derived data and can be rebuilt at any time from the
relational store.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field

from ecommerce.application.dto import CustomerDTO, OrderDTO, ProductDTO

PRODUCTS_INDEX = "products"
ORDERS_INDEX = "orders"
CUSTOMERS_INDEX = "customers"


class ProductDocument(BaseModel):
    id: uuid.UUID
    name: str = ""
    description: str = ""
    sku: str = ""
    price: Decimal = Decimal("0")
    currency: str = "USD"
    category_id: uuid.UUID | None = None
    stock_quantity: int = 0
    minimum_stock_level: int = 0
    is_in_stock: bool = False
    is_low_stock: bool = False
    is_active: bool = True
    is_featured: bool = False
    average_rating: float = 0.0
    review_count: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None
    aggregate_version: int = 0

    @classmethod
    def from_dto(cls, dto: ProductDTO) -> ProductDocument:
        return cls(
            **dto.model_dump(exclude={"version"}),
            is_in_stock=dto.stock_quantity > 0,
            is_low_stock=dto.stock_quantity <= dto.minimum_stock_level,
            aggregate_version=dto.version,
        )


class OrderLineDocument(BaseModel):
    product_id: uuid.UUID
    product_name: str
    quantity: int
    unit_price: Decimal


class OrderDocument(BaseModel):
    id: uuid.UUID
    order_number: str = ""
    customer_id: uuid.UUID | None = None
    status: str = "pending"
    currency: str = "USD"
    total_amount: Decimal = Decimal("0")
    item_count: int = 0
    lines: list[OrderLineDocument] = Field(default_factory=list)
    shipping_address: str = ""
    billing_address: str = ""
    cancellation_reason: str = ""
    placed_at: datetime | None = None
    confirmed_at: datetime | None = None
    shipped_at: datetime | None = None
    delivered_at: datetime | None = None
    cancelled_at: datetime | None = None
    aggregate_version: int = 0

    @classmethod
    def from_dto(cls, dto: OrderDTO) -> OrderDocument:
        return cls(
            id=dto.id,
            order_number=dto.order_number,
            customer_id=dto.customer_id,
            status=dto.status.value,
            currency=dto.currency,
            total_amount=dto.total_amount,
            item_count=sum(i.quantity for i in dto.items),
            lines=[OrderLineDocument(**i.model_dump()) for i in dto.items],
            shipping_address=dto.shipping_address,
            billing_address=dto.billing_address,
            cancellation_reason=dto.cancellation_reason,
            placed_at=dto.created_at,
            shipped_at=dto.shipped_at,
            delivered_at=dto.delivered_at,
            aggregate_version=dto.version,
        )


class AddressDocument(BaseModel):
    id: uuid.UUID
    address_type: str
    street1: str
    street2: str | None = None
    city: str
    state: str
    postal_code: str
    country: str
    label: str | None = None
    is_primary: bool = False


class CustomerDocument(BaseModel):
    id: uuid.UUID
    email: str = ""
    first_name: str = ""
    last_name: str = ""
    full_name: str = ""
    phone_number: str | None = None
    is_active: bool = True
    addresses: list[AddressDocument] = Field(default_factory=list)
    registered_at: datetime | None = None
    aggregate_version: int = 0

    @classmethod
    def from_dto(cls, dto: CustomerDTO) -> CustomerDocument:
        return cls(
            id=dto.id,
            email=dto.email,
            first_name=dto.first_name,
            last_name=dto.last_name,
            full_name=dto.full_name,
            phone_number=dto.phone_number,
            is_active=dto.is_active,
            addresses=[
                AddressDocument(**a.model_dump(mode="json")) for a in dto.addresses
            ],
            registered_at=dto.created_at,
            aggregate_version=dto.version,
        )


def to_fields(doc: BaseModel) -> dict[str, Any]:
    """JSON-compatible field map of a document, without ``aggregate_version``.

    Fields the document was built without are left out, so a rebuild never
    blanks a value only an event carries (``confirmed_at``, for example).
    """
    return doc.model_dump(mode="json", exclude={"aggregate_version"}, exclude_unset=True)


# Full-text fields per index, used by both stores.
TEXT_FIELDS: dict[str, tuple[str, ...]] = {
    PRODUCTS_INDEX: ("name", "description", "sku"),
    ORDERS_INDEX: ("order_number", "shipping_address"),
    CUSTOMERS_INDEX: ("email", "first_name", "last_name", "full_name"),
}

MAPPINGS: dict[str, dict[str, Any]] = {
    PRODUCTS_INDEX: {
        "properties": {
            "id": {"type": "keyword"},
            "name": {"type": "text", "fields": {"keyword": {"type": "keyword"}}},
            "description": {"type": "text"},
            "sku": {"type": "keyword"},
            "price": {"type": "scaled_float", "scaling_factor": 100},
            "currency": {"type": "keyword"},
            "category_id": {"type": "keyword"},
            "stock_quantity": {"type": "integer"},
            "minimum_stock_level": {"type": "integer"},
            "is_in_stock": {"type": "boolean"},
            "is_low_stock": {"type": "boolean"},
            "is_active": {"type": "boolean"},
            "is_featured": {"type": "boolean"},
            "average_rating": {"type": "float"},
            "review_count": {"type": "integer"},
            "created_at": {"type": "date"},
            "updated_at": {"type": "date"},
            "aggregate_version": {"type": "long"},
            "field_versions": {"type": "object", "enabled": False},
            "deleted": {"type": "boolean"},
        }
    },
    ORDERS_INDEX: {
        "properties": {
            "id": {"type": "keyword"},
            "order_number": {"type": "keyword"},
            "customer_id": {"type": "keyword"},
            "status": {"type": "keyword"},
            "currency": {"type": "keyword"},
            "total_amount": {"type": "scaled_float", "scaling_factor": 100},
            "item_count": {"type": "integer"},
            "lines": {"type": "nested"},
            "shipping_address": {"type": "text"},
            "billing_address": {"type": "text"},
            "placed_at": {"type": "date"},
            "confirmed_at": {"type": "date"},
            "shipped_at": {"type": "date"},
            "delivered_at": {"type": "date"},
            "cancelled_at": {"type": "date"},
            "aggregate_version": {"type": "long"},
            "field_versions": {"type": "object", "enabled": False},
            "deleted": {"type": "boolean"},
        }
    },
    CUSTOMERS_INDEX: {
        "properties": {
            "id": {"type": "keyword"},
            "email": {"type": "keyword"},
            "first_name": {"type": "text"},
            "last_name": {"type": "text"},
            "full_name": {"type": "text"},
            "phone_number": {"type": "keyword"},
            "is_active": {"type": "boolean"},
            "addresses": {"type": "nested"},
            "registered_at": {"type": "date"},
            "aggregate_version": {"type": "long"},
            "field_versions": {"type": "object", "enabled": False},
            "deleted": {"type": "boolean"},
        }
    },
}

"""Write-side repositories bound to a unit of work.

Each repository loads and persists one aggregate type.  ``get`` and
``add`` only register the aggregate with the unit of work; nothing is
written until ``UnitOfWork.save_changes`` calls ``persist``.

Updates are guarded by the aggregate's version::

    UPDATE products SET ..., version = :new
     WHERE id = :id AND version = :expected

Zero matched rows means another writer got there first and raises
:class:`ConcurrencyConflictError`.  Deleted aggregates are removed with the
same guard (``DELETE ... WHERE id = :id AND version = :expected``).

Conversion helpers translate between domain aggregates
(:mod:`ecommerce.domain`) and table rows.
"""

from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING, Any, ClassVar, Generic, Mapping, TypeVar

from sqlalchemy import Table, delete, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ecommerce.core.enums import OrderStatus
from ecommerce.core.errors import ConcurrencyConflictError, NotFoundError
from ecommerce.core.ids import ensure_utc
from ecommerce.domain.aggregate import AggregateRoot
from ecommerce.domain.category import Category
from ecommerce.domain.customer import Address, Customer
from ecommerce.domain.order import Order, OrderItem
from ecommerce.domain.product import Product

from .models import (
    CategoryRecord,
    CustomerAddressRecord,
    CustomerRecord,
    OrderItemRecord,
    OrderRecord,
    ProductRecord,
)

if TYPE_CHECKING:
    from .unit_of_work import UnitOfWork

logger = logging.getLogger(__name__)

A = TypeVar("A", bound=AggregateRoot)


# ---------------------------------------------------------------------------
# Conversion helpers
# ---------------------------------------------------------------------------

def _base_kwargs(row: Mapping[str, Any]) -> dict[str, Any]:
    return {
        "version": row["version"],
        "persisted_version": row["version"],
        "created_at": ensure_utc(row["created_at"]),
        "updated_at": ensure_utc(row["updated_at"]),
    }


def _product_values(p: Product) -> dict[str, Any]:
    return {
        "id": p.id,
        "name": p.name,
        "description": p.description,
        "sku": p.sku,
        "price": p.price,
        "currency": p.currency,
        "category_id": p.category_id,
        "stock_quantity": p.stock_quantity,
        "minimum_stock_level": p.minimum_stock_level,
        "is_active": p.is_active,
        "is_featured": p.is_featured,
        "average_rating": p.average_rating,
        "review_count": p.review_count,
        "version": p.version,
        "created_at": p.created_at,
        "updated_at": p.updated_at,
    }


def _row_to_product(row: Mapping[str, Any]) -> Product:
    return Product(
        row["id"],
        name=row["name"],
        description=row["description"] or "",
        sku=row["sku"],
        price=row["price"],
        currency=row["currency"],
        category_id=row["category_id"],
        stock_quantity=row["stock_quantity"],
        minimum_stock_level=row["minimum_stock_level"],
        is_active=row["is_active"],
        is_featured=row["is_featured"],
        average_rating=row["average_rating"],
        review_count=row["review_count"],
        **_base_kwargs(row),
    )


def _address_values(customer_id: uuid.UUID, position: int, a: Address) -> dict[str, Any]:
    return {
        "id": a.id,
        "customer_id": customer_id,
        "address_type": a.address_type.value,
        "street1": a.street1,
        "street2": a.street2,
        "city": a.city,
        "state": a.state,
        "postal_code": a.postal_code,
        "country": a.country,
        "label": a.label,
        "is_primary": a.is_primary,
        "position": position,
    }


def _row_to_address(row: Mapping[str, Any]) -> Address:
    return Address(
        id=row["id"],
        address_type=row["address_type"],
        street1=row["street1"],
        street2=row["street2"],
        city=row["city"],
        state=row["state"],
        postal_code=row["postal_code"],
        country=row["country"],
        label=row["label"],
        is_primary=row["is_primary"],
    )


def _category_values(c: Category) -> dict[str, Any]:
    return {
        "id": c.id,
        "name": c.name,
        "description": c.description,
        "parent_id": c.parent_id,
        "level": c.level,
        "is_active": c.is_active,
        "version": c.version,
        "created_at": c.created_at,
        "updated_at": c.updated_at,
    }


def _row_to_category(row: Mapping[str, Any]) -> Category:
    return Category(
        row["id"],
        name=row["name"],
        description=row["description"],
        parent_id=row["parent_id"],
        level=row["level"],
        is_active=row["is_active"],
        **_base_kwargs(row),
    )


def _customer_values(c: Customer) -> dict[str, Any]:
    return {
        "id": c.id,
        "email": c.email,
        "first_name": c.first_name,
        "last_name": c.last_name,
        "phone_number": c.phone_number,
        "is_active": c.is_active,
        "version": c.version,
        "created_at": c.created_at,
        "updated_at": c.updated_at,
    }


def _row_to_customer(
    row: Mapping[str, Any], addresses: list[Mapping[str, Any]] | None = None,
) -> Customer:
    return Customer(
        row["id"],
        email=row["email"],
        first_name=row["first_name"],
        last_name=row["last_name"],
        phone_number=row["phone_number"],
        is_active=row["is_active"],
        addresses=[_row_to_address(a) for a in addresses or []],
        **_base_kwargs(row),
    )


def _order_values(o: Order) -> dict[str, Any]:
    return {
        "id": o.id,
        "order_number": o.order_number,
        "customer_id": o.customer_id,
        "status": o.status.value,
        "currency": o.currency,
        "total_amount": o.total_amount,
        "shipping_address": o.shipping_address,
        "billing_address": o.billing_address,
        "notes": o.notes,
        "cancellation_reason": o.cancellation_reason,
        "shipped_at": o.shipped_at,
        "delivered_at": o.delivered_at,
        "version": o.version,
        "created_at": o.created_at,
        "updated_at": o.updated_at,
    }


def _row_to_order(row: Mapping[str, Any], items: list[Mapping[str, Any]]) -> Order:
    return Order(
        row["id"],
        customer_id=row["customer_id"],
        order_number=row["order_number"],
        items=[
            OrderItem(
                product_id=i["product_id"],
                product_name=i["product_name"],
                quantity=i["quantity"],
                unit_price=i["unit_price"],
            )
            for i in items
        ],
        currency=row["currency"],
        status=OrderStatus(row["status"]),
        shipping_address=row["shipping_address"] or "",
        billing_address=row["billing_address"] or "",
        notes=row["notes"] or "",
        cancellation_reason=row["cancellation_reason"] or "",
        shipped_at=ensure_utc(row["shipped_at"]),
        delivered_at=ensure_utc(row["delivered_at"]),
        **_base_kwargs(row),
    )


# ---------------------------------------------------------------------------
# Base repository
# ---------------------------------------------------------------------------

class _AggregateRepo(Generic[A]):
    table: ClassVar[Table]
    aggregate_type: ClassVar[type[AggregateRoot]]

    def __init__(self, uow: UnitOfWork) -> None:
        self._uow = uow

    @property
    def _session(self) -> AsyncSession:
        return self._uow.session

    async def _load_row(self, aggregate_id: uuid.UUID) -> Mapping[str, Any] | None:
        result = await self._session.execute(
            select(self.table).where(self.table.c.id == aggregate_id)
        )
        return result.mappings().first()

    def _from_row(self, row: Mapping[str, Any]) -> A:
        raise NotImplementedError

    def _values(self, aggregate: A) -> dict[str, Any]:
        raise NotImplementedError

    async def get(self, aggregate_id: uuid.UUID) -> A | None:
        """Load an aggregate and track it; ``None`` if it does not exist.

        Repeated calls within one unit of work return the same instance.
        """
        tracked = self._uow.tracked(self.aggregate_type, aggregate_id)
        if tracked is not None:
            return tracked  # type: ignore[return-value]
        row = await self._load_row(aggregate_id)
        if row is None:
            return None
        aggregate = await self._hydrate(row)
        self._uow.track(aggregate)
        return aggregate

    async def get_or_raise(self, aggregate_id: uuid.UUID) -> A:
        aggregate = await self.get(aggregate_id)
        if aggregate is None:
            raise NotFoundError(self.aggregate_type.__name__, aggregate_id)
        return aggregate

    async def _hydrate(self, row: Mapping[str, Any]) -> A:
        return self._from_row(row)

    def add(self, aggregate: A) -> None:
        """Track a new aggregate; it is inserted on the next save."""
        self._uow.track(aggregate)

    async def persist(self, aggregate: A) -> None:
        """Write the aggregate's current state (insert, guarded update or delete)."""
        if aggregate.is_deleted:
            if not aggregate.is_new:
                await self._delete(aggregate)
        elif aggregate.is_new:
            await self._insert(aggregate)
        else:
            await self._update(aggregate)

    async def _insert(self, aggregate: A) -> None:
        await self._session.execute(insert(self.table).values(**self._values(aggregate)))

    async def _update(self, aggregate: A) -> None:
        values = self._values(aggregate)
        values.pop("id")
        values.pop("created_at")
        result = await self._session.execute(
            update(self.table)
            .where(
                self.table.c.id == aggregate.id,
                self.table.c.version == aggregate.persisted_version,
            )
            .values(**values)
        )
        if result.rowcount != 1:
            self._conflict(aggregate)

    async def _delete(self, aggregate: A) -> None:
        result = await self._session.execute(
            delete(self.table).where(
                self.table.c.id == aggregate.id,
                self.table.c.version == aggregate.persisted_version,
            )
        )
        if result.rowcount != 1:
            self._conflict(aggregate)

    def _conflict(self, aggregate: A) -> None:
        logger.warning(
            "Version conflict on %s %s (expected version %s)",
            self.aggregate_type.__name__,
            aggregate.id,
            aggregate.persisted_version,
        )
        raise ConcurrencyConflictError(
            self.aggregate_type.__name__, aggregate.id, aggregate.persisted_version,
        )


# ---------------------------------------------------------------------------
# Concrete repositories
# ---------------------------------------------------------------------------

class ProductRepo(_AggregateRepo[Product]):
    table = ProductRecord.__table__
    aggregate_type = Product

    def _from_row(self, row: Mapping[str, Any]) -> Product:
        return _row_to_product(row)

    def _values(self, aggregate: Product) -> dict[str, Any]:
        return _product_values(aggregate)

    async def sku_exists(self, sku: str) -> bool:
        result = await self._session.execute(
            select(self.table.c.id).where(self.table.c.sku == sku.upper())
        )
        return result.first() is not None


class CategoryRepo(_AggregateRepo[Category]):
    table = CategoryRecord.__table__
    aggregate_type = Category

    def _from_row(self, row: Mapping[str, Any]) -> Category:
        return _row_to_category(row)

    def _values(self, aggregate: Category) -> dict[str, Any]:
        return _category_values(aggregate)

    async def has_children(self, category_id: uuid.UUID, active_only: bool = False) -> bool:
        query = select(self.table.c.id).where(self.table.c.parent_id == category_id)
        if active_only:
            query = query.where(self.table.c.is_active.is_(True))
        result = await self._session.execute(query.limit(1))
        return result.first() is not None

    async def has_products(self, category_id: uuid.UUID) -> bool:
        products = ProductRecord.__table__
        result = await self._session.execute(
            select(products.c.id).where(products.c.category_id == category_id).limit(1)
        )
        return result.first() is not None


class CustomerRepo(_AggregateRepo[Customer]):
    """Customers are a header row plus their address rows.

    Addresses are few per customer, so an update rewrites all of them.
    """

    table = CustomerRecord.__table__
    aggregate_type = Customer
    addresses_table: ClassVar[Table] = CustomerAddressRecord.__table__

    async def _hydrate(self, row: Mapping[str, Any]) -> Customer:
        result = await self._session.execute(
            select(self.addresses_table)
            .where(self.addresses_table.c.customer_id == row["id"])
            .order_by(self.addresses_table.c.position)
        )
        return _row_to_customer(row, list(result.mappings().all()))

    async def _insert(self, aggregate: Customer) -> None:
        await super()._insert(aggregate)
        await self._write_addresses(aggregate)

    async def _update(self, aggregate: Customer) -> None:
        await super()._update(aggregate)
        await self._session.execute(
            delete(self.addresses_table)
            .where(self.addresses_table.c.customer_id == aggregate.id)
        )
        await self._write_addresses(aggregate)

    async def _write_addresses(self, aggregate: Customer) -> None:
        if not aggregate.addresses:
            return
        await self._session.execute(
            insert(self.addresses_table),
            [
                _address_values(aggregate.id, position, address)
                for position, address in enumerate(aggregate.addresses)
            ],
        )

    def _values(self, aggregate: Customer) -> dict[str, Any]:
        return _customer_values(aggregate)

    async def email_exists(self, email: str) -> bool:
        result = await self._session.execute(
            select(self.table.c.id).where(self.table.c.email == email.strip().lower())
        )
        return result.first() is not None


class OrderRepo(_AggregateRepo[Order]):
    """Orders are stored as a header row plus immutable line rows."""

    table = OrderRecord.__table__
    aggregate_type = Order
    items_table: ClassVar[Table] = OrderItemRecord.__table__

    async def _hydrate(self, row: Mapping[str, Any]) -> Order:
        result = await self._session.execute(
            select(self.items_table)
            .where(self.items_table.c.order_id == row["id"])
            .order_by(self.items_table.c.id)
        )
        return _row_to_order(row, list(result.mappings().all()))

    def _values(self, aggregate: Order) -> dict[str, Any]:
        return _order_values(aggregate)

    async def _insert(self, aggregate: Order) -> None:
        await super()._insert(aggregate)
        await self._session.execute(
            insert(self.items_table),
            [
                {
                    "order_id": aggregate.id,
                    "product_id": item.product_id,
                    "product_name": item.product_name,
                    "quantity": item.quantity,
                    "unit_price": item.unit_price,
                }
                for item in aggregate.items
            ],
        )

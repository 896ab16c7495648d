"""Command objects and their handlers (the write path).

Every handler opens one :class:`UnitOfWork`, mutates aggregates and saves.
Cache invalidation and projection are *not* done here: they happen in the
projection handlers once the committed events reach the bus.

Publication failure after a durable commit is logged and the command still
reports success; the outbox relay (when enabled) or a manual resync closes
the gap.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from decimal import Decimal

from ecommerce.core.enums import AddressType, OrderStatus, StockChangeReason
from ecommerce.core.errors import (
    EventPublishError,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)
from ecommerce.core.interfaces import IUnitOfWork
from ecommerce.domain.category import Category
from ecommerce.domain.customer import Address, Customer
from ecommerce.domain.order import Order, OrderItem
from ecommerce.domain.product import Product
from ecommerce.observability.logger import new_trace_id
from ecommerce.storage.postgres.unit_of_work import UnitOfWork

logger = logging.getLogger(__name__)

UnitOfWorkFactory = Callable[[], UnitOfWork]


async def _save(uow: IUnitOfWork) -> None:
    try:
        await uow.save_changes()
    except EventPublishError as exc:
        logger.error(
            "Committed but %d event(s) not published: %s",
            len(exc.pending_events),
            exc,
        )


class _CommandHandler:
    def __init__(self, uow_factory: UnitOfWorkFactory) -> None:
        self._uow_factory = uow_factory


# ---------------------------------------------------------------------------
# Products
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CreateProduct:
    name: str
    sku: str
    price: Decimal
    description: str = ""
    currency: str = "USD"
    category_id: uuid.UUID | None = None
    stock_quantity: int = 0
    minimum_stock_level: int = 0


class CreateProductHandler(_CommandHandler):
    async def handle(self, cmd: CreateProduct) -> uuid.UUID:
        trace_id = new_trace_id()
        if cmd.price < 0:
            raise ValidationError("price must not be negative")
        async with self._uow_factory() as uow:
            if await uow.products.sku_exists(cmd.sku):
                raise ValidationError(f"SKU {cmd.sku.upper()} already exists")
            product = Product.create(
                name=cmd.name,
                sku=cmd.sku,
                price=cmd.price,
                currency=cmd.currency,
                description=cmd.description,
                category_id=cmd.category_id,
                stock_quantity=cmd.stock_quantity,
                minimum_stock_level=cmd.minimum_stock_level,
                correlation_id=trace_id,
            )
            uow.add(product)
            await _save(uow)
        logger.info("Created product %s sku=%s", product.id, product.sku)
        return product.id


@dataclass(frozen=True)
class UpdateProduct:
    product_id: uuid.UUID
    name: str | None = None
    description: str | None = None
    price: Decimal | None = None
    category_id: uuid.UUID | None = None
    is_active: bool | None = None
    is_featured: bool | None = None


class UpdateProductHandler(_CommandHandler):
    async def handle(self, cmd: UpdateProduct) -> None:
        trace_id = new_trace_id()
        if cmd.price is not None and cmd.price < 0:
            raise ValidationError("price must not be negative")
        async with self._uow_factory() as uow:
            product = await uow.products.get_or_raise(cmd.product_id)
            if any(v is not None for v in (cmd.name, cmd.description, cmd.price, cmd.category_id)):
                product.update(
                    name=cmd.name,
                    description=cmd.description,
                    price=cmd.price,
                    category_id=cmd.category_id,
                    correlation_id=trace_id,
                )
            if cmd.is_active is True and not product.is_active:
                product.activate(trace_id)
            elif cmd.is_active is False and product.is_active:
                product.deactivate(trace_id)
            if cmd.is_featured is not None and cmd.is_featured != product.is_featured:
                product.mark_featured(cmd.is_featured, trace_id)
            await _save(uow)


@dataclass(frozen=True)
class UpdateProductStock:
    """Set the absolute stock level (``quantity``) or apply a ``delta``."""

    product_id: uuid.UUID
    quantity: int | None = None
    delta: int | None = None
    reason: StockChangeReason = StockChangeReason.ADJUSTMENT


class UpdateProductStockHandler(_CommandHandler):
    async def handle(self, cmd: UpdateProductStock) -> int:
        trace_id = new_trace_id()
        if (cmd.quantity is None) == (cmd.delta is None):
            raise ValidationError("exactly one of quantity or delta is required")
        async with self._uow_factory() as uow:
            product = await uow.products.get_or_raise(cmd.product_id)
            if cmd.quantity is not None:
                product.set_stock(cmd.quantity, cmd.reason, trace_id)
            elif cmd.delta > 0:
                product.increase_stock(cmd.delta, cmd.reason, trace_id)
            elif cmd.delta < 0:
                product.decrease_stock(-cmd.delta, cmd.reason, trace_id)
            await _save(uow)
            return product.stock_quantity


@dataclass(frozen=True)
class AddProductReview:
    product_id: uuid.UUID
    customer_id: uuid.UUID
    rating: int
    is_verified: bool = False


class AddProductReviewHandler(_CommandHandler):
    async def handle(self, cmd: AddProductReview) -> uuid.UUID:
        trace_id = new_trace_id()
        async with self._uow_factory() as uow:
            product = await uow.products.get_or_raise(cmd.product_id)
            review_id = product.add_review(
                customer_id=cmd.customer_id,
                rating=cmd.rating,
                is_verified=cmd.is_verified,
                correlation_id=trace_id,
            )
            await _save(uow)
        return review_id


@dataclass(frozen=True)
class DeleteProduct:
    product_id: uuid.UUID


class DeleteProductHandler(_CommandHandler):
    async def handle(self, cmd: DeleteProduct) -> None:
        trace_id = new_trace_id()
        async with self._uow_factory() as uow:
            product = await uow.products.get_or_raise(cmd.product_id)
            product.delete(trace_id)
            await _save(uow)
        logger.info("Deleted product %s sku=%s", product.id, product.sku)


# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CreateCategory:
    name: str
    description: str
    parent_id: uuid.UUID | None = None


class CreateCategoryHandler(_CommandHandler):
    async def handle(self, cmd: CreateCategory) -> uuid.UUID:
        trace_id = new_trace_id()
        async with self._uow_factory() as uow:
            parent = None
            if cmd.parent_id is not None:
                parent = await uow.categories.get_or_raise(cmd.parent_id)
            category = Category.create(
                name=cmd.name,
                description=cmd.description,
                parent=parent,
                correlation_id=trace_id,
            )
            uow.add(category)
            await _save(uow)
        logger.info("Created category %s level=%d", category.id, category.level)
        return category.id


@dataclass(frozen=True)
class UpdateCategory:
    category_id: uuid.UUID
    name: str | None = None
    description: str | None = None
    is_active: bool | None = None


class UpdateCategoryHandler(_CommandHandler):
    async def handle(self, cmd: UpdateCategory) -> None:
        trace_id = new_trace_id()
        async with self._uow_factory() as uow:
            category = await uow.categories.get_or_raise(cmd.category_id)
            if cmd.name is not None or cmd.description is not None:
                category.update(
                    name=cmd.name if cmd.name is not None else category.name,
                    description=(
                        cmd.description if cmd.description is not None else category.description
                    ),
                    correlation_id=trace_id,
                )
            if cmd.is_active is True and not category.is_active:
                category.activate(trace_id)
            elif cmd.is_active is False and category.is_active:
                category.deactivate(
                    has_active_children=await uow.categories.has_children(
                        category.id, active_only=True
                    ),
                    correlation_id=trace_id,
                )
            await _save(uow)


@dataclass(frozen=True)
class DeleteCategory:
    category_id: uuid.UUID


class DeleteCategoryHandler(_CommandHandler):
    async def handle(self, cmd: DeleteCategory) -> None:
        trace_id = new_trace_id()
        async with self._uow_factory() as uow:
            category = await uow.categories.get_or_raise(cmd.category_id)
            category.delete(
                has_children=await uow.categories.has_children(category.id),
                has_products=await uow.categories.has_products(category.id),
                correlation_id=trace_id,
            )
            await _save(uow)
        logger.info("Deleted category %s", category.id)


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class OrderLineRequest:
    product_id: uuid.UUID
    quantity: int


@dataclass(frozen=True)
class PlaceOrder:
    customer_id: uuid.UUID
    lines: tuple[OrderLineRequest, ...]
    shipping_address: str
    billing_address: str = ""
    currency: str = "USD"
    notes: str = ""


class PlaceOrderHandler(_CommandHandler):
    """Decrement every product's stock and create the order atomically.

    Either all stock decrements and the order are committed together, or
    nothing is.
    """

    async def handle(self, cmd: PlaceOrder) -> uuid.UUID:
        trace_id = new_trace_id()
        if not cmd.lines:
            raise ValidationError("an order needs at least one line")

        placed: list[Order] = []
        async with self._uow_factory() as uow:

            async def place() -> None:
                customer = await uow.customers.get(cmd.customer_id)
                if customer is None or not customer.is_active:
                    raise NotFoundError("Customer", cmd.customer_id)

                products = [await uow.products.get_or_raise(line.product_id) for line in cmd.lines]
                for product, line in zip(products, cmd.lines):
                    if product.can_fulfill(line.quantity):
                        continue
                    if not product.is_active:
                        raise ValidationError(f"product {product.id} is not available")
                    if line.quantity <= 0:
                        raise ValidationError("quantity must be positive")
                    raise InsufficientStockError(product.id, line.quantity, product.stock_quantity)

                items: list[OrderItem] = []
                for product, line in zip(products, cmd.lines):
                    product.decrease_stock(
                        line.quantity, StockChangeReason.ORDER_PLACED, trace_id,
                    )
                    items.append(OrderItem(
                        product_id=product.id,
                        product_name=product.name,
                        quantity=line.quantity,
                        unit_price=product.price,
                    ))

                order = Order.place(
                    customer_id=cmd.customer_id,
                    items=items,
                    shipping_address=cmd.shipping_address,
                    billing_address=cmd.billing_address,
                    currency=cmd.currency,
                    notes=cmd.notes,
                    correlation_id=trace_id,
                )
                uow.add(order)
                placed.append(order)

            try:
                await uow.execute_in_transaction(place)
            except EventPublishError as exc:
                logger.error(
                    "Order committed but %d event(s) not published: %s",
                    len(exc.pending_events),
                    exc,
                )
        order = placed[0]
        logger.info(
            "Placed order %s customer=%s items=%d total=%s",
            order.order_number,
            order.customer_id,
            order.item_count,
            order.total_amount,
        )
        return order.id


@dataclass(frozen=True)
class ChangeOrderStatus:
    """Advance an order to ``confirmed``, ``shipped`` or ``delivered``."""

    order_id: uuid.UUID
    status: OrderStatus


class ChangeOrderStatusHandler(_CommandHandler):
    async def handle(self, cmd: ChangeOrderStatus) -> None:
        trace_id = new_trace_id()
        async with self._uow_factory() as uow:
            order = await uow.orders.get_or_raise(cmd.order_id)
            if cmd.status == OrderStatus.CONFIRMED:
                order.confirm(trace_id)
            elif cmd.status == OrderStatus.SHIPPED:
                order.ship(trace_id)
            elif cmd.status == OrderStatus.DELIVERED:
                order.deliver(trace_id)
            else:
                raise ValidationError(
                    f"use CancelOrder to move an order to {cmd.status.value}"
                    if cmd.status == OrderStatus.CANCELLED
                    else f"cannot move an order to {cmd.status.value}"
                )
            await _save(uow)


@dataclass(frozen=True)
class CancelOrder:
    order_id: uuid.UUID
    reason: str = ""
    restock: bool = True


class CancelOrderHandler(_CommandHandler):
    """Cancel the order and, by default, return its quantities to stock."""

    async def handle(self, cmd: CancelOrder) -> None:
        trace_id = new_trace_id()
        async with self._uow_factory() as uow:

            async def cancel() -> None:
                order = await uow.orders.get_or_raise(cmd.order_id)
                order.cancel(cmd.reason, trace_id)
                if not cmd.restock:
                    return
                for item in order.items:
                    product = await uow.products.get(item.product_id)
                    if product is None:
                        logger.warning(
                            "Cannot restock missing product %s for order %s",
                            item.product_id,
                            order.id,
                        )
                        continue
                    product.increase_stock(
                        item.quantity, StockChangeReason.ORDER_CANCELLED, trace_id,
                    )

            try:
                await uow.execute_in_transaction(cancel)
            except EventPublishError as exc:
                logger.error(
                    "Cancellation committed but %d event(s) not published: %s",
                    len(exc.pending_events),
                    exc,
                )


# ---------------------------------------------------------------------------
# Customers
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RegisterCustomer:
    email: str
    first_name: str
    last_name: str
    phone_number: str | None = None


class RegisterCustomerHandler(_CommandHandler):
    async def handle(self, cmd: RegisterCustomer) -> uuid.UUID:
        trace_id = new_trace_id()
        async with self._uow_factory() as uow:
            if await uow.customers.email_exists(cmd.email):
                raise ValidationError(f"{cmd.email.strip().lower()} is already registered")
            customer = Customer.register(
                email=cmd.email,
                first_name=cmd.first_name,
                last_name=cmd.last_name,
                phone_number=cmd.phone_number,
                correlation_id=trace_id,
            )
            uow.add(customer)
            await _save(uow)
        return customer.id


@dataclass(frozen=True)
class UpdateCustomerProfile:
    customer_id: uuid.UUID
    first_name: str | None = None
    last_name: str | None = None
    phone_number: str | None = None
    email: str | None = None
    is_active: bool | None = None


class UpdateCustomerProfileHandler(_CommandHandler):
    async def handle(self, cmd: UpdateCustomerProfile) -> None:
        trace_id = new_trace_id()
        async with self._uow_factory() as uow:
            customer = await uow.customers.get_or_raise(cmd.customer_id)
            if any(v is not None for v in (cmd.first_name, cmd.last_name, cmd.phone_number)):
                customer.update_profile(
                    first_name=cmd.first_name,
                    last_name=cmd.last_name,
                    phone_number=cmd.phone_number,
                    correlation_id=trace_id,
                )
            if cmd.email is not None and cmd.email.strip().lower() != customer.email:
                if await uow.customers.email_exists(cmd.email):
                    raise ValidationError(f"{cmd.email.strip().lower()} is already registered")
                customer.change_email(cmd.email, trace_id)
            if cmd.is_active is True and not customer.is_active:
                customer.reactivate(trace_id)
            elif cmd.is_active is False and customer.is_active:
                customer.deactivate(trace_id)
            await _save(uow)


@dataclass(frozen=True)
class AddCustomerAddress:
    customer_id: uuid.UUID
    address_type: AddressType
    street1: str
    city: str
    state: str
    postal_code: str
    country: str
    street2: str | None = None
    label: str | None = None
    is_primary: bool = False


class AddCustomerAddressHandler(_CommandHandler):
    async def handle(self, cmd: AddCustomerAddress) -> uuid.UUID:
        trace_id = new_trace_id()
        address = Address(
            address_type=cmd.address_type,
            street1=cmd.street1,
            city=cmd.city,
            state=cmd.state,
            postal_code=cmd.postal_code,
            country=cmd.country,
            street2=cmd.street2,
            label=cmd.label,
            is_primary=cmd.is_primary,
        )
        async with self._uow_factory() as uow:
            customer = await uow.customers.get_or_raise(cmd.customer_id)
            address_id = customer.add_address(address, trace_id)
            await _save(uow)
        return address_id


@dataclass
class CommandHandlers:
    create_product: CreateProductHandler
    update_product: UpdateProductHandler
    update_product_stock: UpdateProductStockHandler
    add_product_review: AddProductReviewHandler
    delete_product: DeleteProductHandler
    create_category: CreateCategoryHandler
    update_category: UpdateCategoryHandler
    delete_category: DeleteCategoryHandler
    place_order: PlaceOrderHandler
    change_order_status: ChangeOrderStatusHandler
    cancel_order: CancelOrderHandler
    register_customer: RegisterCustomerHandler
    update_customer_profile: UpdateCustomerProfileHandler
    add_customer_address: AddCustomerAddressHandler

    @classmethod
    def build(cls, uow_factory: UnitOfWorkFactory) -> CommandHandlers:
        return cls(
            create_product=CreateProductHandler(uow_factory),
            update_product=UpdateProductHandler(uow_factory),
            update_product_stock=UpdateProductStockHandler(uow_factory),
            add_product_review=AddProductReviewHandler(uow_factory),
            delete_product=DeleteProductHandler(uow_factory),
            create_category=CreateCategoryHandler(uow_factory),
            update_category=UpdateCategoryHandler(uow_factory),
            delete_category=DeleteCategoryHandler(uow_factory),
            place_order=PlaceOrderHandler(uow_factory),
            change_order_status=ChangeOrderStatusHandler(uow_factory),
            cancel_order=CancelOrderHandler(uow_factory),
            register_customer=RegisterCustomerHandler(uow_factory),
            update_customer_profile=UpdateCustomerProfileHandler(uow_factory),
            add_customer_address=AddCustomerAddressHandler(uow_factory),
        )

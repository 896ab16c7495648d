"""Command handlers over SQLite and the in-memory bus."""

from __future__ import annotations

import uuid
from decimal import Decimal

import pytest

from ecommerce.application.commands import (
    AddCustomerAddress,
    AddProductReview,
    CancelOrder,
    ChangeOrderStatus,
    CommandHandlers,
    CreateCategory,
    CreateProduct,
    DeleteCategory,
    DeleteProduct,
    OrderLineRequest,
    PlaceOrder,
    RegisterCustomer,
    UpdateCategory,
    UpdateCustomerProfile,
    UpdateProduct,
    UpdateProductStock,
)
from ecommerce.core.enums import AddressType, OrderStatus, StockChangeReason
from ecommerce.core.errors import (
    InsufficientStockError,
    InvalidCategoryHierarchyError,
    InvalidOrderStateError,
    NotFoundError,
    ValidationError,
)
from ecommerce.domain.events import (
    CategoryCreated,
    CategoryDeleted,
    CategoryUpdated,
    CustomerAddressAdded,
    CustomerUpdated,
    OrderCancelled,
    OrderPlaced,
    ProductCreated,
    ProductDeleted,
    ProductStockUpdated,
    ProductUpdated,
)


@pytest.fixture
def commands(uow_factory) -> CommandHandlers:
    return CommandHandlers.build(uow_factory)


async def _product(commands, stock: int = 5, sku: str = "lap-14", price: str = "1299.00") -> uuid.UUID:
    return await commands.create_product.handle(CreateProduct(
        name=f"Product {sku}", sku=sku, price=Decimal(price), stock_quantity=stock,
        minimum_stock_level=2,
    ))


async def _customer(commands, email: str = "ada@example.com") -> uuid.UUID:
    return await commands.register_customer.handle(RegisterCustomer(
        email=email, first_name="Ada", last_name="Lovelace",
    ))


async def _load_product(uow_factory, product_id):
    async with uow_factory() as uow:
        return await uow.products.get_or_raise(product_id)


class TestProductCommands:
    @pytest.mark.asyncio
    async def test_create_product(self, commands, memory_bus, uow_factory):
        product_id = await _product(commands)
        product = await _load_product(uow_factory, product_id)
        assert product.sku == "LAP-14"
        (event,) = memory_bus.get_history()
        assert isinstance(event, ProductCreated)
        assert event.correlation_id

    @pytest.mark.asyncio
    async def test_duplicate_sku_rejected(self, commands):
        await _product(commands, sku="lap-14")
        with pytest.raises(ValidationError, match="LAP-14"):
            await _product(commands, sku="LAP-14")

    @pytest.mark.asyncio
    async def test_negative_price_rejected(self, commands):
        with pytest.raises(ValidationError):
            await _product(commands, price="-1")

    @pytest.mark.asyncio
    async def test_update_product(self, commands, memory_bus, uow_factory):
        product_id = await _product(commands)
        memory_bus.clear_history()

        await commands.update_product.handle(UpdateProduct(
            product_id, price=Decimal("999.00"), is_featured=True,
        ))

        product = await _load_product(uow_factory, product_id)
        assert product.price == Decimal("999.00")
        assert product.is_featured
        assert product.version == 3
        assert len(memory_bus.get_history(ProductUpdated)) == 2

    @pytest.mark.asyncio
    async def test_update_missing_product(self, commands):
        with pytest.raises(NotFoundError):
            await commands.update_product.handle(UpdateProduct(uuid.uuid4(), name="x"))

    @pytest.mark.asyncio
    async def test_stock_quantity_or_delta(self, commands):
        product_id = await _product(commands, stock=5)
        handler = commands.update_product_stock
        assert await handler.handle(UpdateProductStock(product_id, delta=3)) == 8
        assert await handler.handle(UpdateProductStock(product_id, delta=-6)) == 2
        assert await handler.handle(UpdateProductStock(
            product_id, quantity=10, reason=StockChangeReason.RESTOCK,
        )) == 10
        with pytest.raises(ValidationError):
            await handler.handle(UpdateProductStock(product_id))
        with pytest.raises(ValidationError):
            await handler.handle(UpdateProductStock(product_id, quantity=1, delta=1))
        with pytest.raises(InsufficientStockError):
            await handler.handle(UpdateProductStock(product_id, delta=-11))

    @pytest.mark.asyncio
    async def test_add_review(self, commands, uow_factory):
        product_id = await _product(commands)
        customer_id = await _customer(commands)
        for rating in (5, 4):
            await commands.add_product_review.handle(AddProductReview(product_id, customer_id, rating))
        product = await _load_product(uow_factory, product_id)
        assert product.review_count == 2
        assert product.average_rating == 4.5

    @pytest.mark.asyncio
    async def test_delete_product(self, commands, memory_bus, uow_factory):
        product_id = await _product(commands)
        memory_bus.clear_history()

        await commands.delete_product.handle(DeleteProduct(product_id))

        async with uow_factory() as uow:
            assert await uow.products.get(product_id) is None
        (deleted,) = memory_bus.get_history(ProductDeleted)
        assert deleted.aggregate_id == product_id
        assert deleted.sku == "LAP-14"
        assert deleted.aggregate_version == 2

    @pytest.mark.asyncio
    async def test_delete_missing_product(self, commands):
        with pytest.raises(NotFoundError):
            await commands.delete_product.handle(DeleteProduct(uuid.uuid4()))


class TestCategoryCommands:
    async def _category(self, commands, name="Computers", parent_id=None) -> uuid.UUID:
        return await commands.create_category.handle(
            CreateCategory(name=name, description=f"All {name.lower()}", parent_id=parent_id)
        )

    async def _load(self, uow_factory, category_id):
        async with uow_factory() as uow:
            return await uow.categories.get(category_id)

    @pytest.mark.asyncio
    async def test_create_root_and_child(self, commands, memory_bus, uow_factory):
        root = await self._category(commands)
        child = await self._category(commands, "Laptops", parent_id=root)

        loaded = await self._load(uow_factory, child)
        assert loaded.parent_id == root
        assert loaded.level == 1
        assert not loaded.is_root
        assert len(memory_bus.get_history(CategoryCreated)) == 2

    @pytest.mark.asyncio
    async def test_unknown_parent(self, commands):
        with pytest.raises(NotFoundError):
            await self._category(commands, parent_id=uuid.uuid4())

    @pytest.mark.asyncio
    async def test_depth_limit(self, commands):
        parent = await self._category(commands, "Level 0")
        for level in range(1, 6):
            parent = await self._category(commands, f"Level {level}", parent_id=parent)
        with pytest.raises(InvalidCategoryHierarchyError):
            await self._category(commands, "Level 6", parent_id=parent)

    @pytest.mark.asyncio
    async def test_update_keeps_unspecified_text(self, commands, memory_bus, uow_factory):
        category_id = await self._category(commands)
        memory_bus.clear_history()

        await commands.update_category.handle(UpdateCategory(category_id, name="Computing"))

        loaded = await self._load(uow_factory, category_id)
        assert loaded.name == "Computing"
        assert loaded.description == "All computers"
        (updated,) = memory_bus.get_history(CategoryUpdated)
        assert updated.name == "Computing"

    @pytest.mark.asyncio
    async def test_deactivate_blocked_by_active_child(self, commands, uow_factory):
        root = await self._category(commands)
        child = await self._category(commands, "Laptops", parent_id=root)

        with pytest.raises(InvalidCategoryHierarchyError):
            await commands.update_category.handle(UpdateCategory(root, is_active=False))

        await commands.update_category.handle(UpdateCategory(child, is_active=False))
        await commands.update_category.handle(UpdateCategory(root, is_active=False))
        assert not (await self._load(uow_factory, root)).is_active

    @pytest.mark.asyncio
    async def test_delete_blocked_by_children_and_products(self, commands):
        root = await self._category(commands)
        child = await self._category(commands, "Laptops", parent_id=root)
        with pytest.raises(InvalidCategoryHierarchyError, match="child"):
            await commands.delete_category.handle(DeleteCategory(root))

        await commands.create_product.handle(CreateProduct(
            name="Laptop", sku="lap-1", price=Decimal("10"), category_id=child,
        ))
        with pytest.raises(InvalidCategoryHierarchyError, match="products"):
            await commands.delete_category.handle(DeleteCategory(child))

    @pytest.mark.asyncio
    async def test_delete_leaf(self, commands, memory_bus, uow_factory):
        root = await self._category(commands)
        child = await self._category(commands, "Laptops", parent_id=root)
        memory_bus.clear_history()

        await commands.delete_category.handle(DeleteCategory(child))

        assert await self._load(uow_factory, child) is None
        (deleted,) = memory_bus.get_history(CategoryDeleted)
        assert deleted.parent_id == root
        await commands.delete_category.handle(DeleteCategory(root))


class TestOrderCommands:
    @pytest.mark.asyncio
    async def test_place_order_decrements_stock(self, commands, memory_bus, uow_factory):
        laptop = await _product(commands, stock=5, sku="lap-14")
        mouse = await _product(commands, stock=10, sku="m-1", price="20.00")
        customer_id = await _customer(commands)
        memory_bus.clear_history()

        order_id = await commands.place_order.handle(PlaceOrder(
            customer_id=customer_id,
            lines=(OrderLineRequest(laptop, 3), OrderLineRequest(mouse, 1)),
            shipping_address="1 Analytical Way",
        ))

        assert (await _load_product(uow_factory, laptop)).stock_quantity == 2
        assert (await _load_product(uow_factory, mouse)).stock_quantity == 9
        async with uow_factory() as uow:
            order = await uow.orders.get_or_raise(order_id)
        assert order.total_amount == Decimal("3917.00")
        assert order.status == OrderStatus.PENDING

        (placed,) = memory_bus.get_history(OrderPlaced)
        assert placed.order_number == order.order_number
        assert len(memory_bus.get_history(ProductStockUpdated)) == 2
        correlation = {e.correlation_id for e in memory_bus.get_history()}
        assert len(correlation) == 1

    @pytest.mark.asyncio
    async def test_insufficient_stock_changes_nothing(self, commands, memory_bus, uow_factory):
        laptop = await _product(commands, stock=5, sku="lap-14")
        mouse = await _product(commands, stock=1, sku="m-1")
        customer_id = await _customer(commands)
        memory_bus.clear_history()

        with pytest.raises(InsufficientStockError):
            await commands.place_order.handle(PlaceOrder(
                customer_id=customer_id,
                lines=(OrderLineRequest(laptop, 3), OrderLineRequest(mouse, 2)),
                shipping_address="1 Analytical Way",
            ))

        assert (await _load_product(uow_factory, laptop)).stock_quantity == 5
        assert memory_bus.get_history() == []

    @pytest.mark.asyncio
    async def test_unknown_or_inactive_customer(self, commands):
        laptop = await _product(commands)
        line = (OrderLineRequest(laptop, 1),)
        with pytest.raises(NotFoundError):
            await commands.place_order.handle(PlaceOrder(uuid.uuid4(), line, "addr"))

        customer_id = await _customer(commands)
        await commands.update_customer_profile.handle(UpdateCustomerProfile(customer_id, is_active=False))
        with pytest.raises(NotFoundError):
            await commands.place_order.handle(PlaceOrder(customer_id, line, "addr"))

    @pytest.mark.asyncio
    async def test_empty_order_rejected(self, commands):
        with pytest.raises(ValidationError):
            await commands.place_order.handle(PlaceOrder(uuid.uuid4(), (), "addr"))

    @pytest.mark.asyncio
    async def test_status_lifecycle(self, commands, uow_factory):
        laptop = await _product(commands)
        customer_id = await _customer(commands)
        order_id = await commands.place_order.handle(
            PlaceOrder(customer_id, (OrderLineRequest(laptop, 1),), "addr")
        )

        with pytest.raises(InvalidOrderStateError):
            await commands.change_order_status.handle(ChangeOrderStatus(order_id, OrderStatus.SHIPPED))
        for status in (OrderStatus.CONFIRMED, OrderStatus.SHIPPED, OrderStatus.DELIVERED):
            await commands.change_order_status.handle(ChangeOrderStatus(order_id, status))
        with pytest.raises(ValidationError, match="CancelOrder"):
            await commands.change_order_status.handle(ChangeOrderStatus(order_id, OrderStatus.CANCELLED))

        async with uow_factory() as uow:
            order = await uow.orders.get_or_raise(order_id)
        assert order.status == OrderStatus.DELIVERED
        assert order.delivered_at is not None

    @pytest.mark.asyncio
    async def test_cancel_restocks(self, commands, memory_bus, uow_factory):
        laptop = await _product(commands, stock=5)
        customer_id = await _customer(commands)
        order_id = await commands.place_order.handle(
            PlaceOrder(customer_id, (OrderLineRequest(laptop, 3),), "addr")
        )
        memory_bus.clear_history()

        await commands.cancel_order.handle(CancelOrder(order_id, reason="changed mind"))

        assert (await _load_product(uow_factory, laptop)).stock_quantity == 5
        (cancelled,) = memory_bus.get_history(OrderCancelled)
        assert cancelled.reason == "changed mind"
        (restock,) = memory_bus.get_history(ProductStockUpdated)
        assert restock.reason == StockChangeReason.ORDER_CANCELLED.value

    @pytest.mark.asyncio
    async def test_cancel_without_restock(self, commands, uow_factory):
        laptop = await _product(commands, stock=5)
        customer_id = await _customer(commands)
        order_id = await commands.place_order.handle(
            PlaceOrder(customer_id, (OrderLineRequest(laptop, 3),), "addr")
        )
        await commands.cancel_order.handle(CancelOrder(order_id, restock=False))
        assert (await _load_product(uow_factory, laptop)).stock_quantity == 2


class TestCustomerCommands:
    @pytest.mark.asyncio
    async def test_duplicate_email_rejected(self, commands):
        await _customer(commands, "ada@example.com")
        with pytest.raises(ValidationError):
            await _customer(commands, "  ADA@example.com ")

    @pytest.mark.asyncio
    async def test_update_profile_and_email(self, commands, memory_bus, uow_factory):
        customer_id = await _customer(commands)
        memory_bus.clear_history()

        await commands.update_customer_profile.handle(UpdateCustomerProfile(
            customer_id, first_name="Augusta", email="Augusta@Example.com",
        ))

        async with uow_factory() as uow:
            customer = await uow.customers.get_or_raise(customer_id)
        assert customer.first_name == "Augusta"
        assert customer.email == "augusta@example.com"
        assert len(memory_bus.get_history(CustomerUpdated)) == 2

    @pytest.mark.asyncio
    async def test_email_taken_by_other_customer(self, commands):
        await _customer(commands, "ada@example.com")
        other = await _customer(commands, "charles@example.com")
        with pytest.raises(ValidationError):
            await commands.update_customer_profile.handle(
                UpdateCustomerProfile(other, email="ada@example.com")
            )

    @pytest.mark.asyncio
    async def test_add_addresses(self, commands, memory_bus, uow_factory):
        customer_id = await _customer(commands)
        memory_bus.clear_history()

        home = await commands.add_customer_address.handle(AddCustomerAddress(
            customer_id, AddressType.SHIPPING, "1 Analytical Way", "London", "LDN", "N1", "UK",
        ))
        office = await commands.add_customer_address.handle(AddCustomerAddress(
            customer_id, AddressType.BILLING, "2 Engine St", "London", "LDN", "N2", "UK",
            label="office", is_primary=True,
        ))

        async with uow_factory() as uow:
            customer = await uow.customers.get_or_raise(customer_id)
        assert [a.id for a in customer.addresses] == [home, office]
        assert customer.primary_address.id == office
        assert customer.version == 3

        first, second = memory_bus.get_history(CustomerAddressAdded)
        assert first.address_id == home
        assert [a.is_primary for a in second.addresses] == [False, True]

    @pytest.mark.asyncio
    async def test_add_invalid_address(self, commands):
        customer_id = await _customer(commands)
        with pytest.raises(ValidationError, match="street1"):
            await commands.add_customer_address.handle(AddCustomerAddress(
                customer_id, AddressType.SHIPPING, "  ", "London", "LDN", "N1", "UK",
            ))

    @pytest.mark.asyncio
    async def test_add_address_to_missing_customer(self, commands):
        with pytest.raises(NotFoundError):
            await commands.add_customer_address.handle(AddCustomerAddress(
                uuid.uuid4(), AddressType.SHIPPING, "1 Way", "London", "LDN", "N1", "UK",
            ))

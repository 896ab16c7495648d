"""Product aggregate."""

from __future__ import annotations

import uuid
from decimal import Decimal

from ecommerce.core.enums import StockChangeReason
from ecommerce.core.errors import InsufficientStockError, ValidationError

from .aggregate import AggregateRoot
from .events import (
    ProductCreated,
    ProductDeleted,
    ProductReviewAdded,
    ProductStockUpdated,
    ProductUpdated,
)


class Product(AggregateRoot):
    """Catalogue item with stock and review statistics."""

    def __init__(
        self,
        id: uuid.UUID | None = None,
        *,
        name: str,
        sku: str,
        price: Decimal,
        currency: str = "USD",
        description: str = "",
        category_id: uuid.UUID | None = None,
        stock_quantity: int = 0,
        minimum_stock_level: int = 0,
        is_active: bool = True,
        is_featured: bool = False,
        average_rating: float = 0.0,
        review_count: int = 0,
        **base,
    ) -> None:
        super().__init__(id, **base)
        self.name = name
        self.sku = sku
        self.price = Decimal(price)
        self.currency = currency
        self.description = description
        self.category_id = category_id
        self.stock_quantity = stock_quantity
        self.minimum_stock_level = minimum_stock_level
        self.is_active = is_active
        self.is_featured = is_featured
        self.average_rating = average_rating
        self.review_count = review_count

    @classmethod
    def create(
        cls,
        *,
        name: str,
        sku: str,
        price: Decimal,
        currency: str = "USD",
        description: str = "",
        category_id: uuid.UUID | None = None,
        stock_quantity: int = 0,
        minimum_stock_level: int = 0,
        correlation_id: str = "",
    ) -> Product:
        if stock_quantity < 0:
            raise ValidationError("stock_quantity must not be negative")
        product = cls(
            name=name,
            sku=sku.upper(),
            price=price,
            currency=currency,
            description=description,
            category_id=category_id,
            stock_quantity=stock_quantity,
            minimum_stock_level=minimum_stock_level,
        )
        product._add_domain_event(ProductCreated(
            aggregate_id=product.id,
            aggregate_version=product.version,
            correlation_id=correlation_id,
            name=product.name,
            description=product.description,
            sku=product.sku,
            price=product.price,
            currency=product.currency,
            category_id=product.category_id,
            stock_quantity=product.stock_quantity,
            minimum_stock_level=product.minimum_stock_level,
        ))
        return product

    # -- catalogue -----------------------------------------------------------

    def update(
        self,
        *,
        name: str | None = None,
        description: str | None = None,
        price: Decimal | None = None,
        category_id: uuid.UUID | None = None,
        correlation_id: str = "",
    ) -> None:
        if name is not None:
            self.name = name
        if description is not None:
            self.description = description
        if price is not None:
            self.price = Decimal(price)
        if category_id is not None:
            self.category_id = category_id
        self._catalogue_changed(correlation_id)

    def activate(self, correlation_id: str = "") -> None:
        self.is_active = True
        self._catalogue_changed(correlation_id)

    def deactivate(self, correlation_id: str = "") -> None:
        self.is_active = False
        self._catalogue_changed(correlation_id)

    def mark_featured(self, featured: bool = True, correlation_id: str = "") -> None:
        self.is_featured = featured
        self._catalogue_changed(correlation_id)

    def _catalogue_changed(self, correlation_id: str) -> None:
        self._mark_modified()
        self._add_domain_event(ProductUpdated(
            aggregate_id=self.id,
            aggregate_version=self.version,
            correlation_id=correlation_id,
            name=self.name,
            description=self.description,
            price=self.price,
            currency=self.currency,
            category_id=self.category_id,
            is_active=self.is_active,
            is_featured=self.is_featured,
        ))

    # -- stock ---------------------------------------------------------------

    def can_fulfill(self, quantity: int) -> bool:
        return self.is_active and 0 < quantity <= self.stock_quantity

    def increase_stock(
        self,
        quantity: int,
        reason: StockChangeReason = StockChangeReason.RESTOCK,
        correlation_id: str = "",
    ) -> None:
        if quantity <= 0:
            raise ValidationError("quantity must be positive")
        self.set_stock(self.stock_quantity + quantity, reason, correlation_id)

    def decrease_stock(
        self,
        quantity: int,
        reason: StockChangeReason = StockChangeReason.ORDER_PLACED,
        correlation_id: str = "",
    ) -> None:
        if quantity <= 0:
            raise ValidationError("quantity must be positive")
        if quantity > self.stock_quantity:
            raise InsufficientStockError(self.id, quantity, self.stock_quantity)
        self.set_stock(self.stock_quantity - quantity, reason, correlation_id)

    def set_stock(
        self,
        quantity: int,
        reason: StockChangeReason = StockChangeReason.ADJUSTMENT,
        correlation_id: str = "",
    ) -> None:
        if quantity < 0:
            raise ValidationError("stock cannot be negative")
        previous = self.stock_quantity
        self.stock_quantity = quantity
        self._mark_modified()
        self._add_domain_event(ProductStockUpdated(
            aggregate_id=self.id,
            aggregate_version=self.version,
            correlation_id=correlation_id,
            previous_stock=previous,
            new_stock=quantity,
            minimum_stock_level=self.minimum_stock_level,
            reason=StockChangeReason(reason).value,
        ))

    @property
    def is_low_stock(self) -> bool:
        return self.stock_quantity <= self.minimum_stock_level

    # -- reviews -------------------------------------------------------------

    def add_review(
        self,
        *,
        customer_id: uuid.UUID,
        rating: int,
        is_verified: bool = False,
        review_id: uuid.UUID | None = None,
        correlation_id: str = "",
    ) -> uuid.UUID:
        """Fold a new rating into the running average and return the review id."""
        if not 1 <= rating <= 5:
            raise ValidationError("rating must be between 1 and 5")
        review_id = review_id or uuid.uuid4()
        total = self.average_rating * self.review_count + rating
        self.review_count += 1
        self.average_rating = round(total / self.review_count, 2)
        self._mark_modified()
        self._add_domain_event(ProductReviewAdded(
            aggregate_id=self.id,
            aggregate_version=self.version,
            correlation_id=correlation_id,
            review_id=review_id,
            customer_id=customer_id,
            rating=rating,
            is_verified=is_verified,
            average_rating=self.average_rating,
            review_count=self.review_count,
        ))
        return review_id

    # -- removal -------------------------------------------------------------

    def delete(self, correlation_id: str = "") -> None:
        self._mark_deleted()
        self._add_domain_event(ProductDeleted(
            aggregate_id=self.id,
            aggregate_version=self.version,
            correlation_id=correlation_id,
            sku=self.sku,
            category_id=self.category_id,
        ))

"""Read-only query repositories over the relational store.

Readers open a short session per call and return DTOs; they never track
aggregates and never write.  Query handlers and the projection rebuilder
use them; the cached repository wraps their point lookups.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncIterator
from typing import Any, Mapping

from sqlalchemy import Select, func, or_, select

from ecommerce.application.dto import (
    AddressDTO,
    CategoryDTO,
    CustomerDTO,
    OrderDTO,
    OrderItemDTO,
    PagedResult,
    ProductDTO,
)
from ecommerce.core.ids import ensure_utc

from .connection import SessionFactory, read_session
from .models import (
    CategoryRecord,
    CustomerAddressRecord,
    CustomerRecord,
    OrderItemRecord,
    OrderRecord,
    ProductRecord,
)


def _offset(page: int, page_size: int) -> int:
    return max(page - 1, 0) * page_size


def _stamps(row: Mapping[str, Any]) -> dict[str, Any]:
    return {
        "created_at": ensure_utc(row["created_at"]),
        "updated_at": ensure_utc(row["updated_at"]),
    }


def _product_dto(row: Mapping[str, Any]) -> ProductDTO:
    data = {k: v for k, v in row.items() if k not in ("created_at", "updated_at")}
    data["description"] = data.get("description") or ""
    return ProductDTO(**data, **_stamps(row))


def _customer_dto(
    row: Mapping[str, Any], addresses: list[AddressDTO] | None = None,
) -> CustomerDTO:
    data = {k: v for k, v in row.items() if k not in ("created_at", "updated_at")}
    return CustomerDTO(**data, addresses=addresses or [], **_stamps(row))


def _category_dto(row: Mapping[str, Any]) -> CategoryDTO:
    data = {k: v for k, v in row.items() if k not in ("created_at", "updated_at")}
    return CategoryDTO(**data, **_stamps(row))


class _Reader:
    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def _count(self, stmt: Select) -> int:
        async with read_session(self._session_factory) as session:
            total = await session.scalar(select(func.count()).select_from(stmt.subquery()))
        return int(total or 0)


class ProductReader(_Reader):
    table = ProductRecord.__table__

    async def get(self, product_id: uuid.UUID) -> ProductDTO | None:
        async with read_session(self._session_factory) as session:
            result = await session.execute(select(self.table).where(self.table.c.id == product_id))
            row = result.mappings().first()
        return _product_dto(row) if row is not None else None

    async def exists(self, product_id: uuid.UUID) -> bool:
        async with read_session(self._session_factory) as session:
            result = await session.execute(
                select(self.table.c.id).where(self.table.c.id == product_id)
            )
            return result.first() is not None

    def _filtered(
        self,
        search_term: str | None = None,
        category_id: uuid.UUID | None = None,
        active_only: bool = True,
    ) -> Select:
        t = self.table
        stmt = select(t)
        if active_only:
            stmt = stmt.where(t.c.is_active.is_(True))
        if search_term:
            like = f"%{search_term.strip().lower()}%"
            stmt = stmt.where(or_(
                func.lower(t.c.name).like(like),
                func.lower(t.c.description).like(like),
                func.lower(t.c.sku).like(like),
            ))
        if category_id is not None:
            stmt = stmt.where(t.c.category_id == category_id)
        return stmt

    async def list(
        self,
        page: int = 1,
        page_size: int = 20,
        search_term: str | None = None,
        category_id: uuid.UUID | None = None,
    ) -> PagedResult[ProductDTO]:
        stmt = self._filtered(search_term, category_id)
        total = await self._count(stmt)
        async with read_session(self._session_factory) as session:
            result = await session.execute(
                stmt.order_by(self.table.c.name, self.table.c.id)
                .offset(_offset(page, page_size))
                .limit(page_size)
            )
            rows = result.mappings().all()
        return PagedResult[ProductDTO](
            items=[_product_dto(r) for r in rows],
            page=page,
            page_size=page_size,
            total_count=total,
        )

    async def list_low_stock(self, limit: int = 50) -> list[ProductDTO]:
        """Active products at or below their minimum stock level, emptiest first."""
        t = self.table
        async with read_session(self._session_factory) as session:
            result = await session.execute(
                select(t)
                .where(t.c.is_active.is_(True), t.c.stock_quantity <= t.c.minimum_stock_level)
                .order_by(t.c.stock_quantity, t.c.id)
                .limit(limit)
            )
            rows = result.mappings().all()
        return [_product_dto(r) for r in rows]

    async def iter_all(self, batch_size: int = 500) -> AsyncIterator[list[ProductDTO]]:
        """Yield every product (active or not) in id order, batch by batch."""
        last_id: uuid.UUID | None = None
        while True:
            stmt = select(self.table).order_by(self.table.c.id).limit(batch_size)
            if last_id is not None:
                stmt = stmt.where(self.table.c.id > last_id)
            async with read_session(self._session_factory) as session:
                rows = (await session.execute(stmt)).mappings().all()
            if not rows:
                return
            yield [_product_dto(r) for r in rows]
            last_id = rows[-1]["id"]


class CategoryReader(_Reader):
    table = CategoryRecord.__table__

    async def get(self, category_id: uuid.UUID) -> CategoryDTO | None:
        async with read_session(self._session_factory) as session:
            result = await session.execute(select(self.table).where(self.table.c.id == category_id))
            row = result.mappings().first()
        return _category_dto(row) if row is not None else None

    async def list(
        self, include_inactive: bool = False, parent_id: uuid.UUID | None = None,
    ) -> list[CategoryDTO]:
        """Root categories, or the direct children of *parent_id*, by name."""
        t = self.table
        stmt = select(t).where(
            t.c.parent_id.is_(None) if parent_id is None else t.c.parent_id == parent_id
        )
        if not include_inactive:
            stmt = stmt.where(t.c.is_active.is_(True))
        async with read_session(self._session_factory) as session:
            result = await session.execute(stmt.order_by(t.c.name, t.c.id))
            rows = result.mappings().all()
        return [_category_dto(r) for r in rows]


class OrderReader(_Reader):
    table = OrderRecord.__table__
    items_table = OrderItemRecord.__table__

    async def _with_items(self, rows: list[Mapping[str, Any]]) -> list[OrderDTO]:
        if not rows:
            return []
        ids = [r["id"] for r in rows]
        async with read_session(self._session_factory) as session:
            result = await session.execute(
                select(self.items_table)
                .where(self.items_table.c.order_id.in_(ids))
                .order_by(self.items_table.c.id)
            )
            item_rows = result.mappings().all()
        by_order: dict[uuid.UUID, list[OrderItemDTO]] = {i: [] for i in ids}
        for i in item_rows:
            by_order[i["order_id"]].append(OrderItemDTO(
                product_id=i["product_id"],
                product_name=i["product_name"],
                quantity=i["quantity"],
                unit_price=i["unit_price"],
            ))
        return [
            OrderDTO(
                id=r["id"],
                order_number=r["order_number"],
                customer_id=r["customer_id"],
                status=r["status"],
                currency=r["currency"],
                total_amount=r["total_amount"],
                items=by_order[r["id"]],
                shipping_address=r["shipping_address"] or "",
                billing_address=r["billing_address"] or "",
                notes=r["notes"] or "",
                cancellation_reason=r["cancellation_reason"] or "",
                shipped_at=ensure_utc(r["shipped_at"]),
                delivered_at=ensure_utc(r["delivered_at"]),
                version=r["version"],
                **_stamps(r),
            )
            for r in rows
        ]

    async def get(self, order_id: uuid.UUID) -> OrderDTO | None:
        async with read_session(self._session_factory) as session:
            result = await session.execute(select(self.table).where(self.table.c.id == order_id))
            row = result.mappings().first()
        if row is None:
            return None
        return (await self._with_items([row]))[0]

    async def exists(self, order_id: uuid.UUID) -> bool:
        async with read_session(self._session_factory) as session:
            result = await session.execute(
                select(self.table.c.id).where(self.table.c.id == order_id)
            )
            return result.first() is not None

    async def list_for_customer(
        self, customer_id: uuid.UUID, page: int = 1, page_size: int = 20,
    ) -> PagedResult[OrderDTO]:
        stmt = select(self.table).where(self.table.c.customer_id == customer_id)
        total = await self._count(stmt)
        async with read_session(self._session_factory) as session:
            result = await session.execute(
                stmt.order_by(self.table.c.created_at.desc(), self.table.c.id)
                .offset(_offset(page, page_size))
                .limit(page_size)
            )
            rows = list(result.mappings().all())
        return PagedResult[OrderDTO](
            items=await self._with_items(rows),
            page=page,
            page_size=page_size,
            total_count=total,
        )

    async def iter_all(self, batch_size: int = 500) -> AsyncIterator[list[OrderDTO]]:
        last_id: uuid.UUID | None = None
        while True:
            stmt = select(self.table).order_by(self.table.c.id).limit(batch_size)
            if last_id is not None:
                stmt = stmt.where(self.table.c.id > last_id)
            async with read_session(self._session_factory) as session:
                rows = list((await session.execute(stmt)).mappings().all())
            if not rows:
                return
            yield await self._with_items(rows)
            last_id = rows[-1]["id"]


class CustomerReader(_Reader):
    table = CustomerRecord.__table__
    addresses_table = CustomerAddressRecord.__table__

    async def _with_addresses(self, rows: list[Mapping[str, Any]]) -> list[CustomerDTO]:
        if not rows:
            return []
        ids = [r["id"] for r in rows]
        a = self.addresses_table
        async with read_session(self._session_factory) as session:
            result = await session.execute(
                select(a).where(a.c.customer_id.in_(ids)).order_by(a.c.position)
            )
            address_rows = result.mappings().all()
        by_customer: dict[uuid.UUID, list[AddressDTO]] = {i: [] for i in ids}
        for r in address_rows:
            data = {k: v for k, v in r.items() if k not in ("customer_id", "position")}
            by_customer[r["customer_id"]].append(AddressDTO(**data))
        return [_customer_dto(r, by_customer[r["id"]]) for r in rows]

    async def get(self, customer_id: uuid.UUID) -> CustomerDTO | None:
        async with read_session(self._session_factory) as session:
            result = await session.execute(select(self.table).where(self.table.c.id == customer_id))
            row = result.mappings().first()
        if row is None:
            return None
        return (await self._with_addresses([row]))[0]

    async def exists(self, customer_id: uuid.UUID) -> bool:
        async with read_session(self._session_factory) as session:
            result = await session.execute(
                select(self.table.c.id).where(self.table.c.id == customer_id)
            )
            return result.first() is not None

    async def list(
        self, page: int = 1, page_size: int = 20, search_term: str | None = None,
    ) -> PagedResult[CustomerDTO]:
        t = self.table
        stmt = select(t)
        if search_term:
            like = f"%{search_term.strip().lower()}%"
            stmt = stmt.where(or_(
                func.lower(t.c.email).like(like),
                func.lower(t.c.first_name).like(like),
                func.lower(t.c.last_name).like(like),
            ))
        total = await self._count(stmt)
        async with read_session(self._session_factory) as session:
            result = await session.execute(
                stmt.order_by(t.c.last_name, t.c.first_name, t.c.id)
                .offset(_offset(page, page_size))
                .limit(page_size)
            )
            rows = list(result.mappings().all())
        return PagedResult[CustomerDTO](
            items=await self._with_addresses(rows),
            page=page,
            page_size=page_size,
            total_count=total,
        )

    async def iter_all(self, batch_size: int = 500) -> AsyncIterator[list[CustomerDTO]]:
        last_id: uuid.UUID | None = None
        while True:
            stmt = select(self.table).order_by(self.table.c.id).limit(batch_size)
            if last_id is not None:
                stmt = stmt.where(self.table.c.id > last_id)
            async with read_session(self._session_factory) as session:
                rows = list((await session.execute(stmt)).mappings().all())
            if not rows:
                return
            yield await self._with_addresses(rows)
            last_id = rows[-1]["id"]

"""Full resync of the search read-model from the relational store.

Used after an outage, a mapping change or a lost batch of events.  Writes
are forced: a field already written at the row's version is replaced, which
repairs documents that diverged from the relational store.  Fields written
by a newer event still win, so a rebuild running alongside live projection
handlers never moves a document backwards.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field

from pydantic import BaseModel

from ecommerce.core.interfaces import IProjectionStore
from ecommerce.search.documents import (
    CUSTOMERS_INDEX,
    ORDERS_INDEX,
    PRODUCTS_INDEX,
    CustomerDocument,
    OrderDocument,
    ProductDocument,
    to_fields,
)
from ecommerce.storage.postgres.readers import CustomerReader, OrderReader, ProductReader

logger = logging.getLogger(__name__)


@dataclass
class RebuildReport:
    counts: dict[str, int] = field(default_factory=dict)
    elapsed_seconds: float = 0.0

    @property
    def total(self) -> int:
        return sum(self.counts.values())


def _entry(doc: BaseModel) -> tuple[str, dict, int]:
    return str(doc.id), to_fields(doc), doc.aggregate_version


class ProjectionRebuilder:
    def __init__(
        self,
        products: ProductReader,
        orders: OrderReader,
        customers: CustomerReader,
        store: IProjectionStore,
        batch_size: int = 500,
    ) -> None:
        self._products = products
        self._orders = orders
        self._customers = customers
        self._store = store
        self._batch_size = batch_size

    async def rebuild_products(self) -> int:
        written = 0
        async for batch in self._products.iter_all(self._batch_size):
            docs = [_entry(ProductDocument.from_dto(dto)) for dto in batch]
            written += await self._store.bulk_upsert(PRODUCTS_INDEX, docs, force=True)
        await self._store.refresh(PRODUCTS_INDEX)
        return written

    async def rebuild_orders(self) -> int:
        written = 0
        async for batch in self._orders.iter_all(self._batch_size):
            docs = [_entry(OrderDocument.from_dto(dto)) for dto in batch]
            written += await self._store.bulk_upsert(ORDERS_INDEX, docs, force=True)
        await self._store.refresh(ORDERS_INDEX)
        return written

    async def rebuild_customers(self) -> int:
        written = 0
        async for batch in self._customers.iter_all(self._batch_size):
            docs = [_entry(CustomerDocument.from_dto(dto)) for dto in batch]
            written += await self._store.bulk_upsert(CUSTOMERS_INDEX, docs, force=True)
        await self._store.refresh(CUSTOMERS_INDEX)
        return written

    async def rebuild_all(self) -> RebuildReport:
        start = time.monotonic()
        report = RebuildReport()
        report.counts[PRODUCTS_INDEX] = await self.rebuild_products()
        report.counts[ORDERS_INDEX] = await self.rebuild_orders()
        report.counts[CUSTOMERS_INDEX] = await self.rebuild_customers()
        report.elapsed_seconds = time.monotonic() - start
        logger.info(
            "Projection rebuild finished documents=%d elapsed=%.2fs",
            report.total,
            report.elapsed_seconds,
        )
        return report

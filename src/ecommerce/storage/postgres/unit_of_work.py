"""Unit of work: one atomic write scope plus post-commit event publication.

Usage::

    async with UnitOfWork(session_factory, bus) as uow:
        product = await uow.products.get_or_raise(product_id)
        product.decrease_stock(3)
        await uow.save_changes()

Lifecycle
---------
- Aggregates loaded through ``uow.products`` / ``uow.categories`` /
  ``uow.orders`` / ``uow.customers`` or registered with ``add`` are
  tracked.
- ``save_changes`` writes every dirty aggregate (insert when new, version
  guarded update otherwise, guarded delete once deleted).  Outside an explicit transaction it commits,
  then drains the pending events of every tracked aggregate (aggregate
  order, then FIFO within an aggregate) and publishes them one by one.
- Inside ``begin_transaction`` ... ``commit_transaction`` the writes are
  flushed only; commit and publication happen at ``commit_transaction``.
- A version conflict or database error rolls the session back, restores
  each aggregate's expected version, forgets the tracked aggregates and
  publishes nothing.  Their event buffers are left untouched.
- Publication failure after a durable commit raises
  :class:`EventPublishError` with ``committed=True``; the write is never
  undone.
- Leaving the ``async with`` block rolls back any open transaction and
  closes the session.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ecommerce.core.clock import IClock, WallClock
from ecommerce.core.errors import (
    ConcurrencyConflictError,
    EventPublishError,
    PersistenceError,
    TransactionStateError,
)
from ecommerce.core.interfaces import IEventBus
from ecommerce.domain.aggregate import AggregateRoot
from ecommerce.domain.category import Category
from ecommerce.domain.customer import Customer
from ecommerce.domain.events import DomainEvent, event_name
from ecommerce.domain.order import Order
from ecommerce.domain.product import Product
from ecommerce.messaging import outbox
from ecommerce.observability import metrics

from .connection import SessionFactory
from .repos import CategoryRepo, CustomerRepo, OrderRepo, ProductRepo, _AggregateRepo

logger = logging.getLogger(__name__)

T = TypeVar("T")

_TrackKey = tuple[str, uuid.UUID]


def _key(aggregate_type: type[AggregateRoot], aggregate_id: uuid.UUID) -> _TrackKey:
    return aggregate_type.__name__, aggregate_id


class UnitOfWork:
    """Async context manager implementing the write-side unit of work.

    Args:
        session_factory: Produces the session this unit of work owns.
        event_bus: Receives drained events after commit.
        publish_timeout: Upper bound, in seconds, on each ``publish``.
        outbox_enabled: Also write events to the ``outbox`` table inside
            the committing transaction.
        clock: Time source for outbox stamps.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        event_bus: IEventBus,
        *,
        publish_timeout: float = 5.0,
        outbox_enabled: bool = False,
        clock: IClock | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._bus = event_bus
        self._publish_timeout = publish_timeout
        self._outbox_enabled = outbox_enabled
        self._clock = clock or WallClock()

        self._session: AsyncSession | None = None
        self._in_transaction = False
        self._tracked: dict[_TrackKey, AggregateRoot] = {}
        # expected version of each aggregate written in the current scope,
        # restored if the scope rolls back
        self._expected: dict[_TrackKey, int | None] = {}

        self._products: ProductRepo | None = None
        self._categories: CategoryRepo | None = None
        self._orders: OrderRepo | None = None
        self._customers: CustomerRepo | None = None

    # ------------------------------------------------------------------
    # Scope
    # ------------------------------------------------------------------

    async def __aenter__(self) -> UnitOfWork:
        self._session = self._session_factory()
        return self

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        try:
            if self._in_transaction:
                logger.warning("Unit of work closed with an open transaction; rolling back")
                await self._abort()
            elif self._session is not None:
                await self._session.rollback()
        finally:
            if self._session is not None:
                await self._session.close()
            self._session = None

    @property
    def session(self) -> AsyncSession:
        if self._session is None:
            raise TransactionStateError("UnitOfWork used outside 'async with'")
        return self._session

    @property
    def in_transaction(self) -> bool:
        return self._in_transaction

    # ------------------------------------------------------------------
    # Repositories and tracking
    # ------------------------------------------------------------------

    @property
    def products(self) -> ProductRepo:
        if self._products is None:
            self._products = ProductRepo(self)
        return self._products

    @property
    def categories(self) -> CategoryRepo:
        if self._categories is None:
            self._categories = CategoryRepo(self)
        return self._categories

    @property
    def orders(self) -> OrderRepo:
        if self._orders is None:
            self._orders = OrderRepo(self)
        return self._orders

    @property
    def customers(self) -> CustomerRepo:
        if self._customers is None:
            self._customers = CustomerRepo(self)
        return self._customers

    def _repo_for(self, aggregate: AggregateRoot) -> _AggregateRepo[Any]:
        if isinstance(aggregate, Product):
            return self.products
        if isinstance(aggregate, Category):
            return self.categories
        if isinstance(aggregate, Order):
            return self.orders
        if isinstance(aggregate, Customer):
            return self.customers
        raise TypeError(f"No repository for {type(aggregate).__name__}")

    def track(self, aggregate: AggregateRoot) -> None:
        self._tracked.setdefault(_key(type(aggregate), aggregate.id), aggregate)

    def tracked(
        self, aggregate_type: type[AggregateRoot], aggregate_id: uuid.UUID,
    ) -> AggregateRoot | None:
        return self._tracked.get(_key(aggregate_type, aggregate_id))

    def add(self, aggregate: AggregateRoot) -> None:
        self._repo_for(aggregate).add(aggregate)

    # ------------------------------------------------------------------
    # Save / transactions
    # ------------------------------------------------------------------

    async def save_changes(self) -> int:
        """Persist tracked changes; commit and publish unless in a transaction.

        Returns the number of aggregates written.

        Raises:
            ConcurrencyConflictError: an aggregate changed underneath us.
            PersistenceError: any other database failure.
            EventPublishError: the write committed but publication failed.
        """
        written = await self._write_dirty()
        if not self._in_transaction:
            await self._commit_and_publish()
        return written

    async def begin_transaction(self) -> None:
        if self._in_transaction:
            raise TransactionStateError("A transaction is already active on this unit of work")
        if self._session is None:
            raise TransactionStateError("UnitOfWork used outside 'async with'")
        self._in_transaction = True

    async def commit_transaction(self) -> None:
        if not self._in_transaction:
            raise TransactionStateError("No active transaction to commit")
        await self._write_dirty()
        self._in_transaction = False
        await self._commit_and_publish()

    async def rollback_transaction(self) -> None:
        if not self._in_transaction:
            raise TransactionStateError("No active transaction to roll back")
        await self._abort()

    async def execute_in_transaction(self, fn: Callable[[], Awaitable[T]]) -> T:
        """Run *fn* inside a transaction, beginning one only if none is active.

        A nested call joins the outer transaction and leaves commit to it.
        """
        if self._in_transaction:
            return await fn()

        await self.begin_transaction()
        try:
            result = await fn()
        except BaseException:
            if self._in_transaction:
                await self.rollback_transaction()
            raise
        await self.commit_transaction()
        return result

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _write_dirty(self) -> int:
        written = 0
        for key, aggregate in list(self._tracked.items()):
            if not aggregate.is_dirty:
                continue
            self._expected.setdefault(key, aggregate.persisted_version)
            try:
                await self._repo_for(aggregate).persist(aggregate)
            except ConcurrencyConflictError:
                metrics.record_uow_conflict(type(aggregate).__name__)
                await self._abort()
                raise
            except SQLAlchemyError as exc:
                logger.error("Persisting %r failed: %s", aggregate, exc)
                await self._abort()
                raise PersistenceError(f"Persisting {aggregate!r} failed: {exc}") from exc
            aggregate.mark_persisted()
            written += 1
        return written

    async def _commit_and_publish(self) -> None:
        with_events = [a for a in self._tracked.values() if a.domain_events]
        pending = [e for a in with_events for e in a.domain_events]
        try:
            if self._outbox_enabled and pending:
                await outbox.enqueue(self.session, pending, self._clock)
            await self.session.commit()
        except SQLAlchemyError as exc:
            logger.error("Commit failed: %s", exc)
            await self._abort()
            raise PersistenceError(f"Commit failed: {exc}") from exc

        self._expected.clear()
        metrics.record_uow_commit()
        events = [e for a in with_events for e in a.pull_domain_events()]
        await self._publish(events)

    async def _publish(self, events: list[DomainEvent]) -> None:
        dispatched: list[uuid.UUID] = []
        try:
            for i, event in enumerate(events):
                try:
                    await asyncio.wait_for(self._bus.publish(event), self._publish_timeout)
                except asyncio.CancelledError:
                    raise
                except Exception as exc:
                    name = event_name(event)
                    metrics.record_publish_failure(name)
                    logger.error(
                        "Publishing %s %s failed after commit; %d event(s) undelivered: %s",
                        name,
                        event.event_id,
                        len(events) - i,
                        exc,
                    )
                    raise EventPublishError(
                        f"Publishing {name} failed after commit: {exc}",
                        pending_events=events[i:],
                        committed=True,
                    ) from exc
                dispatched.append(event.event_id)
        finally:
            if self._outbox_enabled and dispatched:
                try:
                    await outbox.mark_dispatched(self._session_factory, dispatched, self._clock)
                except SQLAlchemyError:
                    # rows stay undispatched for the relay
                    logger.warning("Could not stamp %d outbox rows", len(dispatched), exc_info=True)

    async def _abort(self) -> None:
        """Roll back, restore expected versions and forget tracked aggregates."""
        self._in_transaction = False
        try:
            if self._session is not None:
                await self._session.rollback()
        finally:
            for key, version in self._expected.items():
                aggregate = self._tracked.get(key)
                if aggregate is not None:
                    aggregate.persisted_version = version
            self._expected.clear()
            self._tracked.clear()

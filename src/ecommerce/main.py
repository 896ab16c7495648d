"""Application bootstrap and wiring.

Every component receives its collaborators explicitly; ``build_app`` is the
only place that knows which implementation backs which contract.
"""

from __future__ import annotations

import asyncio
import logging
import signal
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.ext.asyncio import AsyncEngine

from .application.commands import CommandHandlers
from .application.dto import CustomerDTO, OrderDTO, ProductDTO
from .application.queries import (
    GetCategoriesHandler,
    GetCategoryHandler,
    GetCustomerHandler,
    GetCustomersHandler,
    GetLowStockProductsHandler,
    GetOrderHandler,
    GetOrdersHandler,
    GetProductHandler,
    GetProductsHandler,
    SearchProductsHandler,
)
from .bus.bus import create_event_bus
from .cache.decorators import CachedQueryHandler, CachedRepository
from .cache.invalidation import CacheInvalidationService
from .cache.memory_cache import InMemoryCacheService
from .cache.redis_cache import RedisCacheService
from .core.clock import IClock, WallClock
from .core.config import Settings, load_settings
from .core.enums import BusBackend, CacheBackend, SearchBackend
from .core.interfaces import ICacheService, IEventBus, IProjectionStore
from .messaging.outbox import OutboxRelay
from .observability.health import (
    HealthChecker,
    check_elasticsearch,
    check_postgres,
    check_rabbitmq,
)
from .observability.logger import setup_logging
from .observability.metrics import start_metrics_server
from .projections.handlers import register_projection_handlers
from .projections.rebuild import ProjectionRebuilder
from .search.store import ElasticsearchProjectionStore, create_projection_store
from .storage.postgres.connection import (
    SessionFactory,
    create_session_factory,
    engine_from_config,
)
from .storage.postgres.readers import CategoryReader, CustomerReader, OrderReader, ProductReader
from .storage.postgres.unit_of_work import UnitOfWork

logger = logging.getLogger(__name__)


@dataclass
class QueryHandlers:
    """Read-side handlers, each wrapped in the cache-aside decorator."""

    get_products: CachedQueryHandler
    search_products: CachedQueryHandler
    get_low_stock_products: CachedQueryHandler
    get_product: CachedQueryHandler
    get_categories: CachedQueryHandler
    get_category: CachedQueryHandler
    get_orders: CachedQueryHandler
    get_order: CachedQueryHandler
    get_customers: CachedQueryHandler
    get_customer: CachedQueryHandler


@dataclass
class AppContext:
    settings: Settings
    clock: IClock
    engine: AsyncEngine
    session_factory: SessionFactory
    bus: IEventBus
    cache: ICacheService
    invalidation: CacheInvalidationService
    store: IProjectionStore
    products: ProductReader
    categories: CategoryReader
    orders: OrderReader
    customers: CustomerReader
    commands: CommandHandlers
    queries: QueryHandlers
    cached_products: CachedRepository[ProductDTO]
    cached_orders: CachedRepository[OrderDTO]
    cached_customers: CachedRepository[CustomerDTO]
    rebuilder: ProjectionRebuilder
    outbox_relay: OutboxRelay
    health: HealthChecker
    uow_factory: Callable[[], UnitOfWork]
    _tasks: list[asyncio.Task] = field(default_factory=list)

    async def start(self, *, consumers: bool = False) -> None:
        """Connect transports; with *consumers* also run projection handlers."""
        await self.cache.connect()
        if isinstance(self.store, ElasticsearchProjectionStore):
            await self.store.ensure_indices()
        if consumers:
            await register_projection_handlers(self.bus, self.store, self.invalidation)
        await self.bus.start()
        if consumers and self.settings.outbox.enabled:
            self._tasks.append(asyncio.create_task(self.outbox_relay.run_forever()))

    async def close(self) -> None:
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks.clear()
        await self.bus.stop()
        await self.cache.close()
        await self.store.close()
        await self.engine.dispose()


def create_cache_service(settings: Settings, clock: IClock | None = None) -> ICacheService:
    if settings.cache.backend == CacheBackend.MEMORY:
        return InMemoryCacheService(settings.cache, clock)
    return RedisCacheService(settings.cache)


def build_app(
    settings: Settings,
    *,
    clock: IClock | None = None,
    bus: IEventBus | None = None,
    cache: ICacheService | None = None,
    store: IProjectionStore | None = None,
) -> AppContext:
    """Wire every component from *settings*.

    ``bus``, ``cache`` and ``store`` replace the configured backends, which
    is how tests run the whole pipeline in memory.
    """
    clock = clock or WallClock()
    engine = engine_from_config(settings.database)
    session_factory = create_session_factory(engine)

    bus = bus or create_event_bus(settings)
    cache = cache or create_cache_service(settings, clock)
    store = store or create_projection_store(settings.search)
    invalidation = CacheInvalidationService(cache)

    products = ProductReader(session_factory)
    categories = CategoryReader(session_factory)
    orders = OrderReader(session_factory)
    customers = CustomerReader(session_factory)
    cfg = settings.cache

    def cached(inner: Any) -> CachedQueryHandler:
        return CachedQueryHandler(inner, cache, cfg)

    queries = QueryHandlers(
        get_products=cached(GetProductsHandler(products)),
        search_products=cached(SearchProductsHandler(store, products)),
        get_low_stock_products=cached(GetLowStockProductsHandler(products)),
        get_product=cached(GetProductHandler(products)),
        get_categories=cached(GetCategoriesHandler(categories)),
        get_category=cached(GetCategoryHandler(categories)),
        get_orders=cached(GetOrdersHandler(orders)),
        get_order=cached(GetOrderHandler(orders)),
        get_customers=cached(GetCustomersHandler(customers)),
        get_customer=cached(GetCustomerHandler(customers)),
    )

    def uow_factory() -> UnitOfWork:
        return UnitOfWork(
            session_factory,
            bus,
            publish_timeout=settings.rabbitmq.publish_timeout_seconds,
            outbox_enabled=settings.outbox.enabled,
            clock=clock,
        )

    health = HealthChecker()
    health.register_check("postgres", lambda: check_postgres(settings.database.url))
    health.register_check("cache", cache.ping)
    if settings.bus_backend == BusBackend.RABBITMQ:
        health.register_check("rabbitmq", lambda: check_rabbitmq(settings.rabbitmq.url))
    if settings.search.backend == SearchBackend.ELASTICSEARCH:
        health.register_check("elasticsearch", lambda: check_elasticsearch(settings.search.hosts))

    return AppContext(
        settings=settings,
        clock=clock,
        engine=engine,
        session_factory=session_factory,
        bus=bus,
        cache=cache,
        invalidation=invalidation,
        store=store,
        products=products,
        categories=categories,
        orders=orders,
        customers=customers,
        commands=CommandHandlers.build(uow_factory),
        queries=queries,
        cached_products=CachedRepository(products, cache, cfg, "product", ProductDTO),
        cached_orders=CachedRepository(orders, cache, cfg, "order", OrderDTO),
        cached_customers=CachedRepository(customers, cache, cfg, "customer", CustomerDTO),
        rebuilder=ProjectionRebuilder(products, orders, customers, store),
        outbox_relay=OutboxRelay(session_factory, bus, settings.outbox, clock),
        health=health,
        uow_factory=uow_factory,
    )


def _setup(settings: Settings) -> None:
    setup_logging(settings.observability.log_level, settings.observability.log_format)
    start_metrics_server(settings.observability.metrics_port, settings.environment.value)


async def run_consumers(
    config_path: str | None = None,
    overrides: dict[str, Any] | None = None,
) -> None:
    """Run the projection consumers (and outbox relay) until SIGINT/SIGTERM."""
    settings = load_settings(config_path=config_path, overrides=overrides)
    _setup(settings)
    logger.info(
        "Starting ecommerce consumers env=%s bus=%s outbox=%s",
        settings.environment.value,
        settings.bus_backend.value,
        settings.outbox.enabled,
    )

    ctx = build_app(settings)
    stop_event = asyncio.Event()

    def _signal_handler() -> None:
        logger.info("Received shutdown signal")
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _signal_handler)

    await ctx.start(consumers=True)
    logger.info("Consumers running. Press Ctrl+C to stop.")
    try:
        await stop_event.wait()
    finally:
        await ctx.close()
    logger.info("Consumers stopped")


async def run_resync(
    config_path: str | None = None,
    overrides: dict[str, Any] | None = None,
    invalidate_cache: bool = True,
) -> dict[str, int]:
    """Rebuild every search projection from the database."""
    settings = load_settings(config_path=config_path, overrides=overrides)
    _setup(settings)
    ctx = build_app(settings)
    try:
        await ctx.cache.connect()
        if isinstance(ctx.store, ElasticsearchProjectionStore):
            await ctx.store.ensure_indices()
        report = await ctx.rebuilder.rebuild_all()
        if invalidate_cache:
            await ctx.invalidation.invalidate_all()
    finally:
        await ctx.cache.close()
        await ctx.store.close()
        await ctx.engine.dispose()
    return report.counts

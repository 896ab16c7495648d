"""CLI entry point for the e-commerce backend."""

from __future__ import annotations

import click


@click.group()
def main() -> None:
    """E-commerce backend: consumers, projections and cache maintenance."""


@main.command()
@click.option("--config", default="configs/default.toml", help="Config file path")
def consume(config: str) -> None:
    """Run projection consumers until interrupted."""
    import asyncio

    from .main import run_consumers

    asyncio.run(run_consumers(config_path=config))


@main.command()
@click.option("--config", default="configs/default.toml", help="Config file path")
@click.option("--keep-cache", is_flag=True, help="Do not flush the cache afterwards")
def resync(config: str, keep_cache: bool) -> None:
    """Rebuild every search projection from the database."""
    import asyncio

    from .main import run_resync

    counts = asyncio.run(run_resync(config_path=config, invalidate_cache=not keep_cache))
    for index, count in counts.items():
        click.echo(f"{index:<12} {count:>8}")


@main.command()
@click.option("--config", default="configs/default.toml", help="Config file path")
@click.option("--product", "product_id", default=None, help="Product id")
@click.option("--order", "order_id", default=None, help="Order id")
@click.option("--customer", "customer_id", default=None, help="Customer id")
@click.option("--category", "category_id", default=None, help="Category id")
@click.option("--products", "all_products", is_flag=True, help="All product lists and searches")
@click.option("--all", "everything", is_flag=True, help="Flush the entire cache")
def invalidate(
    config: str,
    product_id: str | None,
    order_id: str | None,
    customer_id: str | None,
    category_id: str | None,
    all_products: bool,
    everything: bool,
) -> None:
    """Evict cache entries.

    --order combined with --customer scopes the order-list eviction to
    that customer; --customer alone evicts the customer entries.
    """
    import asyncio

    from .cache.invalidation import CacheInvalidationService
    from .core.config import load_settings
    from .main import create_cache_service

    if not any((product_id, order_id, customer_id, category_id, all_products, everything)):
        raise click.UsageError("Nothing to invalidate")

    async def _run() -> None:
        settings = load_settings(config_path=config)
        cache = create_cache_service(settings)
        await cache.connect()
        service = CacheInvalidationService(cache)
        try:
            if everything:
                await service.invalidate_all()
                return
            if product_id:
                await service.invalidate_product(product_id)
            if all_products:
                await service.invalidate_products()
            if category_id:
                await service.invalidate_category(category_id)
            if order_id:
                await service.invalidate_order(order_id, customer_id)
            elif customer_id:
                await service.invalidate_customer(customer_id)
        finally:
            await cache.close()

    asyncio.run(_run())
    click.echo("Done")


@main.command("init-db")
@click.option("--config", default="configs/default.toml", help="Config file path")
@click.option("--drop", is_flag=True, help="Drop existing tables first")
def init_db(config: str, drop: bool) -> None:
    """Create the database schema (development; use alembic in production)."""
    import asyncio

    from .core.config import load_settings
    from .storage.postgres.connection import create_all, drop_all, engine_from_config

    async def _run() -> None:
        engine = engine_from_config(load_settings(config_path=config).database)
        try:
            if drop:
                await drop_all(engine)
            await create_all(engine)
        finally:
            await engine.dispose()

    asyncio.run(_run())
    click.echo("Schema created")


@main.command()
@click.option("--config", default="configs/default.toml", help="Config file path")
def health(config: str) -> None:
    """Check connectivity to every configured backend."""
    import asyncio

    from .core.config import load_settings
    from .main import build_app

    async def _run() -> bool:
        ctx = build_app(load_settings(config_path=config))
        await ctx.cache.connect()
        try:
            results = await ctx.health.check_all()
        finally:
            await ctx.cache.close()
            await ctx.store.close()
            await ctx.engine.dispose()
        for r in results:
            status = "OK  " if r.healthy else "FAIL"
            click.echo(f"{status} {r.component:<14} {r.latency_ms:7.1f}ms  {r.message}")
        return all(r.healthy for r in results)

    if not asyncio.run(_run()):
        raise SystemExit(1)


if __name__ == "__main__":
    main()

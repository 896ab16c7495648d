"""Health checks for the backing services.

Reports health status of the database, cache, bus and search store.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable

from pydantic import BaseModel

logger = logging.getLogger(__name__)

HealthCheck = Callable[[], Awaitable[tuple[bool, str]]]


class ComponentHealth(BaseModel):
    component: str
    healthy: bool
    message: str = ""
    latency_ms: float = 0.0


class HealthChecker:
    """Checks health of system components."""

    def __init__(self) -> None:
        self._checks: dict[str, HealthCheck] = {}

    def register_check(self, component: str, check_fn: HealthCheck) -> None:
        """Register a health check function for a component.

        check_fn should be async and return (healthy: bool, message: str).
        """
        self._checks[component] = check_fn

    async def check_all(self) -> list[ComponentHealth]:
        """Run all health checks and return results."""
        results = []

        for component, check_fn in self._checks.items():
            start = time.monotonic()
            try:
                healthy, message = await check_fn()
            except Exception as e:
                logger.warning("Health check %s raised: %s", component, e)
                healthy, message = False, f"Check failed: {e}"
            results.append(
                ComponentHealth(
                    component=component,
                    healthy=healthy,
                    message=message,
                    latency_ms=(time.monotonic() - start) * 1000,
                )
            )

        return results


async def check_postgres(postgres_url: str) -> tuple[bool, str]:
    """Health check for Postgres connection."""
    from sqlalchemy import text
    from sqlalchemy.ext.asyncio import create_async_engine

    engine = create_async_engine(postgres_url)
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True, "Postgres connected"
    except Exception as e:
        return False, f"Postgres error: {e}"
    finally:
        await engine.dispose()


async def check_rabbitmq(amqp_url: str) -> tuple[bool, str]:
    """Health check for the RabbitMQ broker."""
    import aio_pika

    try:
        connection = await aio_pika.connect(amqp_url, timeout=5)
    except Exception as e:
        return False, f"RabbitMQ error: {e}"
    await connection.close()
    return True, "RabbitMQ connected"


async def check_elasticsearch(hosts: list[str]) -> tuple[bool, str]:
    """Health check for the Elasticsearch cluster."""
    from elasticsearch import AsyncElasticsearch

    client = AsyncElasticsearch(hosts)
    try:
        if await client.ping():
            return True, "Elasticsearch reachable"
        return False, "Elasticsearch ping failed"
    except Exception as e:
        return False, f"Elasticsearch error: {e}"
    finally:
        await client.close()

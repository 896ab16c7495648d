"""Redis-backed cache-aside service.

All keys are namespaced under the configured prefix (default
``ecommerce:``) so several environments can share one Redis instance.
Every round-trip is bounded by ``operation_timeout_seconds``.

The cache is an optimization: transport errors and timeouts are logged,
counted and turned into misses / no-ops.  Nothing here raises a transport
error to the caller.

Uses ``redis.asyncio`` for non-blocking I/O.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import timedelta
from typing import Any, TypeVar

import redis.asyncio as aioredis
from pydantic import ValidationError as PydanticValidationError
from redis.exceptions import RedisError

from ecommerce.core.config import CacheConfig
from ecommerce.core.errors import CacheUnavailableError
from ecommerce.observability import metrics

from . import codec

logger = logging.getLogger(__name__)

T = TypeVar("T")

_TRANSPORT_ERRORS = (RedisError, OSError, asyncio.TimeoutError)


def _entity(key: str) -> str:
    return key.split(":", 1)[0]


class RedisCacheService:
    """Async cache service over Redis.

    Args:
        config: Cache settings (URL, prefix, TTLs, timeouts).
        client: Pre-built ``redis.asyncio.Redis``; when omitted one is
            created from ``config.redis_url`` on ``connect()``.
    """

    def __init__(
        self,
        config: CacheConfig,
        client: aioredis.Redis | None = None,
    ) -> None:
        self._config = config
        self._redis = client
        self._prefix = f"{config.key_prefix}:" if config.key_prefix else ""
        self._timeout = config.operation_timeout_seconds

    # -- lifecycle -----------------------------------------------------------

    async def connect(self) -> None:
        """Create the connection pool.  Reachability is checked lazily."""
        if self._redis is not None:
            return
        self._redis = aioredis.from_url(
            self._config.redis_url,
            decode_responses=False,
            socket_timeout=self._timeout,
            socket_connect_timeout=self._timeout,
        )
        logger.info("Redis cache configured url=%s", self._config.redis_url)

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None

    async def ping(self) -> tuple[bool, str]:
        try:
            await self._call(self._client.ping())
        except CacheUnavailableError as exc:
            return False, f"Redis error: {exc}"
        return True, "Redis connected"

    @property
    def _client(self) -> aioredis.Redis:
        if self._redis is None:
            raise RuntimeError("RedisCacheService not connected; call connect() first")
        return self._redis

    def physical_key(self, key: str) -> str:
        return self._prefix + key

    async def _call(self, awaitable: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(awaitable, self._timeout)
        except _TRANSPORT_ERRORS as exc:
            raise CacheUnavailableError(str(exc) or type(exc).__name__) from exc

    def _default_ttl(self) -> timedelta:
        return timedelta(seconds=self._config.default_ttl_seconds)

    # -- operations ----------------------------------------------------------

    async def get(self, key: str, value_type: Any = Any) -> Any | None:
        """Return the cached value or ``None`` on miss, timeout or error."""
        try:
            raw = await self._call(self._client.get(self.physical_key(key)))
        except CacheUnavailableError as exc:
            metrics.record_cache_error("get")
            logger.warning("Cache get failed key=%s: %s", key, exc)
            return None

        if raw is None:
            metrics.record_cache_miss(_entity(key))
            return None
        try:
            value = codec.loads(raw, value_type)
        except PydanticValidationError as exc:
            # Stale shape after a schema change; treat as a miss.
            metrics.record_cache_error("decode")
            logger.warning("Discarding undecodable cache entry key=%s: %s", key, exc)
            await self.remove(key)
            return None
        metrics.record_cache_hit(_entity(key))
        return value

    async def set(self, key: str, value: Any, ttl: timedelta | None = None) -> None:
        ttl = ttl or self._default_ttl()
        try:
            await self._call(
                self._client.set(
                    self.physical_key(key),
                    codec.dumps(value),
                    px=int(ttl.total_seconds() * 1000),
                )
            )
        except CacheUnavailableError as exc:
            metrics.record_cache_error("set")
            logger.warning("Cache set failed key=%s: %s", key, exc)

    async def get_or_set(
        self,
        key: str,
        factory: Callable[[], Awaitable[T]],
        ttl: timedelta | None = None,
        value_type: Any = Any,
    ) -> T:
        """Cache-aside read.

        Returns the cached value when present; otherwise awaits ``factory``,
        stores the result (``None`` results are not cached) and returns the
        factory's own object.  Concurrent misses may both run the factory.
        Factory exceptions propagate unchanged.
        """
        cached = await self.get(key, value_type)
        if cached is not None:
            return cached
        value = await factory()
        if value is not None:
            await self.set(key, value, ttl)
        return value

    async def remove(self, key: str) -> None:
        try:
            removed = await self._call(self._client.delete(self.physical_key(key)))
        except CacheUnavailableError as exc:
            metrics.record_cache_error("remove")
            logger.warning("Cache remove failed key=%s: %s", key, exc)
            return
        if removed:
            metrics.record_cache_eviction(_entity(key), removed)

    async def remove_by_pattern(self, pattern: str) -> int:
        """Delete every key matching a glob pattern and return the count.

        Walks the keyspace with SCAN (never KEYS) in batches of
        ``scan_batch_size``; each SCAN / DEL round-trip is bounded by the
        operation timeout.  On error the keys deleted so far are counted.
        """
        match = self.physical_key(pattern)
        removed = 0
        cursor: int = 0
        try:
            while True:
                cursor, batch = await self._call(
                    self._client.scan(cursor=cursor, match=match, count=self._config.scan_batch_size)
                )
                if batch:
                    removed += await self._call(self._client.delete(*batch))
                if cursor == 0:
                    break
        except CacheUnavailableError as exc:
            metrics.record_cache_error("remove_by_pattern")
            logger.warning(
                "Cache pattern removal failed pattern=%s after %d keys: %s",
                pattern,
                removed,
                exc,
            )
        if removed:
            metrics.record_cache_eviction(_entity(pattern), removed)
        logger.debug("Removed %d cache keys matching %s", removed, pattern)
        return removed

    async def exists(self, key: str) -> bool:
        try:
            return bool(await self._call(self._client.exists(self.physical_key(key))))
        except CacheUnavailableError as exc:
            metrics.record_cache_error("exists")
            logger.warning("Cache exists failed key=%s: %s", key, exc)
            return False

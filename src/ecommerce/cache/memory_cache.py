"""In-process cache service for tests and single-process runs.

Same contract and codec as the Redis service; expiry is driven by an
injected clock so TTL behaviour is deterministic under ``ManualClock``.
"""

from __future__ import annotations

import fnmatch
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from typing import Any, TypeVar

from ecommerce.core.clock import IClock, WallClock
from ecommerce.core.config import CacheConfig
from ecommerce.observability import metrics

from . import codec

logger = logging.getLogger(__name__)

T = TypeVar("T")


class InMemoryCacheService:
    def __init__(
        self,
        config: CacheConfig | None = None,
        clock: IClock | None = None,
    ) -> None:
        self._config = config or CacheConfig()
        self._clock = clock or WallClock()
        self._entries: dict[str, tuple[bytes, datetime]] = {}

    def _live(self, key: str) -> bytes | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        raw, expires_at = entry
        if self._clock.now() >= expires_at:
            del self._entries[key]
            return None
        return raw

    def keys(self) -> list[str]:
        """Unexpired logical keys. For testing."""
        return [k for k in list(self._entries) if self._live(k) is not None]

    async def get(self, key: str, value_type: Any = Any) -> Any | None:
        raw = self._live(key)
        entity = key.split(":", 1)[0]
        if raw is None:
            metrics.record_cache_miss(entity)
            return None
        metrics.record_cache_hit(entity)
        return codec.loads(raw, value_type)

    async def set(self, key: str, value: Any, ttl: timedelta | None = None) -> None:
        ttl = ttl or timedelta(seconds=self._config.default_ttl_seconds)
        self._entries[key] = (codec.dumps(value), self._clock.now() + ttl)

    async def get_or_set(
        self,
        key: str,
        factory: Callable[[], Awaitable[T]],
        ttl: timedelta | None = None,
        value_type: Any = Any,
    ) -> T:
        cached = await self.get(key, value_type)
        if cached is not None:
            return cached
        value = await factory()
        if value is not None:
            await self.set(key, value, ttl)
        return value

    async def remove(self, key: str) -> None:
        self._entries.pop(key, None)

    async def remove_by_pattern(self, pattern: str) -> int:
        matched = [k for k in self._entries if fnmatch.fnmatchcase(k, pattern)]
        for k in matched:
            del self._entries[k]
        if matched:
            metrics.record_cache_eviction(pattern.split(":", 1)[0], len(matched))
        return len(matched)

    async def exists(self, key: str) -> bool:
        return self._live(key) is not None

    async def connect(self) -> None:
        return None

    async def close(self) -> None:
        self._entries.clear()

    async def ping(self) -> tuple[bool, str]:
        return True, "in-memory cache"

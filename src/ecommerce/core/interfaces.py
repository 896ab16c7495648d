"""Protocol interfaces for the e-commerce backend.

All module boundaries are defined here as Protocol classes.
Implementations can be swapped (memory/redis, memory/rabbitmq,
memory/elasticsearch) without changing callers.
"""

from __future__ import annotations

from datetime import timedelta
from typing import (
    TYPE_CHECKING,
    Any,
    Awaitable,
    Callable,
    Coroutine,
    Protocol,
    TypeVar,
    runtime_checkable,
)

from ecommerce.domain.events import DomainEvent

if TYPE_CHECKING:
    import uuid

T = TypeVar("T")
E = TypeVar("E", bound=DomainEvent)

EventHandler = Callable[[Any], Coroutine[Any, Any, None]]


# ---------------------------------------------------------------------------
# Event Bus
# ---------------------------------------------------------------------------

@runtime_checkable
class IEventBus(Protocol):
    """Publish/subscribe bus keyed by event type."""

    async def publish(self, event: DomainEvent) -> None: ...

    async def subscribe(
        self,
        event_type: type[DomainEvent],
        handler: EventHandler,
        group: str = "default",
    ) -> None: ...

    async def start(self) -> None: ...
    async def stop(self) -> None: ...


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------

@runtime_checkable
class ICacheService(Protocol):
    """Cache-aside key/value store.

    Keys are logical (``product:{id}``); the physical prefix is the
    implementation's concern.  Transport failures never reach the caller.
    """

    async def get(self, key: str, value_type: type[T] | Any = Any) -> T | None: ...

    async def set(self, key: str, value: Any, ttl: timedelta | None = None) -> None: ...

    async def get_or_set(
        self,
        key: str,
        factory: Callable[[], Awaitable[T]],
        ttl: timedelta | None = None,
        value_type: type[T] | Any = Any,
    ) -> T: ...

    async def remove(self, key: str) -> None: ...

    async def remove_by_pattern(self, pattern: str) -> int: ...

    async def exists(self, key: str) -> bool: ...

    async def connect(self) -> None: ...

    async def close(self) -> None: ...

    async def ping(self) -> tuple[bool, str]: ...


@runtime_checkable
class ICacheInvalidationService(Protocol):
    """Maps a domain identity to the cache keys and patterns to purge."""

    async def invalidate_product(self, product_id: uuid.UUID | str) -> None: ...

    async def invalidate_products(self) -> None: ...

    async def invalidate_order(
        self, order_id: uuid.UUID | str, customer_id: uuid.UUID | str | None = None,
    ) -> None: ...

    async def invalidate_customer(self, customer_id: uuid.UUID | str) -> None: ...

    async def invalidate_category(self, category_id: uuid.UUID | str) -> None: ...

    async def invalidate_all(self) -> None: ...


# ---------------------------------------------------------------------------
# Unit of Work
# ---------------------------------------------------------------------------

@runtime_checkable
class IUnitOfWork(Protocol):
    """Atomic write scope that publishes buffered events after commit."""

    async def save_changes(self) -> int: ...

    async def begin_transaction(self) -> None: ...

    async def commit_transaction(self) -> None: ...

    async def rollback_transaction(self) -> None: ...

    async def execute_in_transaction(
        self, fn: Callable[[], Awaitable[T]],
    ) -> T: ...


# ---------------------------------------------------------------------------
# Search read model
# ---------------------------------------------------------------------------

@runtime_checkable
class IProjectionStore(Protocol):
    """Document store holding denormalized read models."""

    async def upsert(
        self,
        index: str,
        doc_id: str,
        fields: dict[str, Any],
        version: int,
        *,
        force: bool = False,
    ) -> bool: ...

    async def bulk_upsert(
        self,
        index: str,
        docs: list[tuple[str, dict[str, Any], int]],
        *,
        force: bool = False,
    ) -> int: ...

    async def get(self, index: str, doc_id: str) -> dict[str, Any] | None: ...

    async def delete(self, index: str, doc_id: str, version: int | None = None) -> None: ...

    async def search(
        self,
        index: str,
        text: str | None = None,
        *,
        filters: dict[str, Any] | None = None,
        size: int = 20,
        offset: int = 0,
    ) -> list[dict[str, Any]]: ...

    async def refresh(self, index: str | None = None) -> None: ...

    async def close(self) -> None: ...

"""Custom exception hierarchy for the e-commerce backend."""

from __future__ import annotations

from typing import Any


class ECommerceError(Exception):
    """Base exception for all e-commerce backend errors."""


# --- Configuration ---
class ConfigError(ECommerceError):
    """Invalid or missing configuration."""


# --- Input ---
class ValidationError(ECommerceError):
    """Caller input rejected before any mutation was attempted."""


class NotFoundError(ECommerceError):
    """Referenced aggregate or entity does not exist."""

    def __init__(self, entity: str, entity_id: Any):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


# --- Domain ---
class DomainError(ECommerceError):
    """A business rule of an aggregate was violated."""


class InsufficientStockError(DomainError):
    """Requested quantity exceeds the available stock."""

    def __init__(self, product_id: Any, requested: int, available: int):
        self.product_id = product_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock for product {product_id}: "
            f"requested {requested}, available {available}"
        )


class InvalidCategoryHierarchyError(DomainError):
    """Category tree rule violated (depth limit, self-parenting, children)."""


class InvalidOrderStateError(DomainError):
    """The order status does not allow the requested transition."""

    def __init__(self, status: str, action: str):
        self.status = status
        self.action = action
        super().__init__(f"Cannot {action} an order in status {status!r}")


# --- Persistence ---
class PersistenceError(ECommerceError):
    """Relational store failure on the write path."""


class ConcurrencyConflictError(PersistenceError):
    """Optimistic concurrency violation; reload the aggregate and retry."""

    def __init__(self, aggregate_type: str, aggregate_id: Any, expected_version: int | None):
        self.aggregate_type = aggregate_type
        self.aggregate_id = aggregate_id
        self.expected_version = expected_version
        super().__init__(
            f"{aggregate_type} {aggregate_id} was modified by another writer "
            f"(expected version {expected_version})"
        )


class TransactionStateError(PersistenceError):
    """Transaction demarcation misuse (double begin, commit without begin)."""


# --- Transport ---
class TransportError(ECommerceError):
    """Event bus, cache or search store unreachable."""


class EventBusError(TransportError):
    """Event bus transport failure."""


class EventPublishError(EventBusError):
    """Publishing failed after the write was already committed.

    ``pending_events`` lists the events that were not handed to the bus,
    starting with the one that failed.
    """

    def __init__(self, message: str, pending_events: list[Any], committed: bool = True):
        self.pending_events = pending_events
        self.committed = committed
        super().__init__(message)


class CacheUnavailableError(TransportError):
    """Cache store unreachable or did not answer within its operation timeout."""


class SearchStoreError(TransportError):
    """Search / document store request failed."""


# --- Read side ---
class ProjectionError(ECommerceError):
    """A read-model handler failed to apply an event."""

    def __init__(self, handler: str, event: Any, reason: str):
        self.handler = handler
        self.event = event
        self.reason = reason
        super().__init__(
            f"{handler} failed on {type(event).__name__} "
            f"{getattr(event, 'event_id', '?')}: {reason}"
        )

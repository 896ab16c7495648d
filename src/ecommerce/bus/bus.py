"""Event bus factory.

Creates the appropriate event bus implementation based on settings.
"""

from __future__ import annotations

from collections.abc import Callable

from ecommerce.core.config import Settings
from ecommerce.core.enums import BusBackend

from .memory_bus import InMemoryEventBus
from .rabbitmq import RabbitMQEventBus


def create_event_bus(
    settings: Settings,
    on_handler_error: Callable[
        [str, str, str, Exception], None
    ] | None = None,
) -> InMemoryEventBus | RabbitMQEventBus:
    """Create an event bus for the configured backend.

    - MEMORY: InMemoryEventBus (no external deps, deterministic)
    - RABBITMQ: RabbitMQEventBus (durable, at-least-once)

    Args:
        settings: Application settings.
        on_handler_error: Optional callback ``(event_type, group, msg_id, exc)``
            invoked when a handler raises.  Useful for external metrics.
    """
    if settings.bus_backend == BusBackend.MEMORY:
        return InMemoryEventBus(
            on_handler_error=on_handler_error,
            shutdown_timeout=settings.rabbitmq.shutdown_timeout_seconds,
        )
    return RabbitMQEventBus(settings.rabbitmq, on_handler_error=on_handler_error)

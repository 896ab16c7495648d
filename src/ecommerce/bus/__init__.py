"""Event bus: type-routed InMemoryEventBus and RabbitMQEventBus.

Both implementations route on the event's runtime type name and share the
JSON envelope in ``serialization``.
"""

from ecommerce.bus.bus import create_event_bus
from ecommerce.bus.memory_bus import InMemoryEventBus
from ecommerce.bus.rabbitmq import RabbitMQEventBus

__all__ = ["InMemoryEventBus", "RabbitMQEventBus", "create_event_bus"]

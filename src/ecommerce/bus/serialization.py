"""Wire codec for domain events.

Envelope layout (JSON object)::

    {"_type": "OrderPlaced", "_data": {...event fields...}}

``_type`` is looked up in the explicit ``EVENT_TYPES`` registry; the
payload is validated back into the frozen dataclass through a pydantic
``TypeAdapter``, so Decimal, UUID, datetime and nested order lines
round-trip without hand-written converters.
"""

from __future__ import annotations

import functools
import json
from typing import Any

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from ecommerce.domain.events import DomainEvent, event_name, get_event_class


class EventDecodeError(ValueError):
    """The message body is not a known, valid event envelope."""


@functools.lru_cache(maxsize=None)
def _adapter(event_cls: type[DomainEvent]) -> TypeAdapter[Any]:
    return TypeAdapter(event_cls)


def event_to_dict(event: DomainEvent) -> dict[str, Any]:
    """JSON-compatible dict of the event's fields."""
    return _adapter(type(event)).dump_python(event, mode="json")


def event_from_dict(type_name: str, data: dict[str, Any]) -> DomainEvent:
    event_cls = get_event_class(type_name)
    if event_cls is None:
        raise EventDecodeError(f"Unknown event type: {type_name}")
    try:
        return _adapter(event_cls).validate_python(data)
    except PydanticValidationError as exc:
        raise EventDecodeError(f"Invalid {type_name} payload: {exc}") from exc


def encode_event(event: DomainEvent) -> bytes:
    envelope = {"_type": event_name(event), "_data": event_to_dict(event)}
    return json.dumps(envelope, separators=(",", ":")).encode()


def decode_event(body: bytes | str) -> DomainEvent:
    try:
        envelope = json.loads(body)
    except (TypeError, ValueError) as exc:
        raise EventDecodeError(f"Malformed message body: {exc}") from exc
    if not isinstance(envelope, dict) or "_type" not in envelope or "_data" not in envelope:
        raise EventDecodeError("Message is not an event envelope")
    return event_from_dict(envelope["_type"], envelope["_data"])

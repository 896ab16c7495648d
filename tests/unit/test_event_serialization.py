"""Event wire codec."""

from __future__ import annotations

import json
import uuid
from decimal import Decimal

import pytest

from ecommerce.bus.serialization import (
    EventDecodeError,
    decode_event,
    encode_event,
    event_from_dict,
    event_to_dict,
)
from ecommerce.domain.events import (
    EVENT_TYPES,
    AddressSnapshot,
    CustomerAddressAdded,
    OrderLine,
    OrderPlaced,
)


def _order_placed() -> OrderPlaced:
    return OrderPlaced(
        aggregate_id=uuid.uuid4(),
        aggregate_version=1,
        order_number="ORD-20250301-ABCDEF12",
        customer_id=uuid.uuid4(),
        lines=(OrderLine(uuid.uuid4(), "Laptop", 2, Decimal("999.99")),),
        total_amount=Decimal("1999.98"),
        item_count=2,
        shipping_address="1 Main St",
    )


class TestSerialization:
    def test_envelope_shape(self):
        event = _order_placed()
        envelope = json.loads(encode_event(event))
        assert envelope["_type"] == "OrderPlaced"
        assert envelope["_data"]["order_number"] == "ORD-20250301-ABCDEF12"
        assert envelope["_data"]["event_id"] == str(event.event_id)

    def test_nested_lines_and_decimals_survive(self):
        event = _order_placed()
        decoded = decode_event(encode_event(event))
        assert decoded == event
        assert isinstance(decoded.lines[0], OrderLine)
        assert decoded.total_amount == Decimal("1999.98")

    def test_nested_address_snapshots_survive(self):
        address_id = uuid.uuid4()
        event = CustomerAddressAdded(
            aggregate_id=uuid.uuid4(),
            aggregate_version=2,
            address_id=address_id,
            addresses=(AddressSnapshot(
                address_id=address_id, address_type="billing", street1="1 Main St",
                city="Springfield", state="IL", postal_code="62701", country="US",
                label="home", is_primary=True,
            ),),
        )
        decoded = decode_event(encode_event(event))
        assert decoded == event
        assert isinstance(decoded.addresses[0], AddressSnapshot)
        assert decoded.addresses[0].address_id == address_id

    @pytest.mark.parametrize("event_cls", list(EVENT_TYPES.values()))
    def test_every_registered_type_decodes(self, event_cls):
        event = event_cls(aggregate_id=uuid.uuid4())
        assert event_from_dict(event_cls.__name__, event_to_dict(event)) == event

    def test_unknown_type(self):
        with pytest.raises(EventDecodeError, match="Unknown event type"):
            decode_event(b'{"_type": "Nope", "_data": {}}')

    def test_not_json(self):
        with pytest.raises(EventDecodeError):
            decode_event(b"\x00garbage")

    def test_not_an_envelope(self):
        with pytest.raises(EventDecodeError):
            decode_event(b'{"type": "OrderPlaced"}')

    def test_invalid_payload(self):
        with pytest.raises(EventDecodeError, match="Invalid OrderPlaced"):
            decode_event(b'{"_type": "OrderPlaced", "_data": {"item_count": "many"}}')

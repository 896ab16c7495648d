"""Customer aggregate and its addresses."""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field

from ecommerce.core.enums import AddressType
from ecommerce.core.errors import ValidationError
from ecommerce.core.ids import new_id

from .aggregate import AggregateRoot
from .events import AddressSnapshot, CustomerAddressAdded, CustomerRegistered, CustomerUpdated

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

# field -> max length; street2 and label are optional
_ADDRESS_LIMITS = {
    "street1": 100,
    "street2": 100,
    "city": 50,
    "state": 50,
    "postal_code": 20,
    "country": 50,
    "label": 50,
}
_ADDRESS_REQUIRED = ("street1", "city", "state", "postal_code", "country")


def _normalize_email(email: str) -> str:
    email = email.strip().lower()
    if not _EMAIL_RE.match(email):
        raise ValidationError(f"invalid e-mail address: {email!r}")
    return email


@dataclass
class Address:
    address_type: AddressType
    street1: str
    city: str
    state: str
    postal_code: str
    country: str
    street2: str | None = None
    label: str | None = None
    is_primary: bool = False
    id: uuid.UUID = field(default_factory=new_id)

    def __post_init__(self) -> None:
        self.address_type = AddressType(self.address_type)
        for name in _ADDRESS_REQUIRED:
            if not (getattr(self, name) or "").strip():
                raise ValidationError(f"address {name} is required")
        for name, limit in _ADDRESS_LIMITS.items():
            value = getattr(self, name)
            if value is not None and len(value) > limit:
                raise ValidationError(f"address {name} cannot exceed {limit} characters")

    @property
    def single_line(self) -> str:
        street = ", ".join(s for s in (self.street1, self.street2) if s)
        return f"{street}, {self.city}, {self.state} {self.postal_code}, {self.country}"

    def to_snapshot(self) -> AddressSnapshot:
        return AddressSnapshot(
            address_id=self.id,
            address_type=self.address_type.value,
            street1=self.street1,
            city=self.city,
            state=self.state,
            postal_code=self.postal_code,
            country=self.country,
            street2=self.street2,
            label=self.label,
            is_primary=self.is_primary,
        )


class Customer(AggregateRoot):
    def __init__(
        self,
        id: uuid.UUID | None = None,
        *,
        email: str,
        first_name: str,
        last_name: str,
        phone_number: str | None = None,
        is_active: bool = True,
        addresses: list[Address] | None = None,
        **base,
    ) -> None:
        super().__init__(id, **base)
        self.email = email
        self.first_name = first_name
        self.last_name = last_name
        self.phone_number = phone_number
        self.is_active = is_active
        self.addresses = list(addresses or [])

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @classmethod
    def register(
        cls,
        *,
        email: str,
        first_name: str,
        last_name: str,
        phone_number: str | None = None,
        correlation_id: str = "",
    ) -> Customer:
        customer = cls(
            email=_normalize_email(email),
            first_name=first_name,
            last_name=last_name,
            phone_number=phone_number,
        )
        customer._add_domain_event(CustomerRegistered(
            aggregate_id=customer.id,
            aggregate_version=customer.version,
            correlation_id=correlation_id,
            email=customer.email,
            first_name=first_name,
            last_name=last_name,
            phone_number=phone_number,
        ))
        return customer

    def update_profile(
        self,
        *,
        first_name: str | None = None,
        last_name: str | None = None,
        phone_number: str | None = None,
        correlation_id: str = "",
    ) -> None:
        if first_name is not None:
            self.first_name = first_name
        if last_name is not None:
            self.last_name = last_name
        if phone_number is not None:
            self.phone_number = phone_number
        self._changed(correlation_id)

    def change_email(self, email: str, correlation_id: str = "") -> None:
        self.email = _normalize_email(email)
        self._changed(correlation_id)

    def deactivate(self, correlation_id: str = "") -> None:
        self.is_active = False
        self._changed(correlation_id)

    def reactivate(self, correlation_id: str = "") -> None:
        self.is_active = True
        self._changed(correlation_id)

    def add_address(
        self,
        address: Address,
        correlation_id: str = "",
    ) -> uuid.UUID:
        """Attach *address*; the first address, or one marked primary, becomes
        the only primary address."""
        if any(a.id == address.id for a in self.addresses):
            raise ValidationError(f"address {address.id} already exists")
        if not self.addresses:
            address.is_primary = True
        if address.is_primary:
            for existing in self.addresses:
                existing.is_primary = False
        self.addresses.append(address)
        self._mark_modified()
        self._add_domain_event(CustomerAddressAdded(
            aggregate_id=self.id,
            aggregate_version=self.version,
            correlation_id=correlation_id,
            address_id=address.id,
            addresses=tuple(a.to_snapshot() for a in self.addresses),
        ))
        return address.id

    @property
    def primary_address(self) -> Address | None:
        return next((a for a in self.addresses if a.is_primary), None)

    def _changed(self, correlation_id: str) -> None:
        self._mark_modified()
        self._add_domain_event(CustomerUpdated(
            aggregate_id=self.id,
            aggregate_version=self.version,
            correlation_id=correlation_id,
            email=self.email,
            first_name=self.first_name,
            last_name=self.last_name,
            phone_number=self.phone_number,
            is_active=self.is_active,
        ))

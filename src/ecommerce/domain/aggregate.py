"""Aggregate root base class with a pending domain-event buffer."""

from __future__ import annotations

import uuid
from datetime import datetime

from ecommerce.core.ids import new_id, utc_now

from .events import DomainEvent


class AggregateRoot:
    """Transactional consistency boundary.

    Mutation methods on subclasses call ``_mark_modified()`` and then
    ``_add_domain_event()``; the unit of work drains the buffer after a
    successful commit.  ``persisted_version`` is the version last read from
    or written to the store (``None`` while the aggregate is new) and is the
    expected version for the optimistic-concurrency check.
    """

    def __init__(
        self,
        id: uuid.UUID | None = None,
        *,
        version: int = 1,
        created_at: datetime | None = None,
        updated_at: datetime | None = None,
        persisted_version: int | None = None,
    ) -> None:
        now = utc_now()
        self.id: uuid.UUID = id or new_id()
        self.version = version
        self.created_at = created_at or now
        self.updated_at = updated_at or now
        self.persisted_version = persisted_version
        self.is_deleted = False
        self._domain_events: list[DomainEvent] = []

    # -- event buffer --------------------------------------------------------

    @property
    def domain_events(self) -> tuple[DomainEvent, ...]:
        """Read-only view of pending events, in append order."""
        return tuple(self._domain_events)

    def _add_domain_event(self, event: DomainEvent) -> None:
        self._domain_events.append(event)

    def clear_domain_events(self) -> None:
        self._domain_events.clear()

    def pull_domain_events(self) -> list[DomainEvent]:
        """Return pending events and empty the buffer."""
        events = list(self._domain_events)
        self._domain_events.clear()
        return events

    # -- versioning ----------------------------------------------------------

    @property
    def is_new(self) -> bool:
        return self.persisted_version is None

    @property
    def is_dirty(self) -> bool:
        return self.is_new or self.version != self.persisted_version

    def _mark_modified(self) -> None:
        self.updated_at = utc_now()
        self.version += 1

    def _mark_deleted(self) -> None:
        """Flag the aggregate for removal; the unit of work deletes its row."""
        self._mark_modified()
        self.is_deleted = True

    def mark_persisted(self) -> None:
        """Record that the current version is now durable."""
        self.persisted_version = self.version

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, AggregateRoot):
            return NotImplemented
        return type(self) is type(other) and self.id == other.id

    def __hash__(self) -> int:
        return hash((type(self).__name__, self.id))

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.id}, version={self.version})"

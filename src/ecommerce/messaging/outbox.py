"""Transactional outbox.

When enabled, the unit of work inserts one ``outbox`` row per domain event
in the same transaction as the state change, publishes after commit as
usual and then stamps the rows ``dispatched_at``.  A row left undispatched
(process crash between commit and publish, broker outage) is picked up by
:class:`OutboxRelay` once it is older than the grace period.

Delivery stays at-least-once: the relay may republish an event the
committing request already published but could not stamp.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Iterable
from datetime import timedelta

from sqlalchemy import delete, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ecommerce.bus.serialization import EventDecodeError, event_from_dict, event_to_dict
from ecommerce.core.clock import IClock, WallClock
from ecommerce.core.config import OutboxConfig
from ecommerce.core.interfaces import IEventBus
from ecommerce.domain.events import DomainEvent, event_name
from ecommerce.observability import metrics
from ecommerce.storage.postgres.connection import SessionFactory
from ecommerce.storage.postgres.models import OutboxRecord

logger = logging.getLogger(__name__)

_outbox = OutboxRecord.__table__


async def enqueue(session: AsyncSession, events: Iterable[DomainEvent], clock: IClock) -> int:
    """Insert outbox rows for *events* inside the caller's transaction."""
    now = clock.now()
    rows = [
        {
            "id": event.event_id,
            "event_type": event_name(event),
            "aggregate_id": event.aggregate_id,
            "payload": event_to_dict(event),
            "occurred_at": event.occurred_at,
            "created_at": now,
            "attempts": 0,
        }
        for event in events
    ]
    if rows:
        await session.execute(insert(_outbox), rows)
    return len(rows)


async def mark_dispatched(
    session_factory: SessionFactory, event_ids: list[uuid.UUID], clock: IClock,
) -> None:
    """Stamp rows as dispatched in a short transaction of their own."""
    if not event_ids:
        return
    async with session_factory() as session:
        await session.execute(
            update(_outbox)
            .where(_outbox.c.id.in_(event_ids), _outbox.c.dispatched_at.is_(None))
            .values(dispatched_at=clock.now())
        )
        await session.commit()


class OutboxRelay:
    """Republishes outbox rows the committing request did not dispatch."""

    def __init__(
        self,
        session_factory: SessionFactory,
        bus: IEventBus,
        config: OutboxConfig,
        clock: IClock | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._bus = bus
        self._config = config
        self._clock = clock or WallClock()

    async def run_once(self) -> int:
        """Relay one batch, oldest first.  Returns the number published."""
        cutoff = self._clock.now() - timedelta(seconds=self._config.grace_period_seconds)
        published = 0
        async with self._session_factory() as session:
            result = await session.execute(
                select(_outbox)
                .where(
                    _outbox.c.dispatched_at.is_(None),
                    _outbox.c.created_at <= cutoff,
                    _outbox.c.attempts < self._config.max_attempts,
                )
                .order_by(_outbox.c.created_at, _outbox.c.occurred_at)
                .limit(self._config.batch_size)
                .with_for_update(skip_locked=True)
            )
            rows = result.mappings().all()

            for row in rows:
                values: dict = {"attempts": row["attempts"] + 1}
                try:
                    event = event_from_dict(row["event_type"], row["payload"])
                    await self._bus.publish(event)
                except asyncio.CancelledError:
                    raise
                except EventDecodeError as exc:
                    # Unrecoverable: park it at the attempt cap.
                    values.update(attempts=self._config.max_attempts, last_error=str(exc))
                    metrics.record_outbox_relayed("undecodable")
                    logger.error("Outbox row %s cannot be decoded: %s", row["id"], exc)
                except Exception as exc:
                    values["last_error"] = str(exc)
                    metrics.record_outbox_relayed("failed")
                    logger.warning(
                        "Outbox relay failed for %s %s (attempt %d): %s",
                        row["event_type"],
                        row["id"],
                        values["attempts"],
                        exc,
                    )
                else:
                    values["dispatched_at"] = self._clock.now()
                    published += 1
                    metrics.record_outbox_relayed("published")
                await session.execute(
                    update(_outbox).where(_outbox.c.id == row["id"]).values(**values)
                )
            await session.commit()

        if published:
            logger.info("Outbox relay published %d events", published)
        return published

    async def run_forever(self, stop: asyncio.Event | None = None) -> None:
        """Poll until *stop* is set (or the task is cancelled)."""
        stop = stop or asyncio.Event()
        while not stop.is_set():
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Outbox relay pass failed")
            try:
                await asyncio.wait_for(stop.wait(), self._config.poll_interval_seconds)
            except asyncio.TimeoutError:
                pass

    async def purge_dispatched(self, older_than: timedelta) -> int:
        """Delete dispatched rows older than *older_than*."""
        cutoff = self._clock.now() - older_than
        async with self._session_factory() as session:
            result = await session.execute(
                delete(_outbox).where(
                    _outbox.c.dispatched_at.is_not(None),
                    _outbox.c.dispatched_at < cutoff,
                )
            )
            await session.commit()
        return result.rowcount or 0

"""In-memory event bus for tests and single-process runs.

No external dependencies. Handlers are awaited in subscription order on
publish, each one isolated from the others' failures.  Events published
before ``start()`` are held and delivered once the bus starts.

- Optional error callback for handler failures
- Per-event-type/group error counters
- Dead-letter tracking for failed deliveries
- Graceful ``stop()`` that waits for in-flight deliveries
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field

from ecommerce.core.interfaces import EventHandler
from ecommerce.domain.events import DomainEvent, event_name
from ecommerce.observability import metrics

logger = logging.getLogger(__name__)


@dataclass
class MemoryDeadLetter:
    """Record of a handler failure in the memory bus."""

    event_type: str
    group: str
    handler: str
    event_id: str
    error: str
    timestamp: float = field(default_factory=time.monotonic)


def handler_name(handler: EventHandler) -> str:
    owner = getattr(handler, "__self__", None)
    if owner is not None:
        return type(owner).__name__
    return getattr(handler, "__qualname__", repr(handler))


class InMemoryEventBus:
    """In-memory event bus. Safe within a single asyncio event loop."""

    def __init__(
        self,
        on_handler_error: Callable[
            [str, str, str, Exception], None
        ] | None = None,
        shutdown_timeout: float = 10.0,
    ) -> None:
        # event type name → list of (group, handler)
        self._handlers: dict[str, list[tuple[str, EventHandler]]] = defaultdict(list)
        self._history: list[DomainEvent] = []
        self._pending: list[DomainEvent] = []
        self._running = False
        self._on_handler_error = on_handler_error
        self._shutdown_timeout = shutdown_timeout
        self._in_flight = 0
        self._idle = asyncio.Event()
        self._idle.set()

        # Observability
        self._error_counts: dict[str, int] = defaultdict(int)
        self._dead_letters: list[MemoryDeadLetter] = []
        self._messages_processed: int = 0

    async def start(self) -> None:
        self._running = True
        pending, self._pending = self._pending, []
        for event in pending:
            await self._deliver(event)

    async def stop(self) -> None:
        """Stop accepting deliveries and wait for in-flight handlers."""
        self._running = False
        try:
            await asyncio.wait_for(self._idle.wait(), self._shutdown_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "Stopping with %d in-flight deliveries after %.1fs",
                self._in_flight,
                self._shutdown_timeout,
            )

    async def publish(self, event: DomainEvent) -> None:
        """Publish event to every handler subscribed to its type."""
        self._history.append(event)
        metrics.record_event_published(event_name(event))
        if not self._running:
            self._pending.append(event)
            return
        await self._deliver(event)

    async def subscribe(
        self,
        event_type: type[DomainEvent],
        handler: EventHandler,
        group: str = "default",
    ) -> None:
        """Subscribe a handler to an event type under a consumer group."""
        self._handlers[event_name(event_type)].append((group, handler))

    async def _deliver(self, event: DomainEvent) -> None:
        name = event_name(event)
        self._in_flight += 1
        self._idle.clear()
        try:
            for group, handler in list(self._handlers.get(name, [])):
                await self._invoke(name, group, handler, event)
        finally:
            self._in_flight -= 1
            if self._in_flight == 0:
                self._idle.set()

    async def _invoke(
        self, name: str, group: str, handler: EventHandler, event: DomainEvent,
    ) -> None:
        start = time.monotonic()
        try:
            await handler(event)
            self._messages_processed += 1
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            hname = handler_name(handler)
            self._error_counts[f"{name}/{group}"] += 1
            self._dead_letters.append(
                MemoryDeadLetter(
                    event_type=name,
                    group=group,
                    handler=hname,
                    event_id=str(event.event_id),
                    error=str(exc),
                )
            )
            metrics.record_handler_failure(hname, name)
            logger.exception(
                "Handler error event=%s group=%s handler=%s",
                name,
                group,
                hname,
            )

            if self._on_handler_error is not None:
                try:
                    self._on_handler_error(name, group, str(event.event_id), exc)
                except Exception:
                    logger.warning(
                        "on_handler_error callback failed",
                        exc_info=True,
                    )
        finally:
            metrics.record_handler_latency(name, time.monotonic() - start)

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    def get_error_counts(self) -> dict[str, int]:
        """Return per-event-type/group error counts."""
        return dict(self._error_counts)

    @property
    def dead_letters(self) -> list[MemoryDeadLetter]:
        """Access the dead-letter list (read-only snapshot)."""
        return list(self._dead_letters)

    @property
    def messages_processed(self) -> int:
        """Total handler invocations that succeeded."""
        return self._messages_processed

    def clear_dead_letters(self) -> list[MemoryDeadLetter]:
        """Drain the dead-letter list and return all entries."""
        drained = self._dead_letters[:]
        self._dead_letters.clear()
        return drained

    # ------------------------------------------------------------------
    # Testing helpers
    # ------------------------------------------------------------------

    def get_history(
        self, event_type: type[DomainEvent] | None = None,
    ) -> list[DomainEvent]:
        """Published events, optionally filtered by type. For testing."""
        if event_type is None:
            return list(self._history)
        return [e for e in self._history if isinstance(e, event_type)]

    def clear_history(self) -> None:
        """Clear event history. For testing."""
        self._history.clear()

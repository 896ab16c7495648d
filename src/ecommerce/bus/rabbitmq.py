"""RabbitMQ event bus implementation (aio-pika).

Topology
--------
- One durable topic exchange (``ecommerce.domain.events``).  Routing key is
  the lower-cased event type name (``orderplaced``).
- One durable queue per (consumer group, event type):
  ``{prefix}.{EventName}`` for the default group,
  ``{prefix}.{group}.{EventName}`` otherwise.  Every queue dead-letters into
  the dead-letter exchange.
- Messages are persistent and carry the event id as ``message_id``.

Delivery
--------
- Messages are acked only *after* every handler of the group succeeded.
- A failed delivery is republished to the tail of its own queue with the
  ``x-retry-count`` header incremented, and the original is acked.  The
  count travels with the message, so the budget holds across consumer
  restarts and across competing consumers.
- Once ``max_handler_retries`` attempts have failed the message is rejected
  without requeue so the broker moves it to the dead-letter exchange; a
  ``DeadLetter`` record is kept for observability.
- Malformed bodies are dead-lettered immediately.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import aio_pika
from aio_pika.abc import (
    AbstractChannel,
    AbstractExchange,
    AbstractIncomingMessage,
    AbstractQueue,
    AbstractRobustConnection,
)
from aio_pika.exceptions import AMQPException

from ecommerce.core.config import RabbitMQConfig
from ecommerce.core.errors import EventBusError
from ecommerce.core.interfaces import EventHandler
from ecommerce.domain.events import DomainEvent, event_name
from ecommerce.observability import metrics

from .memory_bus import handler_name
from .serialization import EventDecodeError, decode_event, encode_event

logger = logging.getLogger(__name__)

DEFAULT_GROUP = "default"
RETRY_HEADER = "x-retry-count"


@dataclass
class DeadLetter:
    """Record of a delivery that exhausted its retry budget."""

    queue: str
    group: str
    message_id: str
    event_type: str
    error: str
    attempts: int
    timestamp: float = field(default_factory=time.monotonic)


@dataclass
class _Binding:
    group: str
    event_type: str
    handlers: list[EventHandler] = field(default_factory=list)
    queue: AbstractQueue | None = None
    consumer_tag: str | None = None


def routing_key_for(name: str) -> str:
    return name.lower()


def retry_count(message: AbstractIncomingMessage) -> int:
    """Failed attempts recorded on *message* by earlier deliveries."""
    try:
        return int((message.headers or {}).get(RETRY_HEADER, 0))
    except (TypeError, ValueError):
        return 0


class RabbitMQEventBus:
    """Production event bus backed by a RabbitMQ topic exchange."""

    def __init__(
        self,
        config: RabbitMQConfig,
        on_handler_error: Callable[
            [str, str, str, Exception], None
        ] | None = None,
    ) -> None:
        self._config = config
        self._on_handler_error = on_handler_error
        self._connection: AbstractRobustConnection | None = None
        self._channel: AbstractChannel | None = None
        self._exchange: AbstractExchange | None = None
        self._bindings: dict[tuple[str, str], _Binding] = {}
        self._running = False

        self._in_flight = 0
        self._idle = asyncio.Event()
        self._idle.set()

        # Observability
        self._error_counts: dict[str, int] = defaultdict(int)
        self._dead_letters: list[DeadLetter] = []
        self._messages_processed: int = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Connect, declare the topology and start consuming."""
        cfg = self._config
        try:
            self._connection = await aio_pika.connect_robust(
                cfg.url, timeout=cfg.connection_timeout_seconds,
            )
            self._channel = await self._connection.channel(publisher_confirms=True)
            await self._channel.set_qos(prefetch_count=cfg.prefetch_count)

            self._exchange = await self._channel.declare_exchange(
                cfg.exchange_name,
                aio_pika.ExchangeType(cfg.exchange_type),
                durable=True,
            )
            dlx = await self._channel.declare_exchange(
                cfg.dead_letter_exchange, aio_pika.ExchangeType.FANOUT, durable=True,
            )
            dlq = await self._channel.declare_queue(
                f"{cfg.queue_name_prefix}.dead_letters", durable=True,
            )
            await dlq.bind(dlx)
        except Exception as exc:
            await self._close_connection()
            raise EventBusError(f"Cannot connect to RabbitMQ: {exc}") from exc

        self._running = True
        for binding in self._bindings.values():
            await self._consume(binding)
        logger.info(
            "RabbitMQ bus started exchange=%s bindings=%d",
            cfg.exchange_name,
            len(self._bindings),
        )

    async def stop(self) -> None:
        """Cancel consumers, drain in-flight deliveries, then disconnect."""
        self._running = False
        for binding in self._bindings.values():
            if binding.queue is not None and binding.consumer_tag is not None:
                try:
                    await binding.queue.cancel(binding.consumer_tag)
                except Exception:
                    logger.warning(
                        "Failed to cancel consumer %s", binding.consumer_tag,
                        exc_info=True,
                    )
            binding.consumer_tag = None

        try:
            await asyncio.wait_for(
                self._idle.wait(), self._config.shutdown_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Force-stopping RabbitMQ bus with %d in-flight deliveries",
                self._in_flight,
            )
        await self._close_connection()

    async def _close_connection(self) -> None:
        if self._connection is not None:
            await self._connection.close()
        self._connection = None
        self._channel = None
        self._exchange = None

    # ------------------------------------------------------------------
    # Publish / Subscribe
    # ------------------------------------------------------------------

    async def publish(self, event: DomainEvent) -> None:
        """Publish a persistent message, bounded by the publish timeout.

        Raises:
            EventBusError: bus not started, broker unreachable or timeout.
        """
        if self._exchange is None:
            raise EventBusError("RabbitMQEventBus not started")

        name = event_name(event)
        message = aio_pika.Message(
            body=encode_event(event),
            content_type="application/json",
            delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
            message_id=str(event.event_id),
            correlation_id=event.correlation_id or None,
            type=name,
            timestamp=event.occurred_at,
            headers={"schema_version": event.schema_version},
        )
        try:
            await asyncio.wait_for(
                self._exchange.publish(message, routing_key=routing_key_for(name)),
                self._config.publish_timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            metrics.record_publish_failure(name)
            raise EventBusError(
                f"Publishing {name} timed out after "
                f"{self._config.publish_timeout_seconds}s"
            ) from exc
        except (AMQPException, ConnectionError) as exc:
            metrics.record_publish_failure(name)
            raise EventBusError(f"Publishing {name} failed: {exc}") from exc
        metrics.record_event_published(name)

    async def subscribe(
        self,
        event_type: type[DomainEvent],
        handler: EventHandler,
        group: str = DEFAULT_GROUP,
    ) -> None:
        """Register a handler.

        Can be called before or after start().  If the bus is already
        running the queue is declared and consumed immediately.
        """
        name = event_name(event_type)
        key = (group, name)
        binding = self._bindings.get(key)
        if binding is None:
            binding = self._bindings[key] = _Binding(group=group, event_type=name)
        binding.handlers.append(handler)

        if self._running and binding.consumer_tag is None:
            await self._consume(binding)

    def queue_name(self, group: str, name: str) -> str:
        prefix = self._config.queue_name_prefix
        if group == DEFAULT_GROUP:
            return f"{prefix}.{name}"
        return f"{prefix}.{group}.{name}"

    async def _consume(self, binding: _Binding) -> None:
        assert self._channel is not None and self._exchange is not None
        queue = await self._channel.declare_queue(
            self.queue_name(binding.group, binding.event_type),
            durable=True,
            arguments={"x-dead-letter-exchange": self._config.dead_letter_exchange},
        )
        await queue.bind(self._exchange, routing_key=routing_key_for(binding.event_type))

        async def on_message(message: AbstractIncomingMessage) -> None:
            await self._process_message(binding, message)

        binding.queue = queue
        binding.consumer_tag = await queue.consume(on_message)

    # ------------------------------------------------------------------
    # Consumer
    # ------------------------------------------------------------------

    async def _process_message(
        self, binding: _Binding, message: AbstractIncomingMessage,
    ) -> None:
        self._in_flight += 1
        self._idle.clear()
        try:
            await self._handle(binding, message)
        finally:
            self._in_flight -= 1
            if self._in_flight == 0:
                self._idle.set()

    async def _handle(
        self, binding: _Binding, message: AbstractIncomingMessage,
    ) -> None:
        queue_name = self.queue_name(binding.group, binding.event_type)
        msg_id = message.message_id or str(message.delivery_tag)

        try:
            event = decode_event(message.body)
        except EventDecodeError as exc:
            logger.warning("Dead-lettering undecodable message %s: %s", msg_id, exc)
            self._dead_letter(binding, queue_name, msg_id, str(exc), 1)
            await message.reject(requeue=False)
            return

        start = time.monotonic()
        failure: Exception | None = None
        for handler in list(binding.handlers):
            try:
                await handler(event)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                failure = failure or exc
                self._report_failure(binding, handler, msg_id, exc)
        metrics.record_handler_latency(binding.event_type, time.monotonic() - start)

        if failure is None:
            await message.ack()
            self._messages_processed += 1
            return

        attempts = retry_count(message) + 1
        if attempts >= self._config.max_handler_retries:
            logger.error(
                "Dead-lettering message %s on %s after %d attempts",
                msg_id,
                queue_name,
                attempts,
            )
            self._dead_letter(binding, queue_name, msg_id, str(failure), attempts)
            await message.reject(requeue=False)
        else:
            await self._retry(queue_name, message, attempts)

    async def _retry(
        self, queue_name: str, message: AbstractIncomingMessage, attempts: int,
    ) -> None:
        """Republish a copy carrying *attempts* in its headers, then ack.

        If the copy cannot be published the original is requeued unchanged,
        which redelivers it without spending budget.
        """
        assert self._channel is not None
        retry = aio_pika.Message(
            body=message.body,
            content_type=message.content_type,
            delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
            message_id=message.message_id,
            correlation_id=message.correlation_id,
            type=message.type,
            timestamp=message.timestamp,
            headers={**(message.headers or {}), RETRY_HEADER: attempts},
        )
        try:
            await self._channel.default_exchange.publish(retry, routing_key=queue_name)
        except (AMQPException, ConnectionError) as exc:
            logger.warning(
                "Could not republish %s for retry, requeueing: %s", message.message_id, exc,
            )
            await message.nack(requeue=True)
            return
        await message.ack()

    def _report_failure(
        self,
        binding: _Binding,
        handler: EventHandler,
        msg_id: str,
        exc: Exception,
    ) -> None:
        hname = handler_name(handler)
        self._error_counts[f"{binding.event_type}/{binding.group}"] += 1
        metrics.record_handler_failure(hname, binding.event_type)
        logger.exception(
            "Handler %s failed on %s msg=%s", hname, binding.event_type, msg_id,
        )
        if self._on_handler_error is not None:
            try:
                self._on_handler_error(binding.event_type, binding.group, msg_id, exc)
            except Exception:
                logger.warning("on_handler_error callback failed", exc_info=True)

    def _dead_letter(
        self,
        binding: _Binding,
        queue_name: str,
        msg_id: str,
        error: str,
        attempts: int,
    ) -> None:
        metrics.record_dead_letter(binding.event_type)
        self._dead_letters.append(
            DeadLetter(
                queue=queue_name,
                group=binding.group,
                message_id=msg_id,
                event_type=binding.event_type,
                error=error,
                attempts=attempts,
            )
        )

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    def get_error_counts(self) -> dict[str, int]:
        """Return per-event-type/group error counts."""
        return dict(self._error_counts)

    @property
    def dead_letters(self) -> list[DeadLetter]:
        """Access the dead-letter list (read-only snapshot)."""
        return list(self._dead_letters)

    @property
    def messages_processed(self) -> int:
        return self._messages_processed

    def clear_dead_letters(self) -> list[DeadLetter]:
        """Drain the dead-letter list and return all entries."""
        drained = self._dead_letters[:]
        self._dead_letters.clear()
        return drained

    def describe(self) -> dict[str, Any]:
        return {
            "exchange": self._config.exchange_name,
            "queues": [
                self.queue_name(b.group, b.event_type) for b in self._bindings.values()
            ],
            "running": self._running,
        }

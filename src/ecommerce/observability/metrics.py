"""Prometheus metrics.

Exposes cache, event-bus, projection and unit-of-work metrics for
monitoring via Grafana.
"""

from __future__ import annotations

import logging

from prometheus_client import (
    Counter,
    Histogram,
    Info,
    start_http_server,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# System metrics
# ---------------------------------------------------------------------------

SYSTEM_INFO = Info("ecommerce_system", "E-commerce backend information")

# ---------------------------------------------------------------------------
# Cache metrics
# ---------------------------------------------------------------------------

CACHE_HITS = Counter(
    "ecommerce_cache_hits_total",
    "Cache lookups answered from the cache",
    ["entity"],
)

CACHE_MISSES = Counter(
    "ecommerce_cache_misses_total",
    "Cache lookups that fell through to the source",
    ["entity"],
)

CACHE_ERRORS = Counter(
    "ecommerce_cache_errors_total",
    "Cache operations that failed or timed out",
    ["operation"],
)

CACHE_EVICTIONS = Counter(
    "ecommerce_cache_evictions_total",
    "Keys removed by invalidation",
    ["entity"],
)

# ---------------------------------------------------------------------------
# Event bus metrics
# ---------------------------------------------------------------------------

EVENTS_PUBLISHED = Counter(
    "ecommerce_events_published_total",
    "Domain events handed to the bus",
    ["event_type"],
)

EVENT_PUBLISH_FAILURES = Counter(
    "ecommerce_event_publish_failures_total",
    "Domain events the bus failed to accept",
    ["event_type"],
)

HANDLER_FAILURES = Counter(
    "ecommerce_handler_failures_total",
    "Event handler invocations that raised",
    ["handler", "event_type"],
)

DEAD_LETTERS = Counter(
    "ecommerce_dead_letters_total",
    "Deliveries moved to the dead-letter exchange",
    ["event_type"],
)

HANDLER_LATENCY = Histogram(
    "ecommerce_handler_latency_seconds",
    "Event handler latency",
    ["event_type"],
    buckets=[0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0],
)

# ---------------------------------------------------------------------------
# Read model metrics
# ---------------------------------------------------------------------------

PROJECTION_UPSERTS = Counter(
    "ecommerce_projection_upserts_total",
    "Projection upserts by outcome (applied / skipped)",
    ["index", "outcome"],
)

# ---------------------------------------------------------------------------
# Unit of work metrics
# ---------------------------------------------------------------------------

UOW_COMMITS = Counter(
    "ecommerce_uow_commits_total",
    "Successful unit-of-work commits",
)

UOW_CONFLICTS = Counter(
    "ecommerce_uow_conflicts_total",
    "Optimistic concurrency conflicts",
    ["aggregate"],
)

OUTBOX_RELAYED = Counter(
    "ecommerce_outbox_relayed_total",
    "Outbox rows republished by the relay",
    ["outcome"],
)


# ---------------------------------------------------------------------------
# Helper functions
# ---------------------------------------------------------------------------

def record_cache_hit(entity: str) -> None:
    CACHE_HITS.labels(entity=entity).inc()


def record_cache_miss(entity: str) -> None:
    CACHE_MISSES.labels(entity=entity).inc()


def record_cache_error(operation: str) -> None:
    CACHE_ERRORS.labels(operation=operation).inc()


def record_cache_eviction(entity: str, count: int = 1) -> None:
    CACHE_EVICTIONS.labels(entity=entity).inc(count)


def record_event_published(event_type: str) -> None:
    EVENTS_PUBLISHED.labels(event_type=event_type).inc()


def record_publish_failure(event_type: str) -> None:
    EVENT_PUBLISH_FAILURES.labels(event_type=event_type).inc()


def record_handler_failure(handler: str, event_type: str) -> None:
    HANDLER_FAILURES.labels(handler=handler, event_type=event_type).inc()


def record_dead_letter(event_type: str) -> None:
    DEAD_LETTERS.labels(event_type=event_type).inc()


def record_handler_latency(event_type: str, seconds: float) -> None:
    HANDLER_LATENCY.labels(event_type=event_type).observe(seconds)


def record_projection_upsert(index: str, applied: bool) -> None:
    PROJECTION_UPSERTS.labels(
        index=index, outcome="applied" if applied else "skipped",
    ).inc()


def record_uow_commit() -> None:
    UOW_COMMITS.inc()


def record_uow_conflict(aggregate: str) -> None:
    UOW_CONFLICTS.labels(aggregate=aggregate).inc()


def record_outbox_relayed(outcome: str) -> None:
    OUTBOX_RELAYED.labels(outcome=outcome).inc()


def start_metrics_server(port: int = 9090, environment: str = "unknown") -> None:
    """Start Prometheus metrics HTTP server. 0 disables it."""
    if port <= 0:
        return
    SYSTEM_INFO.info({
        "version": "0.1.0",
        "environment": environment,
    })
    start_http_server(port)
    logger.info("Prometheus metrics server started on port %d", port)

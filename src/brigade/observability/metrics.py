"""Prometheus metrics for the cache layer.

Provides metrics collection for:
- Cache refreshes and hits per collection and cache kind
- Change feed listener state and retries
- Per-record transform failures
- Invalidation signals sent and received

Metrics are optional: when disabled, or when prometheus_client cannot be
imported, every recorder is a no-op.

Usage:
    from brigade.observability.metrics import record_cache_refresh

    record_cache_refresh("menu", "change_feed")
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from brigade.config import settings

logger = logging.getLogger(__name__)


# Numeric codes for the listener state gauge
LISTENER_STATE_CODES = {
    "idle": 0,
    "connecting": 1,
    "connected": 2,
    "retrying": 3,
    "halted": 4,
}


@dataclass
class MetricsRegistry:
    """Registry for Prometheus metrics."""

    cache_refreshes_total: Any = None
    cache_hits_total: Any = None
    transform_errors_total: Any = None
    listener_retries_total: Any = None
    listener_state: Any = None
    invalidation_signals_sent_total: Any = None
    invalidation_signals_received_total: Any = None

    _initialized: bool = field(default=False, repr=False)
    _registry: Any = field(default=None, repr=False)

    def initialize(self) -> None:
        """Initialize Prometheus metrics."""
        if self._initialized:
            return

        if not settings.enable_metrics:
            logger.debug("Metrics are disabled")
            self._initialized = True
            return

        try:
            from prometheus_client import REGISTRY, Counter, Gauge

            self._registry = REGISTRY

            self.cache_refreshes_total = Counter(
                "brigade_cache_refreshes_total",
                "Full snapshot replacements",
                ["collection", "cache_kind"],
            )

            self.cache_hits_total = Counter(
                "brigade_cache_hits_total",
                "Reads served from a fresh cached snapshot",
                ["collection", "cache_kind"],
            )

            self.transform_errors_total = Counter(
                "brigade_transform_errors_total",
                "Records skipped because the transform raised",
                ["collection"],
            )

            self.listener_retries_total = Counter(
                "brigade_listener_retries_total",
                "Change feed reconnect attempts scheduled",
                ["collection"],
            )

            self.listener_state = Gauge(
                "brigade_listener_state",
                "Change feed listener state "
                "(0=idle, 1=connecting, 2=connected, 3=retrying, 4=halted)",
                ["collection"],
            )

            self.invalidation_signals_sent_total = Counter(
                "brigade_invalidation_signals_sent_total",
                "Invalidation records appended",
                ["collection", "action"],
            )

            self.invalidation_signals_received_total = Counter(
                "brigade_invalidation_signals_received_total",
                "Invalidation records observed on the shared feed",
                ["collection", "action"],
            )

            self._initialized = True
            logger.info("Prometheus metrics initialized")

        except ImportError:
            logger.warning("prometheus_client not installed, metrics disabled")
            self._initialized = True

    def generate_latest(self) -> bytes:
        """Generate Prometheus metrics in exposition format."""
        if not settings.enable_metrics or self._registry is None:
            return b"# Metrics disabled\n"

        from prometheus_client import generate_latest

        return generate_latest(self._registry)


metrics_registry = MetricsRegistry()


def get_metrics() -> MetricsRegistry:
    """Get the global metrics registry.

    Initializes metrics on first access.
    """
    if not metrics_registry._initialized:
        metrics_registry.initialize()
    return metrics_registry


def record_cache_refresh(collection: str, cache_kind: str) -> None:
    """Record a full snapshot replacement."""
    metrics = get_metrics()
    if metrics.cache_refreshes_total:
        metrics.cache_refreshes_total.labels(collection=collection, cache_kind=cache_kind).inc()


def record_cache_hit(collection: str, cache_kind: str) -> None:
    """Record a read served from cache."""
    metrics = get_metrics()
    if metrics.cache_hits_total:
        metrics.cache_hits_total.labels(collection=collection, cache_kind=cache_kind).inc()


def record_transform_error(collection: str) -> None:
    """Record a skipped record."""
    metrics = get_metrics()
    if metrics.transform_errors_total:
        metrics.transform_errors_total.labels(collection=collection).inc()


def record_listener_retry(collection: str) -> None:
    """Record a scheduled reconnect."""
    metrics = get_metrics()
    if metrics.listener_retries_total:
        metrics.listener_retries_total.labels(collection=collection).inc()


def set_listener_state(collection: str, state: str) -> None:
    """Set the listener state gauge.

    Args:
        collection: Collection the listener mirrors
        state: One of the ListenerState values
    """
    metrics = get_metrics()
    if metrics.listener_state:
        metrics.listener_state.labels(collection=collection).set(
            LISTENER_STATE_CODES.get(state, 0)
        )


def record_signal_sent(collection: str, action: str) -> None:
    """Record an appended invalidation record."""
    metrics = get_metrics()
    if metrics.invalidation_signals_sent_total:
        metrics.invalidation_signals_sent_total.labels(collection=collection, action=action).inc()


def record_signal_received(collection: str, action: str) -> None:
    """Record an observed invalidation record."""
    metrics = get_metrics()
    if metrics.invalidation_signals_received_total:
        metrics.invalidation_signals_received_total.labels(
            collection=collection, action=action
        ).inc()

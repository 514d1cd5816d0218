"""Observability module for the cache layer.

Provides structured logging and optional Prometheus metrics:
- JSON or console logging with collection/actor context
- Counters for refreshes, retries, transform errors and signals
"""

from brigade.observability.logging import (
    LogContext,
    actor_id_var,
    collection_var,
    configure_logging,
)
from brigade.observability.metrics import get_metrics, metrics_registry

__all__ = [
    # Logging
    "configure_logging",
    "LogContext",
    "collection_var",
    "actor_id_var",
    # Metrics
    "metrics_registry",
    "get_metrics",
]

"""Document store adapters.

The caches depend only on the abstract DocumentStore; concrete stores are
chosen by configuration (BRIGADE_STORE_BACKEND=memory|redis).
"""

from __future__ import annotations

from brigade.config import settings
from brigade.store.base import (
    SERVER_TIMESTAMP,
    CollectionNotFoundError,
    DocumentStore,
    FeedQuery,
    PermissionDeniedError,
    Record,
    StoreError,
    StoreUnavailableError,
    Unsubscribe,
    resolve_server_timestamps,
    to_epoch_seconds,
)
from brigade.store.memory import InMemoryDocumentStore


def create_store() -> DocumentStore:
    """Create a document store based on configuration."""
    backend = settings.store_backend.lower()

    if backend in {"memory", "inmemory", "in_memory"}:
        return InMemoryDocumentStore()

    if backend == "redis":
        from brigade.store.redis import RedisDocumentStore

        return RedisDocumentStore()

    raise ValueError("Unsupported store_backend. Supported values: memory, redis.")


__all__ = [
    "DocumentStore",
    "InMemoryDocumentStore",
    "FeedQuery",
    "Record",
    "Unsubscribe",
    "SERVER_TIMESTAMP",
    "to_epoch_seconds",
    "resolve_server_timestamps",
    "create_store",
    # Errors
    "StoreError",
    "PermissionDeniedError",
    "StoreUnavailableError",
    "CollectionNotFoundError",
]

"""Time-boxed pull cache that also drops its snapshot on invalidation signals.

The cache never pushes to consumers. A signal only marks the snapshot as
missing; the next get_data() call fetches lazily.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Generic

from brigade.cache.base import (
    NO_DATA,
    CacheEntry,
    NoData,
    T,
    Transform,
    apply_transform,
    require_collection_name,
    require_positive,
)
from brigade.config import settings
from brigade.observability.metrics import record_cache_hit, record_cache_refresh
from brigade.store.base import DocumentStore, StoreError, Unsubscribe

if TYPE_CHECKING:
    from brigade.invalidation.bus import InvalidationSignalBus

logger = logging.getLogger(__name__)

Fetcher = Callable[[], Awaitable[list[T]]]


@dataclass
class SignalCacheInfo:
    """Freshness snapshot of a SignalInvalidatedCache."""

    collection: str
    has_cache: bool
    item_count: int
    age: float
    is_valid: bool
    has_invalidation_listener: bool
    has_error: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Export info as dictionary."""
        return {
            "collection": self.collection,
            "has_cache": self.has_cache,
            "item_count": self.item_count,
            "age": self.age,
            "is_valid": self.is_valid,
            "has_invalidation_listener": self.has_invalidation_listener,
            "has_error": self.has_error,
        }


class SignalInvalidatedCache(Generic[T]):
    """Pull cache with TTL reads and bus-driven invalidation.

    Call destroy() when the owner goes away, otherwise the bus keeps a
    reference to this cache for the life of the process.
    """

    def __init__(
        self,
        collection: str,
        transform: Transform[T],
        *,
        bus: InvalidationSignalBus,
        store: DocumentStore | None = None,
        cache_duration: float | None = None,
        fetch: Fetcher[T] | None = None,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the cache and register it with the bus.

        Args:
            collection: Remote collection name, also the invalidation key
            transform: Converts a raw record into an item
            bus: Invalidation bus to listen on
            store: Document store to read from; defaults to the bus's store
            cache_duration: Seconds a snapshot stays valid
            fetch: Replaces the default fetch_all + transform read
            clock: Wall clock in epoch seconds
        """
        self.collection = require_collection_name(collection)
        self.transform = transform
        self.store = store or bus.store
        self.cache_duration = require_positive(
            "cache_duration", settings.cache_duration if cache_duration is None else cache_duration
        )
        self._fetch = fetch
        self._clock = clock

        self._entry: CacheEntry[T] = CacheEntry()
        self._refresh_lock = asyncio.Lock()
        self._has_error = False
        # Bumped on every invalidation; a fetch that overlaps one is not cached
        self._invalidations = 0
        self._unsubscribe: Unsubscribe | None = bus.subscribe(collection, self._on_invalidated)

    async def get_data(self) -> list[T]:
        """Return the snapshot, fetching when missing or expired.

        Store failures are logged and the last snapshot (or an empty list)
        is returned instead.
        """
        if self._entry.is_fresh(self._clock(), self.cache_duration):
            record_cache_hit(self.collection, "signal")
            logger.debug(f"Data retrieved from cache for {self.collection}")
            return self._entry.items or []

        async with self._refresh_lock:
            if self._entry.is_fresh(self._clock(), self.cache_duration):
                return self._entry.items or []
            invalidations = self._invalidations
            try:
                items = await self._load()
            except StoreError as e:
                self._has_error = True
                logger.error(f"Error fetching {self.collection}: {e}")
                return self._entry.items or []

            self._has_error = False
            if invalidations != self._invalidations:
                logger.info(f"{self.collection} invalidated during fetch, result not cached")
                return items

            self._entry = CacheEntry(items=items, last_update=self._clock())
            record_cache_refresh(self.collection, "signal")
            logger.info(f"Data fetched from store for {self.collection} ({len(items)} items)")
            return items

    def get_current_cache(self) -> list[T] | NoData:
        if self._entry.items is None:
            return NO_DATA
        return self._entry.items

    def clear_cache(self) -> None:
        """Drop the snapshot as if an invalidation signal arrived."""
        self._invalidations += 1
        self._entry = CacheEntry()
        logger.info(f"Cache cleared for {self.collection}")

    def destroy(self) -> None:
        """Stop listening for invalidation signals. Idempotent."""
        unsubscribe, self._unsubscribe = self._unsubscribe, None
        if unsubscribe is not None:
            unsubscribe()
            logger.debug(f"Invalidation listener removed for {self.collection}")

    def get_cache_info(self) -> SignalCacheInfo:
        age = self._entry.age(self._clock())
        return SignalCacheInfo(
            collection=self.collection,
            has_cache=self._entry.has_data,
            item_count=self._entry.item_count,
            age=age,
            is_valid=self._entry.is_fresh(self._clock(), self.cache_duration),
            has_invalidation_listener=self._unsubscribe is not None,
            has_error=self._has_error,
        )

    def _on_invalidated(self) -> None:
        logger.info(f"Cache invalidated by signal for {self.collection}")
        self._invalidations += 1
        self._entry = CacheEntry()

    async def _load(self) -> list[T]:
        if self._fetch is not None:
            return await self._fetch()
        records = await self.store.fetch_all(self.collection)
        return apply_transform(records, self.transform, self.collection)

"""Time-boxed cache refreshed by a lightweight staleness heartbeat.

Instead of holding a live feed open, the heartbeat periodically reads the
single most recently modified record of the collection. Only when that
record is newer than the cached snapshot is the full collection fetched
again. This trades heartbeat-interval latency for far fewer open
connections, which suits slow-changing collections such as the menu.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Generic

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
from brigade.observability.logging import LogContext
from brigade.observability.metrics import record_cache_hit, record_cache_refresh
from brigade.store.base import DocumentStore, StoreError, to_epoch_seconds

logger = logging.getLogger(__name__)

UpdateCallback = Callable[[list[T]], None]


@dataclass
class PollingCacheInfo:
    """Freshness snapshot of a PollingFreshnessCache."""

    collection: str
    has_cache: bool
    item_count: int
    age: float
    is_valid: bool
    is_heartbeat_active: bool
    heartbeat_interval: float
    has_error: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Export info as dictionary."""
        return {
            "collection": self.collection,
            "has_cache": self.has_cache,
            "item_count": self.item_count,
            "age": self.age,
            "is_valid": self.is_valid,
            "is_heartbeat_active": self.is_heartbeat_active,
            "heartbeat_interval": self.heartbeat_interval,
            "has_error": self.has_error,
        }


class PollingFreshnessCache(Generic[T]):
    """Cache with TTL reads and a staleness-probing heartbeat."""

    def __init__(
        self,
        collection: str,
        transform: Transform[T],
        *,
        store: DocumentStore,
        cache_duration: float | None = None,
        heartbeat_interval: float | None = None,
        modified_field: str | None = None,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the cache.

        Args:
            collection: Remote collection name
            transform: Converts a raw record into an item
            store: Document store to read from
            cache_duration: Seconds a snapshot stays valid for get_data()
            heartbeat_interval: Seconds between staleness probes
            modified_field: Record field holding the modification instant
            clock: Wall clock in epoch seconds
        """
        self.collection = require_collection_name(collection)
        self.transform = transform
        self.store = store
        self.cache_duration = require_positive(
            "cache_duration", settings.cache_duration if cache_duration is None else cache_duration
        )
        self.heartbeat_interval = require_positive(
            "heartbeat_interval",
            settings.heartbeat_interval if heartbeat_interval is None else heartbeat_interval,
        )
        self.modified_field = modified_field or settings.modified_field
        self._clock = clock

        self._entry: CacheEntry[T] = CacheEntry()
        self._refresh_lock = asyncio.Lock()
        self._heartbeat_task: asyncio.Task[None] | None = None
        self._on_update: UpdateCallback[T] | None = None
        self._has_error = False
        # Newest modified_field value seen by the last refresh, store clock
        self._latest_modified = 0.0
        # Bumped by clear_cache(); a refresh that overlaps one is not cached
        self._clears = 0

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def get_data(self) -> list[T]:
        """Return the snapshot, refreshing it when older than cache_duration.

        Store failures are logged and the last snapshot (or an empty list)
        is returned instead.
        """
        if self._entry.is_fresh(self._clock(), self.cache_duration):
            record_cache_hit(self.collection, "polling")
            logger.debug(f"Data retrieved from cache for {self.collection}")
            return self._entry.items or []

        async with self._refresh_lock:
            # Another caller may have refreshed while we waited
            if self._entry.is_fresh(self._clock(), self.cache_duration):
                return self._entry.items or []
            try:
                return await self._refresh()
            except StoreError as e:
                self._has_error = True
                logger.error(f"Refresh failed for {self.collection}: {e}")
                return self._entry.items or []

    def get_current_cache(self) -> list[T] | NoData:
        """Return the last snapshot, or NO_DATA."""
        if self._entry.items is None:
            return NO_DATA
        return self._entry.items

    def clear_cache(self) -> None:
        self._clears += 1
        self._entry = CacheEntry()
        self._latest_modified = 0.0
        logger.info(f"Cache cleared for {self.collection}")

    def get_cache_info(self) -> PollingCacheInfo:
        age = self._entry.age(self._clock())
        return PollingCacheInfo(
            collection=self.collection,
            has_cache=self._entry.has_data,
            item_count=self._entry.item_count,
            age=age,
            is_valid=age < self.cache_duration,
            is_heartbeat_active=self.is_heartbeat_active,
            heartbeat_interval=self.heartbeat_interval,
            has_error=self._has_error,
        )

    # -------------------------------------------------------------------------
    # Heartbeat
    # -------------------------------------------------------------------------

    @property
    def is_heartbeat_active(self) -> bool:
        return self._heartbeat_task is not None and not self._heartbeat_task.done()

    def start_heartbeat(self, on_update: UpdateCallback[T] | None = None) -> None:
        """Start probing for changes every heartbeat_interval seconds.

        Replaces any heartbeat already running on this instance.

        Args:
            on_update: Called with the new snapshot after a heartbeat-driven
                refresh
        """
        self._on_update = on_update
        if self._heartbeat_task is not None:
            self._heartbeat_task.cancel()
        self._heartbeat_task = asyncio.get_running_loop().create_task(self._heartbeat_loop())
        logger.info(
            f"Heartbeat started for {self.collection} (every {self.heartbeat_interval}s)"
        )

    def stop_heartbeat(self) -> None:
        """Cancel the heartbeat. Safe to call when none is running."""
        if self._heartbeat_task is None:
            return
        self._heartbeat_task.cancel()
        self._heartbeat_task = None
        logger.info(f"Heartbeat stopped for {self.collection}")

    async def check_for_updates(self) -> bool:
        """Probe the newest record and refresh if it postdates the snapshot.

        Returns:
            True if a refresh happened
        """
        try:
            recent = await self.store.query_most_recent(
                self.collection, self.modified_field, limit=1
            )
            if not recent:
                return False

            latest = to_epoch_seconds(recent[0].get(self.modified_field))
            # Compared against store-assigned instants only, never the local clock
            if latest <= self._latest_modified:
                return False

            logger.info(f"Changes detected in {self.collection}, refreshing cache")
            async with self._refresh_lock:
                items = await self._refresh()
        except StoreError as e:
            self._has_error = True
            logger.error(f"Error checking updates for {self.collection}: {e}")
            return False

        callback = self._on_update
        if callback is not None:
            try:
                callback(items)
            except Exception as e:
                logger.error(f"Update callback for {self.collection} failed: {e}")
        return True

    async def _heartbeat_loop(self) -> None:
        with LogContext(collection=self.collection):
            while True:
                try:
                    await asyncio.sleep(self.heartbeat_interval)
                    await self.check_for_updates()
                except asyncio.CancelledError:
                    logger.debug(f"Heartbeat cancelled for {self.collection}")
                    break
                except Exception as e:
                    logger.error(f"Heartbeat error for {self.collection}: {e}")

    async def _refresh(self) -> list[T]:
        clears = self._clears
        records = await self.store.fetch_all(self.collection)
        items = apply_transform(records, self.transform, self.collection)
        self._has_error = False
        if clears != self._clears:
            logger.info(f"{self.collection} cleared during refresh, result not cached")
            return items

        self._entry = CacheEntry(items=items, last_update=self._clock())
        self._latest_modified = max(
            (to_epoch_seconds(record.get(self.modified_field)) for record in records),
            default=0.0,
        )
        record_cache_refresh(self.collection, "polling")
        logger.info(f"Cache refreshed for {self.collection} ({len(items)} items)")
        return items

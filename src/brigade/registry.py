"""Process-wide registry of caches and the invalidation bus.

Caches are created lazily on first access and reused afterwards, keyed by
collection name, so a collection never gets a second upstream listener.
The invalidation bus is the one process-wide instance and is started the
first time it is requested.

Example:
    registry = get_registry()
    menu = registry.get_change_feed_cache("menu", MenuItem.from_document)
    unsubscribe = menu.subscribe(render_menu)
"""

from __future__ import annotations

import logging
from typing import Any

from brigade.cache.base import Transform
from brigade.cache.change_feed import ChangeFeedCache
from brigade.cache.polling import PollingFreshnessCache
from brigade.cache.signal import SignalInvalidatedCache
from brigade.invalidation.bus import InvalidationSignalBus
from brigade.store import DocumentStore, create_store

logger = logging.getLogger(__name__)


class CacheRegistry:
    """Lazy get-or-create owner of every cache in the process.

    Getter keyword arguments only apply when the cache is created; later
    calls for the same collection return the existing instance unchanged.
    """

    def __init__(self, store: DocumentStore | None = None):
        self._store = store
        self._bus: InvalidationSignalBus | None = None
        self._change_feeds: dict[str, ChangeFeedCache[Any]] = {}
        self._polling: dict[str, PollingFreshnessCache[Any]] = {}
        self._signal: dict[str, SignalInvalidatedCache[Any]] = {}

    @property
    def store(self) -> DocumentStore:
        if self._store is None:
            self._store = create_store()
        return self._store

    def get_invalidation_bus(self, **kwargs: Any) -> InvalidationSignalBus:
        """Get the process-wide bus, starting it on first use.

        Must be called from within a running event loop the first time.
        """
        if self._bus is None:
            self._bus = InvalidationSignalBus(store=self.store, **kwargs)
            self._bus.start()
        return self._bus

    def get_change_feed_cache(
        self, collection: str, transform: Transform[Any], **kwargs: Any
    ) -> ChangeFeedCache[Any]:
        cache = self._change_feeds.get(collection)
        if cache is None:
            cache = ChangeFeedCache(collection, transform, store=self.store, **kwargs)
            self._change_feeds[collection] = cache
            logger.debug(f"Created change feed cache for {collection}")
        return cache

    def get_polling_cache(
        self, collection: str, transform: Transform[Any], **kwargs: Any
    ) -> PollingFreshnessCache[Any]:
        cache = self._polling.get(collection)
        if cache is None:
            cache = PollingFreshnessCache(collection, transform, store=self.store, **kwargs)
            self._polling[collection] = cache
            logger.debug(f"Created polling cache for {collection}")
        return cache

    def get_signal_cache(
        self, collection: str, transform: Transform[Any], **kwargs: Any
    ) -> SignalInvalidatedCache[Any]:
        cache = self._signal.get(collection)
        if cache is None:
            cache = SignalInvalidatedCache(
                collection,
                transform,
                bus=self.get_invalidation_bus(),
                store=self.store,
                **kwargs,
            )
            self._signal[collection] = cache
            logger.debug(f"Created signal-invalidated cache for {collection}")
        return cache

    # -------------------------------------------------------------------------
    # Ops
    # -------------------------------------------------------------------------

    def clear_all_caches(self) -> None:
        """Drop every snapshot; listeners and heartbeats keep running."""
        for cache in self._iter_caches():
            cache.clear_cache()
        logger.info("All caches cleared")

    def get_all_cache_status(self) -> dict[str, Any]:
        """Status of every registered cache, grouped by tier."""
        return {
            "change_feed": {
                name: cache.get_status().to_dict() for name, cache in self._change_feeds.items()
            },
            "polling": {
                name: cache.get_cache_info().to_dict() for name, cache in self._polling.items()
            },
            "signal": {
                name: cache.get_cache_info().to_dict() for name, cache in self._signal.items()
            },
            "invalidation": self._bus.get_status() if self._bus is not None else None,
        }

    def force_reconnect_all(self) -> None:
        """Restart every change feed listener, including the bus's own feed."""
        for cache in self._change_feeds.values():
            cache.force_reconnect()
        if self._bus is not None:
            self._bus.feed.force_reconnect()
        logger.info(f"Forced reconnect of {len(self._change_feeds)} change feed caches")

    def on_auth_changed(self) -> None:
        """Leave permission-denied halts after the user's credentials change."""
        logger.info("Authentication changed, reconnecting listeners")
        self.force_reconnect_all()

    def reset_all(self) -> None:
        """Detach everything and forget every instance.

        Intended for tests; the store is kept.
        """
        for feed in self._change_feeds.values():
            feed.close()
        for polling in self._polling.values():
            polling.stop_heartbeat()
        for signal in self._signal.values():
            signal.destroy()
        if self._bus is not None:
            self._bus.stop()

        self._change_feeds.clear()
        self._polling.clear()
        self._signal.clear()
        self._bus = None

    async def close(self) -> None:
        """Reset the registry and close the store."""
        self.reset_all()
        if self._store is not None:
            await self._store.close()
            self._store = None

    def _iter_caches(self) -> list[Any]:
        return [*self._change_feeds.values(), *self._polling.values(), *self._signal.values()]


# Global registry instance
_registry: CacheRegistry | None = None


def get_registry() -> CacheRegistry:
    """Get the global cache registry instance."""
    global _registry
    if _registry is None:
        _registry = CacheRegistry()
    return _registry


def set_registry(registry: CacheRegistry | None) -> None:
    """Set (or with None, forget) the global cache registry instance."""
    global _registry
    _registry = registry


async def close_registry() -> None:
    """Close the global registry, if one was created."""
    global _registry
    if _registry is not None:
        await _registry.close()
        _registry = None

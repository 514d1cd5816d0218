"""Process-wide cache invalidation over a shared append-only feed.

Writers append small InvalidationRecords to a collection in the document
store. Every running client, this one included, watches the most recent
records of that collection through a single ChangeFeedCache and invokes the
callbacks registered for each newly observed record's collection.

Local callbacks are never invoked directly by send_invalidation_signal():
local and remote writes take the same path through the feed.

Example:
    bus = InvalidationSignalBus(store=store)
    bus.start()

    unsubscribe = bus.subscribe("stock", cache.clear_cache)
    await bus.send_invalidation_signal("stock", "update", "chef-1", "flour")
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from collections.abc import Callable
from typing import Any

from brigade.cache.backoff import BackoffPolicy
from brigade.cache.base import Scheduler, require_collection_name, require_positive
from brigade.cache.change_feed import ChangeFeedCache
from brigade.config import settings
from brigade.invalidation.schemas import InvalidationAction, InvalidationRecord
from brigade.observability.logging import LogContext
from brigade.observability.metrics import record_signal_received, record_signal_sent
from brigade.store.base import DocumentStore, FeedQuery, StoreError, Unsubscribe

logger = logging.getLogger(__name__)

InvalidationCallback = Callable[[], None]


class InvalidationSignalBus:
    """Fan-out of invalidation records to per-collection callbacks."""

    def __init__(
        self,
        *,
        store: DocumentStore,
        collection: str | None = None,
        window: int | None = None,
        retention: int | None = None,
        backoff: BackoffPolicy | None = None,
        scheduler: Scheduler | None = None,
    ):
        """Initialize the bus.

        Args:
            store: Document store holding the shared feed
            collection: Name of the append-only feed collection
            window: Number of most recent records the feed subscription
                observes
            retention: Records kept remotely; older ones are trimmed on append
            backoff: Reconnect policy for the feed subscription
            scheduler: Timer source for reconnects
        """
        self.store = store
        self.collection = require_collection_name(
            collection or settings.invalidation_collection
        )
        self.window = int(
            require_positive("window", settings.invalidation_window if window is None else window)
        )
        self.retention = retention if retention is not None else self.window * 4

        self._listeners: dict[str, dict[InvalidationCallback, None]] = {}
        self._seen: OrderedDict[str, None] = OrderedDict()
        self._max_seen = self.window * 4
        self._feed: ChangeFeedCache[InvalidationRecord] = ChangeFeedCache(
            self.collection,
            InvalidationRecord.from_document,
            store=store,
            query=FeedQuery(order_by="timestamp", descending=True, limit=self.window),
            backoff=backoff,
            scheduler=scheduler,
        )
        self._feed_unsubscribe: Unsubscribe | None = None

    @property
    def is_running(self) -> bool:
        return self._feed_unsubscribe is not None

    @property
    def feed(self) -> ChangeFeedCache[InvalidationRecord]:
        """The underlying feed subscription."""
        return self._feed

    def start(self) -> None:
        """Attach the feed subscription. Idempotent."""
        if self._feed_unsubscribe is not None:
            return
        self._feed_unsubscribe = self._feed.subscribe(self._on_records)
        logger.info(f"Started cache invalidation listener on {self.collection}")

    def stop(self) -> None:
        """Detach the feed subscription. Idempotent."""
        unsubscribe, self._feed_unsubscribe = self._feed_unsubscribe, None
        if unsubscribe is not None:
            unsubscribe()
            logger.info("Stopped cache invalidation listener")

    def subscribe(self, collection: str, callback: InvalidationCallback) -> Unsubscribe:
        """Register callback for invalidations of collection.

        The returned function removes only this callback, dropping the
        collection key once no callbacks remain. Calling it twice is a no-op.
        """
        self._listeners.setdefault(collection, {})[callback] = None
        handler_name = getattr(callback, "__qualname__", callback.__class__.__name__)
        logger.debug(f"Registered invalidation handler {handler_name} for {collection}")

        removed = False

        def unsubscribe() -> None:
            nonlocal removed
            if removed:
                return
            removed = True
            callbacks = self._listeners.get(collection)
            if callbacks is None:
                return
            callbacks.pop(callback, None)
            if not callbacks:
                del self._listeners[collection]

        return unsubscribe

    def registered_collections(self) -> dict[str, int]:
        """Number of callbacks per collection."""
        return {name: len(callbacks) for name, callbacks in self._listeners.items()}

    async def send_invalidation_signal(
        self,
        collection: str,
        action: InvalidationAction | str,
        actor_id: str | None = None,
        document_id: str | None = None,
    ) -> str | None:
        """Append an invalidation record to the shared feed.

        Returns:
            The new record id, or None if the store rejected the write
        """
        record = InvalidationRecord(
            collection=collection,
            action=InvalidationAction(action),
            actor_id=actor_id or settings.default_actor,
            document_id=document_id,
        )
        with LogContext(collection=collection, actor_id=record.actor_id):
            try:
                record_id = await self.store.append_record(
                    self.collection, record.to_document(), retain=self.retention
                )
            except StoreError as e:
                logger.error(f"Error sending cache invalidation signal: {e}")
                return None

            record_signal_sent(collection, record.action.value)
            logger.info(f"Cache invalidation signal sent for {collection}:{record.action.value}")
            return record_id

    def get_status(self) -> dict[str, Any]:
        return {
            "feed": self._feed.get_status().to_dict(),
            "running": self.is_running,
            "registrations": self.registered_collections(),
        }

    def _on_records(self, records: list[InvalidationRecord]) -> None:
        # Feed is newest first; dispatch oldest first
        for record in reversed(records):
            key = record.id or f"{record.collection}:{record.timestamp}"
            if key in self._seen:
                continue
            self._seen[key] = None
            if len(self._seen) > self._max_seen:
                self._seen.popitem(last=False)
            self._dispatch(record)

    def _dispatch(self, record: InvalidationRecord) -> None:
        record_signal_received(record.collection, record.action.value)
        logger.debug(
            f"Cache invalidation signal received for {record.collection}:{record.action.value}"
        )
        callbacks = self._listeners.get(record.collection)
        if not callbacks:
            return
        for callback in list(callbacks):
            if callback not in callbacks:
                continue
            try:
                callback()
            except Exception as e:
                logger.error(f"Invalidation handler failed: {e}")

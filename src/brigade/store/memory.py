"""In-memory document store.

Suitable for a single process and for tests. Change feeds are delivered
through the running event loop (never synchronously from the write), which
mirrors how a remote store pushes snapshots.

Fault injection:
- deny(collection): every operation raises PermissionDeniedError and live
  feeds receive the error
- fail_next_probe(collection): the next probe raises
- break_feeds(collection): live feeds receive a transient error
- set_available(False): every operation raises StoreUnavailableError
"""

from __future__ import annotations

import asyncio
import copy
import logging
import time
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass
from uuid import uuid4

from brigade.store.base import (
    DocumentStore,
    ErrorHandler,
    FeedQuery,
    PermissionDeniedError,
    Record,
    SnapshotHandler,
    StoreError,
    StoreUnavailableError,
    Unsubscribe,
    resolve_server_timestamps,
)

logger = logging.getLogger(__name__)


@dataclass
class _Feed:
    collection: str
    on_next: SnapshotHandler
    on_error: ErrorHandler
    query: FeedQuery | None
    active: bool = True


class InMemoryDocumentStore(DocumentStore):
    """Document store backed by dictionaries."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._collections: dict[str, dict[str, Record]] = {}
        self._feeds: dict[str, list[_Feed]] = {}
        self._denied: set[str] = set()
        self._probe_failures: dict[str, StoreError] = {}
        self._available = True
        self._clock = clock

        # Call counters, keyed by collection
        self.probe_calls: Counter[str] = Counter()
        self.fetch_calls: Counter[str] = Counter()
        self.query_calls: Counter[str] = Counter()
        self.subscribe_calls: Counter[str] = Counter()

    # -------------------------------------------------------------------------
    # Fault injection
    # -------------------------------------------------------------------------

    def deny(self, collection: str) -> None:
        """Revoke access to a collection."""
        self._denied.add(collection)
        self._fail_feeds(
            collection,
            PermissionDeniedError(f"Missing permissions on {collection}", collection),
        )

    def allow(self, collection: str) -> None:
        """Restore access to a collection."""
        self._denied.discard(collection)

    def fail_next_probe(self, collection: str, error: StoreError | None = None) -> None:
        """Make the next probe on collection raise."""
        self._probe_failures[collection] = error or StoreUnavailableError(
            f"Probe failed for {collection}", collection
        )

    def break_feeds(self, collection: str, error: StoreError | None = None) -> None:
        """Drop every live feed on collection with a transient error."""
        self._fail_feeds(
            collection,
            error or StoreUnavailableError(f"Feed dropped for {collection}", collection),
        )

    def set_available(self, available: bool) -> None:
        """Simulate the store going offline or coming back."""
        self._available = available

    def active_listener_count(self, collection: str) -> int:
        """Number of attached feeds on a collection."""
        return sum(1 for feed in self._feeds.get(collection, []) if feed.active)

    # -------------------------------------------------------------------------
    # DocumentStore
    # -------------------------------------------------------------------------

    async def probe(self, collection: str, limit: int = 1) -> int:
        self.probe_calls[collection] += 1
        self._check_access(collection)
        failure = self._probe_failures.pop(collection, None)
        if failure is not None:
            raise failure
        return min(len(self._collections.get(collection, {})), limit)

    async def subscribe(
        self,
        collection: str,
        on_next: SnapshotHandler,
        on_error: ErrorHandler,
        query: FeedQuery | None = None,
    ) -> Unsubscribe:
        self.subscribe_calls[collection] += 1
        self._check_access(collection)

        feed = _Feed(collection=collection, on_next=on_next, on_error=on_error, query=query)
        self._feeds.setdefault(collection, []).append(feed)
        asyncio.get_running_loop().call_soon(self._deliver, feed)

        def unsubscribe() -> None:
            if not feed.active:
                return
            feed.active = False
            feeds = self._feeds.get(collection, [])
            if feed in feeds:
                feeds.remove(feed)

        return unsubscribe

    async def query_most_recent(
        self, collection: str, field: str, limit: int = 1
    ) -> list[Record]:
        self.query_calls[collection] += 1
        self._check_access(collection)
        return FeedQuery(order_by=field, descending=True, limit=limit).apply(
            self._snapshot(collection)
        )

    async def fetch_all(self, collection: str) -> list[Record]:
        self.fetch_calls[collection] += 1
        self._check_access(collection)
        return self._snapshot(collection)

    async def append_record(
        self, collection: str, record: Record, retain: int | None = None
    ) -> str:
        self._check_access(collection)
        doc_id = uuid4().hex
        data = resolve_server_timestamps(record, self._clock())
        documents = self._collections.setdefault(collection, {})
        documents[doc_id] = data
        if retain is not None:
            while len(documents) > retain:
                del documents[next(iter(documents))]
        self._notify(collection)
        return doc_id

    async def set_document(self, collection: str, doc_id: str, data: Record) -> None:
        self._check_access(collection)
        self._collections.setdefault(collection, {})[doc_id] = copy.deepcopy(
            resolve_server_timestamps(data, self._clock())
        )
        self._notify(collection)

    async def delete_document(self, collection: str, doc_id: str) -> None:
        self._check_access(collection)
        if self._collections.get(collection, {}).pop(doc_id, None) is not None:
            self._notify(collection)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _check_access(self, collection: str) -> None:
        if not self._available:
            raise StoreUnavailableError("Document store unavailable", collection)
        if collection in self._denied:
            raise PermissionDeniedError(f"Missing permissions on {collection}", collection)

    def _snapshot(self, collection: str) -> list[Record]:
        return [
            {**copy.deepcopy(data), "id": doc_id}
            for doc_id, data in self._collections.get(collection, {}).items()
        ]

    def _notify(self, collection: str) -> None:
        loop = asyncio.get_running_loop()
        for feed in list(self._feeds.get(collection, [])):
            loop.call_soon(self._deliver, feed)

    def _deliver(self, feed: _Feed) -> None:
        if not feed.active:
            return
        records = self._snapshot(feed.collection)
        if feed.query is not None:
            records = feed.query.apply(records)
        feed.on_next(records)

    def _fail_feeds(self, collection: str, error: StoreError) -> None:
        feeds = self._feeds.pop(collection, [])
        for feed in feeds:
            if feed.active:
                feed.active = False
                logger.debug(f"Failing feed on {collection}: {error}")
                feed.on_error(error)

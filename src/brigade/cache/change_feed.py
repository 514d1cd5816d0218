"""Live mirror of one remote collection over a push-based change feed.

Any number of local subscribers share a single upstream listener. The
listener is attached when the first subscriber arrives and detached as soon
as the last one leaves.

State machine:

    IDLE -> CONNECTING -> CONNECTED
    CONNECTED/CONNECTING -> RETRYING -> CONNECTING   (transient feed or probe error)
    CONNECTED/CONNECTING -> HALTED                   (permission denied,
                                                      collection not found)
    any -> IDLE                                      (last subscriber left,
                                                      unless HALTED)

Only force_reconnect() leaves HALTED.

Example:
    cache = ChangeFeedCache("menu", MenuItem.from_document, store=store)
    unsubscribe = cache.subscribe(lambda items: print(len(items)))
    ...
    unsubscribe()
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic

from brigade.cache.backoff import BackoffPolicy
from brigade.cache.base import (
    NO_DATA,
    CacheEntry,
    Cancellable,
    LoopScheduler,
    NoData,
    Scheduler,
    Subscriber,
    T,
    Transform,
    apply_transform,
    require_collection_name,
)
from brigade.observability.logging import LogContext
from brigade.observability.metrics import (
    record_cache_refresh,
    record_listener_retry,
    set_listener_state,
)
from brigade.store.base import (
    CollectionNotFoundError,
    DocumentStore,
    FeedQuery,
    PermissionDeniedError,
    Record,
    Unsubscribe,
)

logger = logging.getLogger(__name__)


class ListenerState(str, Enum):
    """Upstream listener state."""

    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RETRYING = "retrying"
    HALTED = "halted"


@dataclass
class CacheStatus:
    """Health snapshot of a ChangeFeedCache."""

    collection: str
    has_cache: bool
    item_count: int
    is_connected: bool
    is_connecting: bool
    has_error: bool
    listener_count: int
    state: ListenerState
    retry_attempt: int = 0
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Export status as dictionary."""
        return {
            "collection": self.collection,
            "has_cache": self.has_cache,
            "item_count": self.item_count,
            "is_connected": self.is_connected,
            "is_connecting": self.is_connecting,
            "has_error": self.has_error,
            "listener_count": self.listener_count,
            "state": self.state.value,
            "retry_attempt": self.retry_attempt,
            "last_error": self.last_error,
        }


class ChangeFeedCache(Generic[T]):
    """Eventually-consistent mirror of a collection for local subscribers.

    Features:
    - One upstream listener regardless of subscriber count
    - Accessibility probe before attaching
    - Randomized exponential backoff on transient feed errors
    - Permission errors halt the listener until force_reconnect()
    - Malformed records are skipped, not fatal

    Must be used from within a running event loop.
    """

    def __init__(
        self,
        collection: str,
        transform: Transform[T],
        *,
        store: DocumentStore,
        query: FeedQuery | None = None,
        backoff: BackoffPolicy | None = None,
        scheduler: Scheduler | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.collection = require_collection_name(collection)
        self.transform = transform
        self.store = store
        self.query = query
        self.backoff = backoff or BackoffPolicy.from_settings()
        self._scheduler = scheduler or LoopScheduler()
        self._clock = clock

        self._entry: CacheEntry[T] = CacheEntry()
        # Ordered set: registration order drives fan-out order
        self._subscribers: dict[Subscriber[T], None] = {}

        self._state = ListenerState.IDLE
        self._detach: Unsubscribe | None = None
        self._connect_task: asyncio.Task[None] | None = None
        self._retry_handle: Cancellable | None = None
        self._retry_attempt = 0
        self._has_error = False
        self._last_error: str | None = None
        # Bumped whenever the current listener is abandoned; stale callbacks
        # from an older generation are ignored.
        self._generation = 0

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    @property
    def state(self) -> ListenerState:
        """Get current listener state."""
        return self._state

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    @property
    def is_listening(self) -> bool:
        """True while an upstream listener is attached."""
        return self._detach is not None

    def subscribe(self, callback: Subscriber[T]) -> Unsubscribe:
        """Register a subscriber and return its unsubscribe function.

        The first subscriber starts the upstream listener. If a snapshot is
        already cached, callback receives it before this method returns.
        """
        self._subscribers[callback] = None

        if len(self._subscribers) == 1 and self._state == ListenerState.IDLE:
            self._start_listening()

        if self._entry.items is not None:
            self._invoke(callback, self._entry.items)

        unsubscribed = False

        def unsubscribe() -> None:
            nonlocal unsubscribed
            if unsubscribed:
                return
            unsubscribed = True
            self._subscribers.pop(callback, None)
            if not self._subscribers:
                self._stop_listening()

        return unsubscribe

    def get_current_cache(self) -> list[T] | NoData:
        """Return the last snapshot, or NO_DATA. Never blocks."""
        if self._entry.items is None:
            return NO_DATA
        return self._entry.items

    def clear_cache(self) -> None:
        """Drop the snapshot; the listener is left alone."""
        self._entry = CacheEntry()
        logger.info(f"Cache cleared for {self.collection}")

    def get_status(self) -> CacheStatus:
        """Return connection and cache health."""
        return CacheStatus(
            collection=self.collection,
            has_cache=self._entry.has_data,
            item_count=self._entry.item_count,
            is_connected=self._state == ListenerState.CONNECTED,
            is_connecting=self._state in (ListenerState.CONNECTING, ListenerState.RETRYING),
            has_error=self._has_error,
            listener_count=len(self._subscribers),
            state=self._state,
            retry_attempt=self._retry_attempt,
            last_error=self._last_error,
        )

    def force_reconnect(self) -> None:
        """Tear down and restart the listener, clearing any error state.

        The listener is only restarted when at least one subscriber exists.
        """
        logger.info(f"Forcing reconnect for {self.collection}")
        self._teardown()
        self._retry_attempt = 0
        self._has_error = False
        self._last_error = None
        self._set_state(ListenerState.IDLE)
        if self._subscribers:
            self._start_listening()

    def close(self) -> None:
        """Drop every subscriber and detach the listener."""
        self._subscribers.clear()
        self._teardown()
        self._set_state(ListenerState.IDLE)

    # -------------------------------------------------------------------------
    # Listener lifecycle
    # -------------------------------------------------------------------------

    def _start_listening(self) -> None:
        self._generation += 1
        self._set_state(ListenerState.CONNECTING)
        self._connect_task = asyncio.get_running_loop().create_task(
            self._connect(self._generation)
        )

    def _stop_listening(self) -> None:
        self._teardown()
        if self._state != ListenerState.HALTED:
            self._set_state(ListenerState.IDLE)
        logger.info(f"Stopped listener for {self.collection} (no subscribers)")

    def _teardown(self) -> None:
        """Synchronously cancel retry, pending connect and the live listener."""
        self._generation += 1

        if self._retry_handle is not None:
            self._retry_handle.cancel()
            self._retry_handle = None

        if self._connect_task is not None and not self._connect_task.done():
            self._connect_task.cancel()
        self._connect_task = None

        detach, self._detach = self._detach, None
        if detach is not None:
            detach()

    async def _connect(self, generation: int) -> None:
        with LogContext(collection=self.collection):
            try:
                await self.store.probe(self.collection, limit=1)
            except asyncio.CancelledError:
                raise
            except (PermissionDeniedError, CollectionNotFoundError) as e:
                if generation == self._generation:
                    self._mark_inaccessible(e)
                return
            except Exception as e:
                if generation == self._generation:
                    self._on_probe_error(generation, e)
                return

            if generation != self._generation:
                return

            try:
                detach = await self.store.subscribe(
                    self.collection,
                    lambda records: self._on_snapshot(generation, records),
                    lambda error: self._on_error(generation, error),
                    self.query,
                )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._on_error(generation, e)
                return

            if generation != self._generation:
                # Torn down while attaching
                detach()
                return

            self._detach = detach
            if self._state == ListenerState.CONNECTING:
                self._set_state(ListenerState.CONNECTED)
            logger.info(f"Real-time listener attached for {self.collection}")

    def _mark_inaccessible(self, error: Exception) -> None:
        """Stop trying; subscribers get an empty snapshot if they have none."""
        logger.warning(
            f"Collection {self.collection} is inaccessible ({error}); listener halted"
        )
        self._has_error = True
        self._last_error = str(error)
        self._set_state(ListenerState.HALTED)
        self._serve_empty_snapshot()

    def _on_probe_error(self, generation: int, error: Exception) -> None:
        """Transient probe failure: degrade to an empty snapshot, then retry."""
        self._serve_empty_snapshot()
        self._on_error(generation, error)

    def _serve_empty_snapshot(self) -> None:
        # A previous good snapshot is never replaced by an empty one
        if self._entry.items is not None:
            return
        self._entry = CacheEntry(items=[], last_update=self._clock())
        self._notify([])

    def _on_snapshot(self, generation: int, records: list[Record]) -> None:
        if generation != self._generation:
            return

        items = apply_transform(records, self.transform, self.collection)
        self._entry = CacheEntry(items=items, last_update=self._clock())
        self._retry_attempt = 0
        self._has_error = False
        self._last_error = None
        if self._state != ListenerState.CONNECTED:
            self._set_state(ListenerState.CONNECTED)

        record_cache_refresh(self.collection, "change_feed")
        logger.debug(f"Snapshot for {self.collection}: {len(items)} items")
        self._notify(items)

    def _on_error(self, generation: int, error: Exception) -> None:
        if generation != self._generation:
            return

        self._teardown()
        self._has_error = True
        self._last_error = str(error)

        if isinstance(error, PermissionDeniedError):
            self._set_state(ListenerState.HALTED)
            logger.error(
                f"Permission denied on {self.collection}; listener halted until forced reconnect"
            )
            return

        if not self._subscribers:
            self._set_state(ListenerState.IDLE)
            return

        delay = self.backoff.delay(self._retry_attempt)
        self._retry_attempt += 1
        self._set_state(ListenerState.RETRYING)
        record_listener_retry(self.collection)
        logger.warning(
            f"Listener error on {self.collection}: {error}; "
            f"retry {self._retry_attempt} in {delay:.1f}s"
        )
        self._retry_handle = self._scheduler.call_later(delay, self._retry)

    def _retry(self) -> None:
        self._retry_handle = None
        if self._state != ListenerState.RETRYING or not self._subscribers:
            return
        self._start_listening()

    # -------------------------------------------------------------------------
    # Fan-out
    # -------------------------------------------------------------------------

    def _notify(self, items: list[T]) -> None:
        # Iterate over a copy: callbacks may unsubscribe themselves
        for callback in list(self._subscribers):
            if callback in self._subscribers:
                self._invoke(callback, items)

    def _invoke(self, callback: Subscriber[T], items: list[T]) -> None:
        try:
            callback(items)
        except Exception as e:
            logger.error(f"Subscriber for {self.collection} failed: {e}")

    def _set_state(self, state: ListenerState) -> None:
        if state != self._state:
            logger.debug(f"{self.collection} listener {self._state.value} -> {state.value}")
        self._state = state
        set_listener_state(self.collection, state.value)

"""Remote document store interface.

The caches never talk to a concrete database. They consume this small
async surface:
- probe: cheap accessibility check on a collection
- subscribe: push-based change feed delivering full snapshots
- query_most_recent: staleness probe ordered by a modification field
- fetch_all: full read
- append_record: append-only writes (used for invalidation signals)

Implementations:
- InMemoryDocumentStore: single process, tests, fault injection
- RedisDocumentStore: shared store for multiple running clients
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

Record = dict[str, Any]
Unsubscribe = Callable[[], None]
SnapshotHandler = Callable[[list[Record]], None]
ErrorHandler = Callable[[Exception], None]

# Epoch values above this are taken to be milliseconds
_MILLISECONDS_THRESHOLD = 1e11


class StoreError(Exception):
    """Base class for document store failures."""

    def __init__(self, message: str, collection: str | None = None):
        super().__init__(message)
        self.collection = collection


class PermissionDeniedError(StoreError):
    """The caller is not allowed to read or write the collection.

    Never retried automatically.
    """


class StoreUnavailableError(StoreError):
    """Transient connectivity failure (timeout, dropped connection)."""


class CollectionNotFoundError(StoreError):
    """The collection does not exist or was renamed."""


class _ServerTimestamp:
    """Placeholder replaced by the store's own clock on write."""

    _instance: _ServerTimestamp | None = None

    def __new__(cls) -> _ServerTimestamp:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = _ServerTimestamp()


def resolve_server_timestamps(record: Record, now: float) -> Record:
    """Copy of record with every SERVER_TIMESTAMP value replaced by now."""
    return {key: (now if value is SERVER_TIMESTAMP else value) for key, value in record.items()}


def to_epoch_seconds(value: Any) -> float:
    """Normalize a modification instant to epoch seconds.

    Accepts datetimes, ISO-8601 strings, epoch seconds and epoch
    milliseconds. Anything else counts as the epoch.
    """
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, datetime):
        return value.timestamp()
    if isinstance(value, (int, float)):
        seconds = float(value)
        if seconds > _MILLISECONDS_THRESHOLD:
            seconds /= 1000.0
        return seconds
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value).timestamp()
        except ValueError:
            return 0.0
    return 0.0


def _sort_key(value: Any) -> tuple[int, Any]:
    if value is None:
        return (0, 0.0)
    if isinstance(value, (int, float, datetime)) and not isinstance(value, bool):
        return (1, to_epoch_seconds(value))
    return (2, str(value))


@dataclass(frozen=True, slots=True)
class FeedQuery:
    """Ordering and bounds applied to a change feed or query."""

    order_by: str | None = None
    descending: bool = False
    limit: int | None = None

    def apply(self, records: Iterable[Record]) -> list[Record]:
        """Sort and truncate records.

        Without order_by the arrival order is kept.
        """
        result = list(records)
        if self.order_by is not None:
            field = self.order_by
            result.sort(key=lambda r: _sort_key(r.get(field)), reverse=self.descending)
        if self.limit is not None:
            result = result[: self.limit]
        return result


class DocumentStore(ABC):
    """Abstract remote document store."""

    @abstractmethod
    async def probe(self, collection: str, limit: int = 1) -> int:
        """Return how many records (up to limit) are readable.

        Raises:
            StoreError: If the collection cannot be read.
        """

    @abstractmethod
    async def subscribe(
        self,
        collection: str,
        on_next: SnapshotHandler,
        on_error: ErrorHandler,
        query: FeedQuery | None = None,
    ) -> Unsubscribe:
        """Attach a change feed.

        on_next receives the complete current snapshot once after attach and
        again after every change. on_error is called at most once, after
        which the feed is dead and must be re-attached. The returned function
        detaches synchronously and is idempotent.
        """

    @abstractmethod
    async def query_most_recent(
        self, collection: str, field: str, limit: int = 1
    ) -> list[Record]:
        """Return records ordered by field, newest first."""

    @abstractmethod
    async def fetch_all(self, collection: str) -> list[Record]:
        """Return every record in arrival order."""

    @abstractmethod
    async def append_record(
        self, collection: str, record: Record, retain: int | None = None
    ) -> str:
        """Append a record and return its id.

        SERVER_TIMESTAMP values are replaced by the store's clock. When
        retain is set, the oldest records beyond that count are dropped.
        """

    @abstractmethod
    async def set_document(self, collection: str, doc_id: str, data: Record) -> None:
        """Create or replace a document."""

    @abstractmethod
    async def delete_document(self, collection: str, doc_id: str) -> None:
        """Delete a document. Missing documents are ignored."""

    async def close(self) -> None:
        """Release connections."""
        return None

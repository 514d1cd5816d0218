"""Building blocks shared by the cache implementations."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Generic, Protocol, TypeVar

from brigade.observability.metrics import record_transform_error
from brigade.store.base import Record

logger = logging.getLogger(__name__)

T = TypeVar("T")

Subscriber = Callable[[list[T]], None]
Transform = Callable[[Record], T]


class NoData:
    """Sentinel for "no snapshot yet"."""

    _instance: NoData | None = None

    def __new__(cls) -> NoData:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "NO_DATA"


NO_DATA = NoData()


@dataclass
class CacheEntry(Generic[T]):
    """A snapshot and the instant it was produced (epoch seconds).

    items is None while no snapshot exists.
    """

    items: list[T] | None = None
    last_update: float = 0.0

    @property
    def has_data(self) -> bool:
        return self.items is not None

    @property
    def item_count(self) -> int:
        return len(self.items) if self.items is not None else 0

    def age(self, now: float) -> float:
        return now - self.last_update

    def is_fresh(self, now: float, duration: float) -> bool:
        return self.items is not None and self.age(now) < duration


def apply_transform(
    records: Iterable[Record], transform: Transform[T], collection: str
) -> list[T]:
    """Transform raw records, skipping the ones that fail.

    A malformed document is logged and dropped; the rest of the batch is kept.
    """
    items: list[T] = []
    for record in records:
        try:
            items.append(transform(record))
        except Exception as e:
            record_transform_error(collection)
            logger.warning(f"Skipping malformed record {record.get('id')!r} in {collection}: {e}")
    return items


def require_collection_name(collection: str) -> str:
    """Reject empty collection names at construction."""
    if not isinstance(collection, str) or not collection.strip():
        raise ValueError("collection name must be a non-empty string")
    return collection


def require_positive(name: str, value: float) -> float:
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {value}")
    return value


class Cancellable(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """Something that runs a callback after a delay.

    asyncio event loops satisfy this protocol; tests inject a fake.
    """

    def call_later(self, delay: float, callback: Callable[[], object]) -> Cancellable: ...


class LoopScheduler:
    """Scheduler backed by the running asyncio event loop."""

    def call_later(self, delay: float, callback: Callable[[], object]) -> Cancellable:
        return asyncio.get_running_loop().call_later(delay, callback)

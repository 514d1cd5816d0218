"""Redis-backed document store.

Lets several running clients share collections and the invalidation feed.

Layout per collection (prefix defaults to "brigade"):
- {prefix}:col:{name}          hash, document id -> orjson document
- {prefix}:col:{name}:order    sorted set, document id scored by arrival
- {prefix}:col:{name}:mtime    sorted set, document id scored by the
                               modification field (staleness probe)
- {prefix}:feed:{name}         pub/sub channel, one message per write

A change feed is a pub/sub subscription on the collection channel; each
message triggers a full re-read that is pushed as the new snapshot.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any, TypeVar, cast
from uuid import uuid4

import orjson
import redis.asyncio as redis
from redis import exceptions as redis_exceptions

from brigade.config import settings
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
    to_epoch_seconds,
)

if TYPE_CHECKING:
    from redis.asyncio import Redis
    from redis.asyncio.client import PubSub

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Module-level connection pool
_redis_client: Redis | None = None


async def get_redis() -> Redis:
    """Get or create the Redis client.

    Uses connection pooling for efficient connection management.
    """
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.from_url(  # type: ignore[no-untyped-call]
            settings.redis_url,
            encoding="utf-8",
            decode_responses=False,
        )
    return _redis_client


async def close_redis() -> None:
    """Close Redis connections."""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.close()
        _redis_client = None


def translate_redis_error(exc: Exception, collection: str | None = None) -> StoreError:
    """Map a redis-py exception onto the store error taxonomy."""
    if isinstance(exc, StoreError):
        return exc
    if isinstance(exc, (redis_exceptions.NoPermissionError, redis_exceptions.AuthenticationError)):
        return PermissionDeniedError(str(exc), collection)
    if isinstance(exc, (redis_exceptions.ConnectionError, redis_exceptions.TimeoutError)):
        return StoreUnavailableError(str(exc), collection)
    return StoreError(str(exc), collection)


class RedisDocumentStore(DocumentStore):
    """Document store over Redis hashes and pub/sub."""

    def __init__(
        self,
        client: Redis | None = None,
        prefix: str | None = None,
        modified_field: str | None = None,
    ):
        self._client = client
        self.prefix = prefix or settings.redis_key_prefix
        self.modified_field = modified_field or settings.modified_field
        self._feed_tasks: set[asyncio.Task[None]] = set()

    async def _get_client(self) -> Redis:
        if self._client is None:
            self._client = await get_redis()
        return self._client

    # -------------------------------------------------------------------------
    # Keys
    # -------------------------------------------------------------------------

    def documents_key(self, collection: str) -> str:
        return f"{self.prefix}:col:{collection}"

    def order_key(self, collection: str) -> str:
        return f"{self.prefix}:col:{collection}:order"

    def mtime_key(self, collection: str) -> str:
        return f"{self.prefix}:col:{collection}:mtime"

    def channel(self, collection: str) -> str:
        return f"{self.prefix}:feed:{collection}"

    # -------------------------------------------------------------------------
    # DocumentStore
    # -------------------------------------------------------------------------

    async def probe(self, collection: str, limit: int = 1) -> int:
        client = await self._get_client()
        count = await self._call(collection, lambda: client.zcard(self.order_key(collection)))
        return min(int(count), limit)

    async def subscribe(
        self,
        collection: str,
        on_next: SnapshotHandler,
        on_error: ErrorHandler,
        query: FeedQuery | None = None,
    ) -> Unsubscribe:
        client = await self._get_client()
        pubsub = client.pubsub()
        try:
            await pubsub.subscribe(self.channel(collection))
        except Exception as e:
            await pubsub.close()
            raise translate_redis_error(e, collection) from e

        task = asyncio.create_task(self._feed_loop(collection, pubsub, on_next, on_error, query))
        self._feed_tasks.add(task)
        task.add_done_callback(self._feed_tasks.discard)
        logger.debug(f"Attached Redis feed on {self.channel(collection)}")

        def unsubscribe() -> None:
            if not task.done():
                task.cancel()

        return unsubscribe

    async def query_most_recent(
        self, collection: str, field: str, limit: int = 1
    ) -> list[Record]:
        if field != self.modified_field:
            records = await self.fetch_all(collection)
            return FeedQuery(order_by=field, descending=True, limit=limit).apply(records)

        client = await self._get_client()
        raw_ids = await self._call(
            collection, lambda: client.zrevrange(self.mtime_key(collection), 0, limit - 1)
        )
        return await self._load(collection, [_decode(doc_id) for doc_id in raw_ids])

    async def fetch_all(self, collection: str) -> list[Record]:
        client = await self._get_client()
        raw_ids = await self._call(
            collection, lambda: client.zrange(self.order_key(collection), 0, -1)
        )
        return await self._load(collection, [_decode(doc_id) for doc_id in raw_ids])

    async def append_record(
        self, collection: str, record: Record, retain: int | None = None
    ) -> str:
        client = await self._get_client()
        seconds, microseconds = await self._call(collection, client.time)
        now = seconds + microseconds / 1_000_000
        data = resolve_server_timestamps(record, now)
        doc_id = uuid4().hex
        await self._write(collection, doc_id, data, arrival=now)

        if retain is not None:
            stale = await self._call(
                collection, lambda: client.zrange(self.order_key(collection), 0, -(retain + 1))
            )
            for raw_id in stale:
                await self._remove(collection, _decode(raw_id), publish=False)
        return doc_id

    async def set_document(self, collection: str, doc_id: str, data: Record) -> None:
        client = await self._get_client()
        seconds, microseconds = await self._call(collection, client.time)
        now = seconds + microseconds / 1_000_000
        await self._write(collection, doc_id, resolve_server_timestamps(data, now), arrival=now)

    async def delete_document(self, collection: str, doc_id: str) -> None:
        await self._remove(collection, doc_id, publish=True)

    async def close(self) -> None:
        for task in list(self._feed_tasks):
            task.cancel()
        if self._feed_tasks:
            await asyncio.gather(*self._feed_tasks, return_exceptions=True)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    async def _call(self, collection: str, operation: Callable[[], Awaitable[T]]) -> T:
        try:
            return await operation()
        except Exception as e:
            raise translate_redis_error(e, collection) from e

    async def _load(self, collection: str, doc_ids: list[str]) -> list[Record]:
        if not doc_ids:
            return []
        client = await self._get_client()
        raw_docs = await self._call(
            collection, lambda: client.hmget(self.documents_key(collection), doc_ids)
        )
        records: list[Record] = []
        for doc_id, raw in zip(doc_ids, raw_docs, strict=True):
            if raw is None:
                continue
            data = cast(dict[str, Any], orjson.loads(raw))
            data["id"] = doc_id
            records.append(data)
        return records

    async def _write(self, collection: str, doc_id: str, data: Record, arrival: float) -> None:
        client = await self._get_client()
        payload = orjson.dumps({k: v for k, v in data.items() if k != "id"}, default=str)

        async def run() -> None:
            async with client.pipeline() as pipe:
                pipe.hset(self.documents_key(collection), doc_id, payload)
                pipe.zadd(self.order_key(collection), {doc_id: arrival}, nx=True)
                if self.modified_field in data:
                    modified = to_epoch_seconds(data[self.modified_field])
                    pipe.zadd(self.mtime_key(collection), {doc_id: modified})
                pipe.publish(self.channel(collection), doc_id)
                await pipe.execute()

        await self._call(collection, run)

    async def _remove(self, collection: str, doc_id: str, publish: bool) -> None:
        client = await self._get_client()

        async def run() -> None:
            async with client.pipeline() as pipe:
                pipe.hdel(self.documents_key(collection), doc_id)
                pipe.zrem(self.order_key(collection), doc_id)
                pipe.zrem(self.mtime_key(collection), doc_id)
                if publish:
                    pipe.publish(self.channel(collection), doc_id)
                await pipe.execute()

        await self._call(collection, run)

    async def _snapshot(self, collection: str, query: FeedQuery | None) -> list[Record]:
        records = await self.fetch_all(collection)
        return query.apply(records) if query is not None else records

    async def _feed_loop(
        self,
        collection: str,
        pubsub: PubSub,
        on_next: SnapshotHandler,
        on_error: ErrorHandler,
        query: FeedQuery | None,
    ) -> None:
        """Push a snapshot on attach and after every write notification."""
        try:
            on_next(await self._snapshot(collection, query))
            while True:
                message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                if message is None or message["type"] != "message":
                    continue
                on_next(await self._snapshot(collection, query))
        except asyncio.CancelledError:
            pass
        except Exception as e:
            error = translate_redis_error(e, collection)
            logger.warning(f"Redis feed on {collection} failed: {error}")
            on_error(error)
        finally:
            try:
                await pubsub.unsubscribe(self.channel(collection))
                await pubsub.close()
            except Exception as e:
                logger.debug(f"Error closing pubsub for {collection}: {e}")


def _decode(value: bytes | str) -> str:
    return value.decode() if isinstance(value, bytes) else value

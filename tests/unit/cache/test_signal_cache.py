"""Tests for the signal-invalidated cache."""

from __future__ import annotations

import asyncio

import pytest

from brigade.cache.base import NO_DATA
from brigade.cache.signal import SignalInvalidatedCache
from brigade.invalidation.bus import InvalidationSignalBus
from brigade.store.base import Record


def stock_name(record: Record) -> str:
    return record["name"]


class TestSignalInvalidatedCache:
    """Test TTL reads combined with bus invalidation."""

    @pytest.fixture
    async def bus(self, store, scheduler, settle):
        await store.set_document("stock", "flour", {"name": "flour", "quantity": 3})
        await store.set_document("stock", "eggs", {"name": "eggs", "quantity": 30})
        bus = InvalidationSignalBus(store=store, scheduler=scheduler)
        bus.start()
        await settle()
        yield bus
        bus.stop()

    @pytest.fixture
    def cache(self, bus, clock):
        cache = SignalInvalidatedCache("stock", stock_name, bus=bus, cache_duration=60, clock=clock)
        yield cache
        cache.destroy()

    async def test_registers_with_bus(self, cache, bus) -> None:
        """Construction subscribes to the bus under the collection name."""
        assert bus.registered_collections() == {"stock": 1}
        assert cache.get_cache_info().has_invalidation_listener is True
        assert cache.store is bus.store

    async def test_ttl_respected(self, cache, store, clock) -> None:
        assert await cache.get_data() == ["flour", "eggs"]
        clock.advance(59)
        await cache.get_data()
        assert store.fetch_calls["stock"] == 1

        clock.advance(2)
        await cache.get_data()
        await cache.get_data()
        assert store.fetch_calls["stock"] == 2

    async def test_signal_invalidates_without_fetching(self, cache, bus, store, settle) -> None:
        """A signal empties the cache; the next read fetches lazily."""
        await cache.get_data()

        await bus.send_invalidation_signal("stock", "update", "chef-1", "flour")
        assert cache.get_cache_info().has_cache is True
        await settle()

        info = cache.get_cache_info()
        assert info.has_cache is False
        assert info.is_valid is False
        assert cache.get_current_cache() is NO_DATA
        assert store.fetch_calls["stock"] == 1

        await cache.get_data()
        assert store.fetch_calls["stock"] == 2

    async def test_signal_during_fetch_not_cached(self, cache, bus, store, settle) -> None:
        """A signal observed while a fetch is in flight leaves the cache empty."""
        gate = asyncio.Event()
        fetch_all = store.fetch_all

        async def gated_fetch_all(collection: str) -> list[Record]:
            records = await fetch_all(collection)
            await gate.wait()
            return records

        store.fetch_all = gated_fetch_all  # type: ignore[method-assign]
        pending = asyncio.create_task(cache.get_data())
        await settle()

        await store.set_document("stock", "flour", {"name": "flour", "quantity": 2})
        await bus.send_invalidation_signal("stock", "update", "chef-1", "flour")
        await settle()
        gate.set()

        assert await pending == ["flour", "eggs"]
        info = cache.get_cache_info()
        assert info.has_cache is False
        assert info.is_valid is False

        await cache.get_data()
        assert store.fetch_calls["stock"] == 2
        assert cache.get_cache_info().has_cache is True

    async def test_signal_for_other_collection_ignored(self, cache, bus, settle) -> None:
        await cache.get_data()

        await bus.send_invalidation_signal("menu", "update", "manager-1")
        await settle()

        assert cache.get_cache_info().has_cache is True

    async def test_clear_cache(self, cache, store) -> None:
        await cache.get_data()
        cache.clear_cache()

        assert cache.get_cache_info().has_cache is False
        await cache.get_data()
        assert store.fetch_calls["stock"] == 2

    async def test_destroy(self, cache, bus, settle) -> None:
        """After destroy() signals no longer reach the cache."""
        await cache.get_data()

        cache.destroy()
        cache.destroy()
        await bus.send_invalidation_signal("stock", "update", "chef-1")
        await settle()

        assert bus.registered_collections() == {}
        assert cache.get_cache_info().has_invalidation_listener is False
        assert cache.get_cache_info().has_cache is True

    async def test_custom_fetch(self, bus, clock) -> None:
        calls = 0

        async def fetch() -> list[str]:
            nonlocal calls
            calls += 1
            return ["custom"]

        cache = SignalInvalidatedCache("stock", stock_name, bus=bus, fetch=fetch, clock=clock)

        assert await cache.get_data() == ["custom"]
        assert await cache.get_data() == ["custom"]
        assert calls == 1
        cache.destroy()

    async def test_store_error_serves_stale(self, cache, store, clock) -> None:
        await cache.get_data()
        store.set_available(False)
        clock.advance(120)

        assert await cache.get_data() == ["flour", "eggs"]
        assert cache.get_cache_info().has_error is True

    async def test_store_error_without_snapshot(self, cache, store) -> None:
        store.set_available(False)
        assert await cache.get_data() == []

    async def test_invalid_duration(self, bus) -> None:
        with pytest.raises(ValueError):
            SignalInvalidatedCache("stock", stock_name, bus=bus, cache_duration=0)

"""Tests for the invalidation signal bus."""

from __future__ import annotations

import pytest

from brigade.invalidation.bus import InvalidationSignalBus
from brigade.invalidation.schemas import InvalidationAction


class TestInvalidationSignalBus:
    """Test registration, sending and feed-driven dispatch."""

    @pytest.fixture
    async def bus(self, store, scheduler, settle):
        bus = InvalidationSignalBus(store=store, scheduler=scheduler)
        bus.start()
        await settle()
        yield bus
        bus.stop()

    def test_defaults(self, store) -> None:
        bus = InvalidationSignalBus(store=store)
        assert bus.collection == "cache_invalidation"
        assert bus.window == 50
        assert bus.is_running is False

    def test_invalid_window(self, store) -> None:
        with pytest.raises(ValueError):
            InvalidationSignalBus(store=store, window=0)

    async def test_start_is_idempotent(self, bus, store, settle) -> None:
        bus.start()
        await settle()
        assert store.active_listener_count("cache_invalidation") == 1
        assert bus.get_status()["feed"]["state"] == "connected"

    async def test_send_does_not_invoke_callbacks_directly(self, bus, settle) -> None:
        """Callbacks only fire once the feed observes the record."""
        calls: list[str] = []
        bus.subscribe("stock", lambda: calls.append("stock"))

        record_id = await bus.send_invalidation_signal("stock", "update", "chef-1", "flour")

        assert record_id is not None
        assert calls == []
        await settle()
        assert calls == ["stock"]

    async def test_only_matching_collection_notified(self, bus, settle) -> None:
        calls: list[str] = []
        bus.subscribe("stock", lambda: calls.append("stock"))
        bus.subscribe("menu", lambda: calls.append("menu"))

        await bus.send_invalidation_signal("menu", InvalidationAction.CREATE, "manager-1")
        await settle()

        assert calls == ["menu"]

    async def test_each_record_dispatched_once(self, bus, settle) -> None:
        """Records already seen in earlier snapshots are not dispatched again."""
        calls: list[str] = []
        bus.subscribe("stock", lambda: calls.append("stock"))

        await bus.send_invalidation_signal("stock", "update", "chef-1")
        await settle()
        await bus.send_invalidation_signal("stock", "delete", "chef-1")
        await settle()

        assert calls == ["stock", "stock"]

    async def test_records_from_another_client(self, store, scheduler, settle, bus) -> None:
        """A signal sent through one bus reaches callbacks on every bus."""
        other = InvalidationSignalBus(store=store, scheduler=scheduler)
        other.start()
        await settle()
        calls: list[str] = []
        bus.subscribe("tables", lambda: calls.append("local"))
        other.subscribe("tables", lambda: calls.append("remote"))

        await other.send_invalidation_signal("tables", "update", "waiter-2", "t4")
        await settle()

        assert sorted(calls) == ["local", "remote"]
        other.stop()

    async def test_unsubscribe_removes_empty_key(self, bus, settle) -> None:
        """The last unsubscribe drops the collection entry; repeats are no-ops."""
        calls: list[str] = []
        unsubscribe_a = bus.subscribe("stock", lambda: calls.append("a"))
        unsubscribe_b = bus.subscribe("stock", lambda: calls.append("b"))

        unsubscribe_a()
        unsubscribe_a()
        assert bus.registered_collections() == {"stock": 1}

        unsubscribe_b()
        assert bus.registered_collections() == {}

        await bus.send_invalidation_signal("stock", "update", "chef-1")
        await settle()
        assert calls == []

    async def test_failing_handler_isolated(self, bus, settle) -> None:
        calls: list[str] = []

        def broken() -> None:
            raise RuntimeError("boom")

        bus.subscribe("stock", broken)
        bus.subscribe("stock", lambda: calls.append("ok"))

        await bus.send_invalidation_signal("stock", "update", "chef-1")
        await settle()

        assert calls == ["ok"]

    async def test_handler_unsubscribes_during_dispatch(self, bus, settle) -> None:
        """A handler may remove another handler of the same collection."""
        calls: list[str] = []
        unsubscribe_second = None

        def first() -> None:
            calls.append("first")
            assert unsubscribe_second is not None
            unsubscribe_second()

        bus.subscribe("stock", first)
        unsubscribe_second = bus.subscribe("stock", lambda: calls.append("second"))

        await bus.send_invalidation_signal("stock", "update", "chef-1")
        await settle()

        assert calls == ["first"]

    async def test_send_failure_returns_none(self, bus, store) -> None:
        """Store errors while sending are logged, not raised."""
        store.set_available(False)
        assert await bus.send_invalidation_signal("stock", "update", "chef-1") is None

    async def test_invalid_action_rejected(self, bus) -> None:
        with pytest.raises(ValueError):
            await bus.send_invalidation_signal("stock", "rename", "chef-1")

    async def test_default_actor(self, bus, store) -> None:
        from brigade.config import settings

        await bus.send_invalidation_signal("stock", "update")
        records = await store.fetch_all("cache_invalidation")
        assert records[0]["actorId"] == settings.default_actor

    async def test_retention_trims_feed(self, store, settle) -> None:
        bus = InvalidationSignalBus(store=store, window=2, retention=3)
        for index in range(5):
            await bus.send_invalidation_signal("stock", "update", "chef-1", f"item-{index}")

        records = await store.fetch_all("cache_invalidation")
        assert [record["documentId"] for record in records] == ["item-2", "item-3", "item-4"]

    async def test_existing_records_dispatched_on_start(self, store, settle) -> None:
        """Records already in the window count as new for a starting bus."""
        writer = InvalidationSignalBus(store=store)
        await writer.send_invalidation_signal("menu", "create", "manager-1")

        bus = InvalidationSignalBus(store=store)
        calls: list[str] = []
        bus.subscribe("menu", lambda: calls.append("menu"))
        bus.start()
        await settle()

        assert calls == ["menu"]
        bus.stop()

    async def test_stop_detaches_feed(self, bus, store, settle) -> None:
        calls: list[str] = []
        bus.subscribe("stock", lambda: calls.append("stock"))

        bus.stop()
        bus.stop()
        await bus.send_invalidation_signal("stock", "update", "chef-1")
        await settle()

        assert bus.is_running is False
        assert store.active_listener_count("cache_invalidation") == 0
        assert calls == []

    async def test_feed_error_pauses_then_resumes(self, bus, store, scheduler, settle) -> None:
        """After a feed drop, signals resume once the retry reattaches."""
        calls: list[str] = []
        bus.subscribe("stock", lambda: calls.append("stock"))

        store.break_feeds("cache_invalidation")
        await bus.send_invalidation_signal("stock", "update", "chef-1")
        await settle()
        assert calls == []

        scheduler.fire_next()
        await settle()
        assert calls == ["stock"]

    async def test_store_outage_during_retry_does_not_halt(
        self, bus, store, scheduler, settle
    ) -> None:
        """An outage spanning the first retry only delays dispatch."""
        calls: list[str] = []
        bus.subscribe("stock", lambda: calls.append("stock"))

        store.break_feeds("cache_invalidation")
        store.set_available(False)
        scheduler.fire_next()
        await settle()
        assert bus.feed.state.value == "retrying"

        store.set_available(True)
        await bus.send_invalidation_signal("stock", "update", "chef-1")
        scheduler.fire_next()
        await settle()

        assert calls == ["stock"]
        assert bus.get_status()["feed"]["state"] == "connected"

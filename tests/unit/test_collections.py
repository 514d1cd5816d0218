"""Tests for restaurant collection models and helpers."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from brigade.collections import (
    MenuItem,
    Mission,
    Order,
    StockItem,
    Table,
    add_menu_item_with_signal,
    available_tables,
    low_stock_items,
    menu_feed,
    menu_polling_cache,
    missions_signal_cache,
    orders_feed,
    orders_with_status,
    stock_feed,
    tables_feed,
)
from brigade.invalidation.bus import InvalidationSignalBus


def stock(name: str, quantity: float, min_level: float | None = None) -> StockItem:
    return StockItem.from_document(
        {"id": name, "name": name, "quantity": quantity, "type": "dry", "minLevel": min_level}
    )


def table(number: int, status: str) -> Table:
    return Table.from_document({"id": number, "numero": number, "status": status, "places": 4})


def order(order_id: str, status: str) -> Order:
    return Order.from_document({"id": order_id, "tableId": 3, "status": status, "total": 42})


class TestModels:
    """Test document transforms."""

    def test_menu_item_from_document(self) -> None:
        item = MenuItem.from_document(
            {
                "id": "d1",
                "name": "Soupe",
                "category": "entree",
                "price": 7.5,
                "disponible": True,
                "tempspreparation": 10,
                "createdBy": "someone",
            }
        )
        assert item.available is True
        assert item.preparation_time == 10
        assert item.ingredients is None

    def test_menu_item_missing_price(self) -> None:
        with pytest.raises(ValidationError):
            MenuItem.from_document({"id": "d1", "name": "Soupe", "category": "entree"})

    def test_stock_last_updated_normalized(self) -> None:
        item = StockItem.from_document(
            {
                "id": "s1",
                "name": "flour",
                "quantity": 2,
                "type": "dry",
                "lastUpdated": "2024-01-01T00:00:00+00:00",
            }
        )
        assert item.last_updated == 1_704_067_200.0

    def test_order_lines(self) -> None:
        result = Order.from_document(
            {
                "id": "o1",
                "tableId": 4,
                "status": "en cours",
                "plats": [
                    {
                        "plat": {"id": "d1", "name": "Soupe", "category": "entree", "price": 7},
                        "quantite": 2,
                    }
                ],
                "timestamp": "12:30",
                "total": 14,
            }
        )
        assert result.table_id == "4"
        assert result.lines[0].dish.name == "Soupe"
        assert result.lines[0].quantity == 2

    def test_order_null_lines(self) -> None:
        result = Order.from_document({"id": "o1", "tableId": "4", "status": "new", "plats": None})
        assert result.lines == []

    def test_table_numeric_id(self) -> None:
        assert table(7, "libre").id == "7"

    def test_mission(self) -> None:
        mission = Mission.from_document(
            {
                "id": "m1",
                "titre": "Sell 10 desserts",
                "points": 50,
                "recurrence": {"frequence": "daily", "dateDebut": 1_700_000_000_000},
                "targetValue": 10,
            }
        )
        assert mission.title == "Sell 10 desserts"
        assert mission.recurrence is not None
        assert mission.recurrence.start_date == 1_700_000_000.0


class TestDerivedViews:
    """Test filters over cached snapshots."""

    def test_low_stock_items(self) -> None:
        items = [
            stock("flour", 2, min_level=5),
            stock("eggs", 30, min_level=12),
            stock("salt", 0),
            stock("butter", 5, min_level=5),
        ]
        assert [item.name for item in low_stock_items(items)] == ["flour", "butter"]

    def test_available_tables(self) -> None:
        tables = [table(1, "libre"), table(2, "occupée"), table(3, "libre"), table(4, "sale")]
        assert [t.number for t in available_tables(tables)] == [1, 3]

    def test_orders_with_status(self) -> None:
        orders = [order("o1", "en cours"), order("o2", "prête"), order("o3", "en cours")]
        assert [o.id for o in orders_with_status(orders, "en cours")] == ["o1", "o3"]
        assert len(orders_with_status(orders)) == 3


class TestCollectionCaches:
    """Test registry-backed cache helpers."""

    async def test_feeds_are_shared(self, registry) -> None:
        assert menu_feed() is menu_feed()
        assert {stock_feed().collection, orders_feed().collection, tables_feed().collection} == {
            "stock",
            "commandes",
            "tables",
        }

    async def test_menu_polling_cache(self, registry) -> None:
        cache = menu_polling_cache(heartbeat_interval=10)
        assert cache.collection == "menu"
        assert cache.heartbeat_interval == 10

    async def test_missions_signal_cache_duration(self, registry) -> None:
        cache = missions_signal_cache()
        assert cache.cache_duration == 60.0

    async def test_menu_feed_skips_invalid_dishes(self, registry, store, settle) -> None:
        await store.set_document("menu", "d1", {"name": "Soupe", "category": "entree", "price": 7})
        await store.set_document("menu", "d2", {"name": "Broken"})

        feed = menu_feed()
        feed.subscribe(lambda items: None)
        await settle()

        items = feed.get_current_cache()
        assert [item.name for item in items] == ["Soupe"]


class TestAddMenuItemWithSignal:
    """Test the write-then-signal helper."""

    async def test_write_then_signal(self, store, settle) -> None:
        bus = InvalidationSignalBus(store=store)
        calls: list[str] = []
        bus.subscribe("menu", lambda: calls.append("menu"))
        bus.start()
        await settle()

        doc_id = await add_menu_item_with_signal(
            store,
            bus,
            MenuItem(id="", name="Tarte", category="dessert", price=6),
            "manager-1",
        )
        await settle()

        menu = await store.fetch_all("menu")
        assert [doc["id"] for doc in menu] == [doc_id]
        assert menu[0]["name"] == "Tarte"
        assert "updatedAt" in menu[0]

        signals = await store.fetch_all("cache_invalidation")
        assert signals[0]["documentId"] == doc_id
        assert signals[0]["action"] == "create"
        assert calls == ["menu"]
        bus.stop()

    async def test_write_failure_sends_no_signal(self, store) -> None:
        from brigade.store.base import PermissionDeniedError

        bus = InvalidationSignalBus(store=store)
        store.deny("menu")

        with pytest.raises(PermissionDeniedError):
            await add_menu_item_with_signal(store, bus, {"name": "Tarte"}, "manager-1")

        assert await store.fetch_all("cache_invalidation") == []

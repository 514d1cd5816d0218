"""Restaurant collections and the caches the POS client keeps over them.

Each model's from_document() is the transform handed to its cache: a
document that fails validation raises and is skipped by the cache.

Cache tiers per collection:
- menu, stock, commandes, tables: live change feeds
- menu (catalog screens): polling heartbeat
- missions: signal-invalidated pull cache
"""

from __future__ import annotations

import logging
from typing import Any, Self
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

from brigade.cache.change_feed import ChangeFeedCache
from brigade.cache.polling import PollingFreshnessCache
from brigade.cache.signal import SignalInvalidatedCache
from brigade.config import settings
from brigade.invalidation.bus import InvalidationSignalBus
from brigade.invalidation.schemas import InvalidationAction
from brigade.registry import get_registry
from brigade.store.base import SERVER_TIMESTAMP, DocumentStore, Record, to_epoch_seconds

logger = logging.getLogger(__name__)

MENU = "menu"
STOCK = "stock"
ORDERS = "commandes"
TABLES = "tables"
MISSIONS = "missions"

TABLE_FREE = "libre"

# Missions change moderately
MISSIONS_CACHE_DURATION = 60.0


class DocumentModel(BaseModel):
    """Base model for store documents.

    Unknown fields are ignored: documents carry more than the client reads.
    """

    model_config = {
        "extra": "ignore",
        "populate_by_name": True,
    }

    id: str

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        return str(value) if isinstance(value, int) else value

    @classmethod
    def from_document(cls, doc: Record) -> Self:
        return cls.model_validate(doc)


class MenuItem(DocumentModel):
    name: str
    category: str
    price: float
    available: bool | None = Field(default=None, alias="disponible")
    description: str | None = None
    preparation_time: int | None = Field(default=None, alias="tempspreparation")
    ingredients: list[str] | None = None


class StockItem(DocumentModel):
    name: str
    quantity: float
    type: str
    min_level: float | None = Field(default=None, alias="minLevel")
    unit: str | None = None
    last_updated: float | None = Field(default=None, alias="lastUpdated")

    @field_validator("last_updated", mode="before")
    @classmethod
    def _epoch(cls, value: Any) -> Any:
        return to_epoch_seconds(value) if value is not None else None

    @property
    def is_low(self) -> bool:
        """True when a minimum level is set and quantity has reached it."""
        return bool(self.min_level) and self.quantity <= (self.min_level or 0)


class OrderLine(BaseModel):
    model_config = {"extra": "ignore", "populate_by_name": True}

    dish: MenuItem = Field(alias="plat")
    quantity: int = Field(alias="quantite")


class Order(DocumentModel):
    table_id: str = Field(alias="tableId")
    status: str
    lines: list[OrderLine] = Field(default_factory=list, alias="plats")
    timestamp: str | None = None
    total: float = 0.0

    @field_validator("table_id", mode="before")
    @classmethod
    def _coerce_table_id(cls, value: Any) -> Any:
        return str(value) if isinstance(value, int) else value

    @field_validator("lines", mode="before")
    @classmethod
    def _null_lines(cls, value: Any) -> Any:
        return [] if value is None else value


class TablePosition(BaseModel):
    x: float
    y: float


class Table(DocumentModel):
    number: int = Field(alias="numero")
    status: str
    seats: int = Field(alias="places")
    position: TablePosition | None = None


class MissionRecurrence(BaseModel):
    model_config = {"extra": "ignore", "populate_by_name": True}

    frequency: str = Field(alias="frequence")
    start_date: float | None = Field(default=None, alias="dateDebut")

    @field_validator("start_date", mode="before")
    @classmethod
    def _epoch(cls, value: Any) -> Any:
        return to_epoch_seconds(value) if value is not None else None


class Mission(DocumentModel):
    title: str = Field(alias="titre")
    description: str = ""
    points: int = 0
    recurrence: MissionRecurrence | None = None
    target_value: float | None = Field(default=None, alias="targetValue")


# =============================================================================
# Caches
# =============================================================================


def menu_feed() -> ChangeFeedCache[MenuItem]:
    return get_registry().get_change_feed_cache(MENU, MenuItem.from_document)


def stock_feed() -> ChangeFeedCache[StockItem]:
    return get_registry().get_change_feed_cache(STOCK, StockItem.from_document)


def orders_feed() -> ChangeFeedCache[Order]:
    return get_registry().get_change_feed_cache(ORDERS, Order.from_document)


def tables_feed() -> ChangeFeedCache[Table]:
    return get_registry().get_change_feed_cache(TABLES, Table.from_document)


def menu_polling_cache(**kwargs: Any) -> PollingFreshnessCache[MenuItem]:
    return get_registry().get_polling_cache(MENU, MenuItem.from_document, **kwargs)


def missions_signal_cache(**kwargs: Any) -> SignalInvalidatedCache[Mission]:
    kwargs.setdefault("cache_duration", MISSIONS_CACHE_DURATION)
    return get_registry().get_signal_cache(MISSIONS, Mission.from_document, **kwargs)


# =============================================================================
# Derived views
# =============================================================================


def low_stock_items(items: list[StockItem]) -> list[StockItem]:
    return [item for item in items if item.is_low]


def available_tables(tables: list[Table]) -> list[Table]:
    return [table for table in tables if table.status == TABLE_FREE]


def orders_with_status(orders: list[Order], status: str | None = None) -> list[Order]:
    """Orders with the given status; all orders when status is None."""
    if status is None:
        return list(orders)
    return [order for order in orders if order.status == status]


# =============================================================================
# Writes
# =============================================================================


async def add_menu_item_with_signal(
    store: DocumentStore,
    bus: InvalidationSignalBus,
    item: MenuItem | Record,
    actor_id: str,
) -> str:
    """Write a menu item, then announce it on the invalidation bus.

    Returns:
        The new document id

    Raises:
        StoreError: If the menu write fails; no signal is sent then
    """
    if isinstance(item, MenuItem):
        data = item.model_dump(by_alias=True, exclude={"id"}, exclude_none=True)
    else:
        data = {key: value for key, value in item.items() if key != "id"}
    data[settings.modified_field] = SERVER_TIMESTAMP

    doc_id = uuid4().hex
    await store.set_document(MENU, doc_id, data)
    await bus.send_invalidation_signal(MENU, InvalidationAction.CREATE, actor_id, doc_id)
    logger.info(f"Menu item {doc_id} added and cache invalidation sent")
    return doc_id

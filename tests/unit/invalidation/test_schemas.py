"""Tests for invalidation records."""

import orjson
import pytest

from brigade.invalidation.schemas import InvalidationAction, InvalidationRecord
from brigade.store.base import SERVER_TIMESTAMP


class TestInvalidationRecord:
    """Test InvalidationRecord conversions."""

    def test_to_document_uses_store_field_names(self) -> None:
        record = InvalidationRecord(
            collection="stock",
            action=InvalidationAction.UPDATE,
            actor_id="chef-1",
            document_id="flour",
        )
        doc = record.to_document()

        assert doc == {
            "collection": "stock",
            "action": "update",
            "actorId": "chef-1",
            "documentId": "flour",
            "timestamp": SERVER_TIMESTAMP,
        }

    def test_from_document(self) -> None:
        record = InvalidationRecord.from_document(
            {
                "id": "sig-1",
                "collection": "menu",
                "action": "create",
                "actorId": "manager-1",
                "timestamp": 1_700_000_000_000,
            }
        )

        assert record.id == "sig-1"
        assert record.action is InvalidationAction.CREATE
        assert record.document_id is None
        # Milliseconds normalized to seconds
        assert record.timestamp == 1_700_000_000.0

    def test_from_document_missing_field(self) -> None:
        with pytest.raises(KeyError):
            InvalidationRecord.from_document({"collection": "menu", "action": "create"})

    def test_from_document_unknown_action(self) -> None:
        with pytest.raises(ValueError):
            InvalidationRecord.from_document(
                {"collection": "menu", "action": "rename", "actorId": "x"}
            )

    def test_to_bytes(self) -> None:
        record = InvalidationRecord(
            collection="tables", action=InvalidationAction.DELETE, actor_id="waiter-2", id="s1"
        )
        payload = orjson.loads(record.to_bytes())

        assert payload["collection"] == "tables"
        assert payload["action"] == "delete"
        assert payload["actor_id"] == "waiter-2"
        assert payload["id"] == "s1"

    def test_frozen(self) -> None:
        record = InvalidationRecord(
            collection="menu", action=InvalidationAction.CREATE, actor_id="manager-1"
        )
        with pytest.raises(AttributeError):
            record.collection = "stock"  # type: ignore[misc]

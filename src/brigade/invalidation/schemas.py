"""Invalidation records exchanged through the shared append-only feed."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

import orjson

from brigade.store.base import SERVER_TIMESTAMP, Record, to_epoch_seconds


class InvalidationAction(str, Enum):
    """Kind of write that made a collection stale."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True, slots=True)
class InvalidationRecord:
    """Announcement that cached copies of a collection are stale.

    timestamp is assigned by the store; it is None on records that have not
    been written yet.
    """

    collection: str
    action: InvalidationAction
    actor_id: str
    document_id: str | None = None
    timestamp: float | None = None
    id: str | None = None

    def to_document(self) -> Record:
        """Store document, with a server timestamp placeholder."""
        return {
            "collection": self.collection,
            "action": self.action.value,
            "actorId": self.actor_id,
            "documentId": self.document_id,
            "timestamp": SERVER_TIMESTAMP,
        }

    @classmethod
    def from_document(cls, doc: Record) -> InvalidationRecord:
        """Build a record from a raw store document.

        Raises:
            KeyError: If collection, action or actorId is missing
            ValueError: If action is unknown
        """
        timestamp = doc.get("timestamp")
        return cls(
            collection=doc["collection"],
            action=InvalidationAction(doc["action"]),
            actor_id=doc["actorId"],
            document_id=doc.get("documentId"),
            timestamp=to_epoch_seconds(timestamp) if timestamp is not None else None,
            id=doc.get("id"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "collection": self.collection,
            "action": self.action.value,
            "actor_id": self.actor_id,
            "document_id": self.document_id,
            "timestamp": self.timestamp,
        }

    def to_bytes(self) -> bytes:
        """Serialize to JSON bytes."""
        return orjson.dumps(self.to_dict())

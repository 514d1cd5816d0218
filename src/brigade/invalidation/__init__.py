"""Cross-client cache invalidation.

Writers append InvalidationRecords to a shared feed; every client's
InvalidationSignalBus observes the feed and clears the caches registered for
the affected collection.
"""

from brigade.invalidation.bus import InvalidationCallback, InvalidationSignalBus
from brigade.invalidation.schemas import InvalidationAction, InvalidationRecord

__all__ = [
    "InvalidationSignalBus",
    "InvalidationCallback",
    "InvalidationAction",
    "InvalidationRecord",
]

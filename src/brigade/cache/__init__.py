"""Client-side caches over remote document collections.

Three tiers, from most to least immediate:
- ChangeFeedCache: live mirror over a push feed, shared by many subscribers
- PollingFreshnessCache: TTL reads plus a cheap staleness heartbeat
- SignalInvalidatedCache: TTL reads dropped on invalidation signals
"""

from brigade.cache.backoff import BackoffPolicy, compute_backoff_delay
from brigade.cache.base import (
    NO_DATA,
    CacheEntry,
    LoopScheduler,
    NoData,
    Scheduler,
    Subscriber,
    Transform,
    apply_transform,
)
from brigade.cache.change_feed import CacheStatus, ChangeFeedCache, ListenerState
from brigade.cache.polling import PollingCacheInfo, PollingFreshnessCache
from brigade.cache.signal import SignalCacheInfo, SignalInvalidatedCache

__all__ = [
    # Building blocks
    "CacheEntry",
    "NO_DATA",
    "NoData",
    "Subscriber",
    "Transform",
    "apply_transform",
    "Scheduler",
    "LoopScheduler",
    "BackoffPolicy",
    "compute_backoff_delay",
    # Caches
    "ChangeFeedCache",
    "CacheStatus",
    "ListenerState",
    "PollingFreshnessCache",
    "PollingCacheInfo",
    "SignalInvalidatedCache",
    "SignalCacheInfo",
]

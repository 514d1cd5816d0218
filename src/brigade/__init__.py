"""Brigade: client-side sync and caching layer for the restaurant POS.

Keeps in-memory views of remote collections fresh through three cache
tiers, and propagates invalidation across running clients through a shared
append-only signal feed.
"""

__version__ = "0.1.0"

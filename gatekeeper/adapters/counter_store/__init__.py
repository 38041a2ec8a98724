"""Counter store adapters.

The admission layer counts through the CounterStore abstraction, so a single
process can start with the in-memory store and move to Redis without changes
to the policy code.
"""

from gatekeeper.adapters.counter_store.base import CounterStore, TokenCount, WindowCount
from gatekeeper.adapters.counter_store.factory import create_counter_store
from gatekeeper.adapters.counter_store.in_memory import InMemoryCounterStore
from gatekeeper.adapters.counter_store.redis_store import RedisCounterStore

__all__ = [
    "CounterStore",
    "InMemoryCounterStore",
    "RedisCounterStore",
    "TokenCount",
    "WindowCount",
    "create_counter_store",
]

"""Redis-backed counter store shared by every process using the same server.

Each logical record is a marker sub-key plus one counter per window/interval:

- fixed window: ``<prefix><key>:reset`` holds the window's reset time and
  ``<prefix><key>:count:<reset>`` counts the requests of that window
- token bucket: ``<prefix><key>:refill`` holds the last refill time and
  ``<prefix><key>:taken:<refill>`` counts the tokens taken since then

The marker is claimed with a single ``SET NX PX GET``: exactly one caller
starts a window (or refills a bucket) and every other caller learns the
winner's timestamp from the same command. Counting is an ``INCR`` on a key
named after that timestamp, so a new window never overwrites the count of a
running one and stale counters expire on their own. Requires Redis >= 7.0.

Expiry follows the Redis server clock while reset times come from the
client clock; with skewed clocks a request near a window boundary may be
counted against either window.
"""

from __future__ import annotations

import logging
import math
from typing import Callable

from redis.asyncio import Redis
from redis.exceptions import RedisError

from gatekeeper.adapters.counter_store.base import (
    CounterStore,
    TokenCount,
    WindowCount,
    epoch_ms,
    validate_counter_args,
)
from gatekeeper.core.errors import StoreUnavailable
from gatekeeper.core.logging import hash_key

logger = logging.getLogger(__name__)


class RedisCounterStore(CounterStore):
    """Counter store using a shared Redis server.

    Failures of the underlying client (connection, timeout, protocol) surface
    as StoreUnavailable, which lets the admission layer degrade to a local
    count instead of rejecting traffic.
    """

    degrades_to_local = True

    def __init__(
        self,
        client: Redis,
        *,
        key_prefix: str = "rl:",
        clock: Callable[[], float] = epoch_ms,
    ) -> None:
        """Initialize the store.

        Args:
            client: Async Redis client (``redis.asyncio.Redis``).
            key_prefix: Namespace prepended to every counter key.
            clock: Time source returning UNIX time in milliseconds.
        """
        self._client = client
        self._key_prefix = key_prefix
        self._clock = clock

    def _marker_key(self, key: str, suffix: str) -> str:
        return f"{self._key_prefix}{key}:{suffix}"

    def _counter_key(self, key: str, kind: str, stamp: str) -> str:
        return f"{self._key_prefix}{key}:{kind}:{stamp}"

    async def _claim(self, marker_key: str, stamp: str, ttl_ms: int) -> str:
        """Set marker_key to stamp unless it exists; return the marker in force."""
        previous = await self._client.set(marker_key, stamp, nx=True, px=ttl_ms, get=True)
        return stamp if previous is None else previous

    async def _count(self, counter_key: str, ttl_ms: int) -> int:
        async with self._client.pipeline(transaction=True) as pipe:
            pipe.incr(counter_key)
            pipe.pexpire(counter_key, ttl_ms)
            count, _ = await pipe.execute()
        return int(count)

    def _unavailable(self, operation: str, key: str, exc: RedisError) -> StoreUnavailable:
        logger.warning(
            "counter_store.redis_error",
            extra={
                "operation": operation,
                "key_hash": hash_key(key),
                "error_type": type(exc).__name__,
            },
        )
        return StoreUnavailable(
            code="store_unavailable",
            message=f"Redis counter store failed during {operation}: {exc}",
            details={"store": "redis", "operation": operation, "key_hash": hash_key(key)},
        )

    async def windowed_increment(self, key: str, limit: int, window_ms: int) -> WindowCount:
        validate_counter_args(key, window_ms)
        now = self._clock()

        try:
            stamp = await self._claim(self._marker_key(key, "reset"), repr(now + window_ms), window_ms)
            reset_at = float(stamp)
            count = await self._count(self._counter_key(key, "count", stamp), max(1, math.ceil(reset_at - now)))
        except RedisError as exc:
            raise self._unavailable("windowed_increment", key, exc) from exc

        return WindowCount(count=count, reset_at=reset_at)

    async def current_window(self, key: str) -> WindowCount | None:
        if not key:
            raise ValueError("key must be a non-empty string")

        try:
            stamp = await self._client.get(self._marker_key(key, "reset"))
            if stamp is None:
                return None
            raw_count = await self._client.get(self._counter_key(key, "count", stamp))
        except RedisError as exc:
            raise self._unavailable("current_window", key, exc) from exc

        return WindowCount(count=int(raw_count or 0), reset_at=float(stamp))

    async def consume_token(self, key: str, capacity: int, interval_ms: int) -> TokenCount:
        validate_counter_args(key, interval_ms, capacity=capacity)
        now = self._clock()

        try:
            # Marker outlives the interval by 1 ms: refill only once now > last + interval
            stamp = await self._claim(self._marker_key(key, "refill"), repr(now), interval_ms + 1)
            reset_at = float(stamp) + interval_ms
            taken = await self._count(self._counter_key(key, "taken", stamp), max(1, math.ceil(reset_at - now)) + 1)
        except RedisError as exc:
            raise self._unavailable("consume_token", key, exc) from exc

        return TokenCount(
            tokens_remaining=float(max(0, capacity - taken)),
            reset_at=reset_at,
            consumed=taken <= capacity,
        )

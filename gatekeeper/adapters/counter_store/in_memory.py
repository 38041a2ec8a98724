"""In-process counter store.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: records are split across shards, each guarded by its own lock,
  so unrelated keys rarely contend and a key is always serialized by the same
  lock.
"""

from __future__ import annotations

import threading
import zlib
from dataclasses import dataclass
from typing import Callable

from gatekeeper.adapters.counter_store.base import (
    CounterStore,
    TokenCount,
    WindowCount,
    epoch_ms,
    validate_counter_args,
)

DEFAULT_SHARDS = 64


@dataclass
class _WindowState:
    count: int
    reset_at: float


@dataclass
class _BucketState:
    tokens: float
    last_refill_at: float


class _Shard:
    __slots__ = ("lock", "windows", "buckets")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.windows: dict[str, _WindowState] = {}
        self.buckets: dict[str, _BucketState] = {}


class InMemoryCounterStore(CounterStore):
    """Counter store backed by process memory.

    Window and bucket records are kept in separate tables, so the same key can
    be counted in both modes without the records clobbering each other.
    Records are never deleted; they are reinitialized in place on rollover.
    """

    degrades_to_local = False

    def __init__(
        self,
        *,
        clock: Callable[[], float] = epoch_ms,
        shards: int = DEFAULT_SHARDS,
    ) -> None:
        """Initialize the store.

        Args:
            clock: Time source returning UNIX time in milliseconds.
            shards: Number of independently locked partitions.

        Raises:
            ValueError: If shards is not positive.
        """
        if shards < 1:
            raise ValueError("shards must be >= 1")

        self._clock = clock
        self._shards = tuple(_Shard() for _ in range(shards))

    def _shard_for(self, key: str) -> _Shard:
        # crc32 is stable across processes, unlike hash() under PYTHONHASHSEED
        return self._shards[zlib.crc32(key.encode()) % len(self._shards)]

    async def windowed_increment(self, key: str, limit: int, window_ms: int) -> WindowCount:
        validate_counter_args(key, window_ms)
        shard = self._shard_for(key)

        with shard.lock:
            now = self._clock()
            state = shard.windows.get(key)
            if state is None or now >= state.reset_at:
                state = _WindowState(count=0, reset_at=now + window_ms)
                shard.windows[key] = state

            state.count += 1
            return WindowCount(count=state.count, reset_at=state.reset_at)

    async def current_window(self, key: str) -> WindowCount | None:
        if not key:
            raise ValueError("key must be a non-empty string")
        shard = self._shard_for(key)

        with shard.lock:
            state = shard.windows.get(key)
            if state is None or self._clock() >= state.reset_at:
                return None
            return WindowCount(count=state.count, reset_at=state.reset_at)

    async def consume_token(self, key: str, capacity: int, interval_ms: int) -> TokenCount:
        validate_counter_args(key, interval_ms, capacity=capacity)
        shard = self._shard_for(key)

        with shard.lock:
            now = self._clock()
            state = shard.buckets.get(key)
            if state is None or now > state.last_refill_at + interval_ms:
                state = _BucketState(tokens=float(capacity), last_refill_at=now)
                shard.buckets[key] = state

            consumed = state.tokens >= 1
            if consumed:
                state.tokens -= 1

            return TokenCount(
                tokens_remaining=state.tokens,
                reset_at=state.last_refill_at + interval_ms,
                consumed=consumed,
            )

    def record_count(self) -> int:
        """Number of window and bucket records currently held."""
        total = 0
        for shard in self._shards:
            with shard.lock:
                total += len(shard.windows) + len(shard.buckets)
        return total

"""Counter store interfaces.

The policy evaluator depends on this abstraction (not a concrete backend) so
the in-process store and the shared Redis store are interchangeable.

All timestamps are UNIX epoch milliseconds.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass


def epoch_ms() -> float:
    """Return the current UNIX time in milliseconds."""
    return time.time() * 1000.0


@dataclass(frozen=True)
class WindowCount:
    """Result of a windowed increment.

    Attributes:
        count: Requests counted in the current window, this one included.
        reset_at: Epoch milliseconds when the current window ends.
    """

    count: int
    reset_at: float


@dataclass(frozen=True)
class TokenCount:
    """Result of a token-bucket consumption attempt.

    Attributes:
        tokens_remaining: Tokens left in the bucket after the attempt (>= 0).
        reset_at: Epoch milliseconds when the bucket refills.
        consumed: Whether a token was available and taken by this attempt.
    """

    tokens_remaining: float
    reset_at: float
    consumed: bool


class CounterStore(ABC):
    """Interface for keyed counter stores.

    Implementations must behave as if read-modify-write on a single key were
    serialized. They raise ``StoreUnavailable`` when the backend cannot answer
    and must never fabricate a count.
    """

    #: Whether a StoreUnavailable from this store should degrade to a local
    #: best-effort count and let the request through.
    degrades_to_local: bool = False

    @abstractmethod
    async def windowed_increment(self, key: str, limit: int, window_ms: int) -> WindowCount:
        """Count one request for ``key`` in its current fixed window.

        A missing record, or one whose ``reset_at`` has been reached, is
        reinitialized to ``count=0, reset_at=now + window_ms`` before
        incrementing.

        Args:
            key: Caller-supplied counter key.
            limit: Quota for the key; only used as an expiry hint.
            window_ms: Window length in milliseconds.

        Returns:
            WindowCount as stored after the increment.
        """
        raise NotImplementedError

    @abstractmethod
    async def current_window(self, key: str) -> WindowCount | None:
        """Read ``key``'s running fixed window without counting a request.

        Returns:
            WindowCount of the running window, or None when there is none.
        """
        raise NotImplementedError

    @abstractmethod
    async def consume_token(self, key: str, capacity: int, interval_ms: int) -> TokenCount:
        """Take one token from ``key``'s bucket if one is available.

        A missing bucket, or one whose refill interval has fully elapsed, is
        refilled to ``capacity`` first.

        Args:
            key: Caller-supplied bucket key.
            capacity: Tokens available per interval.
            interval_ms: Refill interval in milliseconds.

        Returns:
            TokenCount describing the bucket after the attempt.
        """
        raise NotImplementedError


def validate_counter_args(key: str, span_ms: int, *, capacity: int | None = None) -> None:
    """Reject programming misuse shared by all store implementations.

    Raises:
        ValueError: If key is empty or a length/capacity is not positive.
    """
    if not key:
        raise ValueError("key must be a non-empty string")
    if span_ms <= 0:
        raise ValueError("window/interval must be > 0 ms")
    if capacity is not None and capacity < 1:
        raise ValueError("capacity must be >= 1")

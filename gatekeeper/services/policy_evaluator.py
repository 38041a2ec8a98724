"""Layered policy evaluation.

Order of evaluation, short-circuiting:

1. allow-list: ALLOW without touching the store
2. deny-list: DENY without touching the store
3. effective limit: dynamic limit for the key, else the base limit
4. token bucket mode: one token per request
5. fixed window mode: base window, with overflow charged to the burst window

A request that brings the count exactly to the limit is the last one allowed.
"""

from __future__ import annotations

import logging

from gatekeeper.adapters.counter_store.base import CounterStore, epoch_ms
from gatekeeper.core.errors import ConfigurationError
from gatekeeper.core.logging import hash_key
from gatekeeper.schemas.policy import Decision, Outcome, PolicyConfig

logger = logging.getLogger(__name__)

BURST_KEY_SUFFIX = ":burst"


def burst_key(key: str) -> str:
    return f"{key}{BURST_KEY_SUFFIX}"


class PolicyEvaluator:
    """Turns a key and a policy into an admission Decision."""

    def __init__(self, store: CounterStore) -> None:
        self._store = store

    @property
    def store(self) -> CounterStore:
        return self._store

    @staticmethod
    def _now(now: float | None) -> float:
        return epoch_ms() if now is None else now

    def effective_limit(self, key: str, config: PolicyConfig) -> int:
        """Resolve the quota for key.

        Raises:
            ConfigurationError: If the dynamic limit is negative or not an int.
        """
        if config.dynamic_limit is None:
            return config.limit

        limit = config.dynamic_limit(key)
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 0:
            raise ConfigurationError(
                code="invalid_dynamic_limit",
                message="Dynamic limit must be a non-negative integer",
                details={"field": "dynamic_limit", "value": limit, "key_hash": hash_key(key)},
            )
        return limit

    async def evaluate(self, key: str, config: PolicyConfig, now: float | None = None) -> Decision:
        """Decide whether the request identified by key may proceed.

        Args:
            key: Quota key of the caller.
            config: Policy to apply.
            now: Epoch milliseconds reported as reset time of allow-list and
                deny-list decisions. Counting always uses the store's clock.

        Returns:
            Decision for this request.

        Raises:
            ConfigurationError: If the dynamic limit is invalid.
            StoreUnavailable: If the counter store cannot answer.
        """
        if key in config.allow_list:
            return Decision(Outcome.ALLOW, limit=None, remaining=0, reset_at=self._now(now))
        if key in config.deny_list:
            return Decision(Outcome.DENY, limit=None, remaining=0, reset_at=self._now(now))

        limit = self.effective_limit(key, config)

        if config.token_bucket:
            return await self._evaluate_token_bucket(key, config)
        return await self._evaluate_fixed_window(key, limit, config)

    async def _evaluate_token_bucket(self, key: str, config: PolicyConfig) -> Decision:
        capacity = config.tokens_per_interval
        bucket = await self._store.consume_token(key, capacity, config.interval_ms)

        if not bucket.consumed:
            return Decision(Outcome.THROTTLED, limit=capacity, remaining=0, reset_at=bucket.reset_at)

        return Decision(
            Outcome.ALLOW,
            limit=capacity,
            remaining=int(bucket.tokens_remaining),
            reset_at=bucket.reset_at,
        )

    async def _evaluate_fixed_window(self, key: str, limit: int, config: PolicyConfig) -> Decision:
        base = await self._store.windowed_increment(key, limit, config.window_ms)

        total_limit = limit + config.burst_limit
        total_count = base.count
        if config.burst_limit > 0:
            if base.count > limit:
                # Only overflow from the base window is charged to the burst window
                burst = await self._store.windowed_increment(
                    burst_key(key), config.burst_limit, config.burst_window_ms
                )
                total_count = limit + burst.count
            else:
                # Burst allowance spent earlier in a longer burst window is not available again
                burst = await self._store.current_window(burst_key(key))
                if burst is not None:
                    total_count = base.count + min(burst.count, config.burst_limit)

        if total_count > total_limit:
            logger.debug(
                "policy.over_limit",
                extra={"key_hash": hash_key(key), "count": total_count, "limit": total_limit},
            )
            return Decision(Outcome.THROTTLED, limit=total_limit, remaining=0, reset_at=base.reset_at)

        return Decision(
            Outcome.ALLOW,
            limit=total_limit,
            remaining=total_limit - total_count,
            reset_at=base.reset_at,
        )

"""Tests for layered policy evaluation."""

import pytest

from gatekeeper.adapters.counter_store.in_memory import InMemoryCounterStore
from gatekeeper.adapters.counter_store.redis_store import RedisCounterStore
from gatekeeper.core.errors import ConfigurationError
from gatekeeper.schemas.policy import Outcome, PolicyConfig
from gatekeeper.services.policy_evaluator import PolicyEvaluator, burst_key


@pytest.fixture
def store(clock) -> InMemoryCounterStore:
    return InMemoryCounterStore(clock=clock)


@pytest.fixture
def evaluator(store) -> PolicyEvaluator:
    return PolicyEvaluator(store)


class TestFixedWindow:
    @pytest.mark.asyncio
    async def test_allows_up_to_limit_then_throttles(self, evaluator, clock) -> None:
        config = PolicyConfig(limit=2, window_ms=1_000)

        first = await evaluator.evaluate("1.2.3.4", config)
        second = await evaluator.evaluate("1.2.3.4", config)
        third = await evaluator.evaluate("1.2.3.4", config)

        assert (first.outcome, first.remaining) == (Outcome.ALLOW, 1)
        assert (second.outcome, second.remaining) == (Outcome.ALLOW, 0)
        assert (third.outcome, third.remaining) == (Outcome.THROTTLED, 0)
        assert third.limit == 2
        assert third.reset_at == 1_000.0

        clock.advance(1_001)
        after_reset = await evaluator.evaluate("1.2.3.4", config)
        assert after_reset.outcome is Outcome.ALLOW
        assert after_reset.remaining == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("limit", [1, 3, 10])
    async def test_request_after_limit_is_throttled(self, evaluator, limit: int) -> None:
        config = PolicyConfig(limit=limit, window_ms=60_000)

        outcomes = [(await evaluator.evaluate("k", config)).outcome for _ in range(limit + 1)]

        assert outcomes[:limit] == [Outcome.ALLOW] * limit
        assert outcomes[-1] is Outcome.THROTTLED

    @pytest.mark.asyncio
    async def test_zero_limit_throttles_everything(self, evaluator) -> None:
        config = PolicyConfig(limit=0, window_ms=1_000)

        decision = await evaluator.evaluate("k", config)

        assert decision.outcome is Outcome.THROTTLED
        assert decision.limit == 0

    @pytest.mark.asyncio
    async def test_keys_have_independent_quotas(self, evaluator) -> None:
        config = PolicyConfig(limit=1, window_ms=1_000)

        await evaluator.evaluate("a", config)
        decision = await evaluator.evaluate("b", config)

        assert decision.outcome is Outcome.ALLOW

    @pytest.mark.asyncio
    async def test_counting_uses_store_clock_not_now_argument(self, evaluator) -> None:
        config = PolicyConfig(limit=1, window_ms=1_000)

        decision = await evaluator.evaluate("k", config, now=5_000.0)

        assert decision.reset_at == 1_000.0


class TestBurst:
    @pytest.mark.asyncio
    async def test_burst_extends_base_limit(self, evaluator) -> None:
        config = PolicyConfig(limit=1, window_ms=1_000, burst_limit=1, burst_window_ms=1_000)

        first = await evaluator.evaluate("k", config)
        second = await evaluator.evaluate("k", config)
        third = await evaluator.evaluate("k", config)

        assert (first.outcome, first.limit, first.remaining) == (Outcome.ALLOW, 2, 1)
        assert (second.outcome, second.limit, second.remaining) == (Outcome.ALLOW, 2, 0)
        assert (third.outcome, third.limit) == (Outcome.THROTTLED, 2)

    @pytest.mark.asyncio
    async def test_burst_window_is_only_charged_on_overflow(self, evaluator, store) -> None:
        config = PolicyConfig(limit=2, window_ms=1_000, burst_limit=3)

        await evaluator.evaluate("k", config)
        await evaluator.evaluate("k", config)
        assert store.record_count() == 1

        await evaluator.evaluate("k", config)
        assert store.record_count() == 2

        burst = await store.windowed_increment(burst_key("k"), 3, 1_000)
        assert burst.count == 2

    @pytest.mark.asyncio
    async def test_longer_burst_window_outlives_base_window(self, evaluator, clock) -> None:
        config = PolicyConfig(limit=1, window_ms=1_000, burst_limit=1, burst_window_ms=10_000)

        await evaluator.evaluate("k", config)
        await evaluator.evaluate("k", config)

        clock.advance(1_000)
        base_again = await evaluator.evaluate("k", config)
        overflow = await evaluator.evaluate("k", config)

        assert base_again.outcome is Outcome.ALLOW
        assert overflow.outcome is Outcome.THROTTLED

    @pytest.mark.asyncio
    async def test_remaining_accounts_for_spent_burst_allowance(self, evaluator, clock) -> None:
        config = PolicyConfig(limit=1, window_ms=1_000, burst_limit=1, burst_window_ms=10_000)

        first = await evaluator.evaluate("k", config)
        second = await evaluator.evaluate("k", config)
        clock.advance(1_000)
        third = await evaluator.evaluate("k", config)
        fourth = await evaluator.evaluate("k", config)

        assert (first.outcome, first.remaining) == (Outcome.ALLOW, 1)
        assert (second.outcome, second.remaining) == (Outcome.ALLOW, 0)
        assert (third.outcome, third.remaining) == (Outcome.ALLOW, 0)
        assert fourth.outcome is Outcome.THROTTLED

    @pytest.mark.asyncio
    async def test_remaining_restored_once_burst_window_ends(self, evaluator, clock) -> None:
        config = PolicyConfig(limit=1, window_ms=1_000, burst_limit=1, burst_window_ms=2_000)

        await evaluator.evaluate("k", config)
        await evaluator.evaluate("k", config)
        clock.advance(2_000)
        decision = await evaluator.evaluate("k", config)

        assert (decision.outcome, decision.remaining) == (Outcome.ALLOW, 1)

    @pytest.mark.asyncio
    async def test_remaining_is_consistent_over_redis(self, fake_redis, clock) -> None:
        evaluator = PolicyEvaluator(RedisCounterStore(fake_redis, clock=clock))
        config = PolicyConfig(limit=1, window_ms=1_000, burst_limit=1, burst_window_ms=10_000)

        await evaluator.evaluate("k", config)
        await evaluator.evaluate("k", config)
        clock.advance(1_000)
        third = await evaluator.evaluate("k", config)
        fourth = await evaluator.evaluate("k", config)

        assert (third.outcome, third.remaining) == (Outcome.ALLOW, 0)
        assert fourth.outcome is Outcome.THROTTLED


class TestLists:
    @pytest.mark.asyncio
    async def test_allow_list_bypasses_counting(self, evaluator, store) -> None:
        config = PolicyConfig(limit=0, allow_list=frozenset({"trusted"}))

        decision = await evaluator.evaluate("trusted", config, now=42.0)

        assert decision.outcome is Outcome.ALLOW
        assert decision.limit is None
        assert decision.counted is False
        assert decision.reset_at == 42.0
        assert store.record_count() == 0

    @pytest.mark.asyncio
    async def test_deny_list_rejects_without_counting(self, evaluator, store) -> None:
        config = PolicyConfig(deny_list=frozenset({"banned"}))

        decision = await evaluator.evaluate("banned", config, now=0.0)

        assert decision.outcome is Outcome.DENY
        assert decision.reset_at == 0.0
        assert store.record_count() == 0

    @pytest.mark.asyncio
    async def test_allow_list_wins_over_deny_list(self, evaluator) -> None:
        config = PolicyConfig(allow_list=frozenset({"k"}), deny_list=frozenset({"k"}))

        decision = await evaluator.evaluate("k", config)

        assert decision.outcome is Outcome.ALLOW


class TestDynamicLimit:
    @pytest.mark.asyncio
    async def test_dynamic_limit_overrides_base_limit(self, evaluator) -> None:
        config = PolicyConfig(
            limit=1,
            window_ms=1_000,
            dynamic_limit=lambda key: 3 if key == "premium" else 1,
        )

        premium = [(await evaluator.evaluate("premium", config)).outcome for _ in range(4)]
        basic = [(await evaluator.evaluate("basic", config)).outcome for _ in range(2)]

        assert premium == [Outcome.ALLOW] * 3 + [Outcome.THROTTLED]
        assert basic == [Outcome.ALLOW, Outcome.THROTTLED]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("bad_limit", [-1, 2.5, "10", True])
    async def test_invalid_dynamic_limit_raises(self, evaluator, store, bad_limit) -> None:
        config = PolicyConfig(dynamic_limit=lambda key: bad_limit)

        with pytest.raises(ConfigurationError) as exc_info:
            await evaluator.evaluate("k", config)

        assert exc_info.value.code == "invalid_dynamic_limit"
        assert store.record_count() == 0


class TestTokenBucket:
    @pytest.mark.asyncio
    async def test_capacity_requests_then_throttled(self, evaluator) -> None:
        config = PolicyConfig(token_bucket=True, tokens_per_interval=3, interval_ms=1_000)

        decisions = [await evaluator.evaluate("k", config) for _ in range(4)]

        assert [d.outcome for d in decisions] == [Outcome.ALLOW] * 3 + [Outcome.THROTTLED]
        assert [d.remaining for d in decisions] == [2, 1, 0, 0]
        assert all(d.limit == 3 for d in decisions)

    @pytest.mark.asyncio
    async def test_bucket_refills_after_interval(self, evaluator, clock) -> None:
        config = PolicyConfig(token_bucket=True, tokens_per_interval=1, interval_ms=1_000)

        await evaluator.evaluate("k", config)
        clock.advance(1_001)
        decision = await evaluator.evaluate("k", config)

        assert decision.outcome is Outcome.ALLOW
        assert decision.reset_at == 2_001.0

    @pytest.mark.asyncio
    async def test_bucket_capacity_defaults_to_limit(self, evaluator) -> None:
        config = PolicyConfig(limit=2, token_bucket=True)

        decision = await evaluator.evaluate("k", config)

        assert decision.limit == 2
        assert decision.remaining == 1

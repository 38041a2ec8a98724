"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
It sets the TESTING environment variable so settings never load a local .env
file, and provides a deterministic clock plus an in-process fake of the async
Redis client used by the remote counter store.
"""

import asyncio
import os

# CRITICAL: Set this before any imports that might load settings
os.environ["TESTING"] = "true"
os.environ.setdefault("APP_ENV", "testing")

import pytest


class FakeClock:
    """Deterministic millisecond clock."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


class FakePipeline:
    """Buffers commands and applies them together on execute, like MULTI/EXEC."""

    def __init__(self, redis: "FakeRedis") -> None:
        self._redis = redis
        self._commands: list[tuple[str, tuple, dict]] = []

    async def __aenter__(self) -> "FakePipeline":
        return self

    async def __aexit__(self, *exc_info) -> bool:
        self._commands.clear()
        return False

    def _queue(self, name: str, *args, **kwargs) -> "FakePipeline":
        self._commands.append((name, args, kwargs))
        return self

    def incr(self, *args, **kwargs) -> "FakePipeline":
        return self._queue("incr", *args, **kwargs)

    def pexpire(self, *args, **kwargs) -> "FakePipeline":
        return self._queue("pexpire", *args, **kwargs)

    async def execute(self) -> list:
        # No suspension between queued commands: the transaction is atomic
        results = [getattr(self._redis, f"_{name}")(*args, **kwargs) for name, args, kwargs in self._commands]
        self._commands.clear()
        await self._redis.pause()
        return results


class FakeRedis:
    """Subset of redis.asyncio.Redis (decode_responses=True) with PX expiry.

    With ``yield_after_reply`` set, every command suspends after computing its
    reply and before returning it, letting concurrent callers interleave the
    way network round trips do.
    """

    def __init__(self, clock: FakeClock) -> None:
        self._clock = clock
        self.data: dict[str, str] = {}
        self.expires_at: dict[str, float] = {}
        self.fail_with: Exception | None = None
        self.yield_after_reply = False
        self.calls: list[str] = []

    async def pause(self) -> None:
        if self.yield_after_reply:
            await asyncio.sleep(0)

    def _enter(self, name: str, key: str) -> None:
        self.calls.append(name)
        if self.fail_with is not None:
            raise self.fail_with
        expires_at = self.expires_at.get(key)
        if expires_at is not None and self._clock() >= expires_at:
            self.data.pop(key, None)
            self.expires_at.pop(key, None)

    def _get(self, key: str) -> str | None:
        self._enter("get", key)
        return self.data.get(key)

    def _set(self, key: str, value, nx: bool = False, px: int | None = None, get: bool = False):
        self._enter("set", key)
        previous = self.data.get(key)
        if nx and previous is not None:
            return previous if get else None
        self.data[key] = str(value)
        if px is None:
            self.expires_at.pop(key, None)
        else:
            self.expires_at[key] = self._clock() + px
        return previous if get else True

    def _incr(self, key: str) -> int:
        self._enter("incr", key)
        value = int(self.data.get(key, "0")) + 1
        self.data[key] = str(value)
        return value

    def _pexpire(self, key: str, ms: int) -> bool:
        self._enter("pexpire", key)
        if key not in self.data:
            return False
        self.expires_at[key] = self._clock() + ms
        return True

    async def get(self, key: str) -> str | None:
        reply = self._get(key)
        await self.pause()
        return reply

    async def set(self, key: str, value, nx: bool = False, px: int | None = None, get: bool = False):
        reply = self._set(key, value, nx=nx, px=px, get=get)
        await self.pause()
        return reply

    async def incr(self, key: str) -> int:
        reply = self._incr(key)
        await self.pause()
        return reply

    def pipeline(self, transaction: bool = True) -> FakePipeline:
        return FakePipeline(self)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_redis(clock: FakeClock) -> FakeRedis:
    return FakeRedis(clock)

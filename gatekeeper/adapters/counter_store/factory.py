"""Factory for creating the configured counter store."""

from __future__ import annotations

from redis.asyncio import Redis

from gatekeeper.adapters.counter_store.base import CounterStore
from gatekeeper.adapters.counter_store.in_memory import InMemoryCounterStore
from gatekeeper.adapters.counter_store.redis_store import RedisCounterStore
from gatekeeper.core.config import Settings, settings as default_settings
from gatekeeper.core.errors import ConfigurationError


def create_counter_store(settings: Settings | None = None) -> CounterStore:
    """Instantiate the counter store selected by ``RATE_LIMIT_STORE``.

    Args:
        settings: Settings to read from; defaults to the global settings.

    Returns:
        CounterStore: In-memory or Redis-backed store.

    Raises:
        ConfigurationError: If the backend name is unknown.
    """
    cfg = settings or default_settings
    backend = cfg.rate_limit.store.lower()

    if backend == "memory":
        return InMemoryCounterStore()

    if backend == "redis":
        client = Redis.from_url(
            cfg.redis.url,
            decode_responses=True,
            socket_timeout=cfg.redis.socket_timeout_seconds,
            socket_connect_timeout=cfg.redis.socket_timeout_seconds,
        )
        return RedisCounterStore(client, key_prefix=cfg.redis.key_prefix)

    raise ConfigurationError(
        code="unknown_counter_store",
        message=f"Unknown counter store: '{backend}'. Supported stores: memory, redis",
        details={"field": "store", "value": backend},
    )

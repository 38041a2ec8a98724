"""Policy configuration and admission decision records."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from gatekeeper.core.config import parse_key_list
from gatekeeper.core.errors import ConfigurationError

if TYPE_CHECKING:
    from gatekeeper.adapters.http.base import ResponseAdapter
    from gatekeeper.core.config import RateLimitSettings


KeyFunc = Callable[[Any], str]
DynamicLimit = Callable[[str], int]
Forward = Callable[[], Awaitable[Any]]
RejectCallback = Callable[[Any, "ResponseAdapter", Forward], Awaitable[None] | None]


class Outcome(str, Enum):
    ALLOW = "ALLOW"
    DENY = "DENY"
    THROTTLED = "THROTTLED"


@dataclass(frozen=True)
class Decision:
    """Admission decision for a single request.

    Attributes:
        outcome: ALLOW, DENY or THROTTLED.
        limit: Quota that applied, or None when a list short-circuited counting.
        remaining: Allowance left after this request (0 when throttled).
        reset_at: Epoch milliseconds when the applicable window/bucket resets.
    """

    outcome: Outcome
    limit: int | None
    remaining: int
    reset_at: float

    @property
    def allowed(self) -> bool:
        return self.outcome is Outcome.ALLOW

    @property
    def counted(self) -> bool:
        """Whether the decision came from the counter store."""
        return self.limit is not None

    @property
    def reset_epoch_seconds(self) -> int:
        return math.ceil(self.reset_at / 1000)

    def headers(self) -> dict[str, str]:
        """X-RateLimit-* headers describing this decision."""
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_epoch_seconds),
        }


def _require(condition: bool, field_name: str, value: Any, message: str) -> None:
    if not condition:
        raise ConfigurationError(
            code="invalid_rate_limit_config",
            message=message,
            details={"field": field_name, "value": value},
        )


@dataclass(frozen=True)
class PolicyConfig:
    """Immutable rate limiting policy, validated once at construction.

    Defaults mirror the environment settings: 100 requests per 60s window, no
    burst overlay, fixed-window counting, headers on, metrics off. Optional
    lengths left as None inherit from their primary counterpart.
    """

    limit: int = 100
    window_ms: int = 60_000
    burst_limit: int = 0
    burst_window_ms: int | None = None
    token_bucket: bool = False
    tokens_per_interval: int | None = None
    interval_ms: int | None = None
    dynamic_limit: DynamicLimit | None = None
    allow_list: frozenset[str] = field(default_factory=frozenset)
    deny_list: frozenset[str] = field(default_factory=frozenset)
    key_func: KeyFunc | None = None
    add_headers: bool = True
    on_deny: RejectCallback | None = None
    on_limit: RejectCallback | None = None
    metrics: bool = False
    log_events: bool = False

    def __post_init__(self) -> None:
        # Frozen dataclass: resolve inherited defaults through object.__setattr__
        if self.burst_window_ms is None:
            object.__setattr__(self, "burst_window_ms", self.window_ms)
        if self.tokens_per_interval is None:
            object.__setattr__(self, "tokens_per_interval", self.limit)
        if self.interval_ms is None:
            object.__setattr__(self, "interval_ms", self.window_ms)
        object.__setattr__(self, "allow_list", frozenset(self.allow_list))
        object.__setattr__(self, "deny_list", frozenset(self.deny_list))
        self._validate()

    def _validate(self) -> None:
        _require(self.limit >= 0, "limit", self.limit, "limit must be >= 0")
        _require(self.window_ms > 0, "window_ms", self.window_ms, "window_ms must be > 0")
        _require(self.burst_limit >= 0, "burst_limit", self.burst_limit, "burst_limit must be >= 0")
        _require(
            self.burst_window_ms > 0,
            "burst_window_ms",
            self.burst_window_ms,
            "burst_window_ms must be > 0",
        )
        _require(self.interval_ms > 0, "interval_ms", self.interval_ms, "interval_ms must be > 0")
        if self.token_bucket:
            _require(
                self.tokens_per_interval > 0,
                "tokens_per_interval",
                self.tokens_per_interval,
                "tokens_per_interval must be positive when using token bucket",
            )
        for name in ("dynamic_limit", "key_func", "on_deny", "on_limit"):
            value = getattr(self, name)
            _require(value is None or callable(value), name, value, f"{name} must be callable")

    @classmethod
    def from_settings(
        cls,
        rate_limit: RateLimitSettings,
        *,
        key_func: KeyFunc | None = None,
        dynamic_limit: DynamicLimit | None = None,
        on_deny: RejectCallback | None = None,
        on_limit: RejectCallback | None = None,
    ) -> PolicyConfig:
        """Build a policy from environment settings plus code-only hooks.

        Args:
            rate_limit: Resolved RATE_LIMIT_* settings.
            key_func: Maps a request to its quota key.
            dynamic_limit: Optional per-key limit override.
            on_deny: Optional deny-list rejection override.
            on_limit: Optional throttle rejection override.

        Returns:
            Validated PolicyConfig.
        """
        return cls(
            limit=rate_limit.limit,
            window_ms=rate_limit.window_ms,
            burst_limit=rate_limit.burst_limit,
            burst_window_ms=rate_limit.burst_window_ms,
            token_bucket=rate_limit.token_bucket,
            tokens_per_interval=rate_limit.tokens_per_interval,
            interval_ms=rate_limit.interval_ms,
            dynamic_limit=dynamic_limit,
            allow_list=parse_key_list(rate_limit.allow_list),
            deny_list=parse_key_list(rate_limit.deny_list),
            key_func=key_func,
            add_headers=rate_limit.include_headers,
            on_deny=on_deny,
            on_limit=on_limit,
            metrics=rate_limit.metrics_enabled,
            log_events=rate_limit.log_events,
        )

"""Per-request admission orchestration.

Flow for a single request:

    START -> KEY_EXTRACTED -> ALLOWED | DENIED | THROTTLED | FALLBACK_ALLOWED | ERROR

Failure policy:
- StoreUnavailable from a store that degrades to local (Redis): log, count the
  request once in a throwaway in-memory store and let it through (fail-open).
- Any other failure while evaluating: raise RateLimiterInternalError
  (fail-closed). A healthy in-process store should never fail, so an error
  there points at a defect rather than a transient outage.
- ConfigurationError propagates unchanged.

The controller is framework-agnostic: it talks to the response through the
ResponseAdapter protocol and hands the request on through a ``forward``
coroutine supplied by the binding.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from enum import Enum
from typing import Any, Callable

from gatekeeper.adapters.counter_store.base import CounterStore, epoch_ms
from gatekeeper.adapters.counter_store.in_memory import InMemoryCounterStore
from gatekeeper.adapters.http.base import ResponseAdapter
from gatekeeper.core.errors import ConfigurationError, RateLimiterInternalError, StoreUnavailable
from gatekeeper.core.logging import EVENT_LOGGER_NAME, hash_key
from gatekeeper.schemas.policy import Decision, Forward, Outcome, PolicyConfig, RejectCallback
from gatekeeper.services.metrics import MetricsRecorder
from gatekeeper.services.policy_evaluator import PolicyEvaluator

event_logger = logging.getLogger(EVENT_LOGGER_NAME)

DENY_STATUS = 403
DENY_BODY = "Forbidden"
THROTTLE_STATUS = 429
THROTTLE_BODY = "Too Many Requests"


class AdmissionState(str, Enum):
    ALLOWED = "ALLOWED"
    DENIED = "DENIED"
    THROTTLED = "THROTTLED"
    FALLBACK_ALLOWED = "FALLBACK_ALLOWED"
    ERROR = "ERROR"


class AdmissionController:
    """Applies a PolicyConfig to incoming requests.

    Attributes:
        config: The policy applied to every request.
        metrics: Recorder tallying requests and blocks, or None when disabled.
    """

    def __init__(
        self,
        config: PolicyConfig,
        store: CounterStore | None = None,
        *,
        clock: Callable[[], float] = epoch_ms,
        store_timeout_ms: int | None = None,
    ) -> None:
        """Initialize the controller.

        Args:
            config: Validated policy.
            store: Counter store shared by all requests; in-memory by default.
            clock: Time source returning UNIX time in milliseconds.
            store_timeout_ms: Upper bound for one evaluation's store calls.
                A timeout is treated as StoreUnavailable.

        Raises:
            ConfigurationError: If the policy has no key function or the
                timeout is not positive.
        """
        if config.key_func is None:
            raise ConfigurationError(
                code="missing_key_func",
                message="A key function is required to identify callers",
                details={"field": "key_func"},
            )
        if store_timeout_ms is not None and store_timeout_ms <= 0:
            raise ConfigurationError(
                code="invalid_rate_limit_config",
                message="store_timeout_ms must be > 0",
                details={"field": "store_timeout_ms", "value": store_timeout_ms},
            )

        self.config = config
        self.metrics = MetricsRecorder() if config.metrics else None
        self._clock = clock
        self._evaluator = PolicyEvaluator(store or InMemoryCounterStore(clock=clock))
        self._store_timeout_s = store_timeout_ms / 1000 if store_timeout_ms else None

    @property
    def store(self) -> CounterStore:
        return self._evaluator.store

    def get_metrics(self) -> dict[str, dict[str, int]] | None:
        """Snapshot of per-key counters, or None when metrics are disabled."""
        return self.metrics.get_stats() if self.metrics else None

    async def handle(self, request: Any, response: ResponseAdapter, forward: Forward) -> AdmissionState:
        """Admit, throttle or deny one request.

        Args:
            request: Framework request passed to the key function and callbacks.
            response: Adapter receiving status, body and headers.
            forward: Coroutine function passing the request to the next handler.

        Returns:
            Terminal admission state.

        Raises:
            ConfigurationError: If the dynamic limit is invalid.
            RateLimiterInternalError: If evaluation failed without a safe fallback.
        """
        key = self.config.key_func(request)

        try:
            decision = await self._evaluate(key)
        except ConfigurationError:
            raise
        except StoreUnavailable as exc:
            if not self.store.degrades_to_local:
                raise self._internal_error(key, exc) from exc
            await self._degrade_to_local(key, exc)
            self._record_request(key)
            await forward()
            return AdmissionState.FALLBACK_ALLOWED
        except Exception as exc:
            raise self._internal_error(key, exc) from exc

        if decision.outcome is Outcome.DENY:
            self._log_decision("rate_limit.denied", key, decision)
            self._record_block(key)
            await self._reject(request, response, forward, self.config.on_deny, DENY_STATUS, DENY_BODY)
            return AdmissionState.DENIED

        self._annotate(response, decision)

        if decision.outcome is Outcome.THROTTLED:
            self._log_decision("rate_limit.throttled", key, decision)
            self._record_block(key)
            await self._reject(
                request, response, forward, self.config.on_limit, THROTTLE_STATUS, THROTTLE_BODY
            )
            return AdmissionState.THROTTLED

        self._log_decision("rate_limit.allowed", key, decision)
        self._record_request(key)
        await forward()
        return AdmissionState.ALLOWED

    async def _evaluate(self, key: str) -> Decision:
        evaluation = self._evaluator.evaluate(key, self.config, self._clock())
        if self._store_timeout_s is None:
            return await evaluation

        try:
            return await asyncio.wait_for(evaluation, self._store_timeout_s)
        except asyncio.TimeoutError as exc:
            raise StoreUnavailable(
                code="store_timeout",
                message=f"Counter store did not answer within {self._store_timeout_s:.3f}s",
                details={"store": type(self.store).__name__, "key_hash": hash_key(key)},
            ) from exc

    async def _degrade_to_local(self, key: str, exc: StoreUnavailable) -> None:
        event_logger.warning(
            "rate_limit.store_unavailable",
            extra={
                "key_hash": hash_key(key),
                "error_code": exc.code,
                "error_message": exc.message,
                "fallback": "in_memory",
            },
        )
        try:
            # Best-effort count only; the throwaway store does not outlive this request
            limit = self._evaluator.effective_limit(key, self.config)
            await InMemoryCounterStore(clock=self._clock).windowed_increment(
                key, limit, self.config.window_ms
            )
        except Exception as fallback_exc:
            event_logger.error(
                "rate_limit.fallback_failed",
                extra={
                    "key_hash": hash_key(key),
                    "error_type": type(fallback_exc).__name__,
                    "error_msg": str(fallback_exc),
                },
            )

    def _internal_error(self, key: str, exc: Exception) -> RateLimiterInternalError:
        event_logger.error(
            "rate_limit.internal_error",
            extra={
                "key_hash": hash_key(key),
                "state": AdmissionState.ERROR.value,
                "store": type(self.store).__name__,
                "error_type": type(exc).__name__,
                "error_msg": str(exc),
            },
        )
        return RateLimiterInternalError(
            code="rate_limiter_internal_error",
            message=f"Rate limiter failed: {exc}",
            details={"store": type(self.store).__name__, "key_hash": hash_key(key)},
        )

    def _annotate(self, response: ResponseAdapter, decision: Decision) -> None:
        if self.config.add_headers and decision.counted:
            response.set_headers(decision.headers())

    async def _reject(
        self,
        request: Any,
        response: ResponseAdapter,
        forward: Forward,
        callback: RejectCallback | None,
        status_code: int,
        body: str,
    ) -> None:
        if callback is None:
            response.set_status(status_code)
            response.set_body(body)
            return

        result = callback(request, response, forward)
        if inspect.isawaitable(result):
            await result

    def _log_decision(self, event: str, key: str, decision: Decision) -> None:
        if self.config.log_events:
            level = logging.INFO if decision.allowed else logging.WARNING
        else:
            level = logging.DEBUG

        event_logger.log(
            level,
            event,
            extra={
                "key_hash": hash_key(key),
                "outcome": decision.outcome.value,
                "limit": decision.limit,
                "remaining": decision.remaining,
                "reset_at": decision.reset_epoch_seconds,
            },
        )

    def _record_request(self, key: str) -> None:
        if self.metrics is not None:
            self.metrics.record_request(key)

    def _record_block(self, key: str) -> None:
        if self.metrics is not None:
            self.metrics.record_block(key)

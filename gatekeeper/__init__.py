"""Request admission control: per-key quotas with pluggable counter stores."""

from gatekeeper.adapters.counter_store import (
    CounterStore,
    InMemoryCounterStore,
    RedisCounterStore,
    TokenCount,
    WindowCount,
)
from gatekeeper.adapters.http import ResponseAdapter
from gatekeeper.core.errors import ConfigurationError, RateLimiterInternalError, StoreUnavailable
from gatekeeper.schemas.policy import Decision, Outcome, PolicyConfig
from gatekeeper.services.admission import AdmissionController, AdmissionState
from gatekeeper.services.metrics import MetricsRecorder
from gatekeeper.services.policy_evaluator import PolicyEvaluator

__version__ = "0.1.0"

__all__ = [
    "AdmissionController",
    "AdmissionState",
    "ConfigurationError",
    "CounterStore",
    "Decision",
    "InMemoryCounterStore",
    "MetricsRecorder",
    "Outcome",
    "PolicyConfig",
    "PolicyEvaluator",
    "RateLimiterInternalError",
    "RedisCounterStore",
    "ResponseAdapter",
    "StoreUnavailable",
    "TokenCount",
    "WindowCount",
]

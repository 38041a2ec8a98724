"""Rate limiter exception types.

This module defines the errors raised across stores, the policy evaluator and
the admission layer, enabling consistent error handling, logging, and HTTP
responses.

Taxonomy:
- ConfigurationError: invalid setup, raised at construction or first evaluation
- StoreUnavailable: transient counter-store failure (connectivity, protocol)
- RateLimiterInternalError: failure surfaced when no safe fallback exists
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, NotRequired, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients.

    Fields are optional; only the ones relevant to an error are populated.
    """

    code: str
    message: str
    hint: str
    field: str
    value: Any
    store: str
    operation: str
    key_hash: str
    request_id: str
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for rate limiter failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ConfigurationError(AppError):
    """Raised when policy configuration is invalid."""


class StoreUnavailable(AppError):
    """Raised when the counter store cannot serve a request."""


class RateLimiterInternalError(AppError):
    """Raised when admission fails and no safe fallback exists."""

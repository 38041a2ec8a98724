"""Global exception handlers for consistent error responses.

Design:
- RateLimiterInternalError / ConfigurationError → 500 (server fault)
- Other AppError subclasses → 400
- Unexpected Exception → generic 500 (safety net)
- All responses include request_id for tracing

Errors raised inside ``app.middleware("http")`` functions bypass the AppError
handler and reach the generic 500 handler, which therefore maps the rate
limiter's own errors as well.
"""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from gatekeeper.core.errors import AppError, ConfigurationError, RateLimiterInternalError
from gatekeeper.core.logging import get_request_id

logger = logging.getLogger(__name__)


def _status_for(exc: AppError) -> int:
    if isinstance(exc, (RateLimiterInternalError, ConfigurationError)):
        return 500
    return 400


def _error_response(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error": {
                "code": code,
                "message": message,
                "request_id": get_request_id(),
            }
        },
    )


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Handle rate limiter errors with a consistent JSON format.

    Details are logged but never returned to the client, since they may
    describe the backing store.

    Args:
        request: FastAPI request object.
        exc: AppError instance (or subclass).

    Returns:
        JSONResponse with appropriate status code and error code/message.
    """
    status_code = _status_for(exc)

    logger.warning(
        "app_error_handled",
        extra={
            "error_code": exc.code,
            "error_message": exc.message,
            "status_code": status_code,
            "has_details": bool(exc.details),
            "request_id": get_request_id(),
        },
    )

    if status_code == 500:
        return _error_response(500, exc.code, "The request could not be admitted. Please try again later.")
    return _error_response(status_code, exc.code, exc.message)


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Fallback handler for unexpected errors (safety net).

    Rate limiter errors escaping the admission middleware land here and are
    delegated to ``app_error_handler``.
    """
    if isinstance(exc, AppError):
        return await app_error_handler(request, exc)

    logger.error(
        "unhandled_exception",
        extra={
            "error_type": type(exc).__name__,
            "error_msg": str(exc),
            "request_path": request.url.path,
            "request_method": request.method,
            "request_id": get_request_id(),
        },
    )

    return _error_response(
        500,
        "internal_server_error",
        "An unexpected error occurred. Please try again later.",
    )


def setup_exception_handlers(app) -> None:
    """Register all exception handlers with FastAPI app.

    Order matters: specific handlers registered before general fallback.

    Args:
        app: FastAPI application instance.
    """
    app.exception_handler(AppError)(app_error_handler)
    app.exception_handler(Exception)(general_exception_handler)

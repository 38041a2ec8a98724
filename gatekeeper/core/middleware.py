"""HTTP middleware for request correlation and admission control.

Both middlewares are plain ``(request, call_next)`` coroutines registered with
``app.middleware("http")``:

- ``request_id_middleware`` accepts an incoming X-Request-ID header or
  generates a UUID, stores it in contextvars for log correlation and echoes it
  on the response.
- ``build_admission_middleware`` binds an AdmissionController to Starlette:
  it adapts the response, forwards admitted requests to ``call_next`` and
  replays the X-RateLimit-* headers onto the downstream response.

Usage:
    app.middleware("http")(request_id_middleware)
    app.middleware("http")(build_admission_middleware(controller))
"""

from __future__ import annotations

import time
import uuid
from typing import Awaitable, Callable

from fastapi import Request, Response

from gatekeeper.adapters.http.starlette import StarletteResponseAdapter
from gatekeeper.core.config import settings
from gatekeeper.core.logging import clear_request_id, set_request_id
from gatekeeper.services.admission import AdmissionController

CallNext = Callable[[Request], Awaitable[Response]]
HttpMiddleware = Callable[[Request, CallNext], Awaitable[Response]]


async def request_id_middleware(request: Request, call_next: CallNext) -> Response:
    """HTTP middleware for request ID generation and propagation.

    If the client provides an X-Request-ID header (configurable via
    LOG_REQUEST_ID_HEADER), that value is used. Otherwise, a new UUID is
    generated. The ID is propagated back in the response headers and stored in
    contextvars so admission events carry it.

    Args:
        request: The incoming HTTP request object.
        call_next: The next middleware/route handler in the stack.

    Returns:
        Response: The response from the next handler with request_id and
            duration headers added.
    """

    header_name = settings.log.request_id_header
    request_id = request.headers.get(header_name) or str(uuid.uuid4())
    set_request_id(request_id)
    start = time.perf_counter()
    try:
        response: Response = await call_next(request)
    finally:
        clear_request_id()

    duration_ms = (time.perf_counter() - start) * 1000
    response.headers[header_name] = request_id
    response.headers.setdefault("X-Request-Duration-ms", f"{duration_ms:.2f}")
    return response


def build_admission_middleware(controller: AdmissionController) -> HttpMiddleware:
    """Create an HTTP middleware enforcing the controller's policy.

    Args:
        controller: Controller shared by every request of the application.

    Returns:
        Coroutine function suitable for ``app.middleware("http")``.
    """

    async def admission_middleware(request: Request, call_next: CallNext) -> Response:
        adapter = StarletteResponseAdapter()
        downstream: list[Response] = []

        async def forward() -> None:
            downstream.append(await call_next(request))

        await controller.handle(request, adapter, forward)

        if downstream:
            return adapter.apply_headers(downstream[0])
        return adapter.build_response()

    return admission_middleware

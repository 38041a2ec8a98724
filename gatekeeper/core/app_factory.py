"""Application factory for the FastAPI app.

Centralizes app construction (logging, middleware, handlers, routers) so
tests can build isolated apps with their own policy and store.
"""

from __future__ import annotations

from fastapi import FastAPI

from gatekeeper.adapters.counter_store.base import CounterStore
from gatekeeper.adapters.counter_store.factory import create_counter_store
from gatekeeper.adapters.http.starlette import client_host_key
from gatekeeper.api.routes import health_router, metrics_router
from gatekeeper.core.config import Settings, settings as default_settings
from gatekeeper.core.exception_handlers import setup_exception_handlers
from gatekeeper.core.logging import configure_logging
from gatekeeper.core.middleware import build_admission_middleware, request_id_middleware
from gatekeeper.schemas.policy import PolicyConfig
from gatekeeper.services.admission import AdmissionController


def create_app(
    settings: Settings | None = None,
    *,
    policy: PolicyConfig | None = None,
    store: CounterStore | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        settings: Settings to build from; defaults to the global settings.
        policy: Policy overriding the one derived from RATE_LIMIT_* settings.
        store: Counter store overriding the one selected by RATE_LIMIT_STORE.

    Returns:
        Configured FastAPI app. The admission controller, when enabled, is
        exposed as ``app.state.admission``.
    """
    cfg = settings or default_settings

    # Logging first so subsequent init logs are formatted as desired
    configure_logging(cfg.log)

    app = FastAPI(
        title="Gatekeeper",
        description="Request admission control: fixed-window and token-bucket quotas per caller.",
        version="0.1.0",
    )

    app.state.admission = None
    if cfg.rate_limit.enabled:
        controller = AdmissionController(
            policy or PolicyConfig.from_settings(cfg.rate_limit, key_func=client_host_key),
            store or create_counter_store(cfg),
            store_timeout_ms=cfg.rate_limit.store_timeout_ms,
        )
        app.state.admission = controller
        app.middleware("http")(build_admission_middleware(controller))

    # Registered last so it wraps admission and its events carry the request id
    app.middleware("http")(request_id_middleware)

    setup_exception_handlers(app)

    app.include_router(health_router)
    app.include_router(metrics_router)

    return app

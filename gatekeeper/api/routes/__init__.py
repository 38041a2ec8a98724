from __future__ import annotations

from gatekeeper.api.routes.health import router as health_router
from gatekeeper.api.routes.metrics import router as metrics_router

__all__ = ["health_router", "metrics_router"]

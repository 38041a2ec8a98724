from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request, status

router = APIRouter(tags=["Metrics"])


@router.get("/metrics/rate-limit")
def rate_limit_metrics(request: Request) -> dict[str, dict[str, int]]:
    """Per-key admission counters.

    Returns:
        dict: Mapping of key to {"requests": n, "blocks": m}.

    Raises:
        HTTPException: 404 when metrics are disabled (RATE_LIMIT_METRICS_ENABLED).
    """

    controller = getattr(request.app.state, "admission", None)
    stats = controller.get_metrics() if controller else None
    if stats is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Rate limit metrics are disabled",
        )
    return stats

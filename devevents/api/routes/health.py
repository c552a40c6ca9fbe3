from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from devevents.core.rate_limit_http import enforce_rate_limit, get_rate_limit_service

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check() -> dict:
    """Health check endpoint.

    Returns a simple status response to verify the API is operational.
    Used by load balancers and monitoring systems to determine service health.
    """

    return {"status": "ok"}


@router.get(
    "/health/rate-limit",
    dependencies=[Depends(enforce_rate_limit("public_api"))],
)
def rate_limit_health(request: Request) -> dict:
    """Report whether limits are shared through Redis or held per process.

    ``mode`` is ``"fallback"`` when no shared store is configured; limits
    are then only enforced per worker.
    """

    service = get_rate_limit_service(request)
    return {
        "status": "ok",
        "mode": service.mode,
        "fallback": service.fallback.stats(),
    }

# backend/app/routes/v1/resilience.py
"""
Resilience status route - API v1

Per-dependency circuit breaker, rate limiter and retry counters.
"""

from fastapi import APIRouter, Depends

from ...api.dependencies import get_resilience_registry
from ...resilience.registry import ResilienceRegistry
from ...schemas.quota import ResilienceStatusResponse

router = APIRouter(tags=["resilience-v1"])


@router.get("/status", response_model=ResilienceStatusResponse)
async def resilience_status(
    registry: ResilienceRegistry = Depends(get_resilience_registry),
) -> ResilienceStatusResponse:
    return ResilienceStatusResponse(dependencies=registry.snapshot())

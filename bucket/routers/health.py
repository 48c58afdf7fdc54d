"""Service health endpoint."""

from __future__ import annotations

import asyncio

from fastapi import APIRouter, Depends

from bucket.auth import get_services
from bucket.services.wiring import BucketServices
from shared.schemas.common import HealthResponse

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(services: BucketServices = Depends(get_services)) -> HealthResponse:
    """Concurrently ping the cache and the registry.

    The cache is optional, so only an unreachable registry degrades status.
    """
    cache_ok, registry_ok = await asyncio.gather(
        services.cache.health_check(),
        services.registry.health_check(),
    )
    return HealthResponse(
        status="ok" if registry_ok else "degraded",
        cache=cache_ok,
        registry=registry_ok,
    )

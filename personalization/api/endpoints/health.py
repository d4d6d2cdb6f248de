from fastapi import APIRouter, Depends
from loguru import logger

from personalization.api.deps import get_services
from personalization.core.version import __version__
from personalization.services.container import Services

router = APIRouter(tags=["health"])


@router.get("/health", summary="Readiness probe with dependency checks")
async def health_check(services: Services = Depends(get_services)) -> dict:
    data_store = "UP" if await services.redis.ping() else "DOWN"
    try:
        services.cache.stats()
        cache = "UP"
    except Exception as exc:
        logger.warning(f"Recommendation cache check failed: {exc}")
        cache = "DOWN"
    return {
        "status": "UP" if data_store == "UP" and cache == "UP" else "DEGRADED",
        "service": "personalization",
        "version": __version__,
        "checks": {"cache": cache, "dataStore": data_store},
        "pools": services.pools.stats(),
    }

from fastapi import APIRouter, Depends
from loguru import logger

from personalization.api.deps import get_services
from personalization.services.container import Services

router = APIRouter(prefix="/cache", tags=["cache"])


@router.get("/stats")
async def cache_stats(services: Services = Depends(get_services)):
    """Hit, miss, stale and eviction counters per recommendation kind."""
    return {"success": True, **services.cache.stats()}


@router.delete("/")
async def clear_caches(services: Services = Depends(get_services)):
    """
    Drop every cached recommendation list. The next request for each user recomputes.
    """
    services.cache.clear()
    logger.info("Recommendation cache cleared via API endpoint")
    return {"success": True, "message": "Recommendation cache cleared"}

from fastapi import APIRouter, Depends, Path, Query

from personalization.api.deps import get_services
from personalization.core.config import settings
from personalization.models.recommendation import RecommendationKind
from personalization.services.container import Services

router = APIRouter(prefix="/recommendations", tags=["recommendations"])


async def _respond(services: Services, kind: RecommendationKind, user_id: int, limit: int) -> dict:
    recommendations = await services.engine.recommend(kind, user_id, limit)
    return {
        "success": True,
        "userId": user_id,
        "recommendations": recommendations,
        "count": len(recommendations),
    }


@router.get("/opportunities/{user_id}")
async def recommend_opportunities(
    user_id: int = Path(gt=0),
    limit: int = Query(10, ge=1, le=settings.MAX_RECOMMENDATIONS),
    services: Services = Depends(get_services),
):
    return await _respond(services, RecommendationKind.OPPORTUNITY, user_id, limit)


@router.get("/content/{user_id}")
async def recommend_content(
    user_id: int = Path(gt=0),
    limit: int = Query(8, ge=1, le=settings.MAX_RECOMMENDATIONS),
    services: Services = Depends(get_services),
):
    return await _respond(services, RecommendationKind.CONTENT, user_id, limit)


@router.get("/mentors/{user_id}")
async def recommend_mentors(
    user_id: int = Path(gt=0),
    limit: int = Query(5, ge=1, le=settings.MAX_RECOMMENDATIONS),
    services: Services = Depends(get_services),
):
    return await _respond(services, RecommendationKind.MENTOR, user_id, limit)

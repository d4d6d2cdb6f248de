from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends, Path, Query
from loguru import logger

from personalization.api.deps import get_services
from personalization.core.errors import InvalidInputError, RecommendationError
from personalization.models.activity import ActivityType, TargetType, parse_activity_type
from personalization.services.container import Services

router = APIRouter(tags=["insights"])


@router.get("/insights/behavior/{user_id}")
async def behavior_insights(user_id: int = Path(gt=0), services: Services = Depends(get_services)):
    insights = await services.engine.behavior_insights(user_id)
    return {"success": True, **insights}


@router.get("/trending/{target_type}")
async def trending(
    target_type: str,
    days: int = Query(7, ge=1, le=365),
    limit: int = Query(10, ge=1, le=100),
    services: Services = Depends(get_services),
):
    try:
        parsed = TargetType(target_type.upper())
    except ValueError:
        raise InvalidInputError(f"Unknown target type: {target_type!r}") from None

    since = datetime.now(timezone.utc) - timedelta(days=days)
    try:
        ranked = await services.algorithms.trending(parsed, since, limit)
    except RecommendationError as exc:
        logger.error(f"Trending {parsed.value} unavailable: {exc}")
        ranked = []
    return {
        "success": True,
        "targetType": parsed.value,
        "days": days,
        "trending": [{"targetId": target_id, "count": count} for target_id, count in ranked],
        "count": len(ranked),
    }


@router.get("/users/{user_id}/similar")
async def similar_users(
    user_id: int = Path(gt=0),
    activity_type: str = Query(ActivityType.APPLY.value, alias="activityType"),
    limit: int = Query(20, ge=1, le=100),
    services: Services = Depends(get_services),
):
    try:
        parsed, _ = parse_activity_type(activity_type)
    except ValueError as exc:
        raise InvalidInputError(str(exc)) from None

    try:
        ranked = await services.algorithms.similar_users(user_id, parsed, limit)
    except RecommendationError as exc:
        logger.error(f"Similar users unavailable for user {user_id}: {exc}")
        ranked = []
    return {
        "success": True,
        "userId": user_id,
        "activityType": parsed.value,
        "similarUsers": [{"userId": other, "sharedCount": shared} for other, shared in ranked],
        "count": len(ranked),
    }

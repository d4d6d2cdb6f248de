from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends, Path, Query
from loguru import logger

from personalization.api.deps import get_services
from personalization.core.config import settings
from personalization.core.errors import InvalidInputError, StoreUnavailableError
from personalization.models.history import FeedbackRequest, RecommendationHistoryEntry, TimeSpentRequest
from personalization.models.recommendation import RecommendationKind
from personalization.services.container import Services

router = APIRouter(prefix="/recommendations", tags=["history"])


def _serialize(entry: RecommendationHistoryEntry) -> dict:
    return {
        "historyId": entry.id,
        "recommendationType": entry.recommendation_type.value,
        "itemId": entry.recommended_item_id,
        "score": entry.score,
        "algorithm": f"{entry.algorithm_name}:{entry.algorithm_version}",
        "wasViewed": entry.was_viewed,
        "wasClicked": entry.was_clicked,
        "wasApplied": entry.was_applied,
        "timeSpentSeconds": entry.time_spent_seconds,
        "feedbackRating": entry.feedback_rating,
        "feedbackComment": entry.feedback_comment,
        "createdAt": entry.created_at.isoformat(),
        "viewedAt": entry.viewed_at.isoformat() if entry.viewed_at else None,
        "clickedAt": entry.clicked_at.isoformat() if entry.clicked_at else None,
        "appliedAt": entry.applied_at.isoformat() if entry.applied_at else None,
    }


@router.get("/history/{user_id}")
async def recommendation_history(
    user_id: int = Path(gt=0),
    recommendation_type: str | None = Query(None, alias="type"),
    limit: int = Query(50, ge=1, le=200),
    services: Services = Depends(get_services),
):
    kind = None
    if recommendation_type:
        try:
            kind = RecommendationKind(recommendation_type.upper())
        except ValueError:
            raise InvalidInputError(f"Unknown recommendation type: {recommendation_type!r}") from None
    try:
        entries = await services.history_store.list_for_user(user_id, kind, limit)
    except StoreUnavailableError as exc:
        logger.error(f"Recommendation history unavailable for user {user_id}: {exc}")
        entries = []
    return {"success": True, "userId": user_id, "history": [_serialize(e) for e in entries], "count": len(entries)}


@router.post("/history/{history_id}/viewed")
async def mark_viewed(history_id: int = Path(gt=0), services: Services = Depends(get_services)):
    updated = await services.feedback.mark_viewed(history_id)
    return {"success": True, "historyId": history_id, "updated": updated}


@router.post("/history/{history_id}/clicked")
async def mark_clicked(history_id: int = Path(gt=0), services: Services = Depends(get_services)):
    updated = await services.feedback.mark_clicked(history_id)
    return {"success": True, "historyId": history_id, "updated": updated}


@router.post("/history/{history_id}/applied")
async def mark_applied(history_id: int = Path(gt=0), services: Services = Depends(get_services)):
    updated = await services.feedback.mark_applied(history_id)
    return {"success": True, "historyId": history_id, "updated": updated}


@router.post("/history/{history_id}/feedback")
async def record_feedback(
    body: FeedbackRequest, history_id: int = Path(gt=0), services: Services = Depends(get_services)
):
    recorded = await services.feedback.record_feedback(history_id, body.rating, body.comment)
    return {"success": True, "historyId": history_id, "recorded": recorded}


@router.post("/history/{history_id}/time")
async def add_time_spent(
    body: TimeSpentRequest, history_id: int = Path(gt=0), services: Services = Depends(get_services)
):
    total = await services.feedback.add_time_spent(history_id, body.seconds)
    return {"success": True, "historyId": history_id, "timeSpentSeconds": total}


@router.get("/performance")
async def algorithm_performance(
    algorithm: str | None = None,
    days: int = Query(30, ge=1, le=365),
    services: Services = Depends(get_services),
):
    """Click-through and conversion rates of what an algorithm served recently."""
    since = datetime.now(timezone.utc) - timedelta(days=days)
    rates = await services.history_store.algorithm_rates(algorithm or settings.ALGORITHM_NAME, since)
    return {"success": True, "days": days, **rates}

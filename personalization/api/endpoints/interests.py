from fastapi import APIRouter, Depends, Path, Query
from loguru import logger

from personalization.api.deps import get_services
from personalization.core.errors import NotFoundError, StoreUnavailableError
from personalization.models.interest import InterestEntry, InterestUpsertRequest
from personalization.services.container import Services

router = APIRouter(prefix="/interests", tags=["interests"])


def _serialize(entry: InterestEntry) -> dict:
    return {
        "tag": entry.tag,
        "level": entry.level.value,
        "source": entry.source.value,
        "confidenceScore": entry.confidence_score,
        "interactionCount": entry.interaction_count,
        "isPrimary": entry.is_primary,
        "isActive": entry.is_active,
        "lastInteraction": entry.last_interaction.isoformat() if entry.last_interaction else None,
        "updatedAt": entry.updated_at.isoformat(),
    }


@router.get("/{user_id}")
async def list_interests(
    user_id: int = Path(gt=0),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    services: Services = Depends(get_services),
):
    try:
        entries = await services.interest_store.top_interests(user_id, limit, offset)
    except StoreUnavailableError as exc:
        logger.error(f"Interests unavailable for user {user_id}: {exc}")
        entries = []
    return {"success": True, "userId": user_id, "interests": [_serialize(e) for e in entries], "count": len(entries)}


@router.put("/{user_id}")
async def upsert_interests(
    body: InterestUpsertRequest, user_id: int = Path(gt=0), services: Services = Depends(get_services)
):
    entries = await services.interest_store.upsert_interests(
        user_id, body.tags, body.level, body.source, body.confidence, body.isPrimary
    )
    services.cache.invalidate_user(user_id)
    return {"success": True, "userId": user_id, "interests": [_serialize(e) for e in entries], "count": len(entries)}


@router.post("/{user_id}/{tag}/confirm")
async def confirm_interest(tag: str, user_id: int = Path(gt=0), services: Services = Depends(get_services)):
    """Confirm an AI-inferred interest, making it the user's own."""
    entry = await services.interest_store.confirm_interest(user_id, tag)
    if entry is None:
        raise NotFoundError(f"User {user_id} has no interest '{tag}'")
    return {"success": True, "userId": user_id, "interest": _serialize(entry)}

from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends, Path, Query
from loguru import logger
from pydantic import ValidationError

from personalization.api.deps import get_services
from personalization.core.constants import MAX_PAGE_SIZE
from personalization.core.errors import InvalidInputError, StoreUnavailableError
from personalization.models.activity import ActivityRequest, parse_activity_type
from personalization.services.container import Services

router = APIRouter(prefix="/activity", tags=["activity"])


def _validation_message(exc: ValidationError) -> str:
    return "; ".join(error["msg"].removeprefix("Value error, ") for error in exc.errors())


@router.post("/record")
async def record_activity(body: ActivityRequest, services: Services = Depends(get_services)):
    """Record a user action. Storage happens in the background and never fails the caller."""
    try:
        event = body.to_event()
    except ValidationError as exc:
        raise InvalidInputError(_validation_message(exc)) from None
    await services.tracker.track(event)
    return {"success": True, "message": "Activity recorded", "eventId": event.id}


@router.get("/{user_id}")
async def list_activity(
    user_id: int = Path(gt=0),
    activity_type: str | None = Query(None, alias="activityType"),
    since_days: int | None = Query(None, alias="sinceDays", ge=1, le=3650),
    page: int = Query(0, ge=0),
    size: int = Query(50, ge=1, le=MAX_PAGE_SIZE),
    services: Services = Depends(get_services),
):
    parsed_type = None
    if activity_type:
        try:
            parsed_type, _ = parse_activity_type(activity_type)
        except ValueError as exc:
            raise InvalidInputError(str(exc)) from None
    since = datetime.now(timezone.utc) - timedelta(days=since_days) if since_days else None

    try:
        events = await services.activity_store.query(user_id, parsed_type, since, page, size)
    except StoreUnavailableError as exc:
        logger.error(f"Activity listing unavailable for user {user_id}: {exc}")
        events = []
    return {
        "success": True,
        "userId": user_id,
        "page": page,
        "size": size,
        "activities": [event.model_dump(mode="json") for event in events],
        "count": len(events),
    }

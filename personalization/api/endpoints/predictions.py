from fastapi import APIRouter, Depends, Path

from personalization.api.deps import get_services
from personalization.services.container import Services

router = APIRouter(prefix="/predict", tags=["predictions"])


@router.get("/success/{user_id}/{opportunity_id}")
async def predict_success(
    user_id: int = Path(gt=0),
    opportunity_id: int = Path(gt=0),
    services: Services = Depends(get_services),
):
    """Chance that the user's application to this opportunity succeeds, with advice."""
    prediction = await services.engine.predict_success(user_id, opportunity_id)
    return {"success": True, **prediction.model_dump(mode="json")}

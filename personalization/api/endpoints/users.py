from fastapi import APIRouter, Depends, Path

from personalization.api.deps import get_services
from personalization.services.container import Services

router = APIRouter(prefix="/users", tags=["users"])


@router.post("/{user_id}/deactivate")
async def deactivate_user(user_id: int = Path(gt=0), services: Services = Depends(get_services)):
    """Soft-delete a user across the activity, interest and history stores."""
    outcome = await services.lifecycle.deactivate_user(user_id)
    return {"success": outcome["completed"], **outcome}

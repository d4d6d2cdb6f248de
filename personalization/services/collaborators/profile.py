from async_lru import alru_cache
from loguru import logger
from pydantic import ValidationError

from personalization.core.config import settings
from personalization.core.errors import CollaboratorUnavailableError
from personalization.models.recommendation import UserProfile
from personalization.services.collaborators.client import CollaboratorClient


class ProfileService:
    """Read-only view of the user service: completeness, role and declared interests."""

    def __init__(self, client: CollaboratorClient | None = None):
        self.client = client or CollaboratorClient(settings.PROFILE_SERVICE_URL)

    async def close(self):
        await self.client.close()

    @alru_cache(maxsize=5000, ttl=300)
    async def get_profile(self, user_id: int) -> UserProfile | None:
        """None for unknown users. CollaboratorUnavailableError when the service is down or sends junk."""
        data = await self.client.get(f"/api/v1/users/{user_id}/profile")
        if not data or not isinstance(data, dict):
            logger.info(f"No profile found for user {user_id}")
            return None
        try:
            return UserProfile.model_validate({**data, "userId": user_id})
        except ValidationError as exc:
            logger.warning(f"Unusable profile payload for user {user_id}: {exc.error_count()} invalid fields")
            raise CollaboratorUnavailableError(f"Profile of user {user_id} could not be read") from exc

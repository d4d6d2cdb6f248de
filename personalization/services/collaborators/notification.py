from loguru import logger

from personalization.core.config import settings
from personalization.services.collaborators.client import CollaboratorClient


class NotificationService:
    """
    Fire-and-forget notifications. Without NOTIFICATION_SERVICE_URL messages are only logged.
    """

    def __init__(self, client: CollaboratorClient | None = None):
        if client is None and settings.NOTIFICATION_SERVICE_URL:
            client = CollaboratorClient(settings.NOTIFICATION_SERVICE_URL)
        self.client = client

    async def close(self):
        if self.client is not None:
            await self.client.close()

    async def notify(self, user_id: int, message: str, category: str = "PERSONALIZATION") -> None:
        if self.client is None:
            logger.info(f"[notification:{category}] user {user_id}: {message}")
            return
        await self.client.post(
            "/api/v1/notifications", json={"userId": user_id, "message": message, "category": category}
        )
        logger.debug(f"Sent {category} notification to user {user_id}")

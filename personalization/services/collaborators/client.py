from personalization.core.base_client import BaseClient
from personalization.core.config import settings
from personalization.core.version import __version__


class CollaboratorClient(BaseClient):
    """
    HTTP client for one of the platform's collaborator services.
    """

    def __init__(self, base_url: str, timeout: float | None = None, max_retries: int | None = None):
        headers = {
            "User-Agent": f"YouthConnect-Personalization/{__version__}",
            "Accept": "application/json",
        }
        super().__init__(
            base_url=base_url.rstrip("/"),
            timeout=settings.COLLABORATOR_TIMEOUT_SECONDS if timeout is None else timeout,
            max_retries=settings.COLLABORATOR_MAX_RETRIES if max_retries is None else max_retries,
            headers=headers,
        )

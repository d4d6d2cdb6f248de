import asyncio

from async_lru import alru_cache
from loguru import logger

from personalization.core.config import settings
from personalization.models.activity import TargetType, normalize_tags
from personalization.services.collaborators.client import CollaboratorClient


class CatalogService:
    """
    Active item ids and item tags from the opportunity, learning and mentor catalogs.
    """

    def __init__(self, client: CollaboratorClient | None = None):
        self.client = client or CollaboratorClient(settings.CATALOG_SERVICE_URL)
        self._sem = asyncio.Semaphore(20)

    async def close(self):
        await self.client.close()

    @staticmethod
    def _path(target_type: TargetType) -> str:
        return f"/api/v1/catalog/{target_type.value.lower()}"

    @alru_cache(maxsize=16, ttl=60)
    async def active_ids(self, target_type: TargetType) -> tuple[int, ...]:
        data = await self.client.get(f"{self._path(target_type)}/active")
        if not isinstance(data, list):
            logger.warning(f"Catalog returned no active {target_type.value} ids")
            return ()
        return tuple(int(item_id) for item_id in data)

    @alru_cache(maxsize=20000, ttl=3600)
    async def tags_of(self, target_type: TargetType, item_id: int) -> tuple[str, ...]:
        data = await self.client.get(f"{self._path(target_type)}/{item_id}/tags")
        return tuple(normalize_tags(data if isinstance(data, list) else []))

    async def tags_for(self, target_type: TargetType, item_ids: list[int]) -> dict[int, tuple[str, ...]]:
        async def _fetch(item_id: int) -> tuple[str, ...]:
            async with self._sem:
                return await self.tags_of(target_type, item_id)

        results = await asyncio.gather(*[_fetch(item_id) for item_id in item_ids])
        return dict(zip(item_ids, results))

from loguru import logger

from personalization.core.config import settings
from personalization.core.errors import CollaboratorUnavailableError
from personalization.models.activity import ActivityEvent
from personalization.services.activity_store import ActivityEventStore
from personalization.services.collaborators.catalog import CatalogService
from personalization.services.reactor import InterestAutoTuner
from personalization.services.workers import WorkerPools


class ActivityTracker:
    """Write path for activity: enrich, store, then hand tagged events to the reactor."""

    def __init__(
        self,
        activity_store: ActivityEventStore,
        reactor: InterestAutoTuner,
        pools: WorkerPools,
        catalog: CatalogService | None = None,
    ):
        self.activity_store = activity_store
        self.reactor = reactor
        self.pools = pools
        self.catalog = catalog

    async def track(self, event: ActivityEvent) -> None:
        """Queue an event for recording. Never raises; runs in the caller only when the pool is stopped or saturated."""
        try:
            await self.pools.activity.submit(self.store_and_react, event, key=event.user_id)
        except Exception as exc:
            logger.error(f"Could not queue {event.activity_type.value} activity for user {event.user_id}: {exc}")

    async def _enrich(self, event: ActivityEvent) -> ActivityEvent:
        if event.tags or event.target_id is None or self.catalog is None or not settings.ENRICH_ACTIVITY_TAGS:
            return event
        try:
            tags = await self.catalog.tags_of(event.target_type, event.target_id)
        except CollaboratorUnavailableError as exc:
            logger.warning(f"Could not fetch tags for {event.target_ref}: {exc}")
            return event
        return event.model_copy(update={"tags": tuple(tags)}) if tags else event

    async def store_and_react(self, event: ActivityEvent) -> bool:
        """
        Store the event, then hand it to the reactor if it carries tags.

        Redelivered events go to the reactor too; it applies each event id at most once.
        """
        event = await self._enrich(event)
        try:
            stored = await self.activity_store.append(event)
        except Exception as exc:
            logger.error(f"Failed to record {event.activity_type.value} activity for user {event.user_id}: {exc}")
            return False
        if not stored:
            logger.debug(f"Event {event.id} was already stored")
        if event.tags:
            await self.reactor.submit(event)
        return stored

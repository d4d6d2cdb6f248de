from loguru import logger

from personalization.core.config import settings
from personalization.core.errors import PoolSaturatedError
from personalization.models.activity import ActivityEvent
from personalization.services.collaborators.notification import NotificationService
from personalization.services.interest_store import InterestChange, InterestProfileStore
from personalization.services.recommendation.cache import RecommendationCache
from personalization.services.workers import WorkerPools


class InterestAutoTuner:
    """
    Re-levels a user's interests as tagged activity comes in.

    Each stored event is handed to the reactor pool keyed by user id, so one user's events
    are applied in the order they were written. Applying an event is exactly-once thanks to
    the store's per-event dedupe marker; failures are logged and the event is dropped.
    """

    def __init__(
        self,
        interest_store: InterestProfileStore,
        pools: WorkerPools,
        notifier: NotificationService | None = None,
        cache: RecommendationCache | None = None,
    ):
        self.interest_store = interest_store
        self.pools = pools
        self.notifier = notifier
        self.cache = cache

    async def submit(self, event: ActivityEvent) -> None:
        if not event.tags:
            return
        await self.pools.reactor.submit(self.process, event, key=event.user_id)

    async def process(self, event: ActivityEvent) -> list[InterestChange] | None:
        try:
            changes = await self.interest_store.apply_activity(
                event.user_id, list(event.tags), event.id, event.created_at
            )
        except Exception as exc:
            logger.error(f"Interest auto-tuning failed for event {event.id} (user {event.user_id}): {exc}")
            return None

        if not changes:
            return changes
        logger.debug(f"Event {event.id} touched {len(changes)} interests of user {event.user_id}")

        for change in changes:
            if change.previous_level != change.entry.level:
                logger.info(
                    f"Interest '{change.entry.tag}' of user {event.user_id} moved "
                    f"{change.previous_level.value} -> {change.entry.level.value}"
                )
            if change.promoted_to_high and settings.NOTIFY_ON_INTEREST_PROMOTION:
                await self._notify_promotion(event.user_id, change.entry.tag)

        if self.cache is not None and any(change.previous_level != change.entry.level for change in changes):
            self.cache.invalidate_user(event.user_id)
        return changes

    async def _notify_promotion(self, user_id: int, tag: str) -> None:
        if self.notifier is None:
            return
        message = f"Looks like you're really into {tag}! We'll show you more opportunities like these."
        try:
            await self.pools.notification.submit(self.notifier.notify, user_id, message, "INTEREST_PROMOTION")
        except PoolSaturatedError as exc:
            logger.warning(f"Skipped interest promotion notification for user {user_id}: {exc}")

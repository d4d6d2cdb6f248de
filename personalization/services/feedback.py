from loguru import logger

from personalization.core.errors import NotFoundError, PoolSaturatedError
from personalization.models.activity import ActivityEvent, ActivityType
from personalization.models.history import RecommendationHistoryEntry
from personalization.services.collaborators.notification import NotificationService
from personalization.services.history_store import RecommendationHistoryStore
from personalization.services.tracker import ActivityTracker
from personalization.services.workers import WorkerPools


class FeedbackService:
    """
    Lifecycle of a served recommendation: viewed, clicked, applied, rated, time spent.

    The first click and the first apply are also logged as activity (VIEW / APPLY of the
    recommended item) with ids derived from the history id, so replays never double count.
    """

    def __init__(
        self,
        history_store: RecommendationHistoryStore,
        tracker: ActivityTracker,
        pools: WorkerPools,
        notifier: NotificationService | None = None,
    ):
        self.history = history_store
        self.tracker = tracker
        self.pools = pools
        self.notifier = notifier

    async def _entry(self, history_id: int) -> RecommendationHistoryEntry:
        entry = await self.history.get(history_id)
        if entry is None:
            raise NotFoundError(f"Recommendation history entry {history_id} not found")
        return entry

    async def _emit(self, entry: RecommendationHistoryEntry, activity_type: ActivityType, transition: str) -> None:
        event = ActivityEvent(
            id=f"history-{entry.id}-{transition}",
            user_id=entry.user_id,
            activity_type=activity_type,
            target_id=entry.recommended_item_id,
            target_type=entry.recommendation_type.target_type,
            metadata={"source": "recommendation"},
        )
        await self.tracker.track(event)

    async def mark_viewed(self, history_id: int) -> bool:
        return await self.history.mark_viewed(history_id)

    async def mark_clicked(self, history_id: int) -> bool:
        first = await self.history.mark_clicked(history_id)
        if first:
            await self._emit(await self._entry(history_id), ActivityType.VIEW, "clicked")
        return first

    async def mark_applied(self, history_id: int) -> bool:
        first = await self.history.mark_applied(history_id)
        if not first:
            return False
        entry = await self._entry(history_id)
        await self._emit(entry, ActivityType.APPLY, "applied")
        if self.notifier is not None:
            message = "Your application has been recorded. Good luck! We'll keep an eye out for similar opportunities."
            try:
                await self.pools.notification.submit(self.notifier.notify, entry.user_id, message, "APPLICATION")
            except PoolSaturatedError as exc:
                logger.warning(f"Skipped application notification for user {entry.user_id}: {exc}")
        return True

    async def record_feedback(self, history_id: int, rating: int, comment: str | None = None) -> bool:
        recorded = await self.history.record_feedback(history_id, rating, comment)
        if recorded:
            logger.info(f"Feedback {rating}/5 recorded for recommendation {history_id}")
        return recorded

    async def add_time_spent(self, history_id: int, seconds: int) -> int:
        return await self.history.add_time_spent(history_id, seconds)

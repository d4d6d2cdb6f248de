import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any

from loguru import logger

from personalization.core.config import settings
from personalization.core.errors import InvalidInputError
from personalization.services.activity_store import ActivityEventStore
from personalization.services.history_store import RecommendationHistoryStore
from personalization.services.interest_store import InterestProfileStore
from personalization.services.recommendation.cache import RecommendationCache


class UserLifecycleService:
    """
    Soft-deleting a user, step by step.

    Each store is updated independently and the outcome of every step is reported, so a
    partial failure is visible to the caller and the call can simply be repeated.
    """

    def __init__(
        self,
        activity_store: ActivityEventStore,
        interest_store: InterestProfileStore,
        history_store: RecommendationHistoryStore,
        cache: RecommendationCache,
    ):
        self.activity_store = activity_store
        self.interest_store = interest_store
        self.history_store = history_store
        self.cache = cache

    async def deactivate_user(self, user_id: int) -> dict[str, Any]:
        if user_id <= 0:
            raise InvalidInputError("userId must be a positive integer")

        steps = {
            "activity": self.activity_store.mark_user_inactive,
            "interests": self.interest_store.deactivate_user,
            "history": self.history_store.deactivate_user,
        }
        outcome: dict[str, Any] = {}
        for name, step in steps.items():
            try:
                affected = await step(user_id)
                outcome[name] = {"success": True, "affected": affected if isinstance(affected, int) else None}
            except Exception as exc:
                logger.error(f"Deactivating user {user_id}: {name} step failed: {exc}")
                outcome[name] = {"success": False, "error": str(exc)}

        outcome["cache"] = {"success": True, "affected": self.cache.invalidate_user(user_id)}
        completed = all(step["success"] for step in outcome.values())
        logger.info(f"Deactivated user {user_id} ({'complete' if completed else 'partial'})")
        return {"userId": user_id, "completed": completed, "steps": outcome}


class RetentionSweeper:
    """Periodically drops activity index entries older than the retention window."""

    def __init__(
        self,
        activity_store: ActivityEventStore,
        interval_seconds: float | None = None,
        retention_days: int | None = None,
    ):
        self.activity_store = activity_store
        self.interval_seconds = interval_seconds or settings.ACTIVITY_PURGE_INTERVAL_SECONDS
        self.retention_days = retention_days or settings.ACTIVITY_RETENTION_DAYS
        self._task: asyncio.Task | None = None

    async def sweep(self) -> int:
        cutoff = datetime.now(timezone.utc) - timedelta(days=self.retention_days)
        return await self.activity_store.purge_older_than(cutoff)

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.sweep()
            except Exception as exc:
                logger.error(f"Activity retention sweep failed: {exc}")

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run(), name="activity-retention-sweeper")
            logger.info(
                f"Activity retention sweeper started (every {self.interval_seconds}s, keep {self.retention_days} days)"
            )

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

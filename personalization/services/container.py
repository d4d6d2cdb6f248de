import redis.asyncio as redis
from loguru import logger

from personalization.core.config import settings
from personalization.services.activity_store import ActivityEventStore
from personalization.services.collaborators.catalog import CatalogService
from personalization.services.collaborators.notification import NotificationService
from personalization.services.collaborators.profile import ProfileService
from personalization.services.feedback import FeedbackService
from personalization.services.history_store import RecommendationHistoryStore
from personalization.services.interest_store import InterestProfileStore
from personalization.services.lifecycle import RetentionSweeper, UserLifecycleService
from personalization.services.reactor import InterestAutoTuner
from personalization.services.recommendation.algorithms import RecommendationAlgorithms
from personalization.services.recommendation.cache import RecommendationCache, TieredRecommendationCache
from personalization.services.recommendation.engine import PersonalizationEngine
from personalization.services.redis_service import RedisService
from personalization.services.tracker import ActivityTracker
from personalization.services.workers import WorkerPools


class Services:
    """Wires stores, pools, collaborators and engine together for one app instance."""

    def __init__(
        self,
        redis_client: redis.Redis | None = None,
        profiles: ProfileService | None = None,
        catalog: CatalogService | None = None,
        notifier: NotificationService | None = None,
        cache: RecommendationCache | None = None,
        run_background: bool = True,
    ):
        self.run_background = run_background
        self.redis = RedisService(client=redis_client)
        self.activity_store = ActivityEventStore(self.redis)
        self.interest_store = InterestProfileStore(self.redis)
        self.history_store = RecommendationHistoryStore(self.redis)

        self.profiles = profiles or ProfileService()
        self.catalog = catalog or CatalogService()
        self.notifier = notifier or NotificationService()

        self.pools = WorkerPools.from_settings(settings)
        self.cache = cache or TieredRecommendationCache()
        self.algorithms = RecommendationAlgorithms(self.activity_store)

        self.reactor = InterestAutoTuner(self.interest_store, self.pools, self.notifier, self.cache)
        self.tracker = ActivityTracker(self.activity_store, self.reactor, self.pools, self.catalog)
        self.feedback = FeedbackService(self.history_store, self.tracker, self.pools, self.notifier)
        self.engine = PersonalizationEngine(
            self.activity_store,
            self.interest_store,
            self.history_store,
            self.cache,
            self.profiles,
            self.catalog,
            self.pools,
            algorithms=self.algorithms,
        )
        self.lifecycle = UserLifecycleService(
            self.activity_store, self.interest_store, self.history_store, self.cache
        )
        self.sweeper = RetentionSweeper(self.activity_store)

    async def start(self) -> None:
        """Start worker pools and the retention sweeper. Without them all work runs inline."""
        if not self.run_background:
            logger.info("Background workers disabled; activity and reactor work runs inline")
            return
        self.pools.start()
        self.sweeper.start()

    async def stop(self) -> None:
        await self.sweeper.stop()
        await self.pools.stop(settings.POOL_DRAIN_TIMEOUT_SECONDS)
        for collaborator in (self.profiles, self.catalog, self.notifier):
            try:
                await collaborator.close()
            except Exception as exc:
                logger.warning(f"Failed to close {type(collaborator).__name__}: {exc}")
        await self.redis.close()

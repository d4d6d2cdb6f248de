from collections import Counter
from datetime import datetime, timedelta, timezone
from functools import partial
from typing import Any

from loguru import logger

from personalization.core.config import settings
from personalization.core.constants import MAX_CANDIDATE_IDS
from personalization.core.errors import InvalidInputError, RecommendationError
from personalization.models.activity import ActivityType, TargetType, normalize_tags
from personalization.models.history import RecommendationHistoryEntry
from personalization.models.interest import InterestEntry, InterestLevel, InterestSource
from personalization.models.recommendation import (
    Recommendation,
    RecommendationKind,
    SuccessPrediction,
    UserProfile,
)
from personalization.services.activity_store import ActivityEventStore
from personalization.services.collaborators.catalog import CatalogService
from personalization.services.collaborators.profile import ProfileService
from personalization.services.history_store import RecommendationHistoryStore
from personalization.services.interest_store import InterestProfileStore
from personalization.services.recommendation.algorithms import RecommendationAlgorithms
from personalization.services.recommendation.cache import CacheKey, RecommendationCache
from personalization.services.recommendation.filtering import RecommendationFiltering
from personalization.services.recommendation.scoring import INSUFFICIENT_DATA_ADVICE, RecommendationScoring
from personalization.services.workers import WorkerPools

MIN_SCORES = {
    RecommendationKind.OPPORTUNITY: lambda: settings.MIN_SCORE_OPPORTUNITY,
    RecommendationKind.CONTENT: lambda: settings.MIN_SCORE_CONTENT,
    RecommendationKind.MENTOR: lambda: settings.MIN_SCORE_MENTOR,
}

UNAVAILABLE_ADVICE = "We couldn't estimate your chances right now. Please try again later."


def _since(days: int) -> datetime:
    return datetime.now(timezone.utc) - timedelta(days=days)


class PersonalizationEngine:
    """
    Ranks opportunities, learning content and mentors for a user.

    Each kind is computed in full (up to MAX_RECOMMENDATIONS), cached per (user, kind,
    algorithm version) and sliced to the requested limit on the way out, so different
    limits share one cache entry.

    Score = 0.5 interest match + 0.25 collaborative + 0.15 trending + 0.10 engagement.
    """

    def __init__(
        self,
        activity_store: ActivityEventStore,
        interest_store: InterestProfileStore,
        history_store: RecommendationHistoryStore,
        cache: RecommendationCache,
        profiles: ProfileService,
        catalog: CatalogService,
        pools: WorkerPools,
        algorithms: RecommendationAlgorithms | None = None,
    ):
        self.activity_store = activity_store
        self.interest_store = interest_store
        self.history_store = history_store
        self.cache = cache
        self.profiles = profiles
        self.catalog = catalog
        self.pools = pools
        self.algorithms = algorithms or RecommendationAlgorithms(activity_store)

    async def opportunities(self, user_id: int, limit: int = 10) -> list[dict[str, Any]]:
        return await self.recommend(RecommendationKind.OPPORTUNITY, user_id, limit)

    async def content(self, user_id: int, limit: int = 8) -> list[dict[str, Any]]:
        return await self.recommend(RecommendationKind.CONTENT, user_id, limit)

    async def mentors(self, user_id: int, limit: int = 5) -> list[dict[str, Any]]:
        return await self.recommend(RecommendationKind.MENTOR, user_id, limit)

    async def recommend(self, kind: RecommendationKind, user_id: int, limit: int) -> list[dict[str, Any]]:
        if user_id <= 0:
            raise InvalidInputError("userId must be a positive integer")
        if not 1 <= limit <= settings.MAX_RECOMMENDATIONS:
            raise InvalidInputError(f"limit must be between 1 and {settings.MAX_RECOMMENDATIONS}")

        key = CacheKey(user_id, kind, settings.ALGORITHM_VERSION)
        try:
            ranked = await self.cache.get_or_compute(key, partial(self._compute, kind, user_id))
        except RecommendationError as exc:
            logger.error(f"{kind.value} recommendations unavailable for user {user_id}: {exc}")
            return []
        except Exception as exc:
            logger.exception(f"Unexpected error computing {kind.value} recommendations for user {user_id}: {exc}")
            return []

        served = list(ranked[:limit])
        logger.info(f"Serving {len(served)} {kind.value} recommendations to user {user_id}")
        return await self._record_served(kind, user_id, served)

    async def _compute(self, kind: RecommendationKind, user_id: int) -> list[Recommendation]:
        future = await self.pools.recompute.submit(self.rank, kind, user_id, key=user_id)
        return await future

    async def _interests(self, user_id: int, profile: UserProfile | None) -> list[InterestEntry]:
        interests = await self.interest_store.top_interests(user_id, limit=100)
        known = {entry.tag for entry in interests}
        # Interests declared on the profile but never stored still count, at MEDIUM
        for tag in normalize_tags(profile.interests if profile else []):
            if tag not in known:
                interests.append(
                    InterestEntry(user_id=user_id, tag=tag, level=InterestLevel.MEDIUM, source=InterestSource.IMPORTED)
                )
        return interests

    async def rank(self, kind: RecommendationKind, user_id: int) -> list[Recommendation]:
        """Full ranked list for one kind. Raises RecommendationError subclasses when a dependency fails."""
        profile = await self.profiles.get_profile(user_id)
        if kind == RecommendationKind.MENTOR and (profile is None or not profile.is_youth):
            logger.debug(f"Skipping mentor recommendations for non-youth user {user_id}")
            return []

        target_type = kind.target_type
        candidates = await RecommendationFiltering.exclude_seen(
            self.activity_store, user_id, target_type, list(await self.catalog.active_ids(target_type))
        )
        if not candidates:
            return []

        interests = await self._interests(user_id, profile)
        item_tags = await self.catalog.tags_for(target_type, candidates)

        similar = await self.algorithms.similar_users(user_id, kind.peer_activity, settings.SIMILAR_USERS_LIMIT)
        peer_counts: Counter[int] = Counter()
        prefix = f"{target_type.value}:"
        for refs in await self.activity_store.targets_acted_by_users([peer for peer, _ in similar], kind.peer_activity):
            peer_counts.update({int(ref[len(prefix) :]) for ref in refs if ref.startswith(prefix)})

        trending = dict(
            await self.algorithms.trending(target_type, _since(settings.TRENDING_LOOKBACK_DAYS), MAX_CANDIDATE_IDS)
        )
        top_trend = max(trending.values(), default=0)

        engagement = (await self.algorithms.engagement(user_id, _since(settings.BEHAVIOR_LOOKBACK_DAYS)))[
            "engagementScore"
        ]

        min_score = MIN_SCORES[kind]()
        ranked = []
        for item_id in candidates:
            tags = item_tags.get(item_id, ())
            signals = {
                "interest": round(RecommendationScoring.interest_match(tags, interests), 4),
                "collaborative": round(peer_counts[item_id] / len(similar), 4) if similar else 0.0,
                "trending": round(trending.get(item_id, 0) / top_trend, 4) if top_trend else 0.0,
                "engagement": engagement,
            }
            score = RecommendationScoring.rank_score(**signals)
            if score <= min_score:
                continue
            ranked.append(
                Recommendation(
                    itemId=item_id,
                    itemType=target_type,
                    score=score,
                    reason=self._reason(kind, tags, interests, signals),
                    tags=tags,
                    signals=signals,
                )
            )

        ranked.sort(key=lambda rec: (-rec.score, rec.itemId))
        logger.debug(f"Ranked {len(ranked)} of {len(candidates)} {kind.value} candidates for user {user_id}")
        return ranked[: settings.MAX_RECOMMENDATIONS]

    @staticmethod
    def _reason(
        kind: RecommendationKind, tags: tuple[str, ...], interests: list[InterestEntry], signals: dict[str, float]
    ) -> str:
        if signals["interest"] > 0:
            interest_tags = {entry.tag for entry in interests}
            matched = [tag for tag in tags if tag in interest_tags][:3]
            return f"Matches your interests: {', '.join(matched)}"
        if signals["collaborative"] > 0:
            return "Popular with people who share your activity"
        if signals["trending"] > 0:
            return "Trending on the platform right now"
        return {
            RecommendationKind.OPPORTUNITY: "An opportunity you haven't explored yet",
            RecommendationKind.CONTENT: "Learning content you haven't tried yet",
            RecommendationKind.MENTOR: "A mentor you haven't connected with yet",
        }[kind]

    async def _record_served(
        self, kind: RecommendationKind, user_id: int, served: list[Recommendation]
    ) -> list[dict[str, Any]]:
        payload = [rec.model_dump(mode="json") for rec in served]
        if not served or not settings.RECORD_SERVED_RECOMMENDATIONS:
            return payload
        entries = [
            RecommendationHistoryEntry(
                user_id=user_id,
                recommendation_type=kind,
                recommended_item_id=rec.itemId,
                score=rec.score,
                algorithm_name=settings.ALGORITHM_NAME,
                algorithm_version=settings.ALGORITHM_VERSION,
            )
            for rec in served
        ]
        try:
            history_ids = await self.history_store.record_many(entries)
        except Exception as exc:
            logger.warning(f"Could not record served {kind.value} recommendations for user {user_id}: {exc}")
            return payload
        for item, history_id in zip(payload, history_ids):
            item["historyId"] = history_id
        return payload

    async def predict_success(self, user_id: int, opportunity_id: int) -> SuccessPrediction:
        if user_id <= 0 or opportunity_id <= 0:
            raise InvalidInputError("userId and opportunityId must be positive integers")

        try:
            profile = await self.profiles.get_profile(user_id)
            if profile is None:
                return SuccessPrediction(
                    userId=user_id,
                    opportunityId=opportunity_id,
                    successProbability=None,
                    confidenceLevel=None,
                    recommendation=INSUFFICIENT_DATA_ADVICE,
                    signals={"reason": "profile_not_found"},
                )

            opportunity_tags = set(await self.catalog.tags_of(TargetType.OPPORTUNITY, opportunity_id))
            interests = await self._interests(user_id, profile)
            user_tags = {entry.tag for entry in interests}

            active = list(await self.catalog.active_ids(TargetType.OPPORTUNITY))[:MAX_CANDIDATE_IDS]
            similar_opportunities = {opportunity_id}
            if opportunity_tags:
                active_tags = await self.catalog.tags_for(TargetType.OPPORTUNITY, active)
                similar_opportunities.update(item for item, tags in active_tags.items() if opportunity_tags & set(tags))
            conversion = await self.algorithms.opportunity_conversion(sorted(similar_opportunities))
        except RecommendationError as exc:
            logger.error(f"Success prediction unavailable for user {user_id}, opportunity {opportunity_id}: {exc}")
            return SuccessPrediction(
                userId=user_id,
                opportunityId=opportunity_id,
                successProbability=None,
                confidenceLevel=None,
                recommendation=UNAVAILABLE_ADVICE,
            )

        # Buckets use the exact value; only the reported number is rounded
        probability = RecommendationScoring.success_probability(
            profile.profileCompleteness, user_tags, opportunity_tags, conversion
        )
        return SuccessPrediction(
            userId=user_id,
            opportunityId=opportunity_id,
            successProbability=round(probability, 4),
            confidenceLevel=RecommendationScoring.confidence_level(probability),
            recommendation=RecommendationScoring.application_advice(probability),
            signals={
                "profileCompleteness": profile.profileCompleteness,
                "tagOverlap": round(RecommendationScoring.tag_overlap(user_tags, opportunity_tags), 4),
                "historicalConversion": conversion,
                "similarOpportunities": len(similar_opportunities),
            },
        )

    async def behavior_insights(self, user_id: int) -> dict[str, Any]:
        if user_id <= 0:
            raise InvalidInputError("userId must be a positive integer")
        lookback = settings.BEHAVIOR_LOOKBACK_DAYS
        insights: dict[str, Any] = {
            "userId": user_id,
            "lookbackDays": lookback,
            "activityCounts": {},
            "totalActivities": 0,
            "sessionCount": 0,
            "engagementLevel": RecommendationScoring.engagement_level(0),
            "engagementScore": 0.0,
            "mostActiveHours": [],
            "lastActivity": None,
            "topInterests": [],
            "applicationSuccessRate": None,
            "recommendedActions": [],
        }

        try:
            since = _since(lookback)
            insights.update(await self.algorithms.engagement(user_id, since))
            recent = await self.activity_store.query(user_id, since=since, size=500)
            hours = Counter(event.created_at.hour for event in recent)
            insights["mostActiveHours"] = [hour for hour, _ in sorted(hours.items(), key=lambda p: (-p[1], p[0]))[:5]]
            insights["lastActivity"] = recent[0].created_at.isoformat() if recent else None
            insights["topInterests"] = [entry.tag for entry in await self.interest_store.top_interests(user_id, 5)]
            insights["applicationSuccessRate"] = await self.algorithms.conversion_rate(
                user_id, _since(settings.CONVERSION_LOOKBACK_DAYS)
            )
        except RecommendationError as exc:
            logger.error(f"Behavior insights incomplete for user {user_id}: {exc}")

        try:
            profile = await self.profiles.get_profile(user_id)
        except RecommendationError as exc:
            logger.warning(f"Profile unavailable for behavior insights of user {user_id}: {exc}")
            profile = None
        insights["recommendedActions"] = self._recommended_actions(profile, insights["activityCounts"])
        return insights

    @staticmethod
    def _recommended_actions(profile: UserProfile | None, activity_counts: dict[str, int]) -> list[str]:
        actions = []
        if profile is None or profile.profileCompleteness < 0.8:
            actions.append("Complete your profile to get better recommendations")
        if activity_counts.get(ActivityType.APPLY.value, 0) < 2:
            actions.append("Apply to at least 2 opportunities this month")
        if activity_counts.get(ActivityType.COMPLETE.value, 0) < 1:
            actions.append("Complete a business skills learning module")
        if activity_counts.get(ActivityType.CONTACT.value, 0) < 1:
            actions.append("Connect with a mentor for personalized guidance")
        actions.append("Join community discussions to learn from peers")
        return actions

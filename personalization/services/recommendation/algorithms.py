from collections import Counter
from datetime import datetime

from loguru import logger

from personalization.models.activity import ActivityType, TargetType
from personalization.services.activity_store import ActivityEventStore
from personalization.services.recommendation.scoring import RecommendationScoring


class RecommendationAlgorithms:
    """
    Deterministic aggregations over the activity log.

    Nothing here filters out already-seen items; callers apply the novelty filter so the
    same results can also back "already seen" views.
    """

    def __init__(self, activity_store: ActivityEventStore):
        self.activity_store = activity_store

    async def similar_users(self, user_id: int, activity_type: ActivityType, limit: int = 20) -> list[tuple[int, int]]:
        """
        Users who acted (with the same activity type) on at least one target this user acted on.

        Ranked by number of shared distinct targets, ties broken by the lower user id.
        """
        refs = await self.activity_store.targets_acted(user_id, activity_type)
        if not refs:
            return []

        shared: Counter[int] = Counter()
        for actors in await self.activity_store.actors_of(activity_type, refs):
            shared.update(actor for actor in actors if actor != user_id)

        inactive = await self.activity_store.inactive_users(shared)
        ranked = sorted(
            ((other, count) for other, count in shared.items() if other not in inactive),
            key=lambda pair: (-pair[1], pair[0]),
        )
        logger.debug(f"Found {len(ranked)} similar users for user {user_id} on {activity_type.value}")
        return ranked[:limit]

    async def trending(self, target_type: TargetType, since: datetime | None, limit: int = 10) -> list[tuple[int, int]]:
        """Targets with the most interactions since the given time; ties go to the lower target id."""
        interactions = await self.activity_store.target_interactions(target_type, since)
        if not interactions:
            return []
        inactive = await self.activity_store.inactive_users({user_id for _, user_id in interactions})
        counts = Counter(target_id for target_id, user_id in interactions if user_id not in inactive)
        ranked = sorted(counts.items(), key=lambda pair: (-pair[1], pair[0]))
        return ranked[:limit]

    async def conversion_rate(self, user_id: int, since: datetime | None = None) -> float | None:
        """
        Distinct opportunities applied to / distinct opportunities viewed.

        None when the user viewed nothing in the window; this is not the same as 0.0.
        """
        viewed = await self.activity_store.distinct_targets(user_id, ActivityType.VIEW, TargetType.OPPORTUNITY, since)
        if not viewed:
            return None
        applied = await self.activity_store.distinct_targets(
            user_id, ActivityType.APPLY, TargetType.OPPORTUNITY, since
        )
        return RecommendationScoring.clamp(len(applied) / len(viewed))

    async def opportunity_conversion(self, opportunity_ids: list[int]) -> float | None:
        """Distinct appliers / distinct viewers across a group of opportunities. None without viewers."""
        if not opportunity_ids:
            return None
        refs = [f"{TargetType.OPPORTUNITY.value}:{opportunity_id}" for opportunity_id in opportunity_ids]
        viewers = set().union(*await self.activity_store.actors_of(ActivityType.VIEW, refs))
        if not viewers:
            return None
        appliers = set().union(*await self.activity_store.actors_of(ActivityType.APPLY, refs))
        inactive = await self.activity_store.inactive_users(viewers | appliers)
        viewers -= inactive
        if not viewers:
            return None
        return RecommendationScoring.clamp(len(appliers - inactive) / len(viewers))

    async def engagement(self, user_id: int, since: datetime | None = None) -> dict:
        counts = await self.activity_store.count_by_type(user_id, since)
        sessions = await self.activity_store.session_count(user_id, since)
        total = sum(counts.values())
        return {
            "activityCounts": {activity_type.value: count for activity_type, count in counts.items() if count},
            "totalActivities": total,
            "sessionCount": sessions,
            "engagementLevel": RecommendationScoring.engagement_level(total),
            "engagementScore": RecommendationScoring.engagement_score(total, sessions),
        }

from collections.abc import Iterable
from typing import TypeVar

from personalization.core.constants import MAX_CANDIDATE_IDS
from personalization.models.activity import TargetType
from personalization.services.activity_store import ActivityEventStore

T = TypeVar("T")


class RecommendationFiltering:
    """
    Handles exclusion of already-seen items from candidate lists.
    """

    @staticmethod
    def novelty_filter(candidates: Iterable[T], seen: set[T]) -> list[T]:
        """Drop seen candidates, keeping the order (and de-duplicating) the rest."""
        return [item for item in dict.fromkeys(candidates) if item not in seen]

    @staticmethod
    async def exclude_seen(
        activity_store: ActivityEventStore, user_id: int, target_type: TargetType, candidates: list[int]
    ) -> list[int]:
        """Candidates (capped) the user has never interacted with."""
        capped = list(dict.fromkeys(candidates))[:MAX_CANDIDATE_IDS]
        seen = await activity_store.targets_interacted_by(user_id, target_type, capped)
        return RecommendationFiltering.novelty_filter(capped, seen)

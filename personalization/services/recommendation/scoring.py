from collections.abc import Iterable

from personalization.core.constants import (
    CONFIDENCE_HIGH,
    CONFIDENCE_MEDIUM,
    CONFIDENCE_MODERATE,
    ENGAGEMENT_FULL_SESSIONS,
    ENGAGEMENT_HIGH_ACTIVITIES,
    ENGAGEMENT_LOW_ACTIVITIES,
    ENGAGEMENT_MEDIUM_ACTIVITIES,
    LEVEL_WEIGHT_HIGH,
    LEVEL_WEIGHT_LOW,
    LEVEL_WEIGHT_MEDIUM,
    NEUTRAL_CONVERSION_PRIOR,
    RANK_WEIGHT_COLLABORATIVE,
    RANK_WEIGHT_ENGAGEMENT,
    RANK_WEIGHT_INTEREST,
    RANK_WEIGHT_TRENDING,
    SUCCESS_WEIGHT_COMPLETENESS,
    SUCCESS_WEIGHT_CONVERSION,
    SUCCESS_WEIGHT_TAG_OVERLAP,
)
from personalization.models.interest import InterestEntry, InterestLevel
from personalization.models.recommendation import ConfidenceLevel

ADVICE = {
    ConfidenceLevel.HIGH: "Excellent match! Your profile strongly aligns with this opportunity.",
    ConfidenceLevel.MEDIUM: "Good match! Consider highlighting relevant experience in your application.",
    ConfidenceLevel.MODERATE: "Moderate match. Focus on demonstrating your commitment and learning ability.",
    ConfidenceLevel.LOW: "Consider gaining more relevant experience before applying.",
}
INSUFFICIENT_DATA_ADVICE = "Not enough information to estimate your chances for this opportunity yet."

LEVEL_WEIGHTS = {
    InterestLevel.HIGH: LEVEL_WEIGHT_HIGH,
    InterestLevel.MEDIUM: LEVEL_WEIGHT_MEDIUM,
    InterestLevel.LOW: LEVEL_WEIGHT_LOW,
}


class RecommendationScoring:
    """
    Deterministic scoring helpers: success probability, confidence buckets, ranking blend.
    """

    @staticmethod
    def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
        return max(low, min(high, value))

    @staticmethod
    def tag_overlap(user_tags: Iterable[str], item_tags: Iterable[str]) -> float:
        """Share of the item's tags that the user also has. 0.0 for an untagged item."""
        item = set(item_tags)
        if not item:
            return 0.0
        return len(set(user_tags) & item) / len(item)

    @staticmethod
    def success_probability(
        completeness: float, user_tags: Iterable[str], opportunity_tags: Iterable[str], conversion: float | None
    ) -> float:
        """0.3 * completeness + 0.4 * tag overlap + 0.3 * conversion, in [0, 1]."""
        clamp = RecommendationScoring.clamp
        conversion_term = NEUTRAL_CONVERSION_PRIOR if conversion is None else clamp(conversion)
        score = (
            SUCCESS_WEIGHT_COMPLETENESS * clamp(completeness)
            + SUCCESS_WEIGHT_TAG_OVERLAP * RecommendationScoring.tag_overlap(user_tags, opportunity_tags)
            + SUCCESS_WEIGHT_CONVERSION * conversion_term
        )
        return clamp(score)

    @staticmethod
    def confidence_level(probability: float) -> ConfidenceLevel:
        if probability >= CONFIDENCE_HIGH:
            return ConfidenceLevel.HIGH
        if probability >= CONFIDENCE_MEDIUM:
            return ConfidenceLevel.MEDIUM
        if probability >= CONFIDENCE_MODERATE:
            return ConfidenceLevel.MODERATE
        return ConfidenceLevel.LOW

    @staticmethod
    def application_advice(probability: float) -> str:
        return ADVICE[RecommendationScoring.confidence_level(probability)]

    @staticmethod
    def interest_match(item_tags: Iterable[str], interests: Iterable[InterestEntry]) -> float:
        """
        Level-weighted share of the item's tags the user is interested in.

        A HIGH interest counts fully, MEDIUM and LOW count partially. Tags the user has
        no (active) interest in count as zero.
        """
        tags = set(item_tags)
        if not tags:
            return 0.0
        weights = {entry.tag: LEVEL_WEIGHTS[entry.level] for entry in interests if entry.is_active}
        return RecommendationScoring.clamp(sum(weights.get(tag, 0.0) for tag in tags) / len(tags))

    @staticmethod
    def engagement_level(activity_count: int) -> str:
        if activity_count >= ENGAGEMENT_HIGH_ACTIVITIES:
            return "HIGH"
        if activity_count >= ENGAGEMENT_MEDIUM_ACTIVITIES:
            return "MEDIUM"
        if activity_count >= ENGAGEMENT_LOW_ACTIVITIES:
            return "LOW"
        return "NEW"

    @staticmethod
    def engagement_score(activity_count: int, session_count: int) -> float:
        """Activity volume (70%) and session regularity (30%), each saturating at its "full" mark."""
        volume = min(1.0, activity_count / ENGAGEMENT_HIGH_ACTIVITIES)
        sessions = min(1.0, session_count / ENGAGEMENT_FULL_SESSIONS)
        return round(0.7 * volume + 0.3 * sessions, 4)

    @staticmethod
    def rank_score(interest: float, collaborative: float, trending: float, engagement: float) -> float:
        clamp = RecommendationScoring.clamp
        return round(
            RANK_WEIGHT_INTEREST * clamp(interest)
            + RANK_WEIGHT_COLLABORATIVE * clamp(collaborative)
            + RANK_WEIGHT_TRENDING * clamp(trending)
            + RANK_WEIGHT_ENGAGEMENT * clamp(engagement),
            6,
        )

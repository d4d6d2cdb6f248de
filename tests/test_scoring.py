from __future__ import annotations

import pytest

from personalization.models.interest import InterestEntry, InterestLevel
from personalization.models.recommendation import ConfidenceLevel
from personalization.services.recommendation.scoring import RecommendationScoring

pytestmark = pytest.mark.unit


@pytest.mark.parametrize(
    ("probability", "expected"),
    [
        (0.8, ConfidenceLevel.HIGH),
        (0.79999, ConfidenceLevel.MEDIUM),
        (0.6, ConfidenceLevel.MEDIUM),
        (0.4, ConfidenceLevel.MODERATE),
        (0.399, ConfidenceLevel.LOW),
        (1.0, ConfidenceLevel.HIGH),
        (0.0, ConfidenceLevel.LOW),
    ],
)
def test_confidence_bucket_thresholds(probability: float, expected: ConfidenceLevel) -> None:
    assert RecommendationScoring.confidence_level(probability) == expected


def test_application_advice_follows_bucket() -> None:
    assert RecommendationScoring.application_advice(0.85).startswith("Excellent match!")
    assert RecommendationScoring.application_advice(0.1) == "Consider gaining more relevant experience before applying."


def test_success_probability_blend() -> None:
    # 0.3 * 1.0 + 0.4 * (1/2) + 0.3 * 0.5
    assert RecommendationScoring.success_probability(1.0, {"a", "x"}, {"a", "b"}, 0.5) == pytest.approx(0.65)


def test_success_probability_uses_neutral_prior_and_stays_bounded() -> None:
    undefined = RecommendationScoring.success_probability(0.0, set(), {"a"}, None)
    defined_zero = RecommendationScoring.success_probability(0.0, set(), {"a"}, 0.0)

    assert undefined == pytest.approx(0.15)
    assert defined_zero == 0.0
    assert RecommendationScoring.success_probability(5.0, {"a"}, {"a"}, 3.0) == pytest.approx(1.0)


def test_interest_match_weights_levels() -> None:
    interests = [
        InterestEntry(user_id=1, tag="farming", level=InterestLevel.HIGH),
        InterestEntry(user_id=1, tag="finance", level=InterestLevel.LOW),
        InterestEntry(user_id=1, tag="coding", level=InterestLevel.HIGH, is_active=False),
    ]

    assert RecommendationScoring.interest_match(["farming"], interests) == 1.0
    assert RecommendationScoring.interest_match(["farming", "finance"], interests) == pytest.approx(0.7)
    assert RecommendationScoring.interest_match(["coding"], interests) == 0.0
    assert RecommendationScoring.interest_match([], interests) == 0.0


@pytest.mark.parametrize(
    ("activities", "level"),
    [(0, "NEW"), (19, "NEW"), (20, "LOW"), (50, "MEDIUM"), (99, "MEDIUM"), (100, "HIGH")],
)
def test_engagement_levels(activities: int, level: str) -> None:
    assert RecommendationScoring.engagement_level(activities) == level


def test_rank_score_weights() -> None:
    assert RecommendationScoring.rank_score(1.0, 0.0, 0.0, 0.0) == 0.5
    assert RecommendationScoring.rank_score(1.0, 1.0, 1.0, 1.0) == 1.0
    assert RecommendationScoring.rank_score(0.0, 0.4, 0.0, 0.0) == pytest.approx(0.1)

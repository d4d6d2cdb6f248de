from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator

from personalization.models.activity import ActivityType, TargetType


class RecommendationKind(str, Enum):
    OPPORTUNITY = "OPPORTUNITY"
    CONTENT = "CONTENT"
    MENTOR = "MENTOR"

    @property
    def target_type(self) -> TargetType:
        return {
            "OPPORTUNITY": TargetType.OPPORTUNITY,
            "CONTENT": TargetType.LEARNING_MODULE,
            "MENTOR": TargetType.MENTOR,
        }[self.value]

    @property
    def peer_activity(self) -> ActivityType:
        """Activity whose co-occurrence defines "users like you" for this kind."""
        return {
            "OPPORTUNITY": ActivityType.APPLY,
            "CONTENT": ActivityType.COMPLETE,
            "MENTOR": ActivityType.CONTACT,
        }[self.value]


class ConfidenceLevel(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    MODERATE = "MODERATE"
    LOW = "LOW"


class Recommendation(BaseModel):
    """A ranked item. Instances inside the cache are shared between readers; never mutate them."""

    model_config = {"frozen": True}

    itemId: int
    itemType: TargetType
    score: float
    reason: str
    tags: tuple[str, ...] = ()
    signals: dict[str, float] = Field(default_factory=dict)


class UserProfile(BaseModel):
    """What the profile service tells us about a user."""

    userId: int
    profileCompleteness: float = Field(default=0.0, ge=0.0, le=1.0)
    role: str | None = "YOUTH"
    interests: list[str] = Field(default_factory=list)
    location: str | None = None
    skillLevel: str | None = None

    @field_validator("profileCompleteness", mode="before")
    @classmethod
    def _as_fraction(cls, value):
        # The user service reports a 0-100 percentage
        if value is None:
            return 0.0
        if isinstance(value, (int, float)) and not isinstance(value, bool) and value > 1:
            return value / 100
        return value

    @field_validator("interests", mode="before")
    @classmethod
    def _no_null_interests(cls, value):
        return value or []

    @property
    def is_youth(self) -> bool:
        """Users without a role are platform youth."""
        return (self.role or "YOUTH").upper() == "YOUTH"


class SuccessPrediction(BaseModel):
    userId: int
    opportunityId: int
    successProbability: float | None
    confidenceLevel: ConfidenceLevel | None
    recommendation: str
    signals: dict[str, Any] = Field(default_factory=dict)

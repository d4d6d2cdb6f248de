from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field

from personalization.core.constants import INTEREST_HIGH_THRESHOLD, INTEREST_MEDIUM_THRESHOLD


class InterestLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"

    @property
    def rank(self) -> int:
        return {"LOW": 0, "MEDIUM": 1, "HIGH": 2}[self.value]

    @classmethod
    def from_interactions(cls, interaction_count: int) -> "InterestLevel":
        if interaction_count >= INTEREST_HIGH_THRESHOLD:
            return cls.HIGH
        if interaction_count >= INTEREST_MEDIUM_THRESHOLD:
            return cls.MEDIUM
        return cls.LOW


class InterestSource(str, Enum):
    USER_SELECTED = "USER_SELECTED"
    AI_INFERRED = "AI_INFERRED"
    ACTIVITY_BASED = "ACTIVITY_BASED"
    SURVEY = "SURVEY"
    IMPORTED = "IMPORTED"

    @property
    def is_inferred(self) -> bool:
        """Inferred entries may be re-leveled by the auto-tuner; explicit ones never are."""
        return self in (InterestSource.AI_INFERRED, InterestSource.ACTIVITY_BASED)


class InterestEntry(BaseModel):
    """One (user, tag) interest with its level and confidence."""

    user_id: int
    tag: str
    level: InterestLevel = InterestLevel.LOW
    source: InterestSource = InterestSource.USER_SELECTED
    confidence_score: float = Field(default=0.5, ge=0.0, le=1.0)
    interaction_count: int = Field(default=0, ge=0)
    is_primary: bool = False
    is_active: bool = True
    last_interaction: datetime | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def ranking_key(self) -> tuple:
        """Sort key: primary, level, interaction count, confidence (all desc), then tag."""
        return (
            not self.is_primary,
            -self.level.rank,
            -self.interaction_count,
            -self.confidence_score,
            self.tag,
        )

    def to_redis(self) -> dict[str, str]:
        return {
            "user_id": str(self.user_id),
            "tag": self.tag,
            "level": self.level.value,
            "source": self.source.value,
            "confidence_score": repr(self.confidence_score),
            "interaction_count": str(self.interaction_count),
            "is_primary": "1" if self.is_primary else "0",
            "is_active": "1" if self.is_active else "0",
            "last_interaction": self.last_interaction.isoformat() if self.last_interaction else "",
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_redis(cls, data: dict[str, str]) -> "InterestEntry":
        return cls(
            user_id=int(data["user_id"]),
            tag=data["tag"],
            level=InterestLevel(data.get("level", "LOW")),
            source=InterestSource(data.get("source", "USER_SELECTED")),
            confidence_score=float(data.get("confidence_score") or 0.5),
            interaction_count=int(data.get("interaction_count") or 0),
            is_primary=data.get("is_primary") == "1",
            is_active=data.get("is_active", "1") == "1",
            last_interaction=data.get("last_interaction") or None,
            created_at=data.get("created_at") or datetime.now(timezone.utc),
            updated_at=data.get("updated_at") or datetime.now(timezone.utc),
        )


class InterestUpsertRequest(BaseModel):
    tags: list[str] = Field(min_length=1)
    level: InterestLevel = InterestLevel.MEDIUM
    source: InterestSource = InterestSource.USER_SELECTED
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    isPrimary: bool = False

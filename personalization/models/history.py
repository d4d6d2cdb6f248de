from datetime import datetime, timezone

from pydantic import BaseModel, Field

from personalization.models.recommendation import RecommendationKind

# Lifecycle transitions: flag field -> timestamp field
TRANSITIONS: dict[str, str] = {
    "was_viewed": "viewed_at",
    "was_clicked": "clicked_at",
    "was_applied": "applied_at",
}


class RecommendationHistoryEntry(BaseModel):
    """One recommendation instance served to a user, plus how the user reacted."""

    id: int | None = None
    user_id: int
    recommendation_type: RecommendationKind
    recommended_item_id: int
    score: float
    algorithm_name: str
    algorithm_version: str
    was_viewed: bool = False
    was_clicked: bool = False
    was_applied: bool = False
    time_spent_seconds: int = 0
    feedback_rating: int | None = Field(default=None, ge=1, le=5)
    feedback_comment: str | None = None
    is_active: bool = True
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    viewed_at: datetime | None = None
    clicked_at: datetime | None = None
    applied_at: datetime | None = None
    feedback_at: datetime | None = None

    def to_redis(self) -> dict[str, str]:
        data = {
            "user_id": str(self.user_id),
            "recommendation_type": self.recommendation_type.value,
            "recommended_item_id": str(self.recommended_item_id),
            "score": repr(self.score),
            "algorithm_name": self.algorithm_name,
            "algorithm_version": self.algorithm_version,
            "was_viewed": "1" if self.was_viewed else "0",
            "was_clicked": "1" if self.was_clicked else "0",
            "was_applied": "1" if self.was_applied else "0",
            "time_spent_seconds": str(self.time_spent_seconds),
            "is_active": "1" if self.is_active else "0",
            "created_at": self.created_at.isoformat(),
        }
        # Optional fields are only written once set, so HSETNX can guard them
        for name in ("viewed_at", "clicked_at", "applied_at", "feedback_at"):
            value = getattr(self, name)
            if value is not None:
                data[name] = value.isoformat()
        if self.feedback_rating is not None:
            data["feedback_rating"] = str(self.feedback_rating)
        if self.feedback_comment is not None:
            data["feedback_comment"] = self.feedback_comment
        return data

    @classmethod
    def from_redis(cls, history_id: int, data: dict[str, str]) -> "RecommendationHistoryEntry":
        return cls(
            id=history_id,
            user_id=int(data["user_id"]),
            recommendation_type=RecommendationKind(data["recommendation_type"]),
            recommended_item_id=int(data["recommended_item_id"]),
            score=float(data.get("score") or 0.0),
            algorithm_name=data.get("algorithm_name", ""),
            algorithm_version=data.get("algorithm_version", ""),
            was_viewed=data.get("was_viewed") == "1",
            was_clicked=data.get("was_clicked") == "1",
            was_applied=data.get("was_applied") == "1",
            time_spent_seconds=int(data.get("time_spent_seconds") or 0),
            feedback_rating=int(data["feedback_rating"]) if data.get("feedback_rating") else None,
            feedback_comment=data.get("feedback_comment"),
            is_active=data.get("is_active", "1") == "1",
            created_at=data["created_at"],
            viewed_at=data.get("viewed_at") or None,
            clicked_at=data.get("clicked_at") or None,
            applied_at=data.get("applied_at") or None,
            feedback_at=data.get("feedback_at") or None,
        )


class FeedbackRequest(BaseModel):
    rating: int = Field(ge=1, le=5)
    comment: str | None = Field(default=None, max_length=1000)


class TimeSpentRequest(BaseModel):
    seconds: int = Field(gt=0, le=86400)

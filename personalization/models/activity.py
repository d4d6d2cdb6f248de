import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

Scalar = str | int | float | bool | None


class ActivityType(str, Enum):
    VIEW = "VIEW"
    APPLY = "APPLY"
    COMPLETE = "COMPLETE"
    LOGIN = "LOGIN"
    LOGOUT = "LOGOUT"
    SEARCH = "SEARCH"
    CONTACT = "CONTACT"
    BOOKMARK = "BOOKMARK"
    SHARE = "SHARE"
    RATE = "RATE"


class TargetType(str, Enum):
    OPPORTUNITY = "OPPORTUNITY"
    JOB = "JOB"
    LEARNING_MODULE = "LEARNING_MODULE"
    MENTOR = "MENTOR"
    COMMUNITY_POST = "COMMUNITY_POST"


UNTARGETED_TYPES = frozenset({ActivityType.LOGIN, ActivityType.LOGOUT, ActivityType.SEARCH})

DEFAULT_TARGET_TYPES: dict[ActivityType, TargetType] = {
    ActivityType.APPLY: TargetType.OPPORTUNITY,
    ActivityType.COMPLETE: TargetType.LEARNING_MODULE,
    ActivityType.CONTACT: TargetType.MENTOR,
}

# Compound activity names sent by older platform clients
LEGACY_ACTIVITY_ALIASES: dict[str, tuple[ActivityType, TargetType | None]] = {
    "VIEW_OPPORTUNITY": (ActivityType.VIEW, TargetType.OPPORTUNITY),
    "APPLY_OPPORTUNITY": (ActivityType.APPLY, TargetType.OPPORTUNITY),
    "VIEW_JOB": (ActivityType.VIEW, TargetType.JOB),
    "APPLY_JOB": (ActivityType.APPLY, TargetType.JOB),
    "LISTEN_AUDIO": (ActivityType.COMPLETE, TargetType.LEARNING_MODULE),
    "VIEW_MODULE": (ActivityType.VIEW, TargetType.LEARNING_MODULE),
    "COMPLETE_MODULE": (ActivityType.COMPLETE, TargetType.LEARNING_MODULE),
    "VIEW_POST": (ActivityType.VIEW, TargetType.COMMUNITY_POST),
    "VIEW_MENTOR": (ActivityType.VIEW, TargetType.MENTOR),
    "CONTACT_MENTOR": (ActivityType.CONTACT, TargetType.MENTOR),
    "SEARCH_OPPORTUNITIES": (ActivityType.SEARCH, None),
}

# Known metadata keys per activity type. Bump the version when a key changes meaning.
METADATA_SCHEMA_VERSION = 1
METADATA_SCHEMA: dict[ActivityType, dict[str, tuple[type, ...]]] = {
    ActivityType.VIEW: {"durationSeconds": (int, float), "source": (str,), "position": (int,)},
    ActivityType.APPLY: {"applicationId": (str, int), "source": (str,)},
    ActivityType.COMPLETE: {"durationSeconds": (int, float), "score": (int, float)},
    ActivityType.LOGIN: {"channel": (str,), "device": (str,)},
    ActivityType.LOGOUT: {"channel": (str,)},
    ActivityType.SEARCH: {"query": (str,), "resultsCount": (int,)},
    ActivityType.CONTACT: {"channel": (str,)},
    ActivityType.BOOKMARK: {},
    ActivityType.SHARE: {"channel": (str,)},
    ActivityType.RATE: {"rating": (int,)},
}


def normalize_tags(tags: list[str] | None) -> list[str]:
    """Lowercase, strip and de-duplicate tags, keeping first-seen order."""
    seen: dict[str, None] = {}
    for tag in tags or []:
        if not isinstance(tag, str):
            continue
        cleaned = " ".join(tag.split()).lower()
        if cleaned:
            seen.setdefault(cleaned, None)
    return list(seen)


def parse_activity_type(raw: Any) -> tuple[ActivityType, TargetType | None]:
    """Resolve an activity name, accepting legacy compound names like VIEW_OPPORTUNITY."""
    if isinstance(raw, ActivityType):
        return raw, None
    name = str(raw or "").strip().upper()
    if name in LEGACY_ACTIVITY_ALIASES:
        return LEGACY_ACTIVITY_ALIASES[name]
    try:
        return ActivityType(name), None
    except ValueError:
        raise ValueError(f"Unknown activity type: {raw!r}") from None


def validate_metadata(activity_type: ActivityType, metadata: dict[str, Any]) -> dict[str, Scalar]:
    cleaned: dict[str, Scalar] = {}
    known = METADATA_SCHEMA.get(activity_type, {})
    for key, value in metadata.items():
        if value is not None and not isinstance(value, (str, int, float, bool)):
            raise ValueError(f"metadata.{key} must be a scalar value")
        expected = known.get(key)
        # bool is an int subclass; never accept it for numeric fields
        if expected and value is not None and (isinstance(value, bool) or not isinstance(value, expected)):
            names = "/".join(t.__name__ for t in expected)
            raise ValueError(f"metadata.{key} must be of type {names} for {activity_type.value}")
        cleaned[str(key)] = value
    if activity_type == ActivityType.RATE and "rating" in cleaned:
        rating = cleaned["rating"]
        if rating is not None and not 1 <= rating <= 5:
            raise ValueError("metadata.rating must be between 1 and 5")
    return cleaned


class ActivityEvent(BaseModel):
    """Immutable record of a single user action."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    user_id: int = Field(gt=0)
    activity_type: ActivityType
    target_id: int | None = Field(default=None, gt=0)
    target_type: TargetType | None = None
    session_id: str = ""
    tags: tuple[str, ...] = ()
    metadata: dict[str, Scalar] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("tags", mode="before")
    @classmethod
    def _normalize_tags(cls, value: Any) -> tuple[str, ...]:
        return tuple(normalize_tags(list(value or [])))

    @field_validator("created_at")
    @classmethod
    def _ensure_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    @model_validator(mode="before")
    @classmethod
    def _resolve_variant(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        activity_type, implied_target = parse_activity_type(data.get("activity_type"))
        data["activity_type"] = activity_type
        if data.get("target_type") is None and implied_target is not None:
            data["target_type"] = implied_target

        metadata = dict(data.get("metadata") or {})
        data["metadata"] = validate_metadata(activity_type, metadata)

        if activity_type in UNTARGETED_TYPES:
            if data.get("target_id") is not None:
                raise ValueError(f"{activity_type.value} events do not take a target_id")
            data["target_type"] = None
        else:
            if data.get("target_id") is None:
                raise ValueError(f"{activity_type.value} events require a target_id")
            if data.get("target_type") is None:
                data["target_type"] = DEFAULT_TARGET_TYPES.get(activity_type, TargetType.OPPORTUNITY)

        if not data.get("session_id"):
            session_id = metadata.get("sessionId")
            data["session_id"] = str(session_id) if session_id else uuid.uuid4().hex
        return data

    @property
    def target_ref(self) -> str | None:
        """Stable "TYPE:id" reference used by the co-occurrence indexes."""
        if self.target_type is None or self.target_id is None:
            return None
        return f"{self.target_type.value}:{self.target_id}"


class ActivityRequest(BaseModel):
    """Body of POST activity/record."""

    userId: int = Field(gt=0)
    activityType: str
    targetId: int | None = Field(default=None, gt=0)
    targetType: TargetType | None = None
    sessionId: str | None = None
    tags: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)

    def to_event(self, tags: list[str] | None = None) -> ActivityEvent:
        return ActivityEvent(
            user_id=self.userId,
            activity_type=self.activityType,
            target_id=self.targetId,
            target_type=self.targetType,
            session_id=self.sessionId or "",
            tags=tags if tags is not None else self.tags,
            metadata=self.metadata,
        )

"""
Core constants used across the service. Keep these simple and documented.
"""

from typing import Final

# Redis key templates (prefixed with settings.REDIS_KEY_PREFIX by the stores)
ACTIVITY_EVENT_KEY: Final[str] = "activity:event:{event_id}"
ACTIVITY_USER_KEY: Final[str] = "activity:user:{user_id}"
ACTIVITY_USER_TYPE_KEY: Final[str] = "activity:user:{user_id}:type:{activity_type}"
ACTIVITY_USER_TARGETS_KEY: Final[str] = "activity:user:{user_id}:targets:{target_type}"
ACTIVITY_USER_ACTED_KEY: Final[str] = "activity:user:{user_id}:acted:{activity_type}"
ACTIVITY_USER_SESSIONS_KEY: Final[str] = "activity:user:{user_id}:sessions"
ACTIVITY_ACTORS_KEY: Final[str] = "activity:actors:{activity_type}:{target_type}:{target_id}"
ACTIVITY_TIMELINE_KEY: Final[str] = "activity:timeline:{target_type}"
ACTIVITY_INACTIVE_USERS_KEY: Final[str] = "activity:inactive-users"

INTEREST_KEY: Final[str] = "interest:{user_id}:{tag}"
INTEREST_INDEX_KEY: Final[str] = "interest:index:{user_id}"
REACTOR_DONE_KEY: Final[str] = "reactor:done:{event_id}"

HISTORY_SEQUENCE_KEY: Final[str] = "history:seq"
HISTORY_KEY: Final[str] = "history:{history_id}"
HISTORY_USER_KEY: Final[str] = "history:user:{user_id}"
HISTORY_ALGORITHM_KEY: Final[str] = "history:algorithm:{algorithm_name}"

# Interest auto-tuning thresholds (interaction_count)
INTEREST_HIGH_THRESHOLD: Final[int] = 50
INTEREST_MEDIUM_THRESHOLD: Final[int] = 20

# Success probability confidence buckets
CONFIDENCE_HIGH: Final[float] = 0.8
CONFIDENCE_MEDIUM: Final[float] = 0.6
CONFIDENCE_MODERATE: Final[float] = 0.4

# Success probability weights
SUCCESS_WEIGHT_COMPLETENESS: Final[float] = 0.3
SUCCESS_WEIGHT_TAG_OVERLAP: Final[float] = 0.4
SUCCESS_WEIGHT_CONVERSION: Final[float] = 0.3
# Used when there is no conversion history to learn from
NEUTRAL_CONVERSION_PRIOR: Final[float] = 0.5

# Ranking weights (sum to 1.0)
RANK_WEIGHT_INTEREST: Final[float] = 0.5
RANK_WEIGHT_COLLABORATIVE: Final[float] = 0.25
RANK_WEIGHT_TRENDING: Final[float] = 0.15
RANK_WEIGHT_ENGAGEMENT: Final[float] = 0.10

# Interest level weights when matching tags
LEVEL_WEIGHT_HIGH: Final[float] = 1.0
LEVEL_WEIGHT_MEDIUM: Final[float] = 0.7
LEVEL_WEIGHT_LOW: Final[float] = 0.4

# Engagement levels by activity count in the lookback window
ENGAGEMENT_HIGH_ACTIVITIES: Final[int] = 100
ENGAGEMENT_MEDIUM_ACTIVITIES: Final[int] = 50
ENGAGEMENT_LOW_ACTIVITIES: Final[int] = 20
ENGAGEMENT_FULL_SESSIONS: Final[int] = 20

MAX_PAGE_SIZE: Final[int] = 200
MAX_CANDIDATE_IDS: Final[int] = 5000

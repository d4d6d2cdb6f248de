from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="allow",
    )

    PORT: int = 8085
    APP_ENV: Literal["development", "production", "test"] = "production"
    API_PREFIX: str = "/api/v1/ai"
    LOG_LEVEL: str = "INFO"

    REDIS_URL: str = "redis://redis:6379/0"
    # Maximum number of connections Redis client will open per process
    REDIS_MAX_CONNECTIONS: int = 20
    REDIS_KEY_PREFIX: str = "yc:"

    # Activity log retention. Tunable; deployments have used both 90 and 180 days.
    ACTIVITY_RETENTION_DAYS: int = 90
    ACTIVITY_PURGE_INTERVAL_SECONDS: int = 21600  # 6 hours
    ENRICH_ACTIVITY_TAGS: bool = True

    # Lookback windows
    BEHAVIOR_LOOKBACK_DAYS: int = 30
    TRENDING_LOOKBACK_DAYS: int = 7
    CONVERSION_LOOKBACK_DAYS: int = 90

    # Ranking
    ALGORITHM_NAME: str = "hybrid-cooccurrence"
    ALGORITHM_VERSION: str = "2.0"
    SIMILAR_USERS_LIMIT: int = 20
    MAX_RECOMMENDATIONS: int = 50
    MIN_SCORE_OPPORTUNITY: float = 0.1
    MIN_SCORE_CONTENT: float = 0.1
    MIN_SCORE_MENTOR: float = 0.1
    RECORD_SERVED_RECOMMENDATIONS: bool = True

    # Cache tiers: mentor availability changes faster than listings
    CACHE_TTL_OPPORTUNITY_SECONDS: int = 1800
    CACHE_TTL_CONTENT_SECONDS: int = 3600
    CACHE_TTL_MENTOR_SECONDS: int = 300
    CACHE_MAX_ENTRIES_OPPORTUNITY: int = 5000
    CACHE_MAX_ENTRIES_CONTENT: int = 5000
    CACHE_MAX_ENTRIES_MENTOR: int = 2000
    RECOMMENDATION_WAIT_TIMEOUT_SECONDS: float = 1.5
    RECOMMENDATION_HARD_TIMEOUT_SECONDS: float = 10.0

    # Worker pools
    ACTIVITY_POOL_WORKERS: int = 4
    ACTIVITY_POOL_QUEUE_SIZE: int = 1000
    RECOMPUTE_POOL_WORKERS: int = 4
    RECOMPUTE_POOL_QUEUE_SIZE: int = 200
    REACTOR_POOL_WORKERS: int = 2
    REACTOR_POOL_QUEUE_SIZE: int = 1000
    NOTIFICATION_POOL_WORKERS: int = 2
    NOTIFICATION_POOL_QUEUE_SIZE: int = 100
    POOL_DRAIN_TIMEOUT_SECONDS: float = 5.0

    # Collaborators
    PROFILE_SERVICE_URL: str = "http://user-service:8081"
    CATALOG_SERVICE_URL: str = "http://job-service:8000"
    NOTIFICATION_SERVICE_URL: str | None = None
    COLLABORATOR_TIMEOUT_SECONDS: float = 3.0
    COLLABORATOR_MAX_RETRIES: int = 2
    NOTIFY_ON_INTEREST_PROMOTION: bool = True


settings = Settings()

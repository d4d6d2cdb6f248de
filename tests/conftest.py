from __future__ import annotations

import fakeredis
import pytest
from fastapi.testclient import TestClient

from personalization.core.app import create_app
from personalization.core.errors import CollaboratorUnavailableError
from personalization.models.activity import TargetType, normalize_tags
from personalization.models.recommendation import UserProfile
from personalization.services.activity_store import ActivityEventStore
from personalization.services.container import Services
from personalization.services.history_store import RecommendationHistoryStore
from personalization.services.interest_store import InterestProfileStore
from personalization.services.redis_service import RedisService


class FakeProfiles:
    def __init__(self, profiles: dict[int, UserProfile] | None = None):
        self.profiles = profiles or {}
        self.down = False

    async def get_profile(self, user_id: int) -> UserProfile | None:
        if self.down:
            raise CollaboratorUnavailableError("profile service down")
        return self.profiles.get(user_id)

    async def close(self) -> None:
        return None


class FakeCatalog:
    def __init__(self, items: dict[TargetType, dict[int, list[str]]] | None = None):
        self.items = items or {}

    async def active_ids(self, target_type: TargetType) -> tuple[int, ...]:
        return tuple(self.items.get(target_type, {}))

    async def tags_of(self, target_type: TargetType, item_id: int) -> tuple[str, ...]:
        return tuple(normalize_tags(self.items.get(target_type, {}).get(item_id, [])))

    async def tags_for(self, target_type: TargetType, item_ids: list[int]) -> dict[int, tuple[str, ...]]:
        return {item_id: await self.tags_of(target_type, item_id) for item_id in item_ids}

    async def close(self) -> None:
        return None


class RecordingNotifier:
    def __init__(self):
        self.sent: list[tuple[int, str, str]] = []

    async def notify(self, user_id: int, message: str, category: str = "PERSONALIZATION") -> None:
        self.sent.append((user_id, message, category))

    async def close(self) -> None:
        return None


@pytest.fixture
def redis_client():
    return fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)


@pytest.fixture
def redis_service(redis_client) -> RedisService:
    return RedisService(client=redis_client, key_prefix="test:")


@pytest.fixture
def activity_store(redis_service) -> ActivityEventStore:
    return ActivityEventStore(redis_service)


@pytest.fixture
def interest_store(redis_service) -> InterestProfileStore:
    return InterestProfileStore(redis_service)


@pytest.fixture
def history_store(redis_service) -> RecommendationHistoryStore:
    return RecommendationHistoryStore(redis_service)


@pytest.fixture
def profiles() -> FakeProfiles:
    return FakeProfiles(
        {
            1: UserProfile(userId=1, profileCompleteness=0.9, interests=["agriculture"]),
            2: UserProfile(userId=2, profileCompleteness=0.5),
            3: UserProfile(userId=3, profileCompleteness=0.7, role="MENTOR"),
        }
    )


@pytest.fixture
def catalog() -> FakeCatalog:
    return FakeCatalog(
        {
            TargetType.OPPORTUNITY: {
                101: ["agriculture", "finance"],
                102: ["technology"],
                103: ["agriculture"],
                104: ["tailoring"],
            },
            TargetType.LEARNING_MODULE: {201: ["finance"], 202: ["marketing"]},
            TargetType.MENTOR: {301: ["agriculture"], 302: ["technology"]},
        }
    )


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def services(redis_client, profiles, catalog, notifier) -> Services:
    return Services(
        redis_client=redis_client, profiles=profiles, catalog=catalog, notifier=notifier, run_background=False
    )


@pytest.fixture
def client(services: Services):
    app = create_app(services=services)
    with TestClient(app) as test_client:
        yield test_client

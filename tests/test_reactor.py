from __future__ import annotations

import pytest

from personalization.core.errors import NotFoundError, StoreUnavailableError
from personalization.models.activity import ActivityEvent, ActivityType
from personalization.models.history import RecommendationHistoryEntry
from personalization.models.interest import InterestLevel, InterestSource
from personalization.models.recommendation import RecommendationKind
from personalization.services.container import Services

pytestmark = pytest.mark.integration


async def seed_interest(services: Services, tag: str, interactions: int, source=InterestSource.AI_INFERRED) -> None:
    store = services.interest_store
    await store.upsert_interests(1, [tag], level=InterestLevel.from_interactions(interactions), source=source)
    client = await services.redis.get_client()
    await client.hset(store._entry_key(1, tag), "interaction_count", str(interactions))


def tagged_view(event_id: str, *tags: str) -> ActivityEvent:
    return ActivityEvent(id=event_id, user_id=1, activity_type="VIEW", target_id=101, tags=list(tags))


@pytest.mark.asyncio
async def test_promotion_to_high_notifies_once(services: Services, notifier) -> None:
    await seed_interest(services, "farming", 49)
    event = tagged_view("evt-1", "farming")

    changes = await services.reactor.process(event)
    replay = await services.reactor.process(event)
    entry = await services.interest_store.get(1, "farming")

    assert [change.promoted_to_high for change in changes] == [True]
    assert replay is None
    assert entry.level == InterestLevel.HIGH
    assert entry.interaction_count == 50
    assert [(user_id, category) for user_id, _, category in notifier.sent] == [(1, "INTEREST_PROMOTION")]


@pytest.mark.asyncio
async def test_explicit_interest_counts_but_keeps_level(services: Services, notifier) -> None:
    await seed_interest(services, "finance", 49, source=InterestSource.USER_SELECTED)

    await services.reactor.process(tagged_view("evt-2", "finance"))
    entry = await services.interest_store.get(1, "finance")

    assert entry.interaction_count == 50
    assert entry.level == InterestLevel.MEDIUM
    assert notifier.sent == []


@pytest.mark.asyncio
async def test_untagged_and_unknown_tags_are_ignored(services: Services) -> None:
    await services.reactor.submit(ActivityEvent(user_id=1, activity_type="LOGIN"))

    changes = await services.reactor.process(tagged_view("evt-3", "astronomy"))

    assert changes == []
    assert await services.interest_store.top_interests(1) == []


@pytest.mark.asyncio
async def test_tracker_enriches_stores_and_tunes(services: Services) -> None:
    await seed_interest(services, "agriculture", 19)
    event = ActivityEvent(id="evt-4", user_id=1, activity_type="VIEW", target_id=103)

    await services.tracker.track(event)
    await services.tracker.track(event)

    stored = await services.activity_store.get("evt-4")
    entry = await services.interest_store.get(1, "agriculture")
    assert stored.tags == ("agriculture",)
    assert entry.interaction_count == 20
    assert entry.level == InterestLevel.MEDIUM


@pytest.mark.asyncio
async def test_tracker_never_raises(services: Services, monkeypatch) -> None:
    async def broken_append(event):
        raise ConnectionError("redis gone")

    monkeypatch.setattr(services.activity_store, "append", broken_append)

    await services.tracker.track(tagged_view("evt-5", "farming"))

    assert services.pools.activity.stats()["completed"] == 1


async def served_entry(services: Services) -> int:
    return await services.history_store.record(
        RecommendationHistoryEntry(
            user_id=1,
            recommendation_type=RecommendationKind.OPPORTUNITY,
            recommended_item_id=103,
            score=0.35,
            algorithm_name="hybrid-cooccurrence",
            algorithm_version="2.0",
        )
    )


@pytest.mark.asyncio
async def test_first_click_is_logged_as_view_once(services: Services) -> None:
    history_id = await served_entry(services)

    assert await services.feedback.mark_clicked(history_id) is True
    assert await services.feedback.mark_clicked(history_id) is False

    event = await services.activity_store.get(f"history-{history_id}-clicked")
    views = await services.activity_store.query(1, ActivityType.VIEW)
    assert event.target_id == 103
    assert event.tags == ("agriculture",)
    assert len(views) == 1


@pytest.mark.asyncio
async def test_first_apply_is_logged_and_notified_once(services: Services, notifier) -> None:
    history_id = await served_entry(services)

    assert await services.feedback.mark_applied(history_id) is True
    assert await services.feedback.mark_applied(history_id) is False

    applies = await services.activity_store.query(1, ActivityType.APPLY)
    entry = await services.history_store.get(history_id)
    assert [event.id for event in applies] == [f"history-{history_id}-applied"]
    assert entry.was_applied is True
    assert entry.applied_at is not None
    assert [category for _, _, category in notifier.sent] == ["APPLICATION"]


@pytest.mark.asyncio
async def test_feedback_and_time_spent(services: Services) -> None:
    history_id = await served_entry(services)

    assert await services.feedback.record_feedback(history_id, 4, "helpful") is True
    assert await services.feedback.record_feedback(history_id, 1) is False
    assert await services.feedback.add_time_spent(history_id, 30) == 30
    assert await services.feedback.add_time_spent(history_id, 15) == 45

    entry = await services.history_store.get(history_id)
    assert entry.feedback_rating == 4
    assert entry.feedback_comment == "helpful"


@pytest.mark.asyncio
async def test_unknown_history_entry(services: Services) -> None:
    with pytest.raises(NotFoundError):
        await services.feedback.mark_clicked(999)


@pytest.mark.asyncio
async def test_redelivery_applies_event_missed_by_reactor(services: Services, monkeypatch) -> None:
    await seed_interest(services, "farming", 0)
    healthy = services.interest_store.apply_activity

    async def unavailable(*args):
        raise StoreUnavailableError("interest.apply_activity failed")

    monkeypatch.setattr(services.interest_store, "apply_activity", unavailable)
    first = await services.tracker.store_and_react(tagged_view("evt-6", "farming"))
    monkeypatch.setattr(services.interest_store, "apply_activity", healthy)
    second = await services.tracker.store_and_react(tagged_view("evt-6", "farming"))
    third = await services.tracker.store_and_react(tagged_view("evt-6", "farming"))

    entry = await services.interest_store.get(1, "farming")
    assert (first, second, third) == (True, False, False)
    assert entry.interaction_count == 1


@pytest.mark.asyncio
async def test_level_change_invalidates_cached_recommendations(services: Services) -> None:
    await seed_interest(services, "agriculture", 19)
    await services.engine.opportunities(1)
    assert services.cache.stats()["size"] == 1

    await services.reactor.process(tagged_view("evt-7", "agriculture"))

    assert services.cache.stats()["size"] == 0


@pytest.mark.asyncio
async def test_count_without_level_change_keeps_cache(services: Services) -> None:
    await seed_interest(services, "agriculture", 5)
    await services.engine.opportunities(1)

    await services.reactor.process(tagged_view("evt-8", "agriculture"))

    assert services.cache.stats()["size"] == 1

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import pytest

from personalization.models.interest import InterestLevel, InterestSource
from personalization.services.interest_store import InterestProfileStore

pytestmark = pytest.mark.unit

AT = datetime(2026, 3, 1, tzinfo=timezone.utc)


async def seed_count(store: InterestProfileStore, user_id: int, tag: str, count: int) -> None:
    for i in range(count):
        await store.apply_activity(user_id, [tag], f"seed-{tag}-{i}", AT)


@pytest.mark.asyncio
async def test_upsert_is_idempotent_under_concurrency(interest_store: InterestProfileStore) -> None:
    await asyncio.gather(
        *[interest_store.upsert_interests(1, ["Agriculture", "agriculture "], InterestLevel.HIGH) for _ in range(10)]
    )

    entries = await interest_store.top_interests(1, limit=10)

    assert [entry.tag for entry in entries] == ["agriculture"]
    assert entries[0].level == InterestLevel.HIGH


@pytest.mark.asyncio
async def test_top_interests_tie_break_order(interest_store: InterestProfileStore) -> None:
    await interest_store.upsert_interests(1, ["zeta"], InterestLevel.LOW, is_primary=True)
    await interest_store.upsert_interests(1, ["alpha", "beta"], InterestLevel.HIGH, confidence=0.5)
    await interest_store.upsert_interests(1, ["gamma"], InterestLevel.HIGH, confidence=0.9)
    await interest_store.upsert_interests(1, ["delta"], InterestLevel.MEDIUM)
    await seed_count(interest_store, 1, "beta", 3)

    ordered = [entry.tag for entry in await interest_store.top_interests(1, limit=10)]
    paged = [entry.tag for entry in await interest_store.top_interests(1, limit=2, offset=1)]

    # primary first, then level, interaction count, confidence, tag
    assert ordered == ["zeta", "beta", "gamma", "alpha", "delta"]
    assert paged == ["beta", "gamma"]


@pytest.mark.asyncio
async def test_activity_based_entry_is_promoted_at_fifty(interest_store: InterestProfileStore) -> None:
    await interest_store.upsert_interests(1, ["finance"], InterestLevel.MEDIUM, InterestSource.ACTIVITY_BASED)
    await seed_count(interest_store, 1, "finance", 49)
    before = await interest_store.get(1, "finance")

    changes = await interest_store.apply_activity(1, ["finance"], "event-50", AT)

    after = await interest_store.get(1, "finance")
    assert before.interaction_count == 49
    assert before.level == InterestLevel.MEDIUM
    assert after.interaction_count == 50
    assert after.level == InterestLevel.HIGH
    assert after.last_interaction == AT
    assert changes[0].promoted_to_high


@pytest.mark.asyncio
async def test_replayed_event_is_applied_once(interest_store: InterestProfileStore) -> None:
    await interest_store.upsert_interests(1, ["finance"], InterestLevel.LOW, InterestSource.AI_INFERRED)

    first = await interest_store.apply_activity(1, ["finance"], "event-1", AT)
    replay = await interest_store.apply_activity(1, ["finance"], "event-1", AT)

    assert len(first) == 1
    assert replay is None
    assert (await interest_store.get(1, "finance")).interaction_count == 1


@pytest.mark.asyncio
async def test_user_selected_level_is_never_relabeled(interest_store: InterestProfileStore) -> None:
    await interest_store.upsert_interests(1, ["music"], InterestLevel.LOW, InterestSource.USER_SELECTED)
    await seed_count(interest_store, 1, "music", 60)

    entry = await interest_store.get(1, "music")

    assert entry.interaction_count == 60
    assert entry.level == InterestLevel.LOW


@pytest.mark.asyncio
async def test_unknown_tags_are_ignored(interest_store: InterestProfileStore) -> None:
    changes = await interest_store.apply_activity(1, ["nothing-here"], "event-1", AT)

    assert changes == []
    assert await interest_store.get(1, "nothing-here") is None


@pytest.mark.asyncio
async def test_inferred_upsert_does_not_override_explicit_entry(interest_store: InterestProfileStore) -> None:
    await interest_store.upsert_interests(1, ["design"], InterestLevel.HIGH, InterestSource.USER_SELECTED)
    await interest_store.deactivate_user(1)

    await interest_store.upsert_interests(1, ["design"], InterestLevel.LOW, InterestSource.AI_INFERRED)

    entry = await interest_store.get(1, "design")
    assert entry.source == InterestSource.USER_SELECTED
    assert entry.level == InterestLevel.HIGH
    assert entry.is_active


@pytest.mark.asyncio
async def test_confirm_turns_inferred_into_user_selected(interest_store: InterestProfileStore) -> None:
    await interest_store.upsert_interests(1, ["coding"], InterestLevel.MEDIUM, InterestSource.AI_INFERRED)

    confirmed = await interest_store.confirm_interest(1, "Coding")

    assert confirmed.source == InterestSource.USER_SELECTED
    assert (await interest_store.get(1, "coding")).source == InterestSource.USER_SELECTED
    assert await interest_store.confirm_interest(1, "unknown") is None


@pytest.mark.asyncio
async def test_deactivate_hides_entries(interest_store: InterestProfileStore) -> None:
    await interest_store.upsert_interests(1, ["a", "b"], InterestLevel.LOW)

    assert await interest_store.deactivate_user(1) == 2
    assert await interest_store.top_interests(1) == []
    assert (await interest_store.get(1, "a")).is_active is False

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from personalization.core.errors import StoreUnavailableError
from personalization.models.activity import ActivityEvent, ActivityType, TargetType
from personalization.services.activity_store import ActivityEventStore

pytestmark = pytest.mark.unit

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def event(user_id: int, activity_type: str, target_id: int | None = None, minutes_ago: int = 0, **extra):
    return ActivityEvent(
        user_id=user_id,
        activity_type=activity_type,
        target_id=target_id,
        created_at=NOW - timedelta(minutes=minutes_ago),
        **extra,
    )


@pytest.mark.asyncio
async def test_query_returns_newest_first_and_filters_by_type(activity_store: ActivityEventStore) -> None:
    await activity_store.append(event(1, "VIEW", 10, minutes_ago=30))
    await activity_store.append(event(1, "APPLY", 10, minutes_ago=20))
    await activity_store.append(event(1, "VIEW", 11, minutes_ago=10))

    everything = await activity_store.query(1)
    views = await activity_store.query(1, ActivityType.VIEW)

    assert [e.target_id for e in everything] == [11, 10, 10]
    assert [e.activity_type for e in everything] == [ActivityType.VIEW, ActivityType.APPLY, ActivityType.VIEW]
    assert [e.target_id for e in views] == [11, 10]


@pytest.mark.asyncio
async def test_query_pages_and_since(activity_store: ActivityEventStore) -> None:
    for minutes in range(5):
        await activity_store.append(event(1, "VIEW", 100 + minutes, minutes_ago=minutes))

    second_page = await activity_store.query(1, page=1, size=2)
    recent = await activity_store.query(1, since=NOW - timedelta(minutes=1, seconds=30))

    assert [e.target_id for e in second_page] == [102, 103]
    assert [e.target_id for e in recent] == [100, 101]


@pytest.mark.asyncio
async def test_append_is_idempotent_per_event_id(activity_store: ActivityEventStore) -> None:
    first = event(1, "VIEW", 10, id="fixed-id")

    assert await activity_store.append(first) is True
    assert await activity_store.append(first) is False
    assert len(await activity_store.query(1)) == 1
    assert await activity_store.get("fixed-id") == first


@pytest.mark.asyncio
async def test_targets_interacted_by_is_a_membership_test(activity_store: ActivityEventStore) -> None:
    await activity_store.append(event(1, "VIEW", 10))
    await activity_store.append(event(1, "APPLY", 12))
    await activity_store.append(event(1, "COMPLETE", 10))  # learning module 10, not opportunity 10
    await activity_store.append(event(2, "VIEW", 11))

    seen = await activity_store.targets_interacted_by(1, TargetType.OPPORTUNITY, range(1, 2500))

    assert seen == {10, 12}
    assert await activity_store.targets_interacted_by(1, TargetType.OPPORTUNITY, []) == set()


@pytest.mark.asyncio
async def test_counts_sessions_and_distinct_targets(activity_store: ActivityEventStore) -> None:
    await activity_store.append(event(1, "LOGIN", metadata={"sessionId": "s1"}))
    await activity_store.append(event(1, "VIEW", 10, metadata={"sessionId": "s1"}))
    await activity_store.append(event(1, "VIEW", 10, metadata={"sessionId": "s2"}))
    await activity_store.append(event(1, "VIEW", 11, metadata={"sessionId": "s2"}))

    counts = await activity_store.count_by_type(1)

    assert counts[ActivityType.VIEW] == 3
    assert counts[ActivityType.LOGIN] == 1
    assert counts[ActivityType.APPLY] == 0
    assert await activity_store.session_count(1) == 2
    assert await activity_store.distinct_targets(1, ActivityType.VIEW, TargetType.OPPORTUNITY) == {10, 11}


@pytest.mark.asyncio
async def test_inactive_users_are_tracked(activity_store: ActivityEventStore) -> None:
    await activity_store.mark_user_inactive(7)

    assert await activity_store.inactive_users([6, 7, 8]) == {7}


@pytest.mark.asyncio
async def test_purge_drops_old_index_entries(activity_store: ActivityEventStore) -> None:
    await activity_store.append(event(1, "VIEW", 10, minutes_ago=60 * 24 * 100))
    await activity_store.append(event(1, "VIEW", 11))

    removed = await activity_store.purge_older_than(NOW - timedelta(days=90))

    assert removed == 1
    assert await activity_store.target_interactions(TargetType.OPPORTUNITY) == [(11, 1)]
    assert [e.target_id for e in await activity_store.query(1)] == [11]


@pytest.mark.asyncio
async def test_record_swallows_store_failures(activity_store: ActivityEventStore, monkeypatch) -> None:
    async def broken(_event):
        raise StoreUnavailableError("redis down")

    monkeypatch.setattr(activity_store, "append", broken)

    assert await activity_store.record(event(1, "VIEW", 10)) is False

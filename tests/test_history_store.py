from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from personalization.core.errors import NotFoundError, StoreUnavailableError
from personalization.models.history import RecommendationHistoryEntry
from personalization.models.recommendation import RecommendationKind
from personalization.services.history_store import RecommendationHistoryStore

pytestmark = pytest.mark.unit


def served(user_id: int, item_id: int, kind=RecommendationKind.OPPORTUNITY, algorithm: str = "hybrid-cooccurrence"):
    return RecommendationHistoryEntry(
        user_id=user_id,
        recommendation_type=kind,
        recommended_item_id=item_id,
        score=0.5,
        algorithm_name=algorithm,
        algorithm_version="2.0",
    )


@pytest.mark.asyncio
async def test_record_assigns_sequential_ids(history_store: RecommendationHistoryStore) -> None:
    first = await history_store.record(served(1, 101))
    batch = await history_store.record_many([served(1, 102), served(1, 103)])

    assert batch == [first + 1, first + 2]
    entry = await history_store.get(first)
    assert entry.recommended_item_id == 101
    assert entry.was_viewed is False


@pytest.mark.asyncio
async def test_transitions_are_idempotent(history_store: RecommendationHistoryStore) -> None:
    history_id = await history_store.record(served(1, 101))

    assert await history_store.mark_viewed(history_id) is True
    viewed_at = (await history_store.get(history_id)).viewed_at
    assert await history_store.mark_viewed(history_id) is False

    entry = await history_store.get(history_id)
    assert entry.was_viewed is True
    assert entry.viewed_at == viewed_at
    assert entry.was_clicked is False


@pytest.mark.asyncio
async def test_feedback_is_set_once(history_store: RecommendationHistoryStore) -> None:
    history_id = await history_store.record(served(1, 101))

    assert await history_store.record_feedback(history_id, 5, "great") is True
    assert await history_store.record_feedback(history_id, 1, "changed my mind") is False

    entry = await history_store.get(history_id)
    assert entry.feedback_rating == 5
    assert entry.feedback_comment == "great"


@pytest.mark.asyncio
async def test_unknown_entry_raises_not_found(history_store: RecommendationHistoryStore) -> None:
    with pytest.raises(NotFoundError):
        await history_store.mark_clicked(999)


@pytest.mark.asyncio
async def test_time_spent_accumulates(history_store: RecommendationHistoryStore) -> None:
    history_id = await history_store.record(served(1, 101))

    await history_store.add_time_spent(history_id, 30)

    assert await history_store.add_time_spent(history_id, 15) == 45


@pytest.mark.asyncio
async def test_list_for_user_filters_kind_and_inactive(history_store: RecommendationHistoryStore) -> None:
    await history_store.record(served(1, 101))
    await history_store.record(served(1, 201, RecommendationKind.CONTENT))
    await history_store.record(served(2, 101))

    content = await history_store.list_for_user(1, RecommendationKind.CONTENT)
    everything = await history_store.list_for_user(1)

    assert [entry.recommended_item_id for entry in content] == [201]
    assert {entry.recommended_item_id for entry in everything} == {101, 201}

    assert await history_store.deactivate_user(1) == 2
    assert await history_store.list_for_user(1) == []


@pytest.mark.asyncio
async def test_algorithm_rates(history_store: RecommendationHistoryStore) -> None:
    ids = await history_store.record_many([served(1, item) for item in (101, 102, 103, 104)])
    await history_store.mark_clicked(ids[0])
    await history_store.mark_clicked(ids[1])
    await history_store.mark_applied(ids[1])

    rates = await history_store.algorithm_rates("hybrid-cooccurrence", datetime.now(timezone.utc) - timedelta(days=1))
    empty = await history_store.algorithm_rates("never-served")

    assert rates["served"] == 4
    assert rates["clickThroughRate"] == 0.5
    assert rates["conversionRate"] == 0.25
    assert empty["clickThroughRate"] is None
    assert empty["conversionRate"] is None


class DroppedTransactions:
    """Redis client whose next `failures` transactions die at EXEC."""

    def __init__(self, client, failures: int = 1):
        self._client = client
        self.failures = failures

    def __getattr__(self, name):
        return getattr(self._client, name)

    def pipeline(self, *args, **kwargs):
        pipe = self._client.pipeline(*args, **kwargs)
        if self.failures:
            self.failures -= 1

            async def execute(*_args, **_kwargs):
                raise ConnectionError("connection reset by peer")

            pipe.execute = execute
        return pipe


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("mark", "flag", "stamp"),
    [("mark_clicked", "was_clicked", "clicked_at"), ("mark_applied", "was_applied", "applied_at")],
)
async def test_failed_transition_leaves_no_half_state(
    history_store: RecommendationHistoryStore,
    redis_service,
    redis_client,
    monkeypatch,
    mark: str,
    flag: str,
    stamp: str,
) -> None:
    history_id = await history_store.record(served(1, 101))
    monkeypatch.setattr(redis_service, "_client", DroppedTransactions(redis_client))

    with pytest.raises(StoreUnavailableError):
        await getattr(history_store, mark)(history_id)
    untouched = await history_store.get(history_id)

    assert getattr(untouched, flag) is False
    assert getattr(untouched, stamp) is None
    assert await getattr(history_store, mark)(history_id) is True
    assert getattr(await history_store.get(history_id), flag) is True


@pytest.mark.asyncio
async def test_failed_feedback_can_be_resubmitted(
    history_store: RecommendationHistoryStore, redis_service, redis_client, monkeypatch
) -> None:
    history_id = await history_store.record(served(1, 101))
    monkeypatch.setattr(redis_service, "_client", DroppedTransactions(redis_client))

    with pytest.raises(StoreUnavailableError):
        await history_store.record_feedback(history_id, 2, "meh")

    assert (await history_store.get(history_id)).feedback_at is None
    assert await history_store.record_feedback(history_id, 5, "great") is True
    assert await history_store.record_feedback(history_id, 1) is False
    entry = await history_store.get(history_id)
    assert (entry.feedback_rating, entry.feedback_comment) == (5, "great")

from datetime import datetime, timezone

from loguru import logger

from personalization.core.constants import (
    HISTORY_ALGORITHM_KEY,
    HISTORY_KEY,
    HISTORY_SEQUENCE_KEY,
    HISTORY_USER_KEY,
)
from personalization.core.errors import NotFoundError
from personalization.models.history import TRANSITIONS, RecommendationHistoryEntry
from personalization.models.recommendation import RecommendationKind
from personalization.services.redis_service import RedisService


class RecommendationHistoryStore:
    """
    What was recommended to whom, and how they reacted.

    Entries are hashes under history:<id> with ids from an INCR sequence. Two sorted sets
    (per user and per algorithm, scored by creation time) index them. Transition timestamps
    and feedback are written with HSETNX so only the first call sticks.
    """

    def __init__(self, redis_service: RedisService):
        self.redis = redis_service

    def _key(self, history_id: int) -> str:
        return self.redis.key(HISTORY_KEY, history_id=history_id)

    async def record(self, entry: RecommendationHistoryEntry) -> int:
        return (await self.record_many([entry]))[0]

    async def record_many(self, entries: list[RecommendationHistoryEntry]) -> list[int]:
        if not entries:
            return []
        r = self.redis
        with r.store_errors("history.record"):
            client = await r.get_client()
            last_id = await client.incrby(r.key(HISTORY_SEQUENCE_KEY), len(entries))
            ids = list(range(last_id - len(entries) + 1, last_id + 1))
            async with client.pipeline(transaction=True) as pipe:
                for history_id, entry in zip(ids, entries):
                    ts = entry.created_at.timestamp()
                    pipe.hset(self._key(history_id), mapping=entry.to_redis())
                    pipe.zadd(r.key(HISTORY_USER_KEY, user_id=entry.user_id), {str(history_id): ts})
                    pipe.zadd(r.key(HISTORY_ALGORITHM_KEY, algorithm_name=entry.algorithm_name), {str(history_id): ts})
                await pipe.execute()
        logger.debug(f"Recorded {len(ids)} recommendation history entries ({ids[0]}..{ids[-1]})")
        return ids

    async def get(self, history_id: int) -> RecommendationHistoryEntry | None:
        with self.redis.store_errors("history.get"):
            client = await self.redis.get_client()
            data = await client.hgetall(self._key(history_id))
        return RecommendationHistoryEntry.from_redis(history_id, data) if data else None

    async def list_for_user(
        self, user_id: int, kind: RecommendationKind | None = None, limit: int = 50
    ) -> list[RecommendationHistoryEntry]:
        """Newest first. Deactivated entries are left out."""
        r = self.redis
        with r.store_errors("history.list_for_user"):
            client = await r.get_client()
            # Over-fetch when filtering by kind; entries of other kinds are interleaved
            window = limit if kind is None else limit * 4
            ids = await client.zrevrange(r.key(HISTORY_USER_KEY, user_id=user_id), 0, max(window - 1, 0))
            if not ids:
                return []
            async with client.pipeline(transaction=False) as pipe:
                for history_id in ids:
                    pipe.hgetall(self._key(int(history_id)))
                rows = await pipe.execute()

        entries = []
        for history_id, row in zip(ids, rows):
            if not row:
                continue
            entry = RecommendationHistoryEntry.from_redis(int(history_id), row)
            if not entry.is_active or (kind is not None and entry.recommendation_type != kind):
                continue
            entries.append(entry)
            if len(entries) >= limit:
                break
        return entries

    async def _require(self, client, history_id: int) -> str:
        key = self._key(history_id)
        if not await client.exists(key):
            raise NotFoundError(f"Recommendation history entry {history_id} not found")
        return key

    async def _transition(self, history_id: int, flag: str) -> bool:
        timestamp_field = TRANSITIONS[flag]
        with self.redis.store_errors(f"history.{flag}"):
            client = await self.redis.get_client()
            key = await self._require(client, history_id)
            # Flag and timestamp commit together
            async with client.pipeline(transaction=True) as pipe:
                pipe.hsetnx(key, timestamp_field, datetime.now(timezone.utc).isoformat())
                pipe.hset(key, flag, "1")
                first, _ = await pipe.execute()
        if first:
            logger.debug(f"History entry {history_id}: {flag} set")
        return bool(first)

    async def mark_viewed(self, history_id: int) -> bool:
        return await self._transition(history_id, "was_viewed")

    async def mark_clicked(self, history_id: int) -> bool:
        return await self._transition(history_id, "was_clicked")

    async def mark_applied(self, history_id: int) -> bool:
        return await self._transition(history_id, "was_applied")

    async def record_feedback(self, history_id: int, rating: int, comment: str | None = None) -> bool:
        """Store a rating once; later submissions are ignored and return False."""
        with self.redis.store_errors("history.record_feedback"):
            key = await self._require(await self.redis.get_client(), history_id)

        async def body(pipe) -> bool:
            already = await pipe.hexists(key, "feedback_at")
            pipe.multi()
            if already:
                return False
            fields = {"feedback_at": datetime.now(timezone.utc).isoformat(), "feedback_rating": str(rating)}
            if comment is not None:
                fields["feedback_comment"] = comment
            pipe.hset(key, mapping=fields)
            return True

        return await self.redis.watch_transaction("history.record_feedback", [key], body)

    async def add_time_spent(self, history_id: int, seconds: int) -> int:
        with self.redis.store_errors("history.add_time_spent"):
            client = await self.redis.get_client()
            key = await self._require(client, history_id)
            return int(await client.hincrby(key, "time_spent_seconds", seconds))

    async def algorithm_rates(self, algorithm_name: str, since: datetime | None = None) -> dict:
        """Click-through and conversion (apply) rates of everything an algorithm served since a time."""
        r = self.redis
        with r.store_errors("history.algorithm_rates"):
            client = await r.get_client()
            ids = await client.zrangebyscore(
                r.key(HISTORY_ALGORITHM_KEY, algorithm_name=algorithm_name),
                since.timestamp() if since else "-inf",
                "+inf",
            )
            async with client.pipeline(transaction=False) as pipe:
                for history_id in ids:
                    pipe.hmget(self._key(int(history_id)), ["was_clicked", "was_applied"])
                rows = await pipe.execute() if ids else []

        served = len(rows)
        clicked = sum(1 for was_clicked, _ in rows if was_clicked == "1")
        applied = sum(1 for _, was_applied in rows if was_applied == "1")
        return {
            "algorithmName": algorithm_name,
            "served": served,
            "clicked": clicked,
            "applied": applied,
            "clickThroughRate": clicked / served if served else None,
            "conversionRate": applied / served if served else None,
        }

    async def deactivate_user(self, user_id: int) -> int:
        r = self.redis
        with r.store_errors("history.deactivate_user"):
            client = await r.get_client()
            ids = await client.zrange(r.key(HISTORY_USER_KEY, user_id=user_id), 0, -1)
            if ids:
                async with client.pipeline(transaction=True) as pipe:
                    for history_id in ids:
                        pipe.hset(self._key(int(history_id)), "is_active", "0")
                    await pipe.execute()
        logger.info(f"Deactivated {len(ids)} recommendation history entries for user {user_id}")
        return len(ids)

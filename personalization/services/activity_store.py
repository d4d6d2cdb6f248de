from collections.abc import Iterable
from datetime import datetime

from loguru import logger

from personalization.core.config import settings
from personalization.core.constants import (
    ACTIVITY_ACTORS_KEY,
    ACTIVITY_EVENT_KEY,
    ACTIVITY_INACTIVE_USERS_KEY,
    ACTIVITY_TIMELINE_KEY,
    ACTIVITY_USER_ACTED_KEY,
    ACTIVITY_USER_KEY,
    ACTIVITY_USER_SESSIONS_KEY,
    ACTIVITY_USER_TARGETS_KEY,
    ACTIVITY_USER_TYPE_KEY,
)
from personalization.models.activity import ActivityEvent, ActivityType, TargetType
from personalization.services.redis_service import RedisService

MEMBERSHIP_CHUNK = 1000


def _score(moment: datetime | None) -> str | float:
    return moment.timestamp() if moment else "-inf"


class ActivityEventStore:
    """
    Append-only log of user activity, kept in Redis.

    Every event is stored once as JSON (with a TTL of the retention window) and fanned out
    into sorted-set indexes scored by event time:

    - per user, and per user+activity type (newest-first listing and counts)
    - per user+target type: targets the user touched (novelty membership test)
    - per user+activity type: "TYPE:id" targets acted on (co-occurrence, conversion)
    - per activity+target: users who acted on it (co-occurrence)
    - per target type timeline (trending)
    """

    def __init__(self, redis_service: RedisService, retention_days: int | None = None):
        self.redis = redis_service
        self.retention_days = retention_days or settings.ACTIVITY_RETENTION_DAYS

    @property
    def retention_seconds(self) -> int:
        return self.retention_days * 86400

    async def record(self, event: ActivityEvent) -> bool:
        """Append an event. Never raises; the activity log is not on the critical path."""
        try:
            return await self.append(event)
        except Exception as exc:
            logger.error(f"Failed to record {event.activity_type.value} activity for user {event.user_id}: {exc}")
            return False

    async def append(self, event: ActivityEvent) -> bool:
        """Append an event and its index entries. Returns False when the event id was already stored."""
        r = self.redis
        ts = event.created_at.timestamp()
        with r.store_errors("activity.append"):
            client = await r.get_client()
            # Every index write is idempotent for a given event id, so replays only repeat no-ops
            async with client.pipeline(transaction=True) as pipe:
                pipe.set(
                    r.key(ACTIVITY_EVENT_KEY, event_id=event.id),
                    event.model_dump_json(),
                    ex=self.retention_seconds,
                    nx=True,
                )
                pipe.zadd(r.key(ACTIVITY_USER_KEY, user_id=event.user_id), {event.id: ts})
                pipe.zadd(
                    r.key(ACTIVITY_USER_TYPE_KEY, user_id=event.user_id, activity_type=event.activity_type.value),
                    {event.id: ts},
                )
                pipe.zadd(r.key(ACTIVITY_USER_SESSIONS_KEY, user_id=event.user_id), {event.session_id: ts}, gt=True)
                if event.target_ref:
                    target_type = event.target_type.value
                    pipe.zadd(
                        r.key(ACTIVITY_USER_TARGETS_KEY, user_id=event.user_id, target_type=target_type),
                        {str(event.target_id): ts},
                        gt=True,
                    )
                    pipe.zadd(
                        r.key(ACTIVITY_USER_ACTED_KEY, user_id=event.user_id, activity_type=event.activity_type.value),
                        {event.target_ref: ts},
                        gt=True,
                    )
                    pipe.zadd(
                        r.key(
                            ACTIVITY_ACTORS_KEY,
                            activity_type=event.activity_type.value,
                            target_type=target_type,
                            target_id=event.target_id,
                        ),
                        {str(event.user_id): ts},
                        gt=True,
                    )
                    pipe.zadd(
                        r.key(ACTIVITY_TIMELINE_KEY, target_type=target_type),
                        {f"{event.id}:{event.user_id}:{event.target_id}": ts},
                    )
                results = await pipe.execute()

        if not results[0]:
            logger.debug(f"Activity event {event.id} already recorded, skipping")
            return False
        logger.debug(f"Recorded {event.activity_type.value} activity {event.id} for user {event.user_id}")
        return True

    async def get(self, event_id: str) -> ActivityEvent | None:
        with self.redis.store_errors("activity.get"):
            client = await self.redis.get_client()
            raw = await client.get(self.redis.key(ACTIVITY_EVENT_KEY, event_id=event_id))
        return ActivityEvent.model_validate_json(raw) if raw else None

    async def query(
        self,
        user_id: int,
        activity_type: ActivityType | None = None,
        since: datetime | None = None,
        page: int = 0,
        size: int = 50,
    ) -> list[ActivityEvent]:
        """List a user's events newest first."""
        r = self.redis
        if activity_type is None:
            index_key = r.key(ACTIVITY_USER_KEY, user_id=user_id)
        else:
            index_key = r.key(ACTIVITY_USER_TYPE_KEY, user_id=user_id, activity_type=activity_type.value)

        with r.store_errors("activity.query"):
            client = await r.get_client()
            event_ids = await client.zrevrangebyscore(index_key, "+inf", _score(since), start=page * size, num=size)
            if not event_ids:
                return []
            payloads = await client.mget([r.key(ACTIVITY_EVENT_KEY, event_id=event_id) for event_id in event_ids])

        # Payloads past their TTL may still be indexed until the next purge
        return [ActivityEvent.model_validate_json(raw) for raw in payloads if raw]

    async def targets_interacted_by(
        self, user_id: int, target_type: TargetType, candidate_ids: Iterable[int]
    ) -> set[int]:
        """Return the subset of candidate_ids the user has already interacted with."""
        candidates = list(dict.fromkeys(candidate_ids))
        if not candidates:
            return set()
        key = self.redis.key(ACTIVITY_USER_TARGETS_KEY, user_id=user_id, target_type=target_type.value)
        seen: set[int] = set()
        with self.redis.store_errors("activity.targets_interacted_by"):
            client = await self.redis.get_client()
            for start in range(0, len(candidates), MEMBERSHIP_CHUNK):
                chunk = candidates[start : start + MEMBERSHIP_CHUNK]
                scores = await client.zmscore(key, [str(target_id) for target_id in chunk])
                seen.update(target_id for target_id, score in zip(chunk, scores) if score is not None)
        return seen

    async def targets_acted(
        self, user_id: int, activity_type: ActivityType, since: datetime | None = None
    ) -> list[str]:
        """Target references ("TYPE:id") the user acted on with activity_type."""
        key = self.redis.key(ACTIVITY_USER_ACTED_KEY, user_id=user_id, activity_type=activity_type.value)
        with self.redis.store_errors("activity.targets_acted"):
            client = await self.redis.get_client()
            return await client.zrangebyscore(key, _score(since), "+inf")

    async def targets_acted_by_users(self, user_ids: list[int], activity_type: ActivityType) -> list[list[str]]:
        if not user_ids:
            return []
        with self.redis.store_errors("activity.targets_acted_by_users"):
            client = await self.redis.get_client()
            async with client.pipeline(transaction=False) as pipe:
                for user_id in user_ids:
                    pipe.zrange(
                        self.redis.key(ACTIVITY_USER_ACTED_KEY, user_id=user_id, activity_type=activity_type.value),
                        0,
                        -1,
                    )
                return await pipe.execute()

    async def actors_of(self, activity_type: ActivityType, target_refs: list[str]) -> list[set[int]]:
        """For each "TYPE:id" reference, the users who acted on it with activity_type."""
        if not target_refs:
            return []
        with self.redis.store_errors("activity.actors_of"):
            client = await self.redis.get_client()
            async with client.pipeline(transaction=False) as pipe:
                for ref in target_refs:
                    target_type, _, target_id = ref.partition(":")
                    pipe.zrange(
                        self.redis.key(
                            ACTIVITY_ACTORS_KEY,
                            activity_type=activity_type.value,
                            target_type=target_type,
                            target_id=target_id,
                        ),
                        0,
                        -1,
                    )
                results = await pipe.execute()
        return [{int(user_id) for user_id in members} for members in results]

    async def target_interactions(
        self, target_type: TargetType, since: datetime | None = None
    ) -> list[tuple[int, int]]:
        """(target_id, user_id) for every interaction with target_type since the given time."""
        key = self.redis.key(ACTIVITY_TIMELINE_KEY, target_type=target_type.value)
        with self.redis.store_errors("activity.target_interactions"):
            client = await self.redis.get_client()
            members = await client.zrangebyscore(key, _score(since), "+inf")
        interactions = []
        for member in members:
            _, user_id, target_id = member.rsplit(":", 2)
            interactions.append((int(target_id), int(user_id)))
        return interactions

    async def distinct_targets(
        self, user_id: int, activity_type: ActivityType, target_type: TargetType, since: datetime | None = None
    ) -> set[int]:
        prefix = f"{target_type.value}:"
        refs = await self.targets_acted(user_id, activity_type, since)
        return {int(ref[len(prefix) :]) for ref in refs if ref.startswith(prefix)}

    async def count_by_type(self, user_id: int, since: datetime | None = None) -> dict[ActivityType, int]:
        with self.redis.store_errors("activity.count_by_type"):
            client = await self.redis.get_client()
            async with client.pipeline(transaction=False) as pipe:
                for activity_type in ActivityType:
                    pipe.zcount(
                        self.redis.key(ACTIVITY_USER_TYPE_KEY, user_id=user_id, activity_type=activity_type.value),
                        _score(since),
                        "+inf",
                    )
                counts = await pipe.execute()
        return {activity_type: int(count) for activity_type, count in zip(ActivityType, counts)}

    async def session_count(self, user_id: int, since: datetime | None = None) -> int:
        with self.redis.store_errors("activity.session_count"):
            client = await self.redis.get_client()
            return int(
                await client.zcount(self.redis.key(ACTIVITY_USER_SESSIONS_KEY, user_id=user_id), _score(since), "+inf")
            )

    async def mark_user_inactive(self, user_id: int) -> None:
        """Soft-delete: keep the user's events but leave them out of aggregations."""
        with self.redis.store_errors("activity.mark_user_inactive"):
            client = await self.redis.get_client()
            await client.sadd(self.redis.key(ACTIVITY_INACTIVE_USERS_KEY), str(user_id))

    async def inactive_users(self, user_ids: Iterable[int]) -> set[int]:
        ids = list(user_ids)
        if not ids:
            return set()
        with self.redis.store_errors("activity.inactive_users"):
            client = await self.redis.get_client()
            flags = await client.smismember(self.redis.key(ACTIVITY_INACTIVE_USERS_KEY), [str(i) for i in ids])
        return {user_id for user_id, flag in zip(ids, flags) if flag}

    async def purge_older_than(self, cutoff: datetime) -> int:
        """Drop index entries older than cutoff. Returns the number of timeline entries removed."""
        removed = 0
        max_score = cutoff.timestamp()
        with self.redis.store_errors("activity.purge"):
            client = await self.redis.get_client()
            for template, parts, counted in (
                (ACTIVITY_USER_KEY, {"user_id": "*"}, False),
                (ACTIVITY_ACTORS_KEY, {"activity_type": "*", "target_type": "*", "target_id": "*"}, False),
                (ACTIVITY_TIMELINE_KEY, {"target_type": "*"}, True),
            ):
                # ACTIVITY_USER_KEY with "*" also matches every per-user sub-index
                async for key in self.redis.scan_keys(template, **parts):
                    dropped = await client.zremrangebyscore(key, "-inf", max_score)
                    if counted:
                        removed += int(dropped)
        logger.info(f"Activity purge removed {removed} interactions older than {cutoff.isoformat()}")
        return removed

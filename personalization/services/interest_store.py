from datetime import datetime, timezone
from typing import Any

from loguru import logger

from personalization.core.config import settings
from personalization.core.constants import INTEREST_INDEX_KEY, INTEREST_KEY, REACTOR_DONE_KEY
from personalization.models.activity import normalize_tags
from personalization.models.interest import InterestEntry, InterestLevel, InterestSource
from personalization.services.redis_service import RedisService


class InterestChange:
    """An entry touched by the reactor, with the level it had before."""

    __slots__ = ("entry", "previous_level")

    def __init__(self, entry: InterestEntry, previous_level: InterestLevel):
        self.entry = entry
        self.previous_level = previous_level

    @property
    def promoted_to_high(self) -> bool:
        return self.previous_level != InterestLevel.HIGH and self.entry.level == InterestLevel.HIGH


class InterestProfileStore:
    """Per-(user, tag) interest entries stored as Redis hashes, plus a per-user tag index."""

    def __init__(self, redis_service: RedisService):
        self.redis = redis_service

    def _entry_key(self, user_id: int, tag: str) -> str:
        return self.redis.key(INTEREST_KEY, user_id=user_id, tag=tag)

    def _index_key(self, user_id: int) -> str:
        return self.redis.key(INTEREST_INDEX_KEY, user_id=user_id)

    async def upsert_interests(
        self,
        user_id: int,
        tags: list[str],
        level: InterestLevel = InterestLevel.MEDIUM,
        source: InterestSource = InterestSource.USER_SELECTED,
        confidence: float | None = None,
        is_primary: bool = False,
    ) -> list[InterestEntry]:
        saved = []
        for tag in normalize_tags(tags):
            key = self._entry_key(user_id, tag)

            async def body(pipe, tag=tag, key=key) -> InterestEntry:
                now = datetime.now(timezone.utc)
                data = await pipe.hgetall(key)
                if not data:
                    entry = InterestEntry(
                        user_id=user_id,
                        tag=tag,
                        level=level,
                        source=source,
                        confidence_score=0.5 if confidence is None else confidence,
                        is_primary=is_primary,
                        created_at=now,
                        updated_at=now,
                    )
                else:
                    current = InterestEntry.from_redis(data)
                    if source.is_inferred and not current.source.is_inferred:
                        # Inferred signals may only wake up an explicit entry
                        entry = current.model_copy(update={"is_active": True, "updated_at": now})
                    else:
                        entry = current.model_copy(
                            update={
                                "level": level,
                                "source": source,
                                "confidence_score": current.confidence_score if confidence is None else confidence,
                                "is_primary": is_primary,
                                "is_active": True,
                                "updated_at": now,
                            }
                        )
                pipe.multi()
                pipe.hset(key, mapping=entry.to_redis())
                pipe.sadd(self._index_key(user_id), tag)
                return entry

            saved.append(await self.redis.watch_transaction("interest.upsert", [key], body))
        logger.info(f"Upserted {len(saved)} interests for user {user_id} (source={source.value})")
        return saved

    async def get(self, user_id: int, tag: str) -> InterestEntry | None:
        normalized = normalize_tags([tag])
        if not normalized:
            return None
        with self.redis.store_errors("interest.get"):
            client = await self.redis.get_client()
            data = await client.hgetall(self._entry_key(user_id, normalized[0]))
        return InterestEntry.from_redis(data) if data else None

    async def _all_entries(self, user_id: int) -> list[InterestEntry]:
        with self.redis.store_errors("interest.list"):
            client = await self.redis.get_client()
            tags = sorted(await client.smembers(self._index_key(user_id)))
            if not tags:
                return []
            async with client.pipeline(transaction=False) as pipe:
                for tag in tags:
                    pipe.hgetall(self._entry_key(user_id, tag))
                rows = await pipe.execute()
        return [InterestEntry.from_redis(row) for row in rows if row]

    async def top_interests(self, user_id: int, limit: int = 20, offset: int = 0) -> list[InterestEntry]:
        """Active entries, best first."""
        entries = [entry for entry in await self._all_entries(user_id) if entry.is_active]
        entries.sort(key=InterestEntry.ranking_key)
        return entries[offset : offset + limit]

    async def apply_activity(
        self, user_id: int, tags: list[str], event_id: str, at: datetime
    ) -> list[InterestChange] | None:
        """
        Count one interaction against each of the user's existing entries for these tags.

        The increments and the event's dedupe marker commit in one transaction, so the same
        event applied twice changes nothing the second time. Returns None for an event that
        was already applied.
        """
        tag_list = normalize_tags(tags)
        done_key = self.redis.key(REACTOR_DONE_KEY, event_id=event_id)
        entry_keys = [self._entry_key(user_id, tag) for tag in tag_list]
        marker_ttl = settings.ACTIVITY_RETENTION_DAYS * 86400

        async def body(pipe) -> list[InterestChange] | None:
            if await pipe.exists(done_key):
                pipe.multi()
                return None
            changes = []
            for key in entry_keys:
                data = await pipe.hgetall(key)
                if not data:
                    continue
                current = InterestEntry.from_redis(data)
                if not current.is_active:
                    continue
                count = current.interaction_count + 1
                update: dict[str, Any] = {"interaction_count": count, "last_interaction": at, "updated_at": at}
                if current.source.is_inferred:
                    update["level"] = InterestLevel.from_interactions(count)
                changes.append(InterestChange(current.model_copy(update=update), current.level))
            pipe.multi()
            for change in changes:
                pipe.hset(self._entry_key(user_id, change.entry.tag), mapping=change.entry.to_redis())
            pipe.set(done_key, "1", ex=marker_ttl)
            return changes

        changes = await self.redis.watch_transaction("interest.apply_activity", [done_key, *entry_keys], body)
        if changes is None:
            logger.debug(f"Event {event_id} already applied to interests of user {user_id}")
        return changes

    async def confirm_interest(self, user_id: int, tag: str) -> InterestEntry | None:
        """Turn an AI-inferred interest into one the user has explicitly chosen."""
        normalized = normalize_tags([tag])
        if not normalized:
            return None
        key = self._entry_key(user_id, normalized[0])

        async def body(pipe) -> InterestEntry | None:
            data = await pipe.hgetall(key)
            pipe.multi()
            if not data:
                return None
            entry = InterestEntry.from_redis(data)
            if entry.source == InterestSource.AI_INFERRED:
                entry = entry.model_copy(
                    update={
                        "source": InterestSource.USER_SELECTED,
                        "is_active": True,
                        "updated_at": datetime.now(timezone.utc),
                    }
                )
                pipe.hset(key, mapping=entry.to_redis())
            return entry

        return await self.redis.watch_transaction("interest.confirm", [key], body)

    async def deactivate_user(self, user_id: int) -> int:
        entries = await self._all_entries(user_id)
        with self.redis.store_errors("interest.deactivate_user"):
            client = await self.redis.get_client()
            async with client.pipeline(transaction=True) as pipe:
                for entry in entries:
                    pipe.hset(self._entry_key(user_id, entry.tag), "is_active", "0")
                await pipe.execute()
        logger.info(f"Deactivated {len(entries)} interests for user {user_id}")
        return len(entries)

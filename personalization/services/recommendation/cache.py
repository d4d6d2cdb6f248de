import asyncio
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any, NamedTuple

from cachetools import LRUCache, TTLCache
from loguru import logger

from personalization.core.config import settings
from personalization.core.errors import ComputationTimeoutError
from personalization.models.recommendation import Recommendation, RecommendationKind

Recommendations = tuple[Recommendation, ...]
ComputeFn = Callable[[], Awaitable[Sequence[Recommendation]]]


class CacheKey(NamedTuple):
    user_id: int
    kind: RecommendationKind
    algorithm_version: str


@dataclass(frozen=True)
class CacheTier:
    ttl_seconds: float
    max_entries: int


@dataclass
class CacheEntry:
    value: Recommendations
    started_at: float
    written_at: float
    last_access: float


class _EvictionCountingLRU(LRUCache):
    def __init__(self, maxsize: int):
        super().__init__(maxsize=maxsize)
        self.evictions = 0

    def popitem(self):
        item = super().popitem()
        self.evictions += 1
        return item


def default_tiers() -> dict[RecommendationKind, CacheTier]:
    return {
        RecommendationKind.OPPORTUNITY: CacheTier(
            settings.CACHE_TTL_OPPORTUNITY_SECONDS, settings.CACHE_MAX_ENTRIES_OPPORTUNITY
        ),
        RecommendationKind.CONTENT: CacheTier(settings.CACHE_TTL_CONTENT_SECONDS, settings.CACHE_MAX_ENTRIES_CONTENT),
        RecommendationKind.MENTOR: CacheTier(settings.CACHE_TTL_MENTOR_SECONDS, settings.CACHE_MAX_ENTRIES_MENTOR),
    }


class RecommendationCache(ABC):
    @abstractmethod
    async def get_or_compute(
        self, key: CacheKey, compute_fn: ComputeFn, ttl_policy: CacheTier | None = None
    ) -> Recommendations: ...

    @abstractmethod
    def invalidate_user(self, user_id: int) -> int: ...

    @abstractmethod
    def clear(self) -> None: ...

    @abstractmethod
    def stats(self) -> dict[str, Any]: ...


class TieredRecommendationCache(RecommendationCache):
    """
    In-process recommendation cache with one LRU tier per recommendation kind.

    - Concurrent misses for a key share one computation task.
    - Entries past their TTL are kept (until LRU eviction) and served when a fresh
      computation does not finish within the wait timeout or fails.
    - The computation itself is bounded by the hard timeout and installs its result for
      later readers even after every waiter has given up.
    - A result only replaces an entry computed from an older start, and never survives
      an invalidation that happened after it started.
    """

    def __init__(
        self,
        tiers: dict[RecommendationKind, CacheTier] | None = None,
        wait_timeout: float | None = None,
        hard_timeout: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.tiers = tiers or default_tiers()
        self.wait_timeout = settings.RECOMMENDATION_WAIT_TIMEOUT_SECONDS if wait_timeout is None else wait_timeout
        self.hard_timeout = settings.RECOMMENDATION_HARD_TIMEOUT_SECONDS if hard_timeout is None else hard_timeout
        self._clock = clock
        self._stores = {kind: _EvictionCountingLRU(tier.max_entries) for kind, tier in self.tiers.items()}
        self._inflight: dict[CacheKey, asyncio.Task] = {}
        self._counters = {
            kind: {"hits": 0, "misses": 0, "staleHits": 0, "timeouts": 0, "errors": 0} for kind in self.tiers
        }
        # user_id -> time of the last invalidation, kept long enough to outlive any computation
        self._invalidated: TTLCache = TTLCache(maxsize=100_000, ttl=max(self.hard_timeout * 2, 60))
        self._cleared_at = float("-inf")

    def _read(self, key: CacheKey) -> CacheEntry | None:
        try:
            return self._stores[key.kind].get(key)
        except Exception as exc:
            self._counters[key.kind]["errors"] += 1
            logger.warning(f"Recommendation cache read failed for {key}: {exc}")
            return None

    def _install(self, key: CacheKey, value: Recommendations, started_at: float) -> None:
        try:
            if started_at < self._cleared_at or started_at < self._invalidated.get(key.user_id, float("-inf")):
                logger.debug(f"Dropping result for {key}: invalidated while computing")
                return
            store = self._stores[key.kind]
            current = store.get(key)
            if current is not None and current.started_at > started_at:
                logger.debug(f"Dropping result for {key}: a newer computation already installed")
                return
            now = self._clock()
            store[key] = CacheEntry(value=value, started_at=started_at, written_at=now, last_access=now)
        except Exception as exc:
            self._counters[key.kind]["errors"] += 1
            logger.warning(f"Recommendation cache write failed for {key}: {exc}")

    async def _compute(self, key: CacheKey, compute_fn: ComputeFn, started_at: float) -> Recommendations:
        try:
            value = tuple(await asyncio.wait_for(compute_fn(), timeout=self.hard_timeout))
        except asyncio.TimeoutError:
            raise ComputationTimeoutError(
                f"Computing {key.kind.value} recommendations for user {key.user_id} exceeded {self.hard_timeout}s"
            ) from None
        self._install(key, value, started_at)
        return value

    def _on_done(self, key: CacheKey, task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Background recommendation computation for {key} failed: {exc}")

    async def get_or_compute(
        self, key: CacheKey, compute_fn: ComputeFn, ttl_policy: CacheTier | None = None
    ) -> Recommendations:
        tier = ttl_policy or self.tiers[key.kind]
        counters = self._counters[key.kind]
        now = self._clock()

        entry = self._read(key)
        if entry is not None and now - entry.written_at < tier.ttl_seconds:
            counters["hits"] += 1
            entry.last_access = now
            return entry.value
        counters["misses"] += 1

        task = self._inflight.get(key)
        if task is None:
            task = asyncio.create_task(self._compute(key, compute_fn, now))
            self._inflight[key] = task
            task.add_done_callback(lambda done, key=key: self._on_done(key, done))

        try:
            return await asyncio.wait_for(asyncio.shield(task), timeout=self.wait_timeout)
        except asyncio.TimeoutError:
            counters["timeouts"] += 1
            if entry is not None:
                counters["staleHits"] += 1
                logger.info(f"Serving stale {key.kind.value} recommendations for user {key.user_id}")
                return entry.value
            logger.info(f"No {key.kind.value} recommendations ready for user {key.user_id} yet")
            return ()
        except Exception:
            if entry is not None:
                counters["staleHits"] += 1
                return entry.value
            raise

    def invalidate_user(self, user_id: int) -> int:
        self._invalidated[user_id] = self._clock()
        removed = 0
        for store in self._stores.values():
            for key in [key for key in list(store.keys()) if key.user_id == user_id]:
                store.pop(key, None)
                removed += 1
        logger.debug(f"Invalidated {removed} cached recommendation lists for user {user_id}")
        return removed

    def clear(self) -> None:
        self._cleared_at = self._clock()
        for kind, store in list(self._stores.items()):
            # A fresh tier instead of store.clear(), which would count every entry as an eviction
            fresh = _EvictionCountingLRU(self.tiers[kind].max_entries)
            fresh.evictions = store.evictions
            self._stores[kind] = fresh
        self._invalidated.clear()
        logger.info("Recommendation cache cleared")

    def stats(self) -> dict[str, Any]:
        kinds = {}
        for kind, store in self._stores.items():
            tier = self.tiers[kind]
            kinds[kind.value] = {
                **self._counters[kind],
                "evictions": store.evictions,
                "size": len(store),
                "maxEntries": tier.max_entries,
                "ttlSeconds": tier.ttl_seconds,
                "inFlight": sum(1 for key in self._inflight if key.kind == kind),
            }
        return {
            "kinds": kinds,
            "size": sum(len(store) for store in self._stores.values()),
            "inFlight": len(self._inflight),
        }

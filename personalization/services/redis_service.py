from collections.abc import AsyncIterator, Awaitable, Callable, Iterator
from contextlib import contextmanager
from typing import Any

import redis.asyncio as redis
from loguru import logger

from personalization.core.config import settings
from personalization.core.errors import StoreUnavailableError

MAX_TRANSACTION_RETRIES = 25


class RedisService:
    """Shared Redis connection for the activity, interest and history stores."""

    def __init__(self, url: str | None = None, client: redis.Redis | None = None, key_prefix: str | None = None):
        self._url = url or settings.REDIS_URL
        self._client: redis.Redis | None = client
        self.key_prefix = settings.REDIS_KEY_PREFIX if key_prefix is None else key_prefix
        if client is None and not self._url:
            logger.warning("REDIS_URL is not set. Redis operations will fail until configured.")

    async def get_client(self) -> redis.Redis:
        if self._client is None:
            logger.info("Creating Redis client for RedisService")
            self._client = redis.from_url(
                self._url,
                decode_responses=True,
                encoding="utf-8",
                socket_connect_timeout=5,
                socket_timeout=5,
                max_connections=getattr(settings, "REDIS_MAX_CONNECTIONS", 100),
                health_check_interval=30,
                socket_keepalive=True,
            )
        return self._client

    def key(self, template: str, **parts) -> str:
        """Format a key template from core.constants and apply the namespace prefix."""
        return f"{self.key_prefix}{template.format(**parts)}"

    @staticmethod
    @contextmanager
    def store_errors(operation: str) -> Iterator[None]:
        """Translate Redis/socket failures into StoreUnavailableError for the enclosed block."""
        try:
            yield
        except (redis.RedisError, OSError) as exc:
            logger.error(f"Redis operation '{operation}' failed: {exc}")
            raise StoreUnavailableError(f"{operation} failed: {exc}") from exc

    async def watch_transaction(
        self, operation: str, keys: list[str], body: Callable[[Any], Awaitable[Any]]
    ) -> Any:
        """
        Run body(pipe) under WATCH on keys, retrying when a concurrent writer touches them.

        body reads through the pipe in immediate mode, calls pipe.multi() and queues its writes.
        Whatever it returns is handed back after the transaction commits.
        """
        with self.store_errors(operation):
            client = await self.get_client()
            for attempt in range(MAX_TRANSACTION_RETRIES):
                async with client.pipeline(transaction=True) as pipe:
                    try:
                        await pipe.watch(*keys)
                        result = await body(pipe)
                        await pipe.execute()
                        return result
                    except redis.WatchError:
                        logger.debug(f"{operation}: concurrent update on {keys[0]}, retry {attempt + 1}")
                        continue
        raise StoreUnavailableError(f"{operation}: gave up after {MAX_TRANSACTION_RETRIES} conflicting attempts")

    async def ping(self) -> bool:
        try:
            client = await self.get_client()
            return bool(await client.ping())
        except (redis.RedisError, OSError) as exc:
            logger.warning(f"Redis ping failed: {exc}")
            return False

    async def scan_keys(self, template: str, **parts) -> AsyncIterator[str]:
        """Iterate keys matching a template, e.g. scan_keys(ACTIVITY_USER_KEY, user_id="*")."""
        client = await self.get_client()
        async for key in client.scan_iter(match=self.key(template, **parts), count=500):
            yield key

    async def close(self) -> None:
        """Close and disconnect the Redis client"""
        if self._client is not None:
            try:
                await self._client.aclose()
                logger.info("RedisService client closed")
            except Exception as exc:
                logger.warning(f"Failed to close RedisService client: {exc}")
            finally:
                self._client = None

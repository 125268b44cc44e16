"""Redis client for caching derived progress reads."""

import asyncio
import logging
from collections import deque
from collections.abc import Callable, Coroutine
from datetime import UTC, datetime
from functools import wraps
from typing import Any, TypeVar

from redis.asyncio import Redis
from redis.asyncio.connection import ConnectionPool
from redis.exceptions import RedisError

from src.core.config import Constants, settings


logger = logging.getLogger(__name__)

T = TypeVar("T")


def with_retry(
    max_retries: int = 3, base_delay: float = 0.1
) -> Callable[[Callable[..., Coroutine[Any, Any, T]]], Callable[..., Coroutine[Any, Any, T]]]:
    """Decorator to retry async Redis operations with exponential backoff.

    Args:
        max_retries: Maximum number of attempts (default: 3)
        base_delay: Base delay in seconds for exponential backoff (default: 0.1)
    """

    def decorator(func: Callable[..., Coroutine[Any, Any, T]]) -> Callable[..., Coroutine[Any, Any, T]]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:  # noqa: ANN401
            last_exception: RedisError | None = None
            for attempt in range(max_retries):
                try:
                    return await func(*args, **kwargs)
                except RedisError as e:
                    last_exception = e
                    if attempt < max_retries - 1:
                        delay = base_delay * (2**attempt)
                        logger.warning(
                            "Redis operation failed (attempt %d/%d): %s. Retrying in %.2fs",
                            attempt + 1,
                            max_retries,
                            e,
                            delay,
                        )
                        await asyncio.sleep(delay)
                    else:
                        logger.error("Redis operation failed after %d attempts: %s", max_retries, e)
            raise last_exception  # type: ignore[misc]

        return wrapper

    return decorator


class RedisClient:
    """Async Redis client wrapper with connection pooling.

    Every operation degrades to a no-op when Redis is not configured or
    unreachable; callers treat the cache as optional.
    """

    def __init__(self, url: str | None = None) -> None:
        self._client: Redis | None = None
        self._pool: ConnectionPool | None = None
        url = url if url is not None else settings.redis_url
        self._enabled = bool(url)

        self._last_successful_operation: datetime | None = None
        self._failure_count = 0
        self._total_operations = 0

        # Keys whose invalidation failed; retried on the next successful delete
        self._invalidation_queue: deque[tuple[str, ...]] = deque(maxlen=Constants.REDIS_INVALIDATION_QUEUE_MAXLEN)

        if self._enabled and url:
            try:
                self._pool = ConnectionPool.from_url(
                    url,
                    decode_responses=True,
                    max_connections=Constants.REDIS_MAX_CONNECTIONS,
                )
                self._client = Redis(connection_pool=self._pool)
                logger.info("Redis client initialized")
            except (RedisError, ValueError) as e:
                logger.warning("Failed to initialize Redis client: %s. Running without cache.", e)
                self._enabled = False
                self._client = None
                self._pool = None
        else:
            logger.info("Redis URL not configured. Running without cache.")

    @property
    def is_available(self) -> bool:
        """Check if Redis is available."""
        return self._enabled and self._client is not None

    @property
    def pending_invalidations(self) -> int:
        """Number of invalidations waiting for Redis to come back."""
        return len(self._invalidation_queue)

    def get_health_status(self) -> dict[str, Any]:
        """Get Redis health status."""
        return {
            "enabled": self._enabled,
            "connected": self.is_available,
            "last_successful_operation": self._last_successful_operation.isoformat()
            if self._last_successful_operation
            else None,
            "failure_count": self._failure_count,
            "total_operations": self._total_operations,
            "pending_invalidations": len(self._invalidation_queue),
        }

    def _record_success(self) -> None:
        self._last_successful_operation = datetime.now(UTC)
        self._total_operations += 1

    def _record_failure(self) -> None:
        self._failure_count += 1
        self._total_operations += 1

    async def get(self, key: str) -> str | None:
        """Get value from Redis, or None on miss or error."""
        if not self.is_available or not self._client:
            return None

        try:
            value = await self._client.get(key)
            self._record_success()
            if value:
                logger.debug("Cache hit for key: %s", key)
            return value
        except RedisError as e:
            self._record_failure()
            logger.warning("Redis GET error for key %s: %s", key, e)
            return None

    async def set(self, key: str, value: str, ttl_seconds: int) -> bool:
        """Set value in Redis with TTL. Returns True if stored."""
        if not self.is_available or not self._client:
            return False

        try:
            await self._client.setex(key, ttl_seconds, value)
            self._record_success()
            logger.debug("Cached key: %s (TTL: %ds)", key, ttl_seconds)
            return True
        except RedisError as e:
            self._record_failure()
            logger.warning("Redis SET error for key %s: %s", key, e)
            return False

    async def delete_with_retry(self, *keys: str) -> bool:
        """Delete keys with retry, queueing them for later if Redis stays unavailable.

        Returns:
            True if the keys were deleted now, False if queued or nothing to do
        """
        if not keys:
            return False

        if not self.is_available or not self._client:
            self._invalidation_queue.append(keys)
            logger.info("Redis unavailable, queued %d key(s) for invalidation", len(keys))
            return False

        @with_retry(max_retries=3, base_delay=0.1)
        async def _delete_operation() -> None:
            if self._client:
                await self._client.delete(*keys)

        try:
            await _delete_operation()
            self._record_success()
            logger.debug("Deleted %d cache key(s) with retry", len(keys))
            await self._process_invalidation_queue()
            return True
        except RedisError as e:
            self._record_failure()
            self._invalidation_queue.append(keys)
            logger.error("Redis DELETE failed after retries: %s. Queued for later.", e)
            return False

    async def _process_invalidation_queue(self) -> None:
        """Replay invalidations queued while Redis was unavailable."""
        processed = 0

        while self._invalidation_queue:
            keys = self._invalidation_queue.popleft()
            try:
                if self._client:
                    await self._client.delete(*keys)
                    processed += 1
                    self._record_success()
            except RedisError as e:
                self._record_failure()
                self._invalidation_queue.appendleft(keys)
                logger.warning("Failed to process queued invalidation: %s", e)
                break

        if processed > 0:
            logger.info("Processed %d queued cache invalidations", processed)

    async def ping(self) -> bool:
        """Ping Redis to check connection."""
        if not self.is_available or not self._client:
            return False

        try:
            result = await self._client.ping()  # type: ignore[misc]
            return bool(result)
        except RedisError as e:
            logger.warning("Redis PING failed: %s", e)
            return False

    async def close(self) -> None:
        """Close Redis connection."""
        if self._client:
            await self._client.aclose()
            logger.info("Redis client closed")


# Global Redis client instance
redis_client = RedisClient()

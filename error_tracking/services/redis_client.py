"""
Redis client wrapper for shared ingestion counters.

The rate limiter is the only consumer: it needs one atomic windowed
counter per fingerprint, shared by every process behind the same Redis.
"""

import logging
from typing import Optional
from contextlib import asynccontextmanager
import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool
from redis.exceptions import ConnectionError, TimeoutError


logger = logging.getLogger(__name__)


class RedisConnectionError(Exception):
    """Raised when a Redis connection or operation fails."""
    pass


class RedisClient:
    """
    Redis client wrapper with connection pooling.

    Counter increments are never retried, so a lost reply can never count
    one event twice.
    """

    def __init__(
        self,
        redis_url: Optional[str] = None,
        connection_timeout: float = 2
    ):
        """
        Initialize Redis client.

        Args:
            redis_url: Redis connection URL. If None, will load from settings.
            connection_timeout: Connection and socket timeout in seconds
        """
        self._redis_url = redis_url
        self._pool: Optional[ConnectionPool] = None
        self._client: Optional[redis.Redis] = None
        self._connection_timeout = connection_timeout

    async def initialize(self) -> None:
        """
        Initialize Redis connection pool.

        Should be called during application startup.

        Raises:
            RedisConnectionError: If connection fails
        """
        try:
            if not self._redis_url:
                from error_tracking.config import settings
                self._redis_url = settings.redis_url

            self._pool = ConnectionPool.from_url(
                self._redis_url,
                max_connections=20,
                decode_responses=True,
                socket_timeout=self._connection_timeout,
                socket_connect_timeout=self._connection_timeout
            )

            self._client = redis.Redis(connection_pool=self._pool)

            # Test connection
            await self._client.ping()

            logger.info("Redis connection pool initialized successfully")

        except Exception as e:
            logger.error(f"Failed to initialize Redis connection pool: {e}")
            raise RedisConnectionError(f"Failed to connect to Redis: {e}") from e

    async def close(self) -> None:
        """
        Close Redis connection pool.

        Should be called during application shutdown.
        """
        if self._client:
            await self._client.aclose()

        if self._pool:
            await self._pool.disconnect()

        logger.info("Redis connection pool closed")

    @asynccontextmanager
    async def _get_client(self):
        """
        Get Redis client with connection check.

        Yields:
            redis.Redis: Redis client instance

        Raises:
            RuntimeError: If client not initialized
        """
        if not self._client:
            raise RuntimeError("Redis client not initialized. Call initialize() first.")

        yield self._client

    async def _run_once(self, operation):
        """
        Execute a non-idempotent Redis operation exactly once.

        Raises:
            RedisConnectionError: On connection or timeout errors
        """
        try:
            return await operation()
        except (ConnectionError, TimeoutError) as e:
            logger.error(f"Redis operation failed: {e}")
            raise RedisConnectionError(f"Redis operation failed: {e}") from e

    # ========== Windowed Counters ==========

    async def increment_with_ttl(self, key: str, ttl_seconds: int) -> int:
        """
        Atomically increment a counter and (re)arm its expiry.

        INCR and EXPIRE run inside one MULTI/EXEC transaction, so concurrent
        callers across processes each observe a distinct count.

        Args:
            key: Counter key
            ttl_seconds: Expiry applied to the key

        Returns:
            Counter value after the increment

        Raises:
            RedisConnectionError: If the operation fails
        """
        async def _increment():
            async with self._get_client() as client:
                async with client.pipeline(transaction=True) as pipe:
                    pipe.incr(key)
                    pipe.expire(key, ttl_seconds)
                    count, _ = await pipe.execute()
                return int(count)

        return await self._run_once(_increment)


"""
Redis connection for the work queues
"""

from typing import Awaitable, Optional, cast

import redis.asyncio as redis_async
from loguru import logger
from redis.asyncio.connection import ConnectionPool
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from nps.common.exceptions import StoreUnavailableError


class RedisClient:
    """Owns one connection pool per process."""

    def __init__(self, url: str, pool_size: int = 10):
        self.url = url
        self.pool_size = pool_size
        self._pool: Optional[ConnectionPool] = None
        self._client: Optional[redis_async.Redis] = None

    @classmethod
    def from_settings(cls, settings) -> "RedisClient":
        return cls(settings.redis_url, pool_size=settings.redis_pool_size)

    @property
    def client(self) -> redis_async.Redis:
        """Connected client; the pool is created lazily."""
        if self._client is None:
            # the blocking pop must outlive the socket timeout, so leave it unset
            self._pool = ConnectionPool.from_url(
                self.url,
                max_connections=self.pool_size,
                decode_responses=True,
            )
            self._client = redis_async.Redis(connection_pool=self._pool)
        return self._client

    async def connect(self) -> redis_async.Redis:
        """Create the pool and verify the server answers."""
        client = self.client
        try:
            await cast(Awaitable[bool], client.ping())
        except (RedisConnectionError, RedisTimeoutError, OSError) as e:
            raise StoreUnavailableError("redis unreachable", url=self.url, error=e) from e
        logger.info(f"redis.connected url={self.url}")
        return client

    async def health_check(self) -> bool:
        try:
            await cast(Awaitable[bool], self.client.ping())
            return True
        except (RedisConnectionError, RedisTimeoutError, OSError):
            return False

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        if self._pool is not None:
            await self._pool.disconnect()
            self._pool = None

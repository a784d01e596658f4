"""
Redis client for the fallback hand-off cache.

Redis is optional: when REDIS_URL is unset or the server is unreachable the
fallback store degrades to its durable log. Nothing here raises to callers
of get_client(); a None client means "cache unavailable".
"""

import asyncio
import logging
from typing import Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)


class RedisConnectionManager:
    """
    Lazily creates a pooled redis.asyncio client and remembers failures so a
    dead server is not hammered on every alert.
    """

    def __init__(
        self,
        redis_url: Optional[str],
        max_connections: int = 20,
        socket_timeout: float = 2.0,
    ):
        self._redis_url = redis_url
        self._max_connections = max_connections
        self._socket_timeout = socket_timeout
        self._pool: Optional[redis.ConnectionPool] = None
        self._client: Optional[redis.Redis] = None
        self._lock = asyncio.Lock()
        self._error_logged = False

    async def get_client(self) -> Optional[redis.Redis]:
        """Return a connected client, or None when Redis is unavailable."""
        if not self._redis_url:
            return None
        if self._client is not None:
            return self._client

        async with self._lock:
            if self._client is not None:
                return self._client
            try:
                self._pool = redis.ConnectionPool.from_url(
                    self._redis_url,
                    max_connections=self._max_connections,
                    socket_timeout=self._socket_timeout,
                    decode_responses=True,
                )
                client = redis.Redis(connection_pool=self._pool)
                await client.ping()
                self._client = client
                if self._error_logged:
                    logger.info("Redis reconnected (fallback cache)")
                    self._error_logged = False
                else:
                    logger.info("Redis connection established successfully")
                return self._client
            except (RedisError, OSError) as e:
                # Log once until the next successful connection
                if not self._error_logged:
                    logger.error(f"Redis unavailable for fallback cache: {e}")
                    self._error_logged = True
                await self._disconnect_pool()
                return None

    def reset(self) -> None:
        """Forget the current client so the next call reconnects."""
        self._client = None

    async def _disconnect_pool(self) -> None:
        if self._pool is not None:
            try:
                await self._pool.disconnect()
            except (RedisError, OSError):
                pass
            self._pool = None

    async def close(self) -> None:
        """Close Redis connections gracefully."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        await self._disconnect_pool()

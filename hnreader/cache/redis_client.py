"""
Async Redis client for the response cache.

Pattern: cache-aside with TTL + explicit invalidation
- Period ranking pages are cached after the first read
- The Ranker invalidates all ranking pages after every computation
- TTL bounds staleness if an invalidation is ever missed

Redis is optional: every operation degrades to a cache miss when it is
unavailable, and the API falls back to the database.
"""
import json
from typing import Any, Optional

import redis.asyncio as redis

from hnreader.config.settings import settings
from hnreader.utils.logger import logger


class CacheKeys:
    """
    Centralized cache key definitions.

    Pattern: {domain}:{entity}:{identifier}
    Examples:
        rankings:day:page:1
        rankings:week:page:3
    """

    @staticmethod
    def rankings_page(period: str, page: int) -> str:
        """One page of a period ranking"""
        return f"rankings:{period}:page:{page}"

    @staticmethod
    def rankings_pattern() -> str:
        """Every cached ranking page"""
        return "rankings:*"


class RedisCache:
    """
    Async Redis cache client.

    Usage:
        cache = RedisCache()
        await cache.connect()

        await cache.set("key", {"data": "value"}, ttl=300)
        data = await cache.get("key")
    """

    TTL_RANKINGS = 300        # 5 minutes - one poll interval

    def __init__(self, url: str = settings.redis_url):
        self.url = url
        self._client: Optional[redis.Redis] = None
        self._connected = False

    async def connect(self) -> None:
        """Establish the connection; failure leaves the cache disabled."""
        if self._connected:
            return

        try:
            self._client = redis.from_url(
                self.url,
                encoding="utf-8",
                decode_responses=True,  # Return strings, not bytes
                socket_connect_timeout=5,
                socket_keepalive=True,
                health_check_interval=30,
            )

            # Test connection
            await self._client.ping()
            self._connected = True
            logger.info("✅ Redis cache connected")

        except Exception as e:
            logger.error(f"❌ Redis connection failed: {e}")
            self._connected = False
            # Don't raise - cache is optional, app should work without it

    async def disconnect(self) -> None:
        """Close Redis connection gracefully."""
        if self._client:
            await self._client.aclose()
            self._connected = False
            logger.info("Redis cache disconnected")

    @property
    def is_connected(self) -> bool:
        return self._connected and self._client is not None

    @property
    def client(self) -> Optional[redis.Redis]:
        return self._client if self.is_connected else None

    async def get(self, key: str) -> Optional[Any]:
        """
        Get value from cache.

        Returns None on cache miss or if cache unavailable.
        Deserializes JSON automatically.
        """
        if not self.is_connected:
            return None

        try:
            value = await self._client.get(key)
            if value is None:
                return None
            return json.loads(value)
        except Exception as e:
            logger.warning(f"Cache GET error for {key}: {e}")
            return None

    async def set(self, key: str, value: Any, ttl: int = 300) -> bool:
        """
        Set a JSON-serializable value with TTL.

        Returns:
            True if cached successfully, False otherwise
        """
        if not self.is_connected:
            return False

        try:
            await self._client.setex(key, ttl, json.dumps(value))
            return True
        except Exception as e:
            logger.warning(f"Cache SET error for {key}: {e}")
            return False

    async def delete_pattern(self, pattern: str) -> int:
        """Delete all keys matching pattern (SCAN-based)."""
        if not self.is_connected:
            return 0

        try:
            keys = [key async for key in self._client.scan_iter(match=pattern)]
            if keys:
                deleted = await self._client.delete(*keys)
                logger.debug(f"Deleted {deleted} keys matching '{pattern}'")
                return deleted
            return 0
        except Exception as e:
            logger.warning(f"Cache DELETE PATTERN error for {pattern}: {e}")
            return 0

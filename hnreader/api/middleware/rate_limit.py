"""
Rate Limiting Dependencies

Distributed rate limiting using Redis as backend, so limits hold across
multiple API instances.

How it works:
1. Request comes in → pick an identifier (client IP, or a story ID)
2. Create Redis key: "ratelimit:{endpoint_key}:{identifier}"
3. Increment counter atomically (INCR)
4. Set TTL on the first hit of a window
5. Return 429 if counter > limit

Without Redis (disabled or unreachable) reads are unlimited. Rules marked
local_fallback (story refresh) are still enforced by an in-process limiter,
so the upstream API stays protected on a single instance.
"""

import threading
import time
from typing import Optional

from fastapi import HTTPException, Request, status
from redis.asyncio import Redis

from hnreader.config.rate_limits import get_rate_limit
from hnreader.utils.logger import logger


class RedisRateLimiter:
    """
    Fixed-window rate limiter backed by Redis INCR + EXPIRE.

    - INCR is atomic: no races between concurrent requests or instances
    - TTL expires the window: no cleanup needed
    - Fail-open: a Redis error allows the request
    """

    def __init__(self, redis_client: Redis):
        self.redis = redis_client

    async def is_rate_limited(
        self,
        key: str,
        identifier: str,
        limit: int,
        period_seconds: int
    ) -> tuple[bool, dict]:
        """
        Count one request and check it against the limit.

        Args:
            key (str): Endpoint identifier (e.g., "stories:refresh")
            identifier (str): What the limit applies to (client IP or story ID)
            limit (int): Maximum requests allowed per window
            period_seconds (int): Window length in seconds

        Returns:
            tuple[bool, dict]:
                - bool: True if the request should be REJECTED
                - dict: limit / current / remaining / reset_in_seconds
        """
        redis_key = f"ratelimit:{key}:{identifier}"

        try:
            current_count = await self.redis.incr(redis_key)

            # First hit of this window: start the countdown
            if current_count == 1:
                await self.redis.expire(redis_key, period_seconds)

            ttl = await self.redis.ttl(redis_key)

            is_limited = current_count > limit

            info = {
                "limit": limit,
                "current": current_count,
                "remaining": max(0, limit - current_count),
                "reset_in_seconds": ttl if ttl > 0 else 0
            }

            logger.debug(
                f"RateLimit check - Endpoint: {key}, Id: {identifier}, "
                f"Requests: {current_count}/{limit}, Remaining: {info['remaining']}"
            )

            return is_limited, info

        except Exception as e:
            logger.error(f"Rate limiter error for {key} ({identifier}): {e}")
            logger.warning("Rate limiting disabled - Redis unavailable")
            return False, {"error": "rate_limiter_unavailable"}


class LocalRateLimiter:
    """
    In-process fixed-window limiter, same interface as RedisRateLimiter.

    Windows live in a dict keyed like the Redis keys. Once the dict grows
    past `capacity`, expired windows are swept before the next insert.
    """

    def __init__(self, capacity: int = 10000, clock=time.monotonic):
        self.capacity = capacity
        self.clock = clock
        self._windows: dict[str, tuple[float, int, int]] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._windows)

    async def is_rate_limited(
        self,
        key: str,
        identifier: str,
        limit: int,
        period_seconds: int
    ) -> tuple[bool, dict]:
        window_key = f"ratelimit:{key}:{identifier}"
        now = self.clock()

        with self._lock:
            if len(self._windows) > self.capacity:
                self._sweep_locked(now)

            started, count, _ = self._windows.get(window_key, (now, 0, period_seconds))
            if now - started >= period_seconds:
                started, count = now, 0
            count += 1
            self._windows[window_key] = (started, count, period_seconds)

        reset_in = max(0, int(period_seconds - (now - started)))
        info = {
            "limit": limit,
            "current": count,
            "remaining": max(0, limit - count),
            "reset_in_seconds": reset_in,
        }
        return count > limit, info

    def _sweep_locked(self, now: float) -> None:
        expired = [
            k for k, (started, _, period) in self._windows.items()
            if now - started >= period
        ]
        for k in expired:
            del self._windows[k]


async def check_rate_limit(
    request: Request,
    endpoint_key: str,
    identifier: Optional[str] = None,
) -> dict:
    """
    Check the rate limit configured for `endpoint_key`.

    Args:
        request (Request): Incoming request (app state + client IP)
        endpoint_key (str): Key into RATE_LIMITS
        identifier (str): What to limit on; defaults to the client IP

    Returns:
        dict: Rate limit info (empty when rate limiting is unavailable)

    Raises:
        HTTPException: 429 Too Many Requests if limited
    """
    config = get_rate_limit(endpoint_key)

    redis_client = getattr(request.app.state, "redis_client", None)
    if redis_client is not None:
        limiter = RedisRateLimiter(redis_client)
    elif config.local_fallback:
        limiter = getattr(request.app.state, "local_rate_limiter", None)
        if limiter is None:
            return {}
    else:
        return {}

    if identifier is None:
        identifier = request.client.host if request.client else "unknown"

    is_limited, info = await limiter.is_rate_limited(
        key=endpoint_key,
        identifier=identifier,
        limit=config.requests,
        period_seconds=config.period_seconds
    )

    if is_limited:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={
                "error": "rate_limit_exceeded",
                "message": f"Exceeded {config.requests} requests per {config.period_seconds}s",
                "limit": info["limit"],
                "current": info.get("current", 0),
                "remaining": info["remaining"],
                "reset_in_seconds": info["reset_in_seconds"]
            }
        )

    return info

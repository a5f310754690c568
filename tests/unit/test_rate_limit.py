"""
Unit tests for the rate limiters (Redis mocked).
"""
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from fastapi import HTTPException

from hnreader.api.middleware.rate_limit import LocalRateLimiter, RedisRateLimiter, check_rate_limit
from hnreader.config.rate_limits import RATE_LIMITS, get_rate_limit


def mock_redis(count: int, ttl: int = 30) -> AsyncMock:
    redis = AsyncMock()
    redis.incr.return_value = count
    redis.ttl.return_value = ttl
    return redis


def fake_request(redis_client, host="203.0.113.45", local_limiter=None):
    app = SimpleNamespace(state=SimpleNamespace(redis_client=redis_client, local_rate_limiter=local_limiter))
    return SimpleNamespace(app=app, client=SimpleNamespace(host=host))


class TestRedisRateLimiter:

    @pytest.mark.asyncio
    async def test_first_request_sets_window(self):
        redis = mock_redis(1)
        limiter = RedisRateLimiter(redis)

        limited, info = await limiter.is_rate_limited("stories:refresh", "42", 1, 30)

        assert limited is False
        assert info["remaining"] == 0
        redis.incr.assert_awaited_once_with("ratelimit:stories:refresh:42")
        redis.expire.assert_awaited_once_with("ratelimit:stories:refresh:42", 30)

    @pytest.mark.asyncio
    async def test_over_limit_is_rejected(self):
        redis = mock_redis(2, ttl=12)
        limiter = RedisRateLimiter(redis)

        limited, info = await limiter.is_rate_limited("stories:refresh", "42", 1, 30)

        assert limited is True
        assert info["reset_in_seconds"] == 12
        redis.expire.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_redis_error_fails_open(self):
        redis = AsyncMock()
        redis.incr.side_effect = ConnectionError("redis down")
        limiter = RedisRateLimiter(redis)

        limited, info = await limiter.is_rate_limited("stories:read", "1.2.3.4", 10, 60)

        assert limited is False
        assert info == {"error": "rate_limiter_unavailable"}


class TestLocalRateLimiter:

    @pytest.mark.asyncio
    async def test_second_request_in_window_is_rejected(self):
        limiter = LocalRateLimiter()

        limited, info = await limiter.is_rate_limited("stories:refresh", "42", limit=1, period_seconds=30)
        assert limited is False
        assert info["remaining"] == 0

        limited, info = await limiter.is_rate_limited("stories:refresh", "42", limit=1, period_seconds=30)
        assert limited is True
        assert info["current"] == 2

    @pytest.mark.asyncio
    async def test_window_resets_after_period(self):
        clock = [1000.0]
        limiter = LocalRateLimiter(clock=lambda: clock[0])

        await limiter.is_rate_limited("stories:refresh", "42", limit=1, period_seconds=30)
        clock[0] += 30
        limited, info = await limiter.is_rate_limited("stories:refresh", "42", limit=1, period_seconds=30)

        assert limited is False
        assert info["current"] == 1

    @pytest.mark.asyncio
    async def test_expired_windows_are_swept_past_capacity(self):
        clock = [1000.0]
        limiter = LocalRateLimiter(capacity=2, clock=lambda: clock[0])

        for story_id in ("1", "2", "3"):
            await limiter.is_rate_limited("stories:refresh", story_id, limit=1, period_seconds=30)
        assert len(limiter) == 3

        clock[0] += 31
        await limiter.is_rate_limited("stories:refresh", "4", limit=1, period_seconds=30)

        assert len(limiter) == 1


class TestCheckRateLimit:

    @pytest.mark.asyncio
    async def test_without_redis_reads_are_unlimited(self):
        request = fake_request(None, local_limiter=LocalRateLimiter())
        for _ in range(RATE_LIMITS["stories:read"].requests + 1):
            assert await check_rate_limit(request, "stories:read") == {}

    @pytest.mark.asyncio
    async def test_without_redis_refresh_falls_back_to_local_limiter(self):
        request = fake_request(None, local_limiter=LocalRateLimiter())

        info = await check_rate_limit(request, "stories:refresh", "42")
        assert info["current"] == 1
        with pytest.raises(HTTPException) as exc_info:
            await check_rate_limit(request, "stories:refresh", "42")
        assert exc_info.value.status_code == 429

        # other stories have their own window
        assert (await check_rate_limit(request, "stories:refresh", "43"))["current"] == 1

    @pytest.mark.asyncio
    async def test_defaults_identifier_to_client_ip(self):
        redis = mock_redis(1)
        await check_rate_limit(fake_request(redis), "stories:read")
        redis.incr.assert_awaited_once_with("ratelimit:stories:read:203.0.113.45")

    @pytest.mark.asyncio
    async def test_limited_request_raises_429(self):
        redis = mock_redis(2)
        with pytest.raises(HTTPException) as exc_info:
            await check_rate_limit(fake_request(redis), "stories:refresh", "42")
        assert exc_info.value.status_code == 429
        assert exc_info.value.detail["error"] == "rate_limit_exceeded"


class TestRateLimitConfig:

    def test_refresh_allows_one_per_window(self):
        assert RATE_LIMITS["stories:refresh"].requests == 1

    def test_unknown_key_falls_back_to_default(self):
        assert get_rate_limit("nope:nothing") is RATE_LIMITS["default:read"]

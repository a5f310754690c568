"""
Rate Limiting Configuration Module

Centralized rate limit definitions for the API.

Pattern: cost-based rate limiting
- Reads: high per-IP limits (served from the store / cache)
- Refresh: one upstream refresh per story per window, whoever asks
"""

from dataclasses import dataclass
from typing import Dict

from hnreader.config.settings import settings


@dataclass
class RateLimitConfig:
    """
    Rate limit rule.

    Attributes:
        requests (int): Number of requests allowed
        period_seconds (int): Window length in seconds
        description (str): Human-readable description
        local_fallback (bool): Enforce in-process when Redis is unavailable

    Example:
        RateLimitConfig(requests=100, period_seconds=60, description="List stories")
        → "100 per 60s"
    """
    requests: int
    period_seconds: int
    description: str
    local_fallback: bool = False


RATE_LIMITS: Dict[str, RateLimitConfig] = {
    "stories:read": RateLimitConfig(
        requests=300,
        period_seconds=60,
        description="Story, comment and article reads - store lookups, on-demand fetch on a miss"
    ),

    "stories:refresh": RateLimitConfig(
        requests=1,
        period_seconds=settings.refresh_window_seconds,
        description="Manual story refresh - re-fetches story, comments and article upstream (keyed per story)",
        local_fallback=True,
    ),

    "default:read": RateLimitConfig(
        requests=100,
        period_seconds=60,
        description="Default read limit for unspecified GET endpoints"
    ),
}


def get_rate_limit(key: str) -> RateLimitConfig:
    """
    Look up a rate limit rule.

    Args:
        key (str): Limit key from RATE_LIMITS, e.g. "stories:refresh"

    Returns:
        RateLimitConfig, falling back to "default:read" for unknown keys
    """
    return RATE_LIMITS.get(key, RATE_LIMITS["default:read"])

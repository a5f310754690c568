"""
Caching layer.

- TopList: process-held front-page ordering used for pagination
  (replaced by the poller every cycle, never persisted)
- RedisCache: optional Redis-backed cache for period ranking pages
  (invalidated by the ranker, TTL as a safety net)
"""
from hnreader.cache.redis_client import (
    RedisCache,
    CacheKeys,
)
from hnreader.cache.toplist import TopList

__all__ = ["RedisCache", "CacheKeys", "TopList"]

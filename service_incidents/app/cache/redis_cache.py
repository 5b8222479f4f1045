"""
Redis caching layer for the Incidents service.
"""

import asyncio
from typing import Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from shared.logging import get_logger
from shared.errors import CacheError


ALL_INCIDENTS_KEY = "all_incidents"
INCIDENT_PREFIX = "incident:"

# Failures that mean "the cache could not be reached", as opposed to bugs.
CACHE_FAILURES = (RedisError, OSError, asyncio.TimeoutError)


def incident_key(incident_id: int) -> str:
    """Per-record cache key, e.g. ``incident:42``."""
    return f"{INCIDENT_PREFIX}{incident_id}"


class RedisCache:
    """Key-value Cache Layer with per-key TTL, backed by Redis.

    Every operation raises ``CacheError`` when Redis cannot be reached;
    callers decide how to degrade.
    """

    def __init__(
        self,
        redis_url: str,
        socket_timeout: float = 2.0,
        client: Optional[redis.Redis] = None,
    ):
        self.redis_url = redis_url
        self.socket_timeout = socket_timeout
        self.logger = get_logger("incidents.cache.redis")
        self.redis: Optional[redis.Redis] = client

    def _get_redis(self) -> redis.Redis:
        """Get Redis connection."""
        if self.redis is None:
            self.redis = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                # Undecodable values reach the caller as unparseable text.
                encoding_errors="replace",
                socket_connect_timeout=self.socket_timeout,
                socket_timeout=self.socket_timeout,
                health_check_interval=30
            )
        return self.redis

    async def start(self):
        """Start the Redis cache.

        An unreachable Redis is logged but not fatal: reads fall back to the
        record store until it comes back.
        """
        client = self._get_redis()
        try:
            await client.ping()
            self.logger.info("Connected to Redis")
        except CACHE_FAILURES as e:
            self.logger.warning("Redis unavailable at startup", error=str(e))

    async def stop(self):
        """Stop the Redis cache."""
        if self.redis:
            await self.redis.aclose()
            self.redis = None
            self.logger.info("Redis cache stopped")

    async def get(self, key: str) -> Optional[str]:
        """Return the cached value for ``key`` or None when absent."""
        try:
            return await self._get_redis().get(key)
        except CACHE_FAILURES as e:
            raise CacheError("get failed", {"key": key, "error": str(e)}) from e

    async def setex(self, key: str, ttl_seconds: int, value: str) -> None:
        """Store ``value`` under ``key`` expiring after ``ttl_seconds``."""
        try:
            await self._get_redis().setex(key, ttl_seconds, value)
        except CACHE_FAILURES as e:
            raise CacheError("set failed", {"key": key, "error": str(e)}) from e

    async def delete(self, *keys: str) -> int:
        """Delete ``keys``; returns how many existed."""
        try:
            return await self._get_redis().delete(*keys)
        except CACHE_FAILURES as e:
            raise CacheError("delete failed", {"keys": list(keys), "error": str(e)}) from e

    async def health_check(self) -> bool:
        """Check Redis health."""
        try:
            await self._get_redis().ping()
            return True
        except CACHE_FAILURES:
            return False

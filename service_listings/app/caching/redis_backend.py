"""
Redis cache backend for the listings cache guard.
"""

from typing import Optional

import redis.asyncio as redis

from shared.logging import get_logger
from shared.errors import ListingServiceException


class RedisCacheBackend:
    """String key-value access to Redis with millisecond TTLs."""

    def __init__(self, redis_url: str, *, client: Optional[redis.Redis] = None, scan_batch: int = 500):
        self.redis_url = redis_url
        self.logger = get_logger("listings.cache.redis")
        self.redis: Optional[redis.Redis] = client
        self.scan_batch = scan_batch

    async def start(self):
        """Connect to Redis."""
        if self.redis is not None:
            return
        try:
            self.redis = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True,
                health_check_interval=30
            )

            # Test connection
            await self.redis.ping()

            self.logger.info("Redis cache backend started")

        except Exception as e:
            self.logger.error("Failed to start Redis cache backend", error=str(e))
            raise ListingServiceException("REDIS_START_FAILED", str(e))

    async def stop(self):
        """Close the Redis connection."""
        if self.redis:
            await self.redis.aclose()
            self.redis = None
            self.logger.info("Redis cache backend stopped")

    async def get(self, key: str) -> Optional[str]:
        return await self.redis.get(key)

    async def set(self, key: str, value: str, ttl_seconds: float) -> None:
        await self.redis.set(key, value, px=max(1, int(ttl_seconds * 1000)))

    async def delete(self, key: str) -> int:
        return await self.redis.delete(key)

    async def exists(self, key: str) -> bool:
        return bool(await self.redis.exists(key))

    async def delete_pattern(self, pattern: str) -> int:
        """Delete keys matching a glob pattern, scanning in batches."""
        removed = 0
        batch = []
        async for key in self.redis.scan_iter(match=pattern, count=self.scan_batch):
            batch.append(key)
            if len(batch) >= self.scan_batch:
                removed += await self.redis.delete(*batch)
                batch = []
        if batch:
            removed += await self.redis.delete(*batch)
        return removed

    async def health_check(self) -> bool:
        """Check Redis health."""
        try:
            await self.redis.ping()
            return True
        except Exception:
            return False

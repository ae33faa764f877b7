"""
Idempotency keys for the immediate-send endpoint, stored in Redis.
Redis faults fail open: a request is never rejected because Redis is down.
"""

import logging
from typing import Optional

from redis import asyncio as aioredis

logger = logging.getLogger(__name__)

DEFAULT_TTL = 86400


class IdempotencyGuard:
    def __init__(self, redis_client: Optional[aioredis.Redis], ttl: int = DEFAULT_TTL):
        self.redis_client = redis_client
        self.ttl = ttl

    @classmethod
    def from_url(cls, redis_url: Optional[str]) -> "IdempotencyGuard":
        if not redis_url:
            logger.info("REDIS_URL not set, idempotency keys disabled")
            return cls(None)
        return cls(aioredis.from_url(redis_url, decode_responses=True))

    async def is_processed(self, key: Optional[str]) -> bool:
        if not key or self.redis_client is None:
            return False
        try:
            return bool(await self.redis_client.exists(f"processed:{key}"))
        except Exception as e:
            logger.error(f"Error checking idempotency key: {e}")
            return False

    async def mark_processed(self, key: Optional[str]) -> bool:
        if not key or self.redis_client is None:
            return False
        try:
            await self.redis_client.set(f"processed:{key}", "1", ex=self.ttl)
            return True
        except Exception as e:
            logger.error(f"Error storing idempotency key: {e}")
            return False

    async def ping(self) -> bool:
        if self.redis_client is None:
            return False
        return bool(await self.redis_client.ping())

    async def close(self) -> None:
        if self.redis_client is not None:
            await self.redis_client.aclose()
            logger.info("Redis connection closed")

"""Rate limiting utilities using Redis."""

import redis.asyncio as redis
from typing import Optional
import time
import uuid


class RateLimiter:
    """Sliding-window rate limiter using Redis sorted sets.

    Guards outbound platform calls so the worker stops short of the
    platform's published quota instead of collecting 429 responses.
    """

    def __init__(
        self,
        redis_client: Optional[redis.Redis] = None,
        redis_url: Optional[str] = None,
        prefix: str = "rate_limit",
    ):
        if redis_client is None:
            redis_client = redis.from_url(redis_url, decode_responses=True)
        self.redis_client = redis_client
        self.prefix = prefix

    async def check_rate_limit(
        self,
        key: str,
        limit: int = 100,
        window: int = 3600,
    ) -> bool:
        """Record a call and return False if the window is already full."""
        full_key = f"{self.prefix}:{key}"
        current_time = time.time()
        window_start = current_time - window

        # Remove old entries
        await self.redis_client.zremrangebyscore(full_key, 0, window_start)

        count = await self.redis_client.zcard(full_key)

        if count >= limit:
            return False

        # Members must be unique or calls within the same second collapse
        await self.redis_client.zadd(full_key, {f"{current_time}:{uuid.uuid4().hex}": current_time})
        await self.redis_client.expire(full_key, window)

        return True

    async def seconds_until_available(
        self,
        key: str,
        window: int = 3600,
    ) -> float:
        """Seconds until the oldest call in the window expires."""
        full_key = f"{self.prefix}:{key}"
        oldest = await self.redis_client.zrange(full_key, 0, 0, withscores=True)
        if not oldest:
            return 0.0

        _, score = oldest[0]
        return max(0.0, float(score) + window - time.time())

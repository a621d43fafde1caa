"""
Webhook Rate Limiter

Token bucket per client address, stored in Redis and shared by every
replica. Updates are optimistic transactions (WATCH/MULTI/EXEC).

Defaults: 50 deliveries per 60 seconds. Fails open: with no REDIS_URL or a
Redis error, every delivery is allowed.
"""

import logging
import time
from typing import Optional

import redis.asyncio as aioredis
from redis.exceptions import WatchError

logger = logging.getLogger(__name__)

KEY_PREFIX = "deploy:webhook:rate_limit"
MAX_WATCH_RETRIES = 5


class WebhookRateLimiter:
    """Redis token bucket shared by all replicas."""

    def __init__(self, redis_url: str, capacity: int, window_seconds: int):
        """
        Args:
            redis_url: Redis connection URL ("" disables limiting)
            capacity: Bucket size (max burst)
            window_seconds: Time to refill a full bucket
        """
        self.redis_url = redis_url
        self.capacity = capacity
        self.window_seconds = window_seconds
        self.redis_client: Optional[aioredis.Redis] = None

    async def _init_redis(self):
        """Initialize Redis client lazily."""
        if self.redis_client is None and self.redis_url:
            try:
                self.redis_client = aioredis.from_url(
                    self.redis_url,
                    encoding="utf-8",
                    decode_responses=True
                )
                logger.info("Redis client initialized for webhook rate limiting")
            except Exception as e:
                logger.warning(f"Failed to initialize Redis client: {e}. Rate limiting will be disabled.")
                self.redis_client = None

    async def allow(self, client_key: str) -> bool:
        """
        Consume one token for client_key.

        The read and the write run under WATCH/MULTI, so replicas sharing the
        bucket never hand out the same token twice.

        Returns:
            True if the delivery may proceed, False if rate limited
        """
        await self._init_redis()

        if not self.redis_client:
            return True

        key = f"{KEY_PREFIX}:{client_key}"

        try:
            async with self.redis_client.pipeline(transaction=True) as pipe:
                for _ in range(MAX_WATCH_RETRIES):
                    try:
                        allowed = await self._take_token(pipe, key)
                    except WatchError:
                        # Another replica wrote the bucket first; re-read it
                        continue

                    if not allowed:
                        logger.warning(f"Webhook rate limit exceeded for {client_key}")
                    return allowed

        except Exception as e:
            logger.error(f"Rate limit check failed: {e}. Failing open.")
            return True

        logger.warning(f"Webhook rate limit bucket for {client_key} is contended; limiting")
        return False

    async def _take_token(self, pipe, key: str) -> bool:
        await pipe.watch(key)

        now = time.time()
        refill_rate = self.capacity / self.window_seconds

        bucket_data = await pipe.get(key)

        if bucket_data:
            tokens, last_update = bucket_data.split(":")
            tokens = float(tokens)
            last_update = float(last_update)
        else:
            tokens = float(self.capacity)
            last_update = now

        # Refill tokens based on time elapsed
        elapsed = now - last_update
        tokens = min(self.capacity, tokens + (elapsed * refill_rate))

        if tokens < 1.0:
            await pipe.unwatch()
            return False

        pipe.multi()
        pipe.set(key, f"{tokens - 1.0}:{now}", ex=self.window_seconds * 2)
        await pipe.execute()
        return True

    async def close(self):
        if self.redis_client is not None:
            await self.redis_client.aclose()
            self.redis_client = None

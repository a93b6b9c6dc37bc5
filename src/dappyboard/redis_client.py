from __future__ import annotations

import redis.asyncio as aioredis
from redis.asyncio.client import PubSub

from dappyboard.config import settings


class RedisPool:
    def __init__(self) -> None:
        self._pool: aioredis.Redis | None = None

    async def initialize(self) -> None:
        self._pool = aioredis.from_url(
            settings.redis_url,
            decode_responses=False,
            max_connections=20,
        )

    @property
    def client(self) -> aioredis.Redis:
        if self._pool is None:
            # Auto-initialize on first access (from_url is synchronous)
            self._pool = aioredis.from_url(
                settings.redis_url,
                decode_responses=False,
                max_connections=20,
            )
        return self._pool

    async def close(self) -> None:
        if self._pool:
            await self._pool.aclose()
            self._pool = None

    # --- Pub/sub helpers (change feed) ---

    async def publish(self, channel: str, message: str) -> int:
        """Publish to a channel. Returns the number of receiving subscribers."""
        return await self.client.publish(channel, message)

    def pubsub(self) -> PubSub:
        """Dedicated pub/sub connection; the caller must aclose() it."""
        return self.client.pubsub()

    # --- Counter helpers (rate limiting) ---

    async def incr(self, key: str) -> int:
        return await self.client.incr(key)

    async def expire(self, key: str, seconds: int) -> None:
        await self.client.expire(key, seconds)

    async def ttl(self, key: str) -> int:
        return await self.client.ttl(key)

    async def ping(self) -> bool:
        """Ping the Redis server to check connectivity."""
        return await self.client.ping()


redis_pool = RedisPool()

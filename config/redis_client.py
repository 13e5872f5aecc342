"""
config/redis_client.py
Async Redis client shared by the API: the catalog cache, the JWT deny-list,
the unauthenticated rate limit and the realtime pub/sub channel.
"""

import json
from typing import Any, Optional

import redis.asyncio as aioredis

from config.settings import settings

# Key namespaces
REVOKED_JTI_PREFIX = "auth:revoked"
RATE_LIMIT_PREFIX = "rate"


# ── Global client (initialized on startup) ───────────────────
redis_client: Optional[aioredis.Redis] = None


async def init_redis() -> None:
    """Open the connection pool and fail fast if Redis is unreachable."""
    global redis_client
    redis_client = aioredis.from_url(
        settings.REDIS_URL,
        encoding="utf-8",
        decode_responses=True,
        max_connections=50,
    )
    await redis_client.ping()


async def close_redis() -> None:
    global redis_client
    if redis_client is not None:
        await redis_client.aclose()
        redis_client = None


def get_redis() -> aioredis.Redis:
    """FastAPI dependency to get Redis client."""
    if redis_client is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return redis_client


class RedisCache:
    """JSON cache plus the few Redis patterns the API relies on."""

    def __init__(self, client: aioredis.Redis):
        self.client = client

    # ── JSON cache ────────────────────────────────────────────
    async def get(self, key: str) -> Optional[Any]:
        value = await self.client.get(key)
        return json.loads(value) if value is not None else None

    async def set(self, key: str, value: Any, ttl: int = settings.REDIS_CACHE_TTL) -> None:
        await self.client.setex(key, ttl, json.dumps(value, default=str))

    async def delete(self, key: str) -> None:
        await self.client.delete(key)

    # ── JWT deny-list ─────────────────────────────────────────
    async def revoke_token(self, jti: str, ttl_seconds: int) -> None:
        """Deny an access token until it would have expired anyway."""
        await self.client.setex(f"{REVOKED_JTI_PREFIX}:{jti}", ttl_seconds, "1")

    async def is_token_revoked(self, jti: str) -> bool:
        return await self.client.exists(f"{REVOKED_JTI_PREFIX}:{jti}") == 1

    # ── Realtime ──────────────────────────────────────────────
    async def publish(self, channel: str, payload: dict) -> int:
        """Publish a JSON payload. Returns the number of receiving subscribers."""
        return await self.client.publish(channel, json.dumps(payload, default=str))

    # ── Rate limiting ─────────────────────────────────────────
    async def check_rate_limit(self, key: str, limit: int, window_seconds: int = 60) -> bool:
        """
        Fixed-window counter: the window starts with the first hit.
        Returns True if the request is allowed.
        """
        key = f"{RATE_LIMIT_PREFIX}:{key}"
        count = await self.client.incr(key)
        if count == 1:
            await self.client.expire(key, window_seconds)
        return count <= limit

"""
config/redis_client.py
Process-wide async Redis connection plus the three key patterns the
API relies on: payment verification locks, the access-token deny-list,
and per-IP request counters.
"""

import logging
import secrets
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import redis.asyncio as aioredis

from config.settings import settings

logger = logging.getLogger(__name__)

redis_client: Optional[aioredis.Redis] = None


async def init_redis() -> None:
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
    """FastAPI dependency. Fails loudly if the lifespan hook has not run."""
    if redis_client is None:
        raise RuntimeError("Redis is not initialized; init_redis() must run at startup")
    return redis_client


class RedisCache:
    """Key conventions on top of a raw client."""

    PAYMENT_LOCK_PREFIX = "payment_lock:"
    REVOKED_TOKEN_PREFIX = "jwt_revoked:"

    def __init__(self, client: aioredis.Redis):
        self.client = client

    @asynccontextmanager
    async def payment_lock(self, payment_id: str) -> AsyncIterator[bool]:
        """
        Hold `payment_lock:<payment_id>` for the duration of the block.

        Yields False without waiting when another request already holds it.
        The key expires after REDIS_PAYMENT_LOCK_TTL so a crashed worker
        cannot wedge a payment; on exit it is deleted only if our token
        is still the stored value.
        """
        key = f"{self.PAYMENT_LOCK_PREFIX}{payment_id}"
        token = secrets.token_hex(8)
        acquired = bool(
            await self.client.set(key, token, ex=settings.REDIS_PAYMENT_LOCK_TTL, nx=True)
        )
        try:
            yield acquired
        finally:
            if acquired:
                if await self.client.get(key) == token:
                    await self.client.delete(key)
                else:
                    logger.warning(f"Payment lock for {payment_id} expired before release")

    async def is_token_revoked(self, jti: str) -> bool:
        return bool(await self.client.exists(f"{self.REVOKED_TOKEN_PREFIX}{jti}"))

    async def check_rate_limit(self, key: str, limit: int, window_seconds: int = 60) -> bool:
        """Fixed window counter. True while the caller is under `limit`."""
        hits = await self.client.incr(key)
        if hits == 1:
            await self.client.expire(key, window_seconds)
        return hits <= limit

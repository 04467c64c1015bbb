"""
Redis Client

Async singleton used for the catalog response cache. The cache is
best-effort: callers treat any Redis failure as a cache miss.
"""
import asyncio
import json
from typing import Any
from urllib.parse import urlparse

import redis.asyncio as aioredis

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)

_redis_client: aioredis.Redis | None = None
_init_lock = asyncio.Lock()


def _mask_redis_url(url: str) -> str:
    """Hide the password of REDIS_URL in logs (redis://:****@host:6379)."""
    try:
        parsed = urlparse(url)
        if parsed.password:
            return url.replace(f":{parsed.password}@", ":****@")
        return url
    except ValueError:
        return "redis://****"


async def get_redis() -> aioredis.Redis:
    """Return the shared Redis client (connection pool)."""
    global _redis_client
    if _redis_client is not None:
        return _redis_client

    async with _init_lock:
        if _redis_client is not None:
            return _redis_client

        client = aioredis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
        )
        await client.ping()
        _redis_client = client
        logger.info("Redis client initialized", extra_data={
            "url": _mask_redis_url(settings.REDIS_URL),
        })
    return _redis_client


async def close_redis() -> None:
    """Close the Redis connection on app shutdown."""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
        logger.info("Redis connection closed")


async def cache_get_json(key: str) -> Any | None:
    """Read a JSON value; returns None on a miss or when Redis is unreachable."""
    if not settings.CATALOG_CACHE_ENABLED:
        return None
    try:
        client = await get_redis()
        raw = await client.get(key)
    except (aioredis.RedisError, OSError) as e:
        logger.debug("Cache read skipped", extra_data={"key": key, "error": str(e)})
        return None
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        return None


async def cache_set_json(key: str, value: Any, ttl_seconds: int) -> None:
    """Store a JSON value with a TTL, ignoring Redis failures."""
    if not settings.CATALOG_CACHE_ENABLED:
        return
    try:
        client = await get_redis()
        await client.set(key, json.dumps(value, ensure_ascii=False), ex=ttl_seconds)
    except (aioredis.RedisError, OSError) as e:
        logger.debug("Cache write skipped", extra_data={"key": key, "error": str(e)})

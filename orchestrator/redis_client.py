"""Async Redis client and short-lived AI response cache."""

from __future__ import annotations

import json
import logging
from typing import Any

from redis.asyncio import ConnectionPool, Redis
from redis.exceptions import RedisError

from .config import settings

logger = logging.getLogger(__name__)

_pool: ConnectionPool | None = None


def get_redis_client() -> Redis:
    """Get an async Redis client from the shared pool."""
    global _pool
    if _pool is None:
        _pool = ConnectionPool.from_url(settings.redis_url, max_connections=20, decode_responses=True)
    return Redis(connection_pool=_pool)


async def cache_get(key: str) -> dict[str, Any] | None:
    """Read a cached JSON object. Redis being unavailable counts as a miss."""
    if not settings.redis_cache_enabled:
        return None
    try:
        raw = await get_redis_client().get(key)
    except (RedisError, OSError) as exc:
        logger.debug("Redis cache read failed for %s: %s", key, exc)
        return None
    if not raw:
        return None
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        return None
    return value if isinstance(value, dict) else None


async def cache_set(key: str, value: dict[str, Any], ttl_seconds: int | None = None) -> bool:
    """Store a JSON object with a TTL. Returns False when Redis is unavailable."""
    if not settings.redis_cache_enabled:
        return False
    ttl = ttl_seconds or settings.ai_cache_ttl_seconds
    try:
        await get_redis_client().set(key, json.dumps(value, default=str), ex=ttl)
    except (RedisError, OSError) as exc:
        logger.debug("Redis cache write failed for %s: %s", key, exc)
        return False
    return True

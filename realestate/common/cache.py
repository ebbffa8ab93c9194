"""Async Redis client helpers."""

from __future__ import annotations

import logging

from redis.asyncio import Redis
from redis.exceptions import RedisError

from .config import ServiceSettings

_LOGGER = logging.getLogger(__name__)
_CACHE: dict[str, Redis] = {}


def get_redis_client(redis_url: str) -> Redis:
    """Return a cached Redis client for the given URL."""

    if redis_url not in _CACHE:
        _CACHE[redis_url] = Redis.from_url(redis_url, decode_responses=True)
    return _CACHE[redis_url]


def resolve_redis(settings: ServiceSettings) -> Redis | None:
    """Return a Redis client or None if not configured."""

    if not settings.redis_url:
        return None
    return get_redis_client(settings.redis_url)


async def redis_available(redis: Redis) -> bool:
    """Whether the server answers a PING."""

    try:
        return bool(await redis.ping())
    except (RedisError, OSError) as exc:
        _LOGGER.warning("Redis ping failed: %s", exc)
        return False


async def close_redis_connections() -> None:
    """Close all cached Redis connections (used for shutdown/tests)."""

    for redis in _CACHE.values():
        await redis.aclose()
    _CACHE.clear()

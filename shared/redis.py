"""Redis connection helper for the push notification bus."""

from __future__ import annotations

import redis.asyncio as redis

from shared.config import get_settings

_redis_client: redis.Redis | None = None


def get_redis(url: str | None = None) -> redis.Redis:
    """Get or create the shared Redis client (decoded responses)."""
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.from_url(
            url or get_settings().redis_url,
            encoding="utf-8",
            decode_responses=True,
        )
    return _redis_client


async def close_redis() -> None:
    """Close the Redis connection."""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None

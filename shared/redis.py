"""Redis connection helper."""

from __future__ import annotations

import redis.asyncio as redis

from shared.config import Settings


def create_redis(settings: Settings) -> redis.Redis:
    """Create a Redis client for the cache and domain registry.

    Connection is lazy; the first command opens the socket.
    """
    return redis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        socket_timeout=settings.redis_socket_timeout,
        socket_connect_timeout=settings.redis_socket_timeout,
    )


async def close_redis(client: redis.Redis | None) -> None:
    """Close the Redis connection."""
    if client is not None:
        await client.aclose()

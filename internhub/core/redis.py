# ruff: noqa: PLW0603
"""Redis connection management.

Redis carries the pub/sub fan-out for in-app notifications. The service keeps
working without it: notifications are still persisted, only the live push is
skipped.
"""

import redis.asyncio as redis

from internhub.config import get_settings
from internhub.core.logging import get_logger


logger = get_logger(__name__)

_redis_client: redis.Redis | None = None


async def init_redis() -> redis.Redis:
    """Initialize the Redis connection pool and verify it answers."""
    global _redis_client

    settings = get_settings()

    client = redis.from_url(
        settings.redis_url,
        max_connections=settings.redis_max_connections,
        socket_timeout=settings.redis_socket_timeout,
        socket_connect_timeout=settings.redis_socket_connect_timeout,
        decode_responses=True,
    )

    try:
        await client.ping()
    except redis.ConnectionError as e:
        logger.warning("redis_connection_failed", error=str(e))
        await client.aclose()
        raise

    _redis_client = client
    logger.info("redis_connected", url=settings.redis_url)
    return _redis_client


async def shutdown_redis() -> None:
    """Close the Redis connection pool."""
    global _redis_client

    if _redis_client:
        await _redis_client.aclose()
        logger.info("redis_disconnected")
        _redis_client = None


def notification_channel(user_id: str) -> str:
    """Get the per-user notification channel name."""
    return f"notifications:user:{user_id}"

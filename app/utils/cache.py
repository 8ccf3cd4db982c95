"""
Redis Client Utilities

Shared redis.asyncio client used by the trade store, the market data
readers and the outcome sinks.
"""

import redis.asyncio as redis
from typing import Optional
from app.config.settings import get_settings, Settings
from app.core.logger import get_logger

logger = get_logger(__name__)

# Global Redis client instance
_redis_client: Optional[redis.Redis] = None


def create_redis_client(settings: Optional[Settings] = None) -> redis.Redis:
    """
    Build a Redis client from settings.

    Every command is bounded by REDIS_SOCKET_TIMEOUT_SECONDS so a slow
    server can never stall a monitor cycle.

    Args:
        settings: Settings to use (defaults to global settings)

    Returns:
        Redis client (not yet connected)
    """
    settings = settings or get_settings()
    return redis.from_url(
        settings.REDIS_URL,
        decode_responses=True,
        socket_timeout=settings.REDIS_SOCKET_TIMEOUT_SECONDS,
        socket_connect_timeout=settings.REDIS_SOCKET_TIMEOUT_SECONDS,
        socket_keepalive=True,
    )


async def get_redis_client() -> redis.Redis:
    """
    Get or create Redis client instance.

    Returns:
        Redis client

    Example:
        redis_client = await get_redis_client()
        value = await redis_client.get("price:N:52431")
    """
    global _redis_client

    if _redis_client is None:
        settings = get_settings()
        client = create_redis_client(settings)

        try:
            # Test connection
            await client.ping()
            logger.info(f"Redis connected: {settings.REDIS_URL}")
        except Exception as e:
            logger.error(f"Failed to connect to Redis: {str(e)}")
            await client.aclose()
            raise

        _redis_client = client

    return _redis_client


async def close_redis_client():
    """Close Redis client connection"""
    global _redis_client

    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None
        logger.info("Redis connection closed")

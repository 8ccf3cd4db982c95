"""Utility functions package."""

from app.utils.cache import (
    create_redis_client,
    get_redis_client,
    close_redis_client,
)

__all__ = [
    "create_redis_client",
    "get_redis_client",
    "close_redis_client",
]

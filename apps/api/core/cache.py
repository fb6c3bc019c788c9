"""
Redis Caching Layer

Provides cache utilities for derived values (e.g. readiness scores).
Includes graceful degradation if Redis is unavailable.
"""
import json
import logging
from typing import Optional, Any
import redis
from redis.exceptions import ConnectionError, TimeoutError, RedisError
from core.config import settings

logger = logging.getLogger(__name__)

# Redis connection pool (singleton)
_redis_client: Optional[redis.Redis] = None


def get_redis_client() -> Optional[redis.Redis]:
    """Get Redis client with connection pooling. Returns None if Redis unavailable."""
    global _redis_client

    if _redis_client is not None:
        return _redis_client

    try:
        _redis_client = redis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            socket_connect_timeout=2,
            socket_timeout=2,
            retry_on_timeout=True,
            health_check_interval=30
        )
        # Test connection
        _redis_client.ping()
        logger.info("Redis connection established")
        return _redis_client
    except (ConnectionError, TimeoutError, RedisError) as e:
        logger.warning(f"Redis unavailable: {e}. Caching disabled.")
        _redis_client = None
        return None


def cache_key(prefix: str, *args, **kwargs) -> str:
    """Generate cache key from prefix and arguments."""
    key_parts = [prefix]

    # Add args (skip None values)
    for arg in args:
        if arg is not None:
            key_parts.append(str(arg))

    # Add kwargs (sorted for consistency, skip None values)
    for k, v in sorted(kwargs.items()):
        if v is not None:
            key_parts.append(f"{k}:{v}")

    return ":".join(key_parts)


def get_cache(key: str) -> Optional[Any]:
    """Get value from cache. Returns None if not found or Redis unavailable."""
    client = get_redis_client()
    if not client:
        return None

    try:
        value = client.get(key)
        if value:
            return json.loads(value)
        return None
    except (ConnectionError, TimeoutError, RedisError) as e:
        logger.warning(f"Cache get error for key {key}: {e}")
        return None


def set_cache(key: str, value: Any, ttl: int = None) -> bool:
    """Set value in cache. Returns True if successful, False otherwise."""
    client = get_redis_client()
    if not client:
        return False

    try:
        if ttl is None:
            ttl = settings.CACHE_TTL_DEFAULT

        client.setex(
            key,
            ttl,
            json.dumps(value, default=str)  # default=str handles datetime, UUID, etc.
        )
        return True
    except (ConnectionError, TimeoutError, RedisError) as e:
        logger.warning(f"Cache set error for key {key}: {e}")
        return False


def delete_cache(key: str) -> bool:
    """Delete key from cache. Returns True if successful, False otherwise."""
    client = get_redis_client()
    if not client:
        return False

    try:
        client.delete(key)
        return True
    except (ConnectionError, TimeoutError, RedisError) as e:
        logger.warning(f"Cache delete error for key {key}: {e}")
        return False

"""
Redis Caching Layer

Read-through cache for aggregated metric views and a short-lived memory of
webhook deliveries already handled. Degrades to a no-op when Redis is
unavailable or CACHE_ENABLED is off; correctness never depends on it.
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

    if not settings.CACHE_ENABLED:
        return None

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

    for arg in args:
        if arg is not None:
            key_parts.append(str(arg))

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
            json.dumps(value, default=str)  # default=str handles date, UUID, etc.
        )
        return True
    except (ConnectionError, TimeoutError, RedisError) as e:
        logger.warning(f"Cache set error for key {key}: {e}")
        return False


def invalidate_pattern(pattern: str) -> int:
    """Invalidate all keys matching pattern. Returns count of deleted keys."""
    client = get_redis_client()
    if not client:
        return 0

    try:
        keys = client.keys(pattern)
        if keys:
            return client.delete(*keys)
        return 0
    except (ConnectionError, TimeoutError, RedisError) as e:
        logger.warning(f"Cache invalidation error for pattern {pattern}: {e}")
        return 0


# Webhook delivery memory
def delivery_key(provider: str, delivery_id: str) -> str:
    return cache_key("webhook_delivery", provider.lower(), delivery_id)


def get_handled_delivery(provider: str, delivery_id: Optional[str]) -> Optional[dict]:
    """Return the stored response for a delivery handled within the dedupe window."""
    if not delivery_id:
        return None
    return get_cache(delivery_key(provider, delivery_id))


def remember_delivery(provider: str, delivery_id: Optional[str], response: dict) -> bool:
    if not delivery_id:
        return False
    return set_cache(delivery_key(provider, delivery_id), response, settings.WEBHOOK_DEDUPE_TTL_S)


# Aggregated view invalidation
def invalidate_user_metrics_cache(user_id) -> int:
    """Invalidate cached body-metric views for a user after new data lands."""
    deleted = invalidate_pattern(f"body_metrics:{user_id}:*")
    if deleted:
        logger.debug(f"Invalidated {deleted} body-metric cache entries for user {user_id}")
    return deleted

"""
Redis Read-Through Cache

Caches routine progress and occurrence windows in front of the database.
The cache is an explicit object handed to the services; mutations call its
invalidation helpers before returning so a just-applied completion or skip
is never masked by a stale entry.

Degrades gracefully: with no Redis (or a failing one) every read is a miss
and every write is a no-op.
"""
import json
import logging
from datetime import date
from typing import Optional, Callable, Any
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
        # Test connection
        _redis_client.ping()
        logger.info("Redis connection established")
        return _redis_client
    except (ConnectionError, TimeoutError, RedisError) as e:
        logger.warning(f"Redis unavailable: {e}. Caching disabled.")
        _redis_client = None
        return None


def cache_key(prefix: str, *args) -> str:
    """Generate cache key from prefix and arguments (None values skipped)."""
    key_parts = [prefix]
    for arg in args:
        if arg is None:
            continue
        key_parts.append(arg.isoformat() if isinstance(arg, date) else str(arg))
    return ":".join(key_parts)


def progress_key(routine_id: Any, on_date: date) -> str:
    return cache_key("progress", routine_id, on_date)


def occurrences_key(routine_id: Any, start: date, end: date) -> str:
    return cache_key("occurrences", routine_id, start, end)


class RoutineCache:
    """
    Thin JSON cache over a Redis client.

    Args:
        client: Redis client, or None to disable caching entirely
    """

    def __init__(self, client: Optional[redis.Redis] = None):
        self.client = client

    @property
    def enabled(self) -> bool:
        return self.client is not None

    def get(self, key: str) -> Optional[Any]:
        """Get value from cache. Returns None if not found or Redis unavailable."""
        if not self.client:
            return None
        try:
            value = self.client.get(key)
            if value:
                return json.loads(value)
            return None
        except (ConnectionError, TimeoutError, RedisError) as e:
            logger.warning(f"Cache get error for key {key}: {e}")
            return None
        except ValueError as e:
            logger.warning(f"Corrupt cache value for key {key}, treating as miss: {e}")
            return None

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """Set value in cache. Returns True if successful, False otherwise."""
        if not self.client:
            return False
        try:
            if ttl is None:
                ttl = settings.CACHE_TTL_DEFAULT
            self.client.setex(key, ttl, json.dumps(value, default=str))
            return True
        except (ConnectionError, TimeoutError, RedisError) as e:
            logger.warning(f"Cache set error for key {key}: {e}")
            return False

    def delete(self, *keys: str) -> int:
        if not self.client or not keys:
            return 0
        try:
            return self.client.delete(*keys)
        except (ConnectionError, TimeoutError, RedisError) as e:
            logger.warning(f"Cache delete error for keys {keys}: {e}")
            return 0

    def invalidate_pattern(self, pattern: str) -> int:
        """Invalidate all keys matching pattern. Returns count of deleted keys."""
        if not self.client:
            return 0
        try:
            keys = self.client.keys(pattern)
            if keys:
                return self.client.delete(*keys)
            return 0
        except (ConnectionError, TimeoutError, RedisError) as e:
            logger.warning(f"Cache invalidation error for pattern {pattern}: {e}")
            return 0

    def read_through(self, key: str, loader: Callable[[], Any], ttl: Optional[int] = None) -> Any:
        """
        Return the cached value for ``key`` or compute it with ``loader``.

        ``loader`` must return JSON-compatible data so hits and misses look
        identical to the caller.
        """
        cached_value = self.get(key)
        if cached_value is not None:
            logger.debug(f"Cache hit: {key}")
            return cached_value

        logger.debug(f"Cache miss: {key}")
        result = loader()
        self.set(key, result, ttl)
        return result

    def invalidate_day(self, routine_id: Any, on_date: date) -> int:
        """
        Drop everything that could reflect ``routine_id`` on ``on_date``.

        Occurrence windows are keyed by range, so every window of the
        routine goes, not just the ones covering the date.
        """
        deleted = self.delete(progress_key(routine_id, on_date))
        deleted += self.invalidate_pattern(cache_key("occurrences", routine_id) + ":*")
        return deleted

    def invalidate_days(self, routine_id: Any, dates) -> int:
        dates = list(dates)
        if not dates:
            return 0
        deleted = self.delete(*[progress_key(routine_id, d) for d in dates])
        deleted += self.invalidate_pattern(cache_key("occurrences", routine_id) + ":*")
        return deleted

    def invalidate_routine(self, routine_id: Any) -> int:
        """Invalidate all cache entries for a routine."""
        patterns = [
            cache_key("progress", routine_id) + ":*",
            cache_key("occurrences", routine_id) + ":*",
        ]
        total_deleted = 0
        for pattern in patterns:
            total_deleted += self.invalidate_pattern(pattern)

        logger.info(f"Invalidated {total_deleted} cache entries for routine {routine_id}")
        return total_deleted


def get_routine_cache() -> RoutineCache:
    """Dependency for FastAPI: the request's cache handle."""
    return RoutineCache(get_redis_client())

"""
Redis caching utilities.

The cache is optional: with no REDIS_URL configured, or when Redis cannot be
reached, every operation is a no-op that reports a miss.
"""
import json
import logging
from typing import Any, Optional

import redis

from app.core.config import settings

logger = logging.getLogger(__name__)

_redis_client: Optional[redis.Redis] = None


def get_redis_client() -> Optional[redis.Redis]:
    """Get or create the shared Redis client. Returns None when Redis is not configured."""
    global _redis_client

    if not settings.REDIS_URL:
        return None

    if _redis_client is None:
        logger.info("Initializing Redis connection")
        client = redis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
            retry_on_timeout=True,
        )
        client.ping()
        _redis_client = client
        logger.info("Redis connected successfully")
    return _redis_client


class Cache:
    """Redis cache wrapper with JSON serialization"""

    def __init__(self, client=None):
        self.redis_client = client

    def _get_client(self):
        """Lazy load Redis client"""
        if self.redis_client is None:
            try:
                self.redis_client = get_redis_client()
            except Exception as e:
                logger.warning(f"Redis cache unavailable: {e}")
                return None
        return self.redis_client

    def get(self, key: str) -> Optional[Any]:
        client = self._get_client()
        if not client:
            return None

        try:
            value = client.get(key)
            if value:
                logger.debug(f"Cache HIT: {key}")
                return json.loads(value)
            logger.debug(f"Cache MISS: {key}")
            return None
        except Exception as e:
            logger.error(f"Cache get error for {key}: {e}")
            return None

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """Set value in cache with TTL (defaults to CACHE_TTL_SECONDS)"""
        client = self._get_client()
        if not client:
            return False

        try:
            client.setex(key, ttl or settings.CACHE_TTL_SECONDS, json.dumps(value, default=str))
            logger.debug(f"Cache SET: {key}")
            return True
        except Exception as e:
            logger.error(f"Cache set error for {key}: {e}")
            return False

    def delete(self, *keys: str) -> bool:
        client = self._get_client()
        if not client or not keys:
            return False

        try:
            client.delete(*keys)
            logger.debug(f"Cache DELETE: {', '.join(keys)}")
            return True
        except Exception as e:
            logger.error(f"Cache delete error for {keys}: {e}")
            return False

    def hincrby(self, key: str, field: str, amount: int = 1, ttl: Optional[int] = None) -> Optional[int]:
        """Increment a hash counter, refreshing the key TTL"""
        client = self._get_client()
        if not client:
            return None

        try:
            value = client.hincrby(key, field, amount)
            client.expire(key, ttl or settings.CACHE_TTL_SECONDS)
            return value
        except Exception as e:
            logger.error(f"Cache hincrby error for {key}: {e}")
            return None

    def hgetall(self, key: str) -> dict:
        client = self._get_client()
        if not client:
            return {}

        try:
            return client.hgetall(key) or {}
        except Exception as e:
            logger.error(f"Cache hgetall error for {key}: {e}")
            return {}


# Global cache instance
cache = Cache()


# Key builders for upload metadata

def upload_url_key(upload_id: int) -> str:
    return f"upload:{upload_id}:url"


def upload_meta_key(upload_id: int) -> str:
    return f"upload:{upload_id}:meta"


def upload_stats_key(user_id: int, day: str) -> str:
    return f"upload_stats:{user_id}:{day}"

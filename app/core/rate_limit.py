"""
Fixed-window rate limiting.

Counters live in process memory. When Redis is configured the counter is
kept in Redis instead (INCR + EXPIRE) so that several workers share it.
"""
import logging
import time
from threading import Lock
from typing import Callable, Optional

from fastapi import HTTPException, Request, status

from app.core.cache import get_redis_client
from app.core.config import settings

logger = logging.getLogger(__name__)


def get_client_ip(request: Request) -> str:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


class RateLimiter:
    """
    FastAPI dependency that allows `limit` requests per client IP in each
    window of `window_seconds`. Both values may be callables so they can be
    read from settings at request time.
    """

    def __init__(self, key_prefix: str, limit, window_seconds):
        self.key_prefix = key_prefix
        self._limit = limit
        self._window = window_seconds
        self._counters: dict = {}  # key -> (count, reset_time)
        self._lock = Lock()

    @property
    def limit(self) -> int:
        return self._limit() if callable(self._limit) else self._limit

    @property
    def window_seconds(self) -> int:
        return self._window() if callable(self._window) else self._window

    def reset(self):
        with self._lock:
            self._counters.clear()

    def _hit_memory(self, key: str, now: int) -> tuple:
        with self._lock:
            count, reset_time = self._counters.get(key, (0, now + self.window_seconds))
            if now >= reset_time:
                count, reset_time = 0, now + self.window_seconds
            count += 1
            self._counters[key] = (count, reset_time)
            return count, reset_time - now

    def _hit_redis(self, client, key: str) -> tuple:
        pipe = client.pipeline()
        pipe.incr(key)
        pipe.ttl(key)
        count, ttl = pipe.execute()
        if ttl is None or ttl < 0:
            client.expire(key, self.window_seconds)
            ttl = self.window_seconds
        return int(count), int(ttl)

    def hit(self, identifier: str) -> tuple:
        """Register one request. Returns (allowed, count, seconds until reset)."""
        key = f"{self.key_prefix}:{identifier}"
        now = int(time.time())

        count, ttl = None, None
        try:
            client = get_redis_client()
        except Exception as e:
            logger.warning(f"Redis unavailable for rate limiting, using memory: {e}")
            client = None

        if client is not None:
            try:
                count, ttl = self._hit_redis(client, key)
            except Exception as e:
                logger.warning(f"Redis rate limit error, using memory: {e}")

        if count is None:
            count, ttl = self._hit_memory(key, now)

        return count <= self.limit, count, max(0, ttl)

    async def __call__(self, request: Request):
        allowed, count, ttl = self.hit(get_client_ip(request))
        if not allowed:
            logger.warning(f"Rate limit exceeded for {self.key_prefix}: {count}/{self.limit}")
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail=f"Rate limit exceeded. Maximum {self.limit} requests per {self.window_seconds} seconds.",
                headers={"Retry-After": str(ttl)},
            )
        request.state.rate_limit_remaining = self.limit - count


_limiters: list = []


def create_rate_limiter(key_prefix: str, limit, window_seconds) -> RateLimiter:
    limiter = RateLimiter(key_prefix, limit, window_seconds)
    _limiters.append(limiter)
    return limiter


def reset_rate_limiters():
    for limiter in _limiters:
        limiter.reset()


upload_rate_limiter = create_rate_limiter(
    "upload",
    lambda: settings.UPLOAD_RATE_LIMIT,
    lambda: settings.UPLOAD_RATE_WINDOW_SECONDS,
)

# Login and registration share one counter per client
auth_rate_limiter = create_rate_limiter(
    "auth",
    lambda: settings.AUTH_RATE_LIMIT,
    lambda: settings.AUTH_RATE_WINDOW_SECONDS,
)

establishment_rate_limiter = create_rate_limiter(
    "establishment",
    lambda: settings.API_RATE_LIMIT,
    lambda: settings.API_RATE_WINDOW_SECONDS,
)

feedback_rate_limiter = create_rate_limiter(
    "feedback",
    lambda: settings.API_RATE_LIMIT,
    lambda: settings.API_RATE_WINDOW_SECONDS,
)

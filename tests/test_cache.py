"""
Unit tests for the Redis cache wrapper and the rate limiter
"""
import pytest
import redis
from app.core import rate_limit
from app.core.cache import Cache
from app.core.rate_limit import RateLimiter


class FakeRedis:
    """In-memory stand-in for the handful of Redis commands the app uses"""

    def __init__(self):
        self.values = {}
        self.hashes = {}
        self.ttls = {}

    def get(self, key):
        return self.values.get(key)

    def setex(self, key, ttl, value):
        self.values[key] = value
        self.ttls[key] = ttl

    def delete(self, *keys):
        for key in keys:
            self.values.pop(key, None)
            self.hashes.pop(key, None)

    def hincrby(self, key, field, amount=1):
        bucket = self.hashes.setdefault(key, {})
        bucket[field] = str(int(bucket.get(field, 0)) + amount)
        return int(bucket[field])

    def hgetall(self, key):
        return dict(self.hashes.get(key, {}))

    def expire(self, key, ttl):
        self.ttls[key] = ttl

    def incr(self, key):
        self.values[key] = int(self.values.get(key, 0)) + 1
        return self.values[key]

    def ttl(self, key):
        return self.ttls.get(key, -1)

    def pipeline(self):
        return FakePipeline(self)


class FakePipeline:
    def __init__(self, client):
        self.client = client
        self.commands = []

    def incr(self, key):
        self.commands.append(("incr", key))

    def ttl(self, key):
        self.commands.append(("ttl", key))

    def execute(self):
        return [getattr(self.client, name)(key) for name, key in self.commands]


class BrokenRedis(FakeRedis):
    def get(self, key):
        raise redis.ConnectionError("connection refused")

    def setex(self, key, ttl, value):
        raise redis.ConnectionError("connection refused")


@pytest.mark.unit
class TestCache:

    def test_json_round_trip(self):
        cache = Cache(FakeRedis())

        assert cache.set("upload:1:meta", {"id": 1, "status": "active"})
        assert cache.get("upload:1:meta") == {"id": 1, "status": "active"}

    def test_set_uses_default_ttl(self):
        client = FakeRedis()
        cache = Cache(client)

        cache.set("key", "value")

        assert client.ttls["key"] == 60 * 60 * 24

    def test_miss_and_delete(self):
        cache = Cache(FakeRedis())
        cache.set("a", 1)

        cache.delete("a")

        assert cache.get("a") is None

    def test_counters(self):
        cache = Cache(FakeRedis())

        cache.hincrby("stats", "count")
        cache.hincrby("stats", "bytes", 2048)
        cache.hincrby("stats", "count")

        assert cache.hgetall("stats") == {"count": "2", "bytes": "2048"}

    def test_errors_are_misses(self):
        cache = Cache(BrokenRedis())

        assert cache.get("key") is None
        assert cache.set("key", "value") is False

    def test_disabled_without_redis(self):
        cache = Cache()

        assert cache.get("key") is None
        assert cache.set("key", 1) is False
        assert cache.hgetall("stats") == {}


@pytest.mark.unit
class TestRateLimiter:

    def test_memory_window(self):
        limiter = RateLimiter("test", 2, 60)

        assert limiter.hit("1.2.3.4")[0] is True
        assert limiter.hit("1.2.3.4")[0] is True
        allowed, count, ttl = limiter.hit("1.2.3.4")

        assert allowed is False
        assert count == 3
        assert 0 < ttl <= 60
        # Other clients have their own counter
        assert limiter.hit("5.6.7.8")[0] is True

    def test_reset(self):
        limiter = RateLimiter("test", 1, 60)
        limiter.hit("1.2.3.4")

        limiter.reset()

        assert limiter.hit("1.2.3.4")[0] is True

    def test_window_expiry(self, monkeypatch):
        limiter = RateLimiter("test", 1, 60)
        clock = [1000]
        monkeypatch.setattr(rate_limit.time, "time", lambda: clock[0])

        limiter.hit("1.2.3.4")
        assert limiter.hit("1.2.3.4")[0] is False

        clock[0] += 61
        assert limiter.hit("1.2.3.4")[0] is True

    def test_redis_counter(self, monkeypatch):
        client = FakeRedis()
        monkeypatch.setattr(rate_limit, "get_redis_client", lambda: client)
        limiter = RateLimiter("upload", lambda: 1, lambda: 30)

        assert limiter.hit("1.2.3.4") == (True, 1, 30)
        allowed, count, _ = limiter.hit("1.2.3.4")

        assert allowed is False
        assert count == 2
        assert client.values["upload:1.2.3.4"] == 2

"""
Unit tests for the Redis cache wrapper.
"""

from decimal import Decimal
from redis.exceptions import RedisError
from order_hub.services.cache_service import CacheService


class FakeRedis:
    """In-memory stand-in for the few redis.Redis calls the cache makes."""

    def __init__(self, fail_writes=False):
        self.store = {}
        self.ttls = {}
        self.fail_writes = fail_writes

    def ping(self):
        return True

    def get(self, key):
        return self.store.get(key)

    def setex(self, key, ttl, value):
        if self.fail_writes:
            raise RedisError('read-only replica')
        self.store[key] = value
        self.ttls[key] = ttl


def _cache(client):
    cache = CacheService()
    cache.client = client
    cache._enabled = True
    cache._prefix = 'test'
    return cache


class TestCacheService:

    def test_set_stores_under_prefixed_key(self):
        client = FakeRedis()
        cache = _cache(client)

        assert cache.set('similar_products', '7:same:10', [{'price': Decimal('12.50')}], ttl=30) is True

        assert client.ttls == {'test:similar_products:7:same:10': 30}
        assert cache.get('similar_products', '7:same:10') == [{'price': Decimal('12.50')}]

    def test_set_failure_is_a_miss(self):
        cache = _cache(FakeRedis(fail_writes=True))

        assert cache.set('similar_products', 'k', [1, 2], ttl=30) is False
        assert cache.get('similar_products', 'k') is None

    def test_memoize_loads_once(self):
        cache = _cache(FakeRedis())
        calls = []

        def loader():
            calls.append(1)
            return {'count': 2}

        assert cache.memoize('similar_products', 'k', loader, ttl=30) == {'count': 2}
        assert cache.memoize('similar_products', 'k', loader, ttl=30) == {'count': 2}
        assert len(calls) == 1

    def test_disabled_cache_always_loads(self):
        cache = CacheService()
        assert cache.set('similar_products', 'k', 1, ttl=30) is False
        assert cache.memoize('similar_products', 'k', lambda: 'fresh') == 'fresh'

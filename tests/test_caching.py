from datetime import date, datetime, timedelta

import pytest

from itinerary_engine.models.request_models import UserPreferences
from itinerary_engine.models.response_models import GenerationResult
from itinerary_engine.services.caching_service import CachingService, generate_cache_key


class Clock:
    def __init__(self):
        self.now = datetime(2025, 1, 1, 12, 0)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def cache(clock):
    return CachingService(max_size=10, default_ttl_seconds=60, now=clock)


def _result(request_id="r1"):
    return GenerationResult(success=True, cache_key=request_id)


def test_key_ignores_order_and_case(paris_preferences):
    """Equivalent preferences share a key"""
    a = paris_preferences.model_copy(update={"interests": ["cultural", "culinary"], "primary_destination": "Paris"})
    b = paris_preferences.model_copy(update={"interests": ["culinary", "cultural"], "primary_destination": "paris"})
    assert generate_cache_key(a) == generate_cache_key(b)
    assert len(generate_cache_key(a)) == 16

    c = paris_preferences.model_copy(update={"adults": 5})
    assert generate_cache_key(c) != generate_cache_key(a)


def test_key_is_stable_across_instances():
    def prefs():
        return UserPreferences(start_date=date(2025, 3, 1), end_date=date(2025, 3, 5), primary_destination="Rome")
    assert generate_cache_key(prefs()) == generate_cache_key(prefs())


def test_get_and_expiry(cache, clock):
    """Entries live for their TTL"""
    cache.set("k", _result())
    assert cache.get("k").success
    assert cache.has("k")

    clock.advance(61)
    assert cache.get("k") is None
    assert not cache.has("k")

    cache.set("short", _result(), ttl_seconds=5)
    clock.advance(5)
    assert cache.get("short") is None


def test_stats(cache):
    cache.set("k", _result())
    cache.get("k")
    cache.get("k")
    cache.get("missing")
    stats = cache.get_stats()
    assert (stats.hits, stats.misses, stats.size, stats.max_size) == (2, 1, 1, 10)
    assert stats.hit_rate == pytest.approx(2 / 3)


def test_evicts_least_recently_used(cache, clock):
    """A full cache drops its least recently read entries"""
    for i in range(10):
        cache.set(f"k{i}", _result(f"r{i}"))
        clock.advance(1)
    cache.get("k0")
    cache.set("k10", _result("r10"))

    assert cache.has("k0")
    assert not cache.has("k1")
    assert cache.has("k10")
    assert cache.get_stats().evictions == 1


def test_cleanup_and_clear(cache, clock):
    cache.set("old", _result(), ttl_seconds=10)
    cache.set("new", _result(), ttl_seconds=100)
    clock.advance(20)
    assert cache.cleanup() == 1
    assert [e["key"] for e in cache.get_cache_info()["entries"]] == ["new"]

    cache.clear()
    stats = cache.get_stats()
    assert stats.size == 0
    assert stats.last_cleared == clock.now

"""
Tests for the Redis read-through cache

Uses FakeRedis only; no database.
"""
import json
from datetime import date

from redis.exceptions import ConnectionError

from core.cache import RoutineCache, cache_key, occurrences_key, progress_key


class BrokenRedis:
    """Every call fails like an unreachable server."""

    def get(self, key):
        raise ConnectionError("down")

    def setex(self, key, ttl, value):
        raise ConnectionError("down")

    def delete(self, *keys):
        raise ConnectionError("down")

    def keys(self, pattern):
        raise ConnectionError("down")


# ---------------------------------------------------------------------------
# Keys
# ---------------------------------------------------------------------------

def test_keys_use_iso_dates():
    assert progress_key("r1", date(2024, 1, 5)) == "progress:r1:2024-01-05"
    assert occurrences_key("r1", date(2024, 1, 1), date(2024, 1, 31)) == "occurrences:r1:2024-01-01:2024-01-31"


def test_cache_key_skips_none():
    assert cache_key("progress", "r1", None) == "progress:r1"


# ---------------------------------------------------------------------------
# Read-through
# ---------------------------------------------------------------------------

def test_read_through_calls_loader_once(fake_redis):
    cache = RoutineCache(fake_redis)
    calls = []

    def loader():
        calls.append(1)
        return {"count": 2}

    assert cache.read_through("k", loader, ttl=30) == {"count": 2}
    assert cache.read_through("k", loader, ttl=30) == {"count": 2}
    assert len(calls) == 1
    assert json.loads(fake_redis.get("k")) == {"count": 2}
    assert fake_redis._ttls["k"] == 30


def test_disabled_cache_always_loads():
    cache = RoutineCache(None)
    assert not cache.enabled
    assert cache.read_through("k", lambda: [1, 2]) == [1, 2]
    assert cache.set("k", 1) is False
    assert cache.invalidate_routine("r1") == 0


def test_corrupt_value_is_a_miss(fake_redis):
    cache = RoutineCache(fake_redis)
    fake_redis.setex("k", 30, "{not json")

    assert cache.get("k") is None
    assert cache.read_through("k", lambda: {"count": 1}, ttl=30) == {"count": 1}
    assert json.loads(fake_redis.get("k")) == {"count": 1}


def test_redis_failures_degrade_to_misses():
    cache = RoutineCache(BrokenRedis())
    assert cache.get("k") is None
    assert cache.set("k", {"a": 1}) is False
    assert cache.delete("k") == 0
    assert cache.read_through("k", lambda: "fresh") == "fresh"
    assert cache.invalidate_day("r1", date(2024, 1, 1)) == 0


# ---------------------------------------------------------------------------
# Invalidation
# ---------------------------------------------------------------------------

def test_invalidate_day_drops_progress_and_all_windows(fake_redis):
    cache = RoutineCache(fake_redis)
    cache.set(progress_key("r1", date(2024, 1, 5)), {"count": 1})
    cache.set(progress_key("r1", date(2024, 1, 6)), {"count": 1})
    cache.set(occurrences_key("r1", date(2024, 2, 1), date(2024, 2, 28)), [])
    cache.set(occurrences_key("r2", date(2024, 1, 1), date(2024, 1, 31)), [])

    cache.invalidate_day("r1", date(2024, 1, 5))

    assert sorted(fake_redis.keys("*")) == [
        "occurrences:r2:2024-01-01:2024-01-31",
        "progress:r1:2024-01-06",
    ]


def test_invalidate_routine_leaves_other_routines(fake_redis):
    cache = RoutineCache(fake_redis)
    cache.set(progress_key("r1", date(2024, 1, 5)), {})
    cache.set(progress_key("r2", date(2024, 1, 5)), {})

    assert cache.invalidate_routine("r1") == 1
    assert fake_redis.keys("*") == ["progress:r2:2024-01-05"]

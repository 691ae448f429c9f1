"""Tests for the TTL cache."""
from taskhub.cache import TTLCache


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


class TestTTLCache:
    def test_get_returns_value_before_expiry(self):
        clock = FakeClock()
        cache = TTLCache(5.0, clock=clock)
        cache.set("alice", 3)
        clock.now += 4.9
        assert cache.get("alice") == 3
        assert cache.has("alice")

    def test_entry_expires_after_ttl(self):
        clock = FakeClock()
        cache = TTLCache(5.0, clock=clock)
        cache.set("alice", 3)
        clock.now += 5.0
        assert cache.get("alice") is None
        assert len(cache) == 0

    def test_per_entry_ttl_override(self):
        clock = FakeClock()
        cache = TTLCache(5.0, clock=clock)
        cache.set("short", 1, ttl_seconds=1.0)
        cache.set("long", 2)
        clock.now += 2.0
        assert cache.get("short") is None
        assert cache.get("long") == 2

    def test_invalidate_and_clear(self):
        cache = TTLCache(30.0)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.invalidate("a")
        cache.invalidate("missing")
        assert cache.get("a") is None
        assert len(cache) == 1
        cache.clear()
        assert cache.get("b") is None

    def test_set_refreshes_deadline(self):
        clock = FakeClock()
        cache = TTLCache(5.0, clock=clock)
        cache.set("a", 1)
        clock.now += 4.0
        cache.set("a", 2)
        clock.now += 4.0
        assert cache.get("a") == 2

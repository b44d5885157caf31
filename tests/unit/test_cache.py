from reader_agent.cache import LRUCache, generate_cache_key


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_cache_evicts_least_recently_used() -> None:
    cache: LRUCache[str, int] = LRUCache(max_size=2, ttl=60)
    cache.set("a", 1)
    cache.set("b", 2)

    assert cache.get("a") == 1
    cache.set("c", 3)

    assert cache.has("a")
    assert not cache.has("b")
    assert cache.has("c")
    assert len(cache) == 2


def test_overwriting_a_key_refreshes_its_recency() -> None:
    cache: LRUCache[str, int] = LRUCache(max_size=2, ttl=60)
    cache.set("a", 1)
    cache.set("b", 2)
    cache.set("a", 10)
    cache.set("c", 3)

    assert cache.get("a") == 10
    assert not cache.has("b")


def test_expired_entry_is_a_miss_and_removed() -> None:
    clock = FakeClock()
    cache: LRUCache[str, str] = LRUCache(max_size=5, ttl=10, clock=clock)
    cache.set("k", "v")

    clock.now = 9.0
    assert cache.get("k") == "v"

    clock.now = 20.0
    assert cache.get("k") is None

    stats = cache.stats()
    assert stats.hits == 1
    assert stats.misses == 1
    assert stats.size == 0


def test_has_does_not_touch_stats() -> None:
    cache: LRUCache[str, str] = LRUCache()
    cache.set("k", "v")

    assert cache.has("k")
    assert not cache.has("missing")
    assert cache.stats().hits == 0
    assert cache.stats().misses == 0


def test_stats_hit_rate_and_clear() -> None:
    cache: LRUCache[str, str] = LRUCache()
    cache.set("k", "v")
    cache.get("k")
    cache.get("nope")

    assert cache.stats().hit_rate == 0.5

    cache.clear()
    stats = cache.stats()
    assert (stats.hits, stats.misses, stats.size, stats.hit_rate) == (0, 0, 0, 0.0)


def test_cleanup_drops_only_expired_entries() -> None:
    clock = FakeClock()
    cache: LRUCache[str, int] = LRUCache(max_size=5, ttl=10, clock=clock)
    cache.set("old", 1)
    clock.now = 8.0
    cache.set("fresh", 2)

    clock.now = 12.0
    assert cache.cleanup() == 1
    assert [key for key, _ in cache.entries()] == ["fresh"]


def test_delete_reports_whether_key_existed() -> None:
    cache: LRUCache[str, int] = LRUCache()
    cache.set("k", 1)

    assert cache.delete("k") is True
    assert cache.delete("k") is False


def test_cache_key_ignores_field_order() -> None:
    first = generate_cache_key({"text": "hello", "model": "m1", "is_dictionary": True})
    second = generate_cache_key({"is_dictionary": True, "model": "m1", "text": "hello"})

    assert first == second == "is_dictionary:True|model:m1|text:hello"


def test_cache_key_serializes_collections_as_json() -> None:
    assert generate_cache_key({"tags": ["b", "a"]}) == 'tags:["b", "a"]'
    assert generate_cache_key({"opts": {"z": 1, "a": 2}}) == 'opts:{"a": 2, "z": 1}'

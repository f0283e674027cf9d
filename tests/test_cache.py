import pytest

from routing.cache import CACHE_PREFIX, RouteCache, make_cache_key
from routing.models import Coordinate, Profile, ResolutionMethod, RouteQuery, RouteResult
from routing.storage import FileKeyValueStore, InMemoryKeyValueStore, PersistenceError

from fakes import routed_result


class BrokenStore:
    def get(self, key):
        raise PersistenceError("disk on fire")

    def set(self, key, value):
        raise PersistenceError("disk on fire")

    def delete(self, key):
        raise PersistenceError("disk on fire")

    def keys(self, prefix=""):
        raise PersistenceError("disk on fire")


def _query(lat=-37.8136, lon=144.9631, profile=Profile.DRIVING):
    return RouteQuery(Coordinate(lat, lon), Coordinate(-37.82, 144.97), profile)


def test_key_quantizes_to_six_decimals():
    a = make_cache_key(_query(lat=-37.81360001))
    b = make_cache_key(_query(lat=-37.81360004))

    assert a == b
    assert a.startswith(CACHE_PREFIX + "driving-car_")
    assert "-37.813600,144.963100" in a


def test_key_separates_profiles_and_directions():
    driving = make_cache_key(_query())
    walking = make_cache_key(_query(profile=Profile.WALKING))
    query = _query()
    reverse = make_cache_key(RouteQuery(query.destination, query.origin))

    assert len({driving, walking, reverse}) == 3


def test_entry_retrievable_before_ttl_and_absent_after(clock):
    cache = RouteCache(clock=clock)
    cache.put("k", routed_result(), ttl_s=10)

    clock.advance(9.5)
    assert cache.get("k") == routed_result()

    clock.advance(0.5)
    assert cache.get("k") is None
    assert len(cache) == 0


def test_default_ttl_is_used(clock):
    cache = RouteCache(default_ttl_s=60, clock=clock)
    entry = cache.put("k", routed_result())

    assert entry.expires_at - entry.created_at == 60


def test_oldest_entries_are_evicted_over_the_cap(clock):
    cache = RouteCache(max_entries=3, clock=clock)
    for index in range(5):
        cache.put(f"k{index}", routed_result(distance_km=index + 1))
        clock.advance(1)

    assert len(cache) == 3
    assert cache.get("k0") is None
    assert cache.get("k1") is None
    assert cache.get("k4").distance_km == 5


def test_overwrite_refreshes_age(clock):
    cache = RouteCache(max_entries=2, clock=clock)
    cache.put("a", routed_result())
    clock.advance(1)
    cache.put("b", routed_result())
    clock.advance(1)
    cache.put("a", routed_result())
    clock.advance(1)
    cache.put("c", routed_result())

    assert "a" in cache
    assert "b" not in cache


def test_purge_expired_only_drops_stale_entries(clock):
    cache = RouteCache(clock=clock)
    cache.put("short", routed_result(), ttl_s=5)
    cache.put("long", routed_result(), ttl_s=500)
    clock.advance(10)

    assert cache.purge_expired() == 1
    assert len(cache) == 1


def test_stats_count_and_size(clock):
    cache = RouteCache(clock=clock)
    assert cache.stats().count == 0
    assert cache.stats().approximate_byte_size == 0

    cache.put("k", routed_result())
    stats = cache.stats()

    assert stats.count == 1
    assert stats.approximate_byte_size > len("k")


def test_store_write_through_and_warm_start(clock):
    store = InMemoryKeyValueStore()
    first = RouteCache(store=store, clock=clock)
    first.put(CACHE_PREFIX + "a", routed_result(), ttl_s=100)
    first.put(CACHE_PREFIX + "b", routed_result(), ttl_s=5)
    clock.advance(10)

    second = RouteCache(store=store, clock=clock)

    assert second.load_persisted() == 1
    assert second.get(CACHE_PREFIX + "a") == routed_result()
    # expired entry is dropped from the store too
    assert store.keys(CACHE_PREFIX) == [CACHE_PREFIX + "a"]


def test_read_through_on_memory_miss(clock):
    store = InMemoryKeyValueStore()
    RouteCache(store=store, clock=clock).put("k", routed_result())

    fresh = RouteCache(store=store, clock=clock)

    assert fresh.get("k") == routed_result()


def test_failing_store_behaves_like_a_cold_cache(clock, caplog):
    cache = RouteCache(store=BrokenStore(), clock=clock)

    assert cache.get("missing") is None
    cache.put("k", routed_result())
    assert cache.get("k") == routed_result()
    assert cache.load_persisted() == 0
    cache.clear()
    assert len(cache) == 0
    assert "disk on fire" in caplog.text


def test_corrupt_persisted_entry_is_a_miss(clock):
    store = InMemoryKeyValueStore()
    store.set("k", b"{not json")

    assert RouteCache(store=store, clock=clock).get("k") is None


def test_clear_removes_memory_and_store(clock):
    store = InMemoryKeyValueStore()
    store.set("unrelated", b"keep me")
    cache = RouteCache(store=store, clock=clock)
    cache.put(CACHE_PREFIX + "a", routed_result())

    cache.clear()

    assert len(cache) == 0
    assert store.keys() == ["unrelated"]


def test_file_store_round_trip(tmp_path, clock):
    store = FileKeyValueStore(tmp_path / "routes")
    key = make_cache_key(_query())
    fallback = RouteResult(
        distance_km=0.93, duration_min=1.9, method=ResolutionMethod.ROUTED_FALLBACK, is_estimate=True
    )

    RouteCache(store=store, clock=clock).put(key, fallback, ttl_s=900)
    reloaded = RouteCache(store=store, clock=clock)

    assert store.keys(CACHE_PREFIX) == [key]
    assert reloaded.load_persisted() == 1
    assert reloaded.get(key) == fallback

    store.delete(key)
    store.delete(key)
    assert store.get(key) is None


@pytest.mark.parametrize("kwargs", [{"default_ttl_s": 0}, {"max_entries": 0}])
def test_invalid_limits_are_rejected(kwargs):
    with pytest.raises(ValueError):
        RouteCache(**kwargs)


class UnreachableStore:
    def get(self, key):
        raise ConnectionError("kv store down")

    def set(self, key, value):
        raise ConnectionError("kv store down")

    def delete(self, key):
        raise OSError("kv store down")

    def keys(self, prefix=""):
        raise ConnectionError("kv store down")


def test_any_store_error_is_non_fatal(clock, caplog):
    cache = RouteCache(max_entries=1, store=UnreachableStore(), clock=clock)

    assert cache.load_persisted() == 0
    assert cache.get("missing") is None
    cache.put("a", routed_result())
    clock.advance(1)
    cache.put("b", routed_result())  # evicts "a", delete fails
    assert cache.get("b") == routed_result()
    assert "a" not in cache
    cache.clear()
    assert len(cache) == 0
    assert "kv store down" in caplog.text


def test_negative_zero_shares_a_key_with_zero():
    destination = Coordinate(-37.82, 144.97)
    positive = RouteQuery(Coordinate(0.0, 0.0), destination)
    negative = RouteQuery(Coordinate(-0.0, -1e-7), destination)

    assert make_cache_key(negative) == make_cache_key(positive)
    assert "_0.000000,0.000000_" in make_cache_key(negative)

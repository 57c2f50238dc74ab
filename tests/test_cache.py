import threading

import pytest

from catalog_sync.cache import BoundedCache, hierarchical_keys


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def cache(clock):
    return BoundedCache(max_size=3, ttl=60, clock=clock)


# ---------------------------------------------------------------------------
# TTL
# ---------------------------------------------------------------------------

class TestTtl:
    def test_entry_is_valid_before_ttl(self, cache, clock):
        cache.set('k', 'v')
        clock.advance(59.9)
        assert cache.is_valid('k') is True
        assert cache.get('k') == 'v'

    def test_entry_expires_at_ttl(self, cache, clock):
        cache.set('k', 'v')
        clock.advance(60.001)

        assert cache.is_valid('k') is False
        assert cache.get('k') is None
        assert cache.get('k', 'missing') == 'missing'
        assert len(cache) == 0

    def test_set_refreshes_timestamp(self, cache, clock):
        cache.set('k', 'v1')
        clock.advance(50)
        cache.set('k', 'v2')
        clock.advance(50)
        assert cache.get('k') == 'v2'

    def test_falsy_values_are_cached(self, cache):
        cache.set('empty', [])
        assert cache.get('empty', 'missing') == []


# ---------------------------------------------------------------------------
# Capacity
# ---------------------------------------------------------------------------

class TestCapacity:
    def test_sweep_evicts_least_used_down_to_capacity(self, clock):
        cache = BoundedCache(max_size=3, ttl=60, clock=clock)
        for key in 'abc':
            cache.set(key, key)
        cache.get('a')
        cache.get('c')

        cache.set('d', 'd')

        assert len(cache) == 3
        assert 'b' not in cache
        assert all(key in cache for key in 'acd')

    def test_ties_are_evicted_oldest_first(self, clock):
        cache = BoundedCache(max_size=2, ttl=60, clock=clock)
        cache.set('first', 1)
        cache.set('second', 2)

        cache.set('third', 3)

        assert 'first' not in cache
        assert 'second' in cache and 'third' in cache

    def test_expired_entries_are_swept_before_counting(self, cache, clock):
        cache.set('old', 1)
        clock.advance(61)
        cache.set('a', 1)
        cache.set('b', 1)

        assert cache.sweep() == 1
        assert len(cache) == 2

    def test_overwrite_does_not_evict(self, cache):
        for key in 'abc':
            cache.set(key, key)
        cache.set('a', 'again')
        assert len(cache) == 3

    def test_never_exceeds_capacity(self, cache):
        for number in range(10):
            cache.set(f'k{number}', number)
        assert len(cache) == 3
        assert cache.sweep() == 0

    def test_delete_and_clear(self, cache):
        cache.set('a', 1)
        cache.set('b', 2)
        assert cache.delete('a') is True
        assert cache.delete('a') is False
        cache.clear()
        assert len(cache) == 0


# ---------------------------------------------------------------------------
# Hierarchical keys
# ---------------------------------------------------------------------------

class TestHierarchical:
    def test_keys_sort_dimensions_by_name(self):
        assert hierarchical_keys('products', {'size': 'M', 'color': 'red'}) == [
            'products:color=red:size=M',
            'products:color=red',
            'products',
        ]

    def test_exact_key_wins(self, clock):
        cache = BoundedCache(max_size=10, ttl=60, clock=clock)
        cache.set('products', 'all')
        cache.set('products:color=red', 'red')
        cache.set_hierarchical('products', {'color': 'red', 'size': 'M'}, 'red-m')

        assert cache.resolve_hierarchical('products', {'size': 'M', 'color': 'red'}) == (
            'products:color=red:size=M', 'red-m',
        )

    def test_falls_back_to_broader_before_base(self, clock):
        cache = BoundedCache(max_size=10, ttl=60, clock=clock)
        cache.set('products', 'all')
        cache.set('products:color=red', 'red')

        assert cache.get_hierarchical('products', {'color': 'red', 'size': 'M'}) == 'red'

    def test_falls_back_to_base_last(self, clock):
        cache = BoundedCache(max_size=10, ttl=60, clock=clock)
        cache.set('products', 'all')

        assert cache.resolve_hierarchical('products', {'color': 'red', 'size': 'M'}) == ('products', 'all')

    def test_lookup_order(self, cache, monkeypatch):
        looked_up = []
        original = cache.get

        def recording_get(key, default=None):
            looked_up.append(key)
            return original(key, default)

        monkeypatch.setattr(cache, 'get', recording_get)

        assert cache.get_hierarchical('products', {'color': 'red', 'size': 'M'}, 'none') == 'none'
        assert looked_up == ['products:color=red:size=M', 'products:color=red', 'products']

    def test_set_hierarchical_stores_only_most_specific_key(self, cache):
        key = cache.set_hierarchical('products', {'color': 'red'}, 'red')

        assert key == 'products:color=red'
        assert 'products' not in cache

    def test_expired_specific_entry_falls_back(self, clock):
        cache = BoundedCache(max_size=10, ttl=60, clock=clock)
        cache.set_hierarchical('products', {'color': 'red'}, 'stale')
        clock.advance(30)
        cache.set('products', 'all')
        clock.advance(31)

        assert cache.get_hierarchical('products', {'color': 'red'}) == 'all'


# ---------------------------------------------------------------------------
# Background sweeper
# ---------------------------------------------------------------------------

class TestSweeper:
    def test_sweeper_thread_runs_and_stops(self):
        swept = threading.Event()
        cache = BoundedCache(max_size=2, ttl=60, sweep_interval=0.01)
        cache.sweep = lambda: swept.set() or 0

        try:
            assert swept.wait(2)
        finally:
            cache.stop(timeout=2)

        assert cache._sweeper is None

    def test_start_requires_interval(self, cache):
        with pytest.raises(ValueError):
            cache.start()

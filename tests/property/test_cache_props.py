"""
Property-based tests for the bounded TTL cache.

The cache is compared against a plain ordered-dict model of an LRU map,
and the expiry boundary is checked for arbitrary TTLs.
"""

from collections import OrderedDict

from hypothesis import given, settings, strategies as st

from speechstats.services.ttl_cache import BoundedTTLCache


class Timer:
    def __init__(self):
        self.value = 0.0

    def __call__(self):
        return self.value


keys = st.sampled_from("abcdef")
operations = st.lists(
    st.one_of(
        st.tuples(st.just("set"), keys, st.integers()),
        st.tuples(st.just("get"), keys, st.none()),
        st.tuples(st.just("delete"), keys, st.none()),
    ),
    max_size=60,
)


class TestLruModel:
    """
    For any sequence of set/get/delete calls without expiry, the cache holds
    the same keys as an LRU model.
    """

    @settings(max_examples=200)
    @given(max_size=st.integers(min_value=1, max_value=4), ops=operations)
    def test_matches_lru_model(self, max_size, ops):
        cache = BoundedTTLCache(max_size, 1000, Timer())
        model = OrderedDict()

        for op, key, value in ops:
            if op == "set":
                if key in model:
                    model.move_to_end(key)
                elif len(model) >= max_size:
                    model.popitem(last=False)
                model[key] = value
                cache.set(key, value)
            elif op == "get":
                expected = model.get(key)
                if key in model:
                    model.move_to_end(key)
                assert cache.get(key) == expected
            else:
                model.pop(key, None)
                cache.delete(key)

            assert set(cache.keys()) == set(model.keys())
            assert cache.size() <= max_size


class TestExpiryBoundary:
    """A value is served iff ``now - inserted_at <= ttl``."""

    @settings(max_examples=200)
    @given(
        ttl=st.integers(min_value=0, max_value=10_000),
        elapsed=st.integers(min_value=0, max_value=20_000),
    )
    def test_served_until_ttl(self, ttl, elapsed):
        timer = Timer()
        cache = BoundedTTLCache(4, ttl, timer)
        cache.set("k", "v")
        timer.value = elapsed

        if elapsed <= ttl:
            assert cache.get("k") == "v"
        else:
            assert cache.get("k") is None
            assert cache.size() == 0

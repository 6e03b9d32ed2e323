import sys
import os
import threading

# Make project root importable when tests executed from repository root
PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

import numpy as np  # type: ignore
import pytest  # noqa: E402

from conftest import FakeClock  # noqa: E402
from embedding_cache import EmbeddingCache  # noqa: E402


# -----------------------------------------------------------------------------
# Lightweight generator that goes through the cache the same way the
# acquirer's first tier does.
# -----------------------------------------------------------------------------

class LiteEmbedder:  # pragma: no cover – test helper
    def __init__(self, cache: EmbeddingCache):
        self.cache = cache
        self.generated = 0

    def embed(self, text):
        cached = self.cache.get(text)
        if cached is not None:
            return cached
        self.generated += 1
        # Deterministic mock vector (length-based) – 3-D for convenience
        val = float(len(text))
        vec = np.array([val, val / 2.0, val / 3.0], dtype=float)
        self.cache.put(text, vec)
        return vec


@pytest.fixture
def cache(clock):
    return EmbeddingCache(ttl_seconds=100, clock=clock)


# ------------------------------------------------------------------
# Basic caching behaviour
# ------------------------------------------------------------------

def test_first_call_miss(cache):
    gen = LiteEmbedder(cache)

    stats0 = cache.stats()
    assert stats0["hits"] == stats0["misses"] == stats0["size"] == 0

    vec1 = gen.embed("apple")
    stats1 = cache.stats()

    assert stats1["misses"] == 1 and stats1["hits"] == 0 and stats1["size"] == 1
    assert np.array_equal(vec1, cache.get("apple"))


def test_second_call_hit(cache):
    gen = LiteEmbedder(cache)
    vec1 = gen.embed("apple")  # miss
    vec2 = gen.embed("apple")  # hit

    stats = cache.stats()
    assert stats["hits"] == 1 and stats["misses"] == 1 and stats["size"] == 1
    assert gen.generated == 1
    assert np.array_equal(vec1, vec2)


def test_hit_rate(cache):
    cache.put("queen", [1.0, 0.0])
    cache.get("queen")
    cache.get("queen")
    cache.get("king")
    assert cache.stats()["hit_rate"] == pytest.approx(2 / 3)


def test_hit_rate_zero_without_lookups(cache):
    assert cache.stats()["hit_rate"] == 0.0


def test_keys_are_normalised(cache):
    cache.put("  Apple ", [1.0, 2.0])
    assert np.array_equal(cache.get("apple"), [1.0, 2.0])
    assert "APPLE" in cache


def test_returned_vector_is_a_copy(cache):
    cache.put("apple", [1.0, 2.0])
    vec = cache.get("apple")
    vec[0] = 99.0
    assert cache.get("apple")[0] == 1.0


# ------------------------------------------------------------------
# Expiry
# ------------------------------------------------------------------

def test_entry_expires_after_ttl(cache, clock):
    cache.put("apple", [1.0])
    clock.advance(100)
    assert cache.get("apple") is not None
    clock.advance(0.5)
    assert cache.get("apple") is None
    assert len(cache) == 0


def test_hits_do_not_extend_lifetime(cache, clock):
    cache.put("apple", [1.0])
    for _ in range(4):
        clock.advance(30)
        cache.get("apple")
    # 120 seconds after the write, despite the reads in between
    assert cache.get("apple") is None


def test_rewrite_restarts_lifetime(cache, clock):
    cache.put("apple", [1.0])
    clock.advance(80)
    cache.put("apple", [2.0])
    clock.advance(80)
    assert np.array_equal(cache.get("apple"), [2.0])


def test_contains_does_not_touch_stats(cache, clock):
    cache.put("apple", [1.0])
    assert "apple" in cache
    clock.advance(200)
    assert "apple" not in cache
    stats = cache.stats()
    assert stats["hits"] == stats["misses"] == 0


# ------------------------------------------------------------------
# Size limit enforcement
# ------------------------------------------------------------------

def test_max_size_never_exceeded(clock):
    cache = EmbeddingCache(ttl_seconds=100, max_size=5, clock=clock)
    gen = LiteEmbedder(cache)
    for i in range(10):
        gen.embed(f"word {i}")
        assert cache.stats()["size"] <= 5
    assert cache.stats()["evictions"] == 5


def test_oldest_insert_evicted_first(clock):
    cache = EmbeddingCache(ttl_seconds=100, max_size=2, clock=clock)
    cache.put("a", [1.0])
    cache.put("b", [2.0])
    cache.get("a")  # reads do not change eviction order
    cache.put("c", [3.0])
    assert "a" not in cache
    assert "b" in cache and "c" in cache


def test_overwrite_at_capacity_does_not_evict(clock):
    cache = EmbeddingCache(ttl_seconds=100, max_size=2, clock=clock)
    cache.put("a", [1.0])
    cache.put("b", [2.0])
    cache.put("a", [5.0])
    assert len(cache) == 2
    assert cache.stats()["evictions"] == 0


def test_invalid_max_size():
    with pytest.raises(ValueError):
        EmbeddingCache(max_size=0)


# ------------------------------------------------------------------
# Clear and concurrency
# ------------------------------------------------------------------

def test_clear_resets_entries_and_counters(cache):
    cache.put("apple", [1.0])
    cache.get("apple")
    cache.get("pear")
    cache.clear()
    stats = cache.stats()
    assert stats["size"] == stats["hits"] == stats["misses"] == 0


def test_concurrent_puts_and_gets():
    cache = EmbeddingCache(ttl_seconds=100, max_size=50, clock=FakeClock())

    def worker(offset):
        for i in range(200):
            cache.put(f"w{(offset + i) % 80}", [float(i)])
            cache.get(f"w{i % 80}")

    threads = [threading.Thread(target=worker, args=(n * 7,)) for n in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    stats = cache.stats()
    assert stats["size"] <= 50
    assert stats["hits"] + stats["misses"] == 8 * 200

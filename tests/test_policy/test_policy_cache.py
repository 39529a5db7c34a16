"""
Test the compiled policy cache
"""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from placement_engine.common.errors import PolicyCompileError
from placement_engine.policy import CompiledPolicyCache, ReadWriteLock
from placement_engine.policy.expression import compile_expression
from placement_engine.policy.functions import FUNCTION_NAMES


class CountingCompiler:
    """Wraps compile_expression and counts calls"""

    def __init__(self):
        self.calls = 0
        self._lock = threading.Lock()

    def __call__(self, source):
        with self._lock:
            self.calls += 1
        return compile_expression(source, FUNCTION_NAMES)


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def test_compiles_once_per_version(make_policy):
    cache = CompiledPolicyCache()
    compiler = CountingCompiler()
    policy = make_policy("p1", "cluster.ready")

    first = cache.get_or_compile(policy, compiler)
    second = cache.get_or_compile(policy, compiler)

    assert first is second
    assert compiler.calls == 1
    assert cache.stats.hits == 1
    assert cache.stats.misses == 1
    print("\n✅ Second lookup served from cache")


def test_new_version_invalidates_old(make_policy):
    cache = CompiledPolicyCache()
    compiler = CountingCompiler()

    cache.get_or_compile(make_policy("p1", "cluster.ready", version="1"), compiler)
    cache.get_or_compile(make_policy("p1", "not cluster.ready", version="2"), compiler)

    assert ("p1", "1") not in cache
    assert ("p1", "2") in cache
    assert len(cache) == 1
    assert cache.stats.invalidations == 1
    assert compiler.calls == 2


def test_compile_errors_are_cached(make_policy):
    cache = CompiledPolicyCache()
    compiler = CountingCompiler()
    policy = make_policy("bad", "import os")

    for _ in range(3):
        with pytest.raises(PolicyCompileError):
            cache.get_or_compile(policy, compiler)

    assert compiler.calls == 1


def test_bounded_size_evicts_oldest(make_policy):
    cache = CompiledPolicyCache(max_size=2)
    compiler = CountingCompiler()

    for i in range(3):
        cache.get_or_compile(make_policy(f"p{i}", "True"), compiler)

    assert len(cache) == 2
    assert ("p0", "1") not in cache
    assert cache.stats.evictions == 1


def test_ttl_expiry_recompiles(make_policy):
    clock = FakeClock()
    cache = CompiledPolicyCache(ttl_seconds=60, clock=clock)
    compiler = CountingCompiler()
    policy = make_policy("p1", "True")

    cache.get_or_compile(policy, compiler)
    clock.now = 30
    cache.get_or_compile(policy, compiler)
    assert compiler.calls == 1

    clock.now = 61
    assert policy.cache_key not in cache
    cache.get_or_compile(policy, compiler)
    assert compiler.calls == 2


def test_explicit_invalidation(make_policy):
    cache = CompiledPolicyCache()
    compiler = CountingCompiler()
    policy = make_policy("p1", "True")

    cache.get_or_compile(policy, compiler)
    assert cache.invalidate("p1") == 1
    assert cache.invalidate("p1") == 0
    cache.get_or_compile(policy, compiler)
    assert compiler.calls == 2


def test_concurrent_lookups_compile_once(make_policy):
    cache = CompiledPolicyCache()
    compiler = CountingCompiler()
    policy = make_policy("p1", "has_label('gpu') or utilization() < 0.5")

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(lambda _: cache.get_or_compile(policy, compiler), range(64)))

    assert compiler.calls == 1
    assert all(r is results[0] for r in results)
    assert cache.stats.hits + cache.stats.misses == 64


def test_invalid_configuration():
    with pytest.raises(ValueError):
        CompiledPolicyCache(max_size=0)
    with pytest.raises(ValueError):
        CompiledPolicyCache(ttl_seconds=0)


def test_read_write_lock_excludes_writers_from_readers():
    lock = ReadWriteLock()
    events = []
    reader_in = threading.Event()
    release_reader = threading.Event()

    def reader():
        with lock.read():
            events.append("read-start")
            reader_in.set()
            release_reader.wait(timeout=5)
            events.append("read-end")

    def writer():
        reader_in.wait(timeout=5)
        with lock.write():
            events.append("write")

    threads = [threading.Thread(target=reader), threading.Thread(target=writer)]
    for t in threads:
        t.start()
    reader_in.wait(timeout=5)
    release_reader.set()
    for t in threads:
        t.join(timeout=5)

    assert events == ["read-start", "read-end", "write"]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

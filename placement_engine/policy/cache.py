"""
Compiled policy cache
Bounded, read-mostly, keyed by (policy id, version)
"""

import threading
import time
from collections import OrderedDict
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple, Union

from ..common.errors import PolicyCompileError
from ..common.models import PlacementPolicy
from ..metrics import prometheus_metrics as metrics
from ..utils.logger import get_logger
from .expression import CompiledExpression

logger = get_logger("PolicyCache")

CacheValue = Union[CompiledExpression, PolicyCompileError]


class ReadWriteLock:
    """Many concurrent readers, one exclusive writer (writers are not starved)"""

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._waiting_writers = 0

    @contextmanager
    def read(self):
        with self._cond:
            while self._writer or self._waiting_writers:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self):
        with self._cond:
            self._waiting_writers += 1
            while self._writer or self._readers:
                self._cond.wait()
            self._waiting_writers -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


@dataclass
class _Entry:
    value: CacheValue
    inserted_at: float


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    evictions: int = 0
    invalidations: int = 0


class CompiledPolicyCache:
    """
    Cache of compiled policy expressions

    - bounded: the oldest inserted entry is evicted first
    - a new version of a policy invalidates every older version of it
    - optional TTL after which an entry is recompiled
    - compile errors are cached too, so a broken policy is not
      re-parsed on every candidate
    """

    def __init__(
        self,
        max_size: int = 256,
        ttl_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        if max_size < 1:
            raise ValueError(f"max_size must be >= 1, got {max_size}")
        if ttl_seconds is not None and ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be > 0, got {ttl_seconds}")

        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: "OrderedDict[Tuple[str, str], _Entry]" = OrderedDict()
        self._versions: Dict[str, str] = {}
        self._lock = ReadWriteLock()
        self.stats = CacheStats()
        self._stats_lock = threading.Lock()

    def __len__(self):
        with self._lock.read():
            return len(self._entries)

    def __contains__(self, key: Tuple[str, str]) -> bool:
        with self._lock.read():
            entry = self._entries.get(key)
            return entry is not None and not self._stale(entry)

    def _stale(self, entry: _Entry) -> bool:
        return self.ttl_seconds is not None and self._clock() - entry.inserted_at >= self.ttl_seconds

    def _count(self, hit: bool):
        with self._stats_lock:
            if hit:
                self.stats.hits += 1
            else:
                self.stats.misses += 1
        (metrics.policy_cache_hits_total if hit else metrics.policy_cache_misses_total).inc()

    def get_or_compile(
        self,
        policy: PlacementPolicy,
        compile_fn: Callable[[str], CompiledExpression]
    ) -> CompiledExpression:
        """
        Return the compiled expression for a policy version

        Raises:
            PolicyCompileError: the expression does not compile (cached)
        """
        key = policy.cache_key

        with self._lock.read():
            entry = self._entries.get(key)
            if entry is not None and not self._stale(entry):
                value = entry.value
            else:
                value = None

        if value is None:
            value = self._populate(policy, compile_fn)
        else:
            self._count(hit=True)

        if isinstance(value, PolicyCompileError):
            raise PolicyCompileError(value.message)
        return value

    def _populate(self, policy: PlacementPolicy, compile_fn) -> CacheValue:
        key = policy.cache_key
        with self._lock.write():
            entry = self._entries.get(key)
            if entry is not None and not self._stale(entry):
                self._count(hit=True)
                return entry.value

            self._count(hit=False)
            try:
                value: CacheValue = compile_fn(policy.expression)
            except PolicyCompileError as e:
                logger.warning(f"⚠️  Policy {policy.id} v{policy.version} does not compile: {e.message}")
                value = e

            previous = self._versions.get(policy.id)
            if previous is not None and previous != policy.version:
                if self._entries.pop((policy.id, previous), None) is not None:
                    self.stats.invalidations += 1
                    logger.debug(f"Policy {policy.id}: v{previous} replaced by v{policy.version}")
            self._versions[policy.id] = policy.version

            self._entries.pop(key, None)
            self._entries[key] = _Entry(value=value, inserted_at=self._clock())
            while len(self._entries) > self.max_size:
                (old_id, old_version), _ = self._entries.popitem(last=False)
                if self._versions.get(old_id) == old_version:
                    del self._versions[old_id]
                self.stats.evictions += 1
            return value

    def invalidate(self, policy_id: str, version: Optional[str] = None) -> int:
        """
        Drop cached entries for a policy (one version, or all)

        Returns:
            Number of entries removed
        """
        with self._lock.write():
            keys = [
                k for k in self._entries
                if k[0] == policy_id and (version is None or k[1] == str(version))
            ]
            for k in keys:
                del self._entries[k]
            if version is None or self._versions.get(policy_id) == str(version):
                self._versions.pop(policy_id, None)
            self.stats.invalidations += len(keys)
        if keys:
            logger.debug(f"Invalidated {len(keys)} cached version(s) of {policy_id}")
        return len(keys)

    def clear(self):
        with self._lock.write():
            self._entries.clear()
            self._versions.clear()

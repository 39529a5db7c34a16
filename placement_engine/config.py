"""
Engine configuration
"""

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Optional

from .decision.combiner import CombinationAlgorithm, WeightedBlend
from .scheduler.algorithms import LeastLoaded, SchedulingAlgorithm
from .scheduler.location import LocationDistance


@dataclass
class EngineConfig:
    """
    Structured configuration handed to PlacementEngine

    The scheduling and combination algorithms are injected as strategy
    objects; everything else is a scalar knob.

    max_workers sizes the pool for per-candidate scoring and policy
    evaluation. io_workers sizes a separate pool for collaborator calls and
    history writes; a call abandoned at its deadline holds one I/O worker
    until it returns.
    """
    scheduler: SchedulingAlgorithm = field(default_factory=LeastLoaded)
    combiner: CombinationAlgorithm = field(default_factory=WeightedBlend)
    overcommit_factor: float = 1.0
    max_retries: int = 3
    history_depth: int = 10
    history_retention_seconds: Optional[float] = None
    cache_size: int = 256
    cache_ttl_seconds: Optional[float] = None
    persistence_timeout_seconds: float = 2.0
    default_timeout_seconds: Optional[float] = 30.0
    max_workers: int = 8
    io_workers: int = 16
    prefer_factor: float = 1.2
    avoid_factor: float = 0.8
    distance: Optional[LocationDistance] = None

    def __post_init__(self):
        if not isinstance(self.scheduler, SchedulingAlgorithm):
            raise ValueError(f"scheduler must be a SchedulingAlgorithm, got {self.scheduler!r}")
        if not isinstance(self.combiner, CombinationAlgorithm):
            raise ValueError(f"combiner must be a CombinationAlgorithm, got {self.combiner!r}")
        if self.overcommit_factor <= 0:
            raise ValueError(f"overcommit_factor must be > 0, got {self.overcommit_factor}")
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.history_depth < 1:
            raise ValueError(f"history_depth must be >= 1, got {self.history_depth}")
        if self.history_retention_seconds is not None and self.history_retention_seconds <= 0:
            raise ValueError("history_retention_seconds must be > 0")
        if self.cache_size < 1:
            raise ValueError(f"cache_size must be >= 1, got {self.cache_size}")
        if self.cache_ttl_seconds is not None and self.cache_ttl_seconds <= 0:
            raise ValueError("cache_ttl_seconds must be > 0")
        if self.persistence_timeout_seconds <= 0:
            raise ValueError("persistence_timeout_seconds must be > 0")
        if self.default_timeout_seconds is not None and self.default_timeout_seconds <= 0:
            raise ValueError("default_timeout_seconds must be > 0")
        if self.max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {self.max_workers}")
        if self.io_workers < 1:
            raise ValueError(f"io_workers must be >= 1, got {self.io_workers}")
        if self.prefer_factor < 1.0:
            raise ValueError(f"prefer_factor must be >= 1.0, got {self.prefer_factor}")
        if not 0.0 <= self.avoid_factor <= 1.0:
            raise ValueError(f"avoid_factor must be in [0, 1], got {self.avoid_factor}")

    @property
    def history_retention(self) -> Optional[timedelta]:
        if self.history_retention_seconds is None:
            return None
        return timedelta(seconds=self.history_retention_seconds)

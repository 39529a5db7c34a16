"""
Scheduling algorithms
Each algorithm scores one candidate at a time in [0, 100], higher is better
"""

import hashlib
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

import numpy as np

from ..common.models import Candidate, WorkloadRequest, clamp_score
from ..utils.logger import get_logger

logger = get_logger("SchedulingAlgorithms")


class SchedulingAlgorithm(ABC):
    """
    Strategy interface for the Scheduler

    prepare() runs once per evaluation, before the per-candidate fan-out,
    and may touch shared state (e.g. the round-robin cursor).
    score_candidate() must be a pure function of its arguments so it can
    run in parallel across candidates.
    """

    name = "base"

    def prepare(self, request: WorkloadRequest, candidates: Sequence[Candidate]) -> Any:
        return None

    @abstractmethod
    def score_candidate(
        self,
        request: WorkloadRequest,
        candidate: Candidate,
        context: Any
    ) -> Tuple[float, str]:
        """
        Score one candidate

        Args:
            request: Workload being placed
            candidate: Cluster to score
            context: Whatever prepare() returned for this evaluation

        Returns:
            (score in [0, 100], human-readable reason)
        """

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> "SchedulingAlgorithm":
        return cls(**params)

    def __repr__(self):
        return f"{type(self).__name__}()"


class RoundRobin(SchedulingAlgorithm):
    """
    Deterministic rotation over candidates sorted by name

    One cursor per workload class; every evaluation advances it by one so
    repeated placements of the same class cycle through all clusters.
    The candidate at the cursor scores 100, the next one 100 * (n-1)/n, ...
    """

    name = "round-robin"

    def __init__(self):
        self._cursors: Dict[str, int] = {}
        self._lock = threading.Lock()

    def cursor(self, workload_class: str) -> int:
        with self._lock:
            return self._cursors.get(workload_class, 0)

    def reset(self, workload_class: Optional[str] = None):
        with self._lock:
            if workload_class is None:
                self._cursors.clear()
            else:
                self._cursors.pop(workload_class, None)

    def prepare(self, request: WorkloadRequest, candidates: Sequence[Candidate]) -> Dict[str, int]:
        names = sorted(c.name for c in candidates)
        n = len(names)
        key = request.rotation_key

        with self._lock:
            position = self._cursors.get(key, 0)
            self._cursors[key] = position + 1

        start = position % n
        logger.debug(f"Round-robin cursor for '{key}' at {position} (start={names[start]})")
        return {name: (i - start) % n for i, name in enumerate(names)}

    def score_candidate(self, request, candidate, context):
        n = len(context)
        offset = context[candidate.name]
        return 100.0 * (n - offset) / n, f"rotation offset {offset}/{n}"


class LeastLoaded(SchedulingAlgorithm):
    """Score = (1 - utilization) * 100, utilization being the busiest resource"""

    name = "least-loaded"

    def score_candidate(self, request, candidate, context):
        utilization = candidate.utilization
        return clamp_score((1.0 - utilization) * 100.0), f"utilization {utilization:.0%}"


class RandomScore(SchedulingAlgorithm):
    """
    Uniform random score, reproducible per evaluation

    The stream is seeded with request.seed, else with the algorithm seed,
    else with a digest of the workload key, and drawn in candidate-name
    order so the result does not depend on supplier ordering.
    """

    name = "random"

    def __init__(self, seed: Optional[int] = None):
        self.seed = seed

    def _seed_for(self, request: WorkloadRequest) -> int:
        if request.seed is not None:
            return int(request.seed)
        if self.seed is not None:
            return int(self.seed)
        digest = hashlib.sha256(request.key.encode('utf-8')).digest()
        return int.from_bytes(digest[:8], 'big')

    def prepare(self, request, candidates) -> Dict[str, float]:
        names = sorted(c.name for c in candidates)
        rng = np.random.default_rng(self._seed_for(request))
        draws = rng.uniform(0.0, 100.0, size=len(names))
        return {name: float(value) for name, value in zip(names, draws)}

    def score_candidate(self, request, candidate, context):
        return context[candidate.name], "random draw"

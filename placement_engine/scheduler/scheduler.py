"""
Scheduler
Fans candidate scoring out over a thread pool and gathers the results
"""

import time
from concurrent.futures import Executor, ThreadPoolExecutor
from typing import Any, Dict, List, Mapping, Optional, Sequence, Type

from ..common.deadline import Deadline
from ..common.errors import NoCandidatesError
from ..common.models import Candidate, ScoredCandidate, WorkloadRequest, clamp_score
from ..utils.logger import get_logger
from .algorithms import LeastLoaded, RandomScore, RoundRobin, SchedulingAlgorithm
from .location import LocationAware

logger = get_logger("Scheduler")

ALGORITHMS: Dict[str, Type[SchedulingAlgorithm]] = {
    RoundRobin.name: RoundRobin,
    LeastLoaded.name: LeastLoaded,
    RandomScore.name: RandomScore,
    LocationAware.name: LocationAware,
}


def create_algorithm(name: str, params: Optional[Mapping[str, Any]] = None) -> SchedulingAlgorithm:
    """Build a scheduling algorithm from its configured name"""
    try:
        algorithm_cls = ALGORITHMS[name]
    except KeyError:
        raise ValueError(
            f"Unknown scheduling algorithm '{name}' (expected one of {sorted(ALGORITHMS)})"
        ) from None
    return algorithm_cls.from_params(params or {})


class Scheduler:
    """
    Scores every candidate with the configured algorithm

    Never rejects a candidate: a candidate whose scoring raises gets a
    zero score and the error as its reason.
    """

    def __init__(self, algorithm: SchedulingAlgorithm, executor: Optional[Executor] = None):
        self.algorithm = algorithm
        self._executor = executor
        self._owns_executor = executor is None
        if self._owns_executor:
            self._executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="scheduler")

    def _score_one(self, request, candidate, context) -> ScoredCandidate:
        try:
            score, reason = self.algorithm.score_candidate(request, candidate, context)
            score = clamp_score(score)
        except Exception as e:
            logger.warning(f"⚠️  Scoring {candidate.name} with {self.algorithm.name} failed: {e}")
            score, reason = 0.0, f"scoring failed: {e}"
        return ScoredCandidate(
            candidate=candidate,
            score=score,
            algorithm=self.algorithm.name,
            reason=reason
        )

    def score(
        self,
        request: WorkloadRequest,
        candidates: Sequence[Candidate],
        deadline: Optional[Deadline] = None
    ) -> List[ScoredCandidate]:
        """
        Score all candidates

        Args:
            request: Workload being placed
            candidates: Point-in-time candidate snapshot
            deadline: Bounds the fan-out

        Returns:
            One ScoredCandidate per input candidate, sorted by name

        Raises:
            NoCandidatesError: candidates is empty
            DeadlineExceeded / EvaluationCancelled: deadline hit mid fan-out
        """
        if not candidates:
            raise NoCandidatesError(
                f"No candidate clusters for {request.key}",
                rationale=["candidate supplier returned an empty set"]
            )

        deadline = deadline or Deadline()
        deadline.check("scheduling")

        start_time = time.time()
        context = self.algorithm.prepare(request, candidates)

        futures = [
            self._executor.submit(self._score_one, request, candidate, context)
            for candidate in candidates
        ]
        deadline.wait(futures, "scheduling")

        scored = sorted((f.result() for f in futures), key=lambda s: s.name)

        elapsed_ms = (time.time() - start_time) * 1000
        logger.debug(f"Scored {len(scored)} candidates with {self.algorithm.name} "
                     f"in {elapsed_ms:.1f}ms")
        for s in scored:
            logger.debug(f"  {s.name}: {s.score:.2f} ({s.reason})")
        return scored

    def close(self):
        if self._owns_executor:
            self._executor.shutdown(wait=False)

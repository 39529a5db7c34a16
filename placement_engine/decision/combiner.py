"""
Decision combiner
Merges scheduler scores and policy evaluations into one ranking
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Type

import numpy as np

from ..common.models import (
    SCORE_MAX,
    Candidate,
    Conflict,
    PolicyEvaluation,
    RejectedCandidate,
    ScoredCandidate,
    WorkloadRequest,
    clamp_score,
    sort_key
)
from ..policy.evaluator import contradiction_conflict
from ..utils.logger import get_logger

logger = get_logger("DecisionCombiner")

WEIGHT_TOLERANCE = 1e-6


@dataclass(frozen=True)
class RankedCandidate:
    """A candidate that survived combination, with its ranking scores"""
    candidate: Candidate
    scheduler_score: float
    policy_score: float
    final_score: float
    tiebreak_score: float = 0.0
    tier: int = 0
    rationale: str = ""
    # Net Prefer (+1) / Avoid (-1) count; breaks ties left by capped scores
    override_bias: int = 0

    @property
    def name(self) -> str:
        return self.candidate.name

    @property
    def rank_key(self) -> Tuple:
        """Lower tier first, then final score, Prefer/Avoid, tiebreak score, cluster name"""
        final, tiebreak, name = sort_key(self.final_score, self.tiebreak_score, self.name)
        return (self.tier, final, -self.override_bias, tiebreak, name)

    def adjusted(self, factor: float, note: str) -> "RankedCandidate":
        """Scale both scores by factor; the bias keeps the move visible at 0 and 100"""
        step = 1 if factor > 1.0 else -1 if factor < 1.0 else 0
        return replace(
            self,
            override_bias=self.override_bias + step,
            final_score=min(SCORE_MAX, self.final_score * factor),
            tiebreak_score=min(SCORE_MAX, self.tiebreak_score * factor),
            rationale=f"{self.rationale}; {note}" if self.rationale else note
        )

    def __repr__(self):
        return f"Ranked({self.name}, final={self.final_score:.2f}, tier={self.tier})"


@dataclass
class CombinationResult:
    """Ranked eligible candidates plus every rejection and its reason"""
    algorithm: str
    ranked: List[RankedCandidate] = field(default_factory=list)
    rejected: List[RejectedCandidate] = field(default_factory=list)
    # Policy contradictions on any scored candidate, excluded ones included
    conflicts: List[Conflict] = field(default_factory=list)
    scores: Dict[str, Tuple[float, float]] = field(default_factory=dict)

    @property
    def names(self) -> List[str]:
        return [r.name for r in self.ranked]

    def top(self, n: int) -> List[RankedCandidate]:
        return self.ranked[:n]


def _policy_note(evaluation: PolicyEvaluation) -> str:
    if evaluation.deciding_policies:
        return f" [{evaluation.verdict.value} by {', '.join(evaluation.deciding_policies)}]"
    return ""


class CombinationAlgorithm(ABC):
    """
    Strategy interface for the Decision Combiner

    Every algorithm drops candidates excluded by a hard policy verdict;
    subclasses decide how the survivors are scored and ordered.
    """

    name = "base"

    def combine(
        self,
        request: WorkloadRequest,
        scored: Sequence[ScoredCandidate],
        evaluations: Mapping[str, PolicyEvaluation]
    ) -> CombinationResult:
        result = CombinationResult(algorithm=self.name)
        eligible: List[Tuple[ScoredCandidate, PolicyEvaluation]] = []

        for s in sorted(scored, key=lambda x: x.name):
            evaluation = evaluations.get(s.name) or PolicyEvaluation(cluster=s.name)
            result.scores[s.name] = (s.score, evaluation.score)
            contradiction = contradiction_conflict(evaluation)
            if contradiction is not None:
                result.conflicts.append(contradiction)
            if evaluation.excluded:
                result.rejected.append(RejectedCandidate(
                    cluster=s.name,
                    reason=f"excluded by policy {', '.join(evaluation.deciding_policies)}",
                    scheduler_score=s.score,
                    policy_score=evaluation.score
                ))
                continue
            eligible.append((s, evaluation))

        ranked, rejected = self._rank(request, eligible)
        result.ranked = sorted(ranked, key=lambda r: r.rank_key)
        result.rejected.extend(rejected)

        logger.debug(f"{self.name}: {len(result.ranked)} ranked, {len(result.rejected)} rejected")
        return result

    @abstractmethod
    def _rank(
        self,
        request: WorkloadRequest,
        eligible: Sequence[Tuple[ScoredCandidate, PolicyEvaluation]]
    ) -> Tuple[List[RankedCandidate], List[RejectedCandidate]]:
        """Score eligible candidates; may reject some of them"""

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> "CombinationAlgorithm":
        return cls(**params)

    def __repr__(self):
        return f"{type(self).__name__}()"


class WeightedBlend(CombinationAlgorithm):
    """
    final = w_scheduler * scheduler_score + w_policy * policy_score

    Weights come from request.weights when given ({"scheduler", "policy"}),
    else from the algorithm defaults, and must sum to 1.0.
    """

    name = "weighted-blend"

    def __init__(
        self,
        scheduler_weight: float = 0.5,
        policy_weight: float = 0.5,
        minimum_score: float = 0.0
    ):
        self.scheduler_weight, self.policy_weight = self.check_weights(scheduler_weight, policy_weight)
        self.minimum_score = clamp_score(minimum_score)

    @staticmethod
    def check_weights(scheduler_weight: float, policy_weight: float) -> Tuple[float, float]:
        if scheduler_weight < 0 or policy_weight < 0:
            raise ValueError("Weights must be >= 0")
        total = scheduler_weight + policy_weight
        if abs(total - 1.0) > WEIGHT_TOLERANCE:
            raise ValueError(f"Weights must sum to 1.0, got {total}")
        return float(scheduler_weight), float(policy_weight)

    def weights_for(self, request: WorkloadRequest) -> Tuple[float, float]:
        if not request.weights:
            return self.scheduler_weight, self.policy_weight
        unknown = set(request.weights) - {'scheduler', 'policy'}
        if unknown:
            raise ValueError(f"Unknown weight names: {sorted(unknown)}")
        return self.check_weights(
            request.weights.get('scheduler', 0.0),
            request.weights.get('policy', 0.0)
        )

    def _rank(self, request, eligible):
        w_s, w_p = self.weights_for(request)
        ranked, rejected = [], []
        for s, evaluation in eligible:
            final = clamp_score(w_s * s.score + w_p * evaluation.score)
            if final < self.minimum_score:
                rejected.append(RejectedCandidate(
                    cluster=s.name,
                    reason=f"blended score {final:.1f} below minimum {self.minimum_score:.1f}",
                    scheduler_score=s.score,
                    policy_score=evaluation.score,
                    final_score=final
                ))
                continue
            ranked.append(RankedCandidate(
                candidate=s.candidate,
                scheduler_score=s.score,
                policy_score=evaluation.score,
                final_score=final,
                rationale=(f"{w_s:.2f} x scheduler {s.score:.1f} ({s.reason}) + "
                           f"{w_p:.2f} x policy {evaluation.score:.1f} = {final:.1f}"
                           f"{_policy_note(evaluation)}")
            ))
        return ranked, rejected


class PolicyPrimary(CombinationAlgorithm):
    """Policy score orders the candidates; scheduler score breaks ties"""

    name = "policy-primary"

    def _rank(self, request, eligible):
        ranked = [
            RankedCandidate(
                candidate=s.candidate,
                scheduler_score=s.score,
                policy_score=evaluation.score,
                final_score=evaluation.score,
                tiebreak_score=s.score,
                rationale=(f"policy {evaluation.score:.1f}{_policy_note(evaluation)}, "
                           f"tie-break scheduler {s.score:.1f} ({s.reason})")
            )
            for s, evaluation in eligible
        ]
        return ranked, []


class SchedulerPrimary(CombinationAlgorithm):
    """Scheduler score orders the candidates; policies only filter"""

    name = "scheduler-primary"

    def _rank(self, request, eligible):
        ranked = [
            RankedCandidate(
                candidate=s.candidate,
                scheduler_score=s.score,
                policy_score=evaluation.score,
                final_score=s.score,
                rationale=f"scheduler {s.score:.1f} ({s.reason}), passed policy filter"
            )
            for s, evaluation in eligible
        ]
        return ranked, []


class Consensus(CombinationAlgorithm):
    """
    Select only candidates both sides rank highly

    A candidate whose scheduler and policy scores are both at or above
    the `percentile` of their respective distributions is ranked in tier 0.
    The rest get a second pass at `relaxed_percentile` (tier 1); anything
    below that is rejected. Within a tier the mean of the two scores
    orders candidates, scheduler score breaks ties.
    """

    name = "consensus"

    def __init__(self, percentile: float = 75.0, relaxed_percentile: float = 50.0):
        if not 0 <= relaxed_percentile <= percentile <= 100:
            raise ValueError(
                "Percentiles must satisfy 0 <= relaxed_percentile <= percentile <= 100"
            )
        self.percentile = float(percentile)
        self.relaxed_percentile = float(relaxed_percentile)

    def _rank(self, request, eligible):
        if not eligible:
            return [], []

        scheduler_scores = np.array([s.score for s, _ in eligible])
        policy_scores = np.array([e.score for _, e in eligible])

        strict = (
            float(np.percentile(scheduler_scores, self.percentile)),
            float(np.percentile(policy_scores, self.percentile))
        )
        relaxed = (
            float(np.percentile(scheduler_scores, self.relaxed_percentile)),
            float(np.percentile(policy_scores, self.relaxed_percentile))
        )

        ranked, rejected = [], []
        for s, evaluation in eligible:
            p = evaluation.score
            final = (s.score + p) / 2.0
            if s.score >= strict[0] and p >= strict[1]:
                tier, note = 0, f"above p{self.percentile:g} on both"
            elif s.score >= relaxed[0] and p >= relaxed[1]:
                tier, note = 1, f"deferred, above relaxed p{self.relaxed_percentile:g} on both"
            else:
                rejected.append(RejectedCandidate(
                    cluster=s.name,
                    reason=(f"no consensus: scheduler {s.score:.1f} (needs {relaxed[0]:.1f}), "
                            f"policy {p:.1f} (needs {relaxed[1]:.1f})"),
                    scheduler_score=s.score,
                    policy_score=p,
                    final_score=final
                ))
                continue
            ranked.append(RankedCandidate(
                candidate=s.candidate,
                scheduler_score=s.score,
                policy_score=p,
                final_score=final,
                tiebreak_score=s.score,
                tier=tier,
                rationale=(f"consensus {note}: scheduler {s.score:.1f}, policy {p:.1f}"
                           f"{_policy_note(evaluation)}")
            ))
        return ranked, rejected


COMBINERS: Dict[str, Type[CombinationAlgorithm]] = {
    WeightedBlend.name: WeightedBlend,
    PolicyPrimary.name: PolicyPrimary,
    SchedulerPrimary.name: SchedulerPrimary,
    Consensus.name: Consensus,
}


def create_combiner(name: str, params: Optional[Mapping[str, Any]] = None) -> CombinationAlgorithm:
    """Build a combination algorithm from its configured name"""
    try:
        combiner_cls = COMBINERS[name]
    except KeyError:
        raise ValueError(
            f"Unknown combination algorithm '{name}' (expected one of {sorted(COMBINERS)})"
        ) from None
    return combiner_cls.from_params(params or {})

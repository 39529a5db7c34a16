"""
Policy evaluator
Evaluates every applicable policy against every candidate
"""

import time
from collections import defaultdict
from concurrent.futures import Executor, ThreadPoolExecutor
from numbers import Number
from typing import Dict, Iterable, List, Optional, Sequence

from ..common.deadline import Deadline
from ..common.errors import PolicyCompileError, PolicyEvaluationError
from ..common.models import (
    SCORE_MAX,
    Candidate,
    Conflict,
    ConflictType,
    ErrorOutcome,
    PlacementPolicy,
    PolicyEffect,
    PolicyError,
    PolicyEvaluation,
    PolicyResult,
    ScoreOutcome,
    Severity,
    Verdict,
    VerdictOutcome,
    WorkloadRequest,
    clamp_score
)
from ..metrics import prometheus_metrics as metrics
from ..scheduler.location import LocationDistance
from ..utils.logger import get_logger
from .cache import CompiledPolicyCache
from .expression import MAX_EXPRESSION_LENGTH, MAX_NODES, compile_expression, validate_expression
from .functions import FUNCTION_NAMES, build_functions, cluster_view, workload_view

logger = get_logger("PolicyEvaluator")


def aggregate(cluster: str, results: Sequence[PolicyResult]) -> PolicyEvaluation:
    """
    Fold per-policy results into one PolicyEvaluation

    Score: sum of soft contributions, capped at 100.
    Verdict: the highest priority level that voted decides; if policies at
    that level disagree the candidate is excluded. Any equal-priority
    disagreement is reported as a contradiction.
    """
    score = min(SCORE_MAX, sum(r.score for r in results))

    by_priority: Dict[int, List[PolicyResult]] = defaultdict(list)
    for r in results:
        if r.vote is not None:
            by_priority[r.priority].append(r)

    contradicting: List[str] = []
    for priority in sorted(by_priority, reverse=True):
        votes = {r.vote for r in by_priority[priority]}
        if len(votes) > 1:
            contradicting.extend(r.policy_id for r in by_priority[priority])

    verdict = None
    deciding: List[str] = []
    if by_priority:
        top = by_priority[max(by_priority)]
        votes = {r.vote for r in top}
        verdict = Verdict.EXCLUDE if Verdict.EXCLUDE in votes else Verdict.INCLUDE
        deciding = [r.policy_id for r in top if r.vote == verdict]

    errors = tuple(
        PolicyError(r.policy_id, r.version, r.outcome.message, cluster)
        for r in results if r.failed
    )

    return PolicyEvaluation(
        cluster=cluster,
        results=tuple(results),
        score=score,
        verdict=verdict,
        deciding_policies=tuple(deciding),
        contradicting_policies=tuple(contradicting),
        errors=errors
    )


def contradiction_conflict(evaluation: PolicyEvaluation) -> Optional[Conflict]:
    """Advisory POLICY_CONTRADICTION for an evaluation, or None"""
    if not evaluation.contradiction:
        return None
    if set(evaluation.deciding_policies) & set(evaluation.contradicting_policies):
        resolution = "resolved to exclude"
    else:
        resolution = f"decided by higher-priority {', '.join(evaluation.deciding_policies)}"
    return Conflict(
        type=ConflictType.POLICY_CONTRADICTION,
        severity=Severity.ADVISORY,
        description=(f"equal-priority policies disagree on {evaluation.cluster}: "
                     f"{', '.join(evaluation.contradicting_policies)}"),
        clusters=(evaluation.cluster,),
        source=", ".join(evaluation.contradicting_policies),
        resolution=resolution
    )


class PolicyEvaluator:
    """
    Sandboxed, cached policy evaluation

    A policy that fails to compile or evaluate never aborts the decision:
    it yields an ErrorOutcome, contributes nothing to the score and casts
    no vote.
    """

    def __init__(
        self,
        cache: Optional[CompiledPolicyCache] = None,
        executor: Optional[Executor] = None,
        distance: Optional[LocationDistance] = None,
        max_expression_length: int = MAX_EXPRESSION_LENGTH,
        max_nodes: int = MAX_NODES
    ):
        self.cache = cache or CompiledPolicyCache()
        self.distance = distance
        self.max_expression_length = max_expression_length
        self.max_nodes = max_nodes
        self._executor = executor
        self._owns_executor = executor is None
        if self._owns_executor:
            self._executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="policy")

    def _compile(self, source: str):
        return compile_expression(
            source, FUNCTION_NAMES, self.max_expression_length, self.max_nodes
        )

    def validate_expression(self, source: str) -> List[str]:
        """Problems with an expression, without evaluating it (empty if valid)"""
        return validate_expression(
            source, FUNCTION_NAMES, self.max_expression_length, self.max_nodes
        )

    def invalidate(self, policy_id: str, version: Optional[str] = None) -> int:
        return self.cache.invalidate(policy_id, version)

    @staticmethod
    def applicable(request: WorkloadRequest, policies: Iterable[PlacementPolicy]) -> List[PlacementPolicy]:
        """Policies in scope for the request, highest priority first then by id"""
        selected = [p for p in policies if p.applies_to(request)]
        return sorted(selected, key=lambda p: (-p.priority, p.id, p.version))

    def _outcome(self, policy: PlacementPolicy, value):
        if isinstance(value, bool):
            return VerdictOutcome(include=value)
        if isinstance(value, Number):
            if policy.effect != PolicyEffect.SCORE:
                return ErrorOutcome(
                    f"{policy.effect.value} policy must return a boolean, got {value!r}"
                )
            return ScoreOutcome(value=clamp_score(value))
        return ErrorOutcome(f"unsupported result type {type(value).__name__}")

    def evaluate_policy(
        self,
        policy: PlacementPolicy,
        request: WorkloadRequest,
        candidate: Candidate,
        variables=None,
        functions=None
    ) -> Optional[PolicyResult]:
        """
        Evaluate one policy against one candidate

        Returns:
            The tagged result, or None when the expression returned None
            (no opinion)
        """
        variables = variables or {'cluster': cluster_view(candidate), 'workload': workload_view(request)}
        functions = functions or build_functions(candidate, request, self.distance)

        try:
            compiled = self.cache.get_or_compile(policy, self._compile)
            value = compiled.evaluate(variables, functions)
            if value is None:
                return None
            outcome = self._outcome(policy, value)
        except (PolicyCompileError, PolicyEvaluationError) as e:
            outcome = ErrorOutcome(e.message)
        except Exception as e:
            outcome = ErrorOutcome(f"{type(e).__name__}: {e}")

        if isinstance(outcome, ErrorOutcome):
            metrics.policy_errors_total.labels(policy=policy.id).inc()
            logger.warning(f"⚠️  Policy {policy.id} v{policy.version} on {candidate.name}: "
                           f"{outcome.message} (treated as neutral)")

        return PolicyResult(
            policy_id=policy.id,
            version=policy.version,
            priority=policy.priority,
            effect=policy.effect,
            weight=policy.weight,
            outcome=outcome
        )

    def evaluate_candidate(
        self,
        request: WorkloadRequest,
        candidate: Candidate,
        policies: Sequence[PlacementPolicy]
    ) -> PolicyEvaluation:
        variables = {'cluster': cluster_view(candidate), 'workload': workload_view(request)}
        functions = build_functions(candidate, request, self.distance)
        results = []
        for policy in policies:
            result = self.evaluate_policy(policy, request, candidate, variables, functions)
            if result is not None:
                results.append(result)
        return aggregate(candidate.name, results)

    def evaluate(
        self,
        request: WorkloadRequest,
        candidates: Sequence[Candidate],
        policies: Sequence[PlacementPolicy],
        deadline: Optional[Deadline] = None
    ) -> Dict[str, PolicyEvaluation]:
        """
        Evaluate all applicable policies for every candidate in parallel

        Returns:
            Mapping cluster name -> PolicyEvaluation
        """
        deadline = deadline or Deadline()
        deadline.check("policy evaluation")

        applicable = self.applicable(request, policies)
        if not applicable:
            logger.debug(f"No policies apply to {request.key}")
            return {c.name: PolicyEvaluation(cluster=c.name) for c in candidates}

        start_time = time.time()
        futures = {
            c.name: self._executor.submit(self.evaluate_candidate, request, c, applicable)
            for c in candidates
        }
        deadline.wait(list(futures.values()), "policy evaluation")

        evaluations = {name: f.result() for name, f in futures.items()}

        elapsed_ms = (time.time() - start_time) * 1000
        logger.debug(f"Evaluated {len(applicable)} policies x {len(candidates)} candidates "
                     f"in {elapsed_ms:.1f}ms")
        return evaluations

    def close(self):
        if self._owns_executor:
            self._executor.shutdown(wait=False)

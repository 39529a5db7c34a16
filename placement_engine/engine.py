"""
Placement engine
Runs the placement pipeline for one workload at a time:

candidate supply -> scheduler -> policy evaluator -> combiner
  -> validator (bounded re-derivation) -> overrides -> recorder
"""

import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from .common.deadline import Deadline
from .common.errors import (
    CollaboratorError,
    NoCandidatesError,
    PersistenceFailure,
    PlacementError,
    ValidationFailedError
)
from .common.models import (
    Candidate,
    CandidateScore,
    ClusterPlacement,
    Conflict,
    ConflictType,
    Decision,
    DecisionRationale,
    DecisionStatus,
    AuditRecord,
    Override,
    PlacementPolicy,
    PolicyEvaluation,
    RejectedCandidate,
    ScoredCandidate,
    Severity,
    ValidationResult,
    WorkloadRequest,
    utcnow
)
from .config import EngineConfig
from .decision.combiner import CombinationResult, RankedCandidate
from .decision.distribution import ClusterShare, ReplicaDistributor
from .decision.overrides import OverrideManager, OverrideOutcome
from .decision.recorder import DecisionRecorder, HistoryStats
from .decision.validator import Validator
from .interfaces import CandidateSupplier, OverrideStore, PolicyStore, RecorderStorage
from .memory import InMemoryRecorderStorage
from .metrics import prometheus_metrics as metrics
from .policy.cache import CompiledPolicyCache
from .policy.evaluator import PolicyEvaluator
from .scheduler.scheduler import Scheduler
from .utils.logger import get_logger

logger = get_logger("PlacementEngine")

FORCED_SCORE = 100.0


def _conflict_key(conflict: Conflict) -> Tuple:
    return (conflict.type, conflict.clusters, conflict.source)


def _with_contradictions(conflicts: Sequence[Conflict], contradictions: Sequence[Conflict]) -> List[Conflict]:
    """Append policy contradictions the validator did not already report"""
    merged = list(conflicts)
    seen = {_conflict_key(c) for c in merged}
    for conflict in contradictions:
        if _conflict_key(conflict) not in seen:
            seen.add(_conflict_key(conflict))
            merged.append(conflict)
            metrics.conflicts_total.labels(
                type=conflict.type.value, severity=conflict.severity.value
            ).inc()
    return merged


class _Proposal:
    """Placements derived from one selection"""

    def __init__(self, placements: List[ClusterPlacement], unplaced: int, fairness: float):
        self.placements = placements
        self.unplaced = unplaced
        self.fairness = fairness


class PlacementEngine:
    """
    Decides which clusters host a workload, and why

    Safe to call decide() concurrently for different workloads; all
    per-evaluation state lives on the call stack. Shared state is limited
    to the compiled policy cache, the round-robin cursor and the history.
    """

    def __init__(
        self,
        config: EngineConfig,
        candidate_supplier: CandidateSupplier,
        policy_store: PolicyStore,
        override_store: OverrideStore,
        recorder_storage: Optional[RecorderStorage] = None,
        clock: Optional[Callable[[], datetime]] = None,
        id_factory: Optional[Callable[[], str]] = None
    ):
        """
        Args:
            config: Algorithms and knobs
            candidate_supplier: Source of candidate clusters
            policy_store: Source of placement policies
            override_store: Source of operator overrides
            recorder_storage: History backend (default: in-memory, bounded
                to config.history_depth per workload)
            clock: Returns the current (timezone-aware) time
            id_factory: Returns a new unique decision id
        """
        self.config = config
        self.candidate_supplier = candidate_supplier
        self.policy_store = policy_store
        self.override_store = override_store
        self._clock = clock or utcnow
        self._id_factory = id_factory or (lambda: str(uuid.uuid4()))

        # Scoring fan-out and collaborator I/O use separate pools so that
        # hung collaborator calls cannot starve scoring of other workloads
        self._executor = ThreadPoolExecutor(
            max_workers=config.max_workers, thread_name_prefix="placement"
        )
        self._io_executor = ThreadPoolExecutor(
            max_workers=config.io_workers, thread_name_prefix="placement-io"
        )
        self.scheduler = Scheduler(config.scheduler, executor=self._executor)
        self.policy_evaluator = PolicyEvaluator(
            cache=CompiledPolicyCache(config.cache_size, config.cache_ttl_seconds),
            executor=self._executor,
            distance=config.distance
        )
        self.combiner = config.combiner
        self.validator = Validator(config.overcommit_factor)
        self.override_manager = OverrideManager(
            overcommit_factor=config.overcommit_factor,
            prefer_factor=config.prefer_factor,
            avoid_factor=config.avoid_factor
        )
        self.distributor = ReplicaDistributor()
        self.recorder = DecisionRecorder(
            storage=recorder_storage or InMemoryRecorderStorage(max_per_workload=config.history_depth),
            history_depth=config.history_depth,
            retention=config.history_retention,
            persistence_timeout=config.persistence_timeout_seconds,
            executor=self._io_executor,
            clock=self._clock
        )

        logger.info(f"Placement engine initialized (scheduler={config.scheduler.name}, "
                    f"combiner={config.combiner.name}, overcommit={config.overcommit_factor:g}, "
                    f"history_depth={config.history_depth})")

    # ------------------------------------------------------------------
    # Collaborators
    # ------------------------------------------------------------------

    def _call(self, collaborator: str, deadline: Deadline, fn: Callable, *args):
        """Run a collaborator call on the I/O pool, bounded by the deadline"""
        deadline.check(collaborator)
        future = self._io_executor.submit(fn, *args)
        try:
            deadline.wait([future], collaborator)
        except PlacementError:
            if future.running():
                logger.warning(f"⚠️  Abandoned {collaborator} call still running; "
                               f"it holds an I/O worker until it returns")
            raise
        try:
            return future.result()
        except PlacementError:
            raise
        except Exception as e:
            logger.error(f"❌ {collaborator} failed: {e}")
            raise CollaboratorError(collaborator, e) from e

    def _fetch_candidates(self, request: WorkloadRequest, deadline: Deadline) -> List[Candidate]:
        supplied = self._call("candidate supplier", deadline,
                              self.candidate_supplier.list_candidates, dict(request.labels))
        if not supplied:
            raise NoCandidatesError(
                f"No candidate clusters for {request.key}",
                rationale=["candidate supplier returned an empty set"]
            )

        unique: Dict[str, Candidate] = {}
        for candidate in supplied:
            if candidate.name in unique:
                logger.warning(f"⚠️  Duplicate candidate {candidate.name} ignored")
                continue
            unique[candidate.name] = candidate
        return [unique[name] for name in sorted(unique)]

    # ------------------------------------------------------------------
    # Pipeline helpers
    # ------------------------------------------------------------------

    def _propose(
        self,
        request: WorkloadRequest,
        selection: Sequence[str],
        ranked: Mapping[str, RankedCandidate],
        scores: Mapping[str, Tuple[float, float]],
        candidates: Mapping[str, Candidate],
        forced: Mapping[str, str]
    ) -> _Proposal:
        shares = []
        rows = []
        for name in selection:
            fit = candidates[name].replicas_that_fit(request.resources, self.config.overcommit_factor)
            if name in forced:
                scheduler_score, policy_score = scores.get(name, (0.0, 0.0))
                row = (scheduler_score, policy_score, FORCED_SCORE,
                       f"forced by override {forced[name]}", True)
            else:
                r = ranked[name]
                row = (r.scheduler_score, r.policy_score, r.final_score, r.rationale, False)
            rows.append(row)
            shares.append(ClusterShare(cluster=name, score=row[2], capacity=min(fit, request.replicas)))

        allocations, unplaced = self.distributor.allocate(shares, request.replicas)
        placements = [
            ClusterPlacement(
                cluster=alloc.cluster,
                replicas=alloc.replicas,
                scheduler_score=row[0],
                policy_score=row[1],
                final_score=row[2],
                reason=row[3],
                forced=row[4]
            )
            for alloc, row in zip(allocations, rows)
        ]
        return _Proposal(placements, unplaced, self.distributor.jain_index(allocations))

    def _fail_validation(
        self,
        request: WorkloadRequest,
        now: datetime,
        scored: Sequence[ScoredCandidate],
        combination: CombinationResult,
        validation: ValidationResult,
        history: List[Conflict],
        rejected: Sequence[RejectedCandidate],
        attempts: int,
        deadline: Deadline
    ):
        """Record the failed evaluation in the history, then raise ValidationFailedError"""
        conflicts = _with_contradictions(history + validation.conflicts, combination.conflicts)
        rationale = [str(c) for c in conflicts] + [f"{r.cluster}: {r.reason}" for r in rejected]
        message = f"No valid placement for {request.key} after {attempts} attempt(s)"

        failed = Decision(
            decision_id=self._id_factory(),
            workload=request.workload,
            selected=(),
            candidate_scores=tuple(
                CandidateScore(
                    cluster=s.name,
                    scheduler_score=s.score,
                    policy_score=combination.scores.get(s.name, (s.score, 0.0))[1],
                    final_score=0.0,
                    rationale=s.reason
                )
                for s in scored
            ),
            rejected=tuple(rejected),
            scheduler_algorithm=self.config.scheduler.name,
            combination_algorithm=self.combiner.name,
            rationale=DecisionRationale(
                summary=message,
                algorithm=f"{self.config.scheduler.name}/{self.combiner.name}",
                constraint_violations=tuple(str(c) for c in conflicts)
            ),
            created_at=now,
            conflicts=tuple(conflicts),
            attempts=attempts,
            status=DecisionStatus.FAILED
        )
        self.recorder.record(failed, deadline)

        raise ValidationFailedError(
            message,
            conflicts=conflicts,
            attempts=attempts,
            rationale=rationale,
            decision_id=failed.decision_id
        )

    # ------------------------------------------------------------------
    # decide()
    # ------------------------------------------------------------------

    def decide(
        self,
        request: WorkloadRequest,
        deadline: Union[Deadline, float, None] = None
    ) -> Decision:
        """
        Run one placement evaluation

        Args:
            request: Workload to place
            deadline: Deadline object, timeout in seconds, or None for the
                configured default

        Returns:
            The recorded Decision

        Raises:
            NoCandidatesError, ValidationFailedError, EvaluationCancelled,
            DeadlineExceeded, CollaboratorError
        """
        deadline = Deadline.coerce(deadline, self.config.default_timeout_seconds)
        scheduler_name = self.config.scheduler.name
        combiner_name = self.combiner.name
        start_time = time.time()

        try:
            decision = self._decide(request, deadline)
        except PlacementError as e:
            metrics.decisions_total.labels(
                outcome=type(e).__name__, scheduler=scheduler_name, combiner=combiner_name
            ).inc()
            logger.error(f"❌ Placement of {request.key} failed: {e.message}")
            for line in e.rationale:
                logger.debug(f"   {line}")
            raise
        finally:
            metrics.decision_duration.labels(
                scheduler=scheduler_name, combiner=combiner_name
            ).observe(time.time() - start_time)

        metrics.decisions_total.labels(
            outcome=decision.status.value, scheduler=scheduler_name, combiner=combiner_name
        ).inc()
        elapsed_ms = (time.time() - start_time) * 1000
        logger.info(f"✅ {request.key} -> {decision.selected_clusters} "
                    f"({decision.total_replicas}/{request.replicas} replicas, "
                    f"{len(decision.conflicts)} conflicts, {decision.attempts} attempt(s)) "
                    f"in {elapsed_ms:.0f}ms")
        return decision

    def _decide(self, request: WorkloadRequest, deadline: Deadline) -> Decision:
        now = self._clock()

        # Step 1: candidates
        supplied = self._fetch_candidates(request, deadline)
        candidates = {c.name: c for c in supplied}
        not_ready = [
            RejectedCandidate(cluster=c.name, reason="cluster is not ready")
            for c in supplied if not c.ready
        ]
        ready = [c for c in supplied if c.ready]
        if not ready:
            raise NoCandidatesError(
                f"No ready candidate clusters for {request.key}",
                rationale=[f"{r.cluster}: {r.reason}" for r in not_ready]
            )
        logger.debug(f"{request.key}: {len(ready)} ready candidates of {len(supplied)}")

        # Step 2: policies and overrides
        policies: List[PlacementPolicy] = self._call(
            "policy store", deadline, self.policy_store.get_policies, request.scope
        )
        overrides: List[Override] = self._call(
            "override store", deadline, self.override_store.list_active_overrides, request, now
        )

        # Step 3: scoring (once, outside the retry loop)
        scored = self.scheduler.score(request, ready, deadline)
        evaluations = self.policy_evaluator.evaluate(request, ready, policies, deadline)

        # Step 4: combine / validate / override, re-deriving on fatal conflicts
        removed: Dict[str, str] = {}
        history: List[Conflict] = []
        attempts = 0

        while True:
            attempts += 1
            deadline.check("combination")

            pool = [s for s in scored if s.name not in removed]
            combination = self.combiner.combine(request, pool, evaluations)
            ranked = {r.name: r for r in combination.ranked}

            proposal = self._propose(
                request, [r.name for r in combination.top(request.max_clusters)],
                ranked, combination.scores, candidates, {}
            )
            validation = self.validator.validate(request, proposal.placements, candidates, evaluations)

            if validation.passed or not validation.offending_clusters():
                deadline.check("overrides")
                outcome = self.override_manager.apply(
                    request, combination.ranked, candidates, overrides, now
                )
                ranked = {r.name: r for r in outcome.ranking}
                proposal = self._propose(
                    request, outcome.selection(request.max_clusters),
                    ranked, combination.scores, candidates, outcome.forced
                )
                validation = self.validator.validate(
                    request, proposal.placements, candidates, evaluations, outcome.forced
                )
                if validation.passed:
                    break

            offending = validation.offending_clusters()
            rejected_so_far = not_ready + combination.rejected
            if not offending or attempts > self.config.max_retries:
                self._fail_validation(request, now, scored, combination, validation, history,
                                      rejected_so_far, attempts, deadline)

            for conflict in validation.unresolved_fatal:
                history.append(conflict.resolve(
                    f"removed {', '.join(conflict.clusters)} and re-derived (attempt {attempts})"
                ))
            for cluster in offending:
                reason = "; ".join(
                    c.description for c in validation.unresolved_fatal if cluster in c.clusters
                )
                removed[cluster] = reason
            metrics.validation_retries_total.inc()
            logger.warning(f"⚠️  {request.key}: fatal conflicts on {offending}, "
                           f"re-deriving without them (attempt {attempts + 1})")

        # Step 5: assemble
        deadline.check("recording")
        decision = self._assemble(
            request, now, supplied, scored, evaluations, combination, outcome,
            proposal, validation, history, removed, not_ready, attempts
        )

        # Step 6: record (failures go to the error channel)
        self.recorder.record(decision, deadline)
        return decision

    def _assemble(
        self,
        request: WorkloadRequest,
        now: datetime,
        supplied: Sequence[Candidate],
        scored: Sequence[ScoredCandidate],
        evaluations: Mapping[str, PolicyEvaluation],
        combination: CombinationResult,
        outcome: OverrideOutcome,
        proposal: _Proposal,
        validation: ValidationResult,
        history: List[Conflict],
        removed: Mapping[str, str],
        not_ready: Sequence[RejectedCandidate],
        attempts: int
    ) -> Decision:
        scores = combination.scores

        # Clusters that got nothing are dropped unless an override forced them
        selected = [p for p in proposal.placements if p.replicas > 0 or p.forced]
        selected_names = {p.cluster for p in selected}

        # A cluster forced back in is reported as selected only
        rejected: List[RejectedCandidate] = list(not_ready)
        rejected.extend(r for r in combination.rejected if r.cluster not in selected_names)
        rejected.extend(outcome.rejected(scores))
        for cluster in sorted(removed):
            if cluster in selected_names:
                continue
            scheduler_score, policy_score = scores.get(cluster, (0.0, 0.0))
            rejected.append(RejectedCandidate(
                cluster=cluster,
                reason=f"removed after fatal conflict: {removed[cluster]}",
                scheduler_score=scheduler_score,
                policy_score=policy_score
            ))
        for position, r in enumerate(outcome.ranking, start=1):
            if r.name in selected_names:
                continue
            if any(p.cluster == r.name for p in proposal.placements):
                reason = "selected but no replicas left to place"
            else:
                reason = f"ranked #{position}, outside the top {request.max_clusters}"
            rejected.append(RejectedCandidate(
                cluster=r.name,
                reason=reason,
                scheduler_score=r.scheduler_score,
                policy_score=r.policy_score,
                final_score=r.final_score
            ))

        conflicts = _with_contradictions(
            list(history) + list(outcome.conflicts) + list(validation.conflicts),
            combination.conflicts
        )
        if proposal.unplaced:
            conflicts.append(Conflict(
                type=ConflictType.INSUFFICIENT_CAPACITY,
                severity=Severity.ADVISORY,
                description=(f"{proposal.unplaced} of {request.replicas} replicas could not be "
                             f"placed on the selected clusters"),
                clusters=tuple(p.cluster for p in selected),
                source="distribution"
            ))
            metrics.conflicts_total.labels(
                type=ConflictType.INSUFFICIENT_CAPACITY.value, severity=Severity.ADVISORY.value
            ).inc()

        final_by_name = {r.name: r for r in outcome.ranking}
        rejected_by_name = {r.cluster: r for r in rejected}
        candidate_scores = []
        for s in scored:
            scheduler_score, policy_score = scores.get(s.name, (s.score, 0.0))
            placement = next((p for p in selected if p.cluster == s.name), None)
            if placement is not None:
                final, why = placement.final_score, placement.reason
            elif s.name in final_by_name:
                final, why = final_by_name[s.name].final_score, final_by_name[s.name].rationale
            else:
                final = 0.0
                why = rejected_by_name[s.name].reason if s.name in rejected_by_name else ""
            candidate_scores.append(CandidateScore(
                cluster=s.name,
                scheduler_score=scheduler_score,
                policy_score=policy_score,
                final_score=final,
                rationale=why
            ))

        policy_errors = sorted(
            (e for ev in evaluations.values() for e in ev.errors),
            key=lambda e: (e.cluster or "", e.policy_id, e.version)
        )

        algorithm = f"{self.config.scheduler.name}/{self.combiner.name}"
        fairness = proposal.fairness
        summary = (f"Selected {[p.cluster for p in selected]} for {request.key}: "
                   f"{sum(p.replicas for p in selected)}/{request.replicas} replicas "
                   f"via {algorithm}, Jain fairness {fairness:.3f}")

        policy_factors = []
        for name in sorted(evaluations):
            ev = evaluations[name]
            if not ev.results:
                continue
            verdict = ev.verdict.value if ev.verdict else "no verdict"
            policy_factors.append(f"{name}: policy score {ev.score:.1f}, {verdict}"
                                  + (f" ({', '.join(ev.deciding_policies)})" if ev.deciding_policies else ""))
        policy_factors.extend(
            f"policy {e.policy_id} v{e.version} on {e.cluster}: {e.message} (neutral)" for e in policy_errors
        )

        override_factors = list(outcome.factors)
        override_factors.extend(f"skipped {s.override_id}: {s.reason}" for s in outcome.skipped)

        rationale = DecisionRationale(
            summary=summary,
            algorithm=algorithm,
            scheduler_factors=tuple(f"{s.name}: {s.score:.1f} ({s.reason})" for s in scored),
            policy_factors=tuple(policy_factors),
            override_factors=tuple(override_factors),
            constraint_violations=tuple(str(c) for c in conflicts)
        )

        return Decision(
            decision_id=self._id_factory(),
            workload=request.workload,
            selected=tuple(selected),
            candidate_scores=tuple(candidate_scores),
            rejected=tuple(rejected),
            scheduler_algorithm=self.config.scheduler.name,
            combination_algorithm=self.combiner.name,
            rationale=rationale,
            created_at=now,
            overrides_applied=tuple(outcome.applied),
            overrides_skipped=tuple(outcome.skipped),
            conflicts=tuple(conflicts),
            policy_errors=tuple(policy_errors),
            attempts=attempts,
            fairness=fairness,
            status=DecisionStatus.OVERRIDDEN if outcome.applied else DecisionStatus.COMPLETE
        )

    # ------------------------------------------------------------------
    # Queries and lifecycle
    # ------------------------------------------------------------------

    def history(self, workload_key: str) -> List[AuditRecord]:
        """Audit records of one workload, oldest first"""
        return self.recorder.history(workload_key)

    def get_decision(self, decision_id: str) -> Optional[Decision]:
        record = self.recorder.get(decision_id)
        return record.decision if record else None

    def decisions_between(self, start: datetime, end: datetime) -> List[Decision]:
        return [r.decision for r in self.recorder.between(start, end)]

    def persistence_errors(self) -> List[PersistenceFailure]:
        """Drain the recorder's error channel"""
        return self.recorder.drain_errors()

    def purge_expired_history(self, now: Optional[datetime] = None) -> int:
        return self.recorder.purge_expired(now)

    def history_stats(self) -> HistoryStats:
        return self.recorder.stats()

    def invalidate_policy(self, policy_id: str, version: Optional[str] = None) -> int:
        return self.policy_evaluator.invalidate(policy_id, version)

    def validate_policy_expression(self, expression: str) -> List[str]:
        return self.policy_evaluator.validate_expression(expression)

    def close(self):
        self._executor.shutdown(wait=True)
        # Abandoned collaborator calls are not waited for
        self._io_executor.shutdown(wait=False)
        logger.info("Placement engine stopped")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

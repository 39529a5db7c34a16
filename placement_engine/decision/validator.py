"""
Validator
Structural, resource, policy and affinity checks on a proposed selection
"""

from typing import Dict, List, Mapping, Optional, Sequence

from ..common.models import (
    SCORE_MAX,
    SCORE_MIN,
    Candidate,
    ClusterPlacement,
    Conflict,
    ConflictType,
    PolicyEvaluation,
    Severity,
    ValidationResult,
    Verdict,
    WorkloadRequest
)
from ..metrics import prometheus_metrics as metrics
from ..policy.evaluator import aggregate, contradiction_conflict
from ..utils.logger import get_logger

logger = get_logger("Validator")


class Validator:
    """
    Checks a proposed set of placements

    Fatal conflicts name the clusters that caused them so the engine can
    drop those clusters and re-derive the selection. Conflicts on a
    cluster kept by a Force override are marked resolved instead.
    """

    def __init__(self, overcommit_factor: float = 1.0):
        if overcommit_factor <= 0:
            raise ValueError(f"overcommit_factor must be > 0, got {overcommit_factor}")
        self.overcommit_factor = overcommit_factor

    def validate(
        self,
        request: WorkloadRequest,
        placements: Sequence[ClusterPlacement],
        candidates: Mapping[str, Candidate],
        evaluations: Mapping[str, PolicyEvaluation],
        forced: Optional[Mapping[str, str]] = None
    ) -> ValidationResult:
        """
        Args:
            request: Workload being placed
            placements: Proposed selection
            candidates: Candidate snapshot by name
            evaluations: Policy evaluations by cluster name
            forced: Clusters kept by a Force override -> override id

        Returns:
            ValidationResult with every conflict found
        """
        forced = forced or {}
        conflicts: List[Conflict] = []
        conflicts.extend(self.check_structure(placements, candidates))

        known = [p for p in placements if p.cluster in candidates]
        conflicts.extend(self.check_resources(request, known, candidates))
        conflicts.extend(self.check_policies(known, evaluations))
        conflicts.extend(self.check_affinity(request, known, candidates))

        resolved = []
        for conflict in conflicts:
            keeper = next((forced[c] for c in conflict.clusters if c in forced), None)
            if conflict.fatal and keeper is not None and conflict.type != ConflictType.STRUCTURAL:
                conflict = conflict.resolve(f"kept: forced by override {keeper}")
            resolved.append(conflict)

        for conflict in resolved:
            metrics.conflicts_total.labels(
                type=conflict.type.value, severity=conflict.severity.value
            ).inc()
            if conflict.fatal and not conflict.resolved:
                logger.warning(f"⛔ {conflict}")
            else:
                logger.debug(f"{conflict}")

        return ValidationResult(conflicts=resolved)

    def check_structure(
        self,
        placements: Sequence[ClusterPlacement],
        candidates: Mapping[str, Candidate]
    ) -> List[Conflict]:
        if not placements:
            return [Conflict(
                type=ConflictType.STRUCTURAL,
                severity=Severity.FATAL,
                description="empty selection",
                source="validator"
            )]

        conflicts = []
        seen: Dict[str, int] = {}
        for p in placements:
            seen[p.cluster] = seen.get(p.cluster, 0) + 1
            if p.cluster not in candidates:
                conflicts.append(Conflict(
                    type=ConflictType.STRUCTURAL,
                    severity=Severity.FATAL,
                    description=f"{p.cluster} is not in the candidate set",
                    clusters=(p.cluster,),
                    source="validator"
                ))
            if p.replicas < 0:
                conflicts.append(Conflict(
                    type=ConflictType.STRUCTURAL,
                    severity=Severity.FATAL,
                    description=f"{p.cluster} has a negative replica count ({p.replicas})",
                    clusters=(p.cluster,),
                    source="validator"
                ))
            for label, value in (("scheduler", p.scheduler_score),
                                 ("policy", p.policy_score),
                                 ("final", p.final_score)):
                if not SCORE_MIN <= value <= SCORE_MAX:
                    conflicts.append(Conflict(
                        type=ConflictType.STRUCTURAL,
                        severity=Severity.FATAL,
                        description=f"{p.cluster} {label} score {value} out of range",
                        clusters=(p.cluster,),
                        source="validator"
                    ))

        for name, count in sorted(seen.items()):
            if count > 1:
                conflicts.append(Conflict(
                    type=ConflictType.STRUCTURAL,
                    severity=Severity.FATAL,
                    description=f"{name} selected {count} times",
                    clusters=(name,),
                    source="validator"
                ))
        return conflicts

    def check_resources(
        self,
        request: WorkloadRequest,
        placements: Sequence[ClusterPlacement],
        candidates: Mapping[str, Candidate]
    ) -> List[Conflict]:
        conflicts = []
        for p in placements:
            candidate = candidates[p.cluster]
            fit = candidate.replicas_that_fit(request.resources, self.overcommit_factor)
            if fit == 0:
                description = (f"{p.cluster} cannot fit a single replica "
                               f"(overcommit {self.overcommit_factor:g})")
            elif p.replicas > fit:
                description = (f"{p.cluster} assigned {p.replicas} replicas but only "
                               f"{fit} fit (overcommit {self.overcommit_factor:g})")
            else:
                continue
            conflicts.append(Conflict(
                type=ConflictType.RESOURCE_OVERCOMMIT,
                severity=Severity.FATAL,
                description=description,
                clusters=(p.cluster,),
                source="validator"
            ))
        return conflicts

    def check_policies(
        self,
        placements: Sequence[ClusterPlacement],
        evaluations: Mapping[str, PolicyEvaluation]
    ) -> List[Conflict]:
        conflicts = []
        for p in placements:
            evaluation = evaluations.get(p.cluster)
            if evaluation is None:
                continue
            # Recompute from raw results rather than trusting the stored verdict
            recheck = aggregate(p.cluster, evaluation.results)
            if recheck.verdict == Verdict.EXCLUDE:
                conflicts.append(Conflict(
                    type=ConflictType.POLICY_VIOLATION,
                    severity=Severity.FATAL,
                    description=(f"{p.cluster} is excluded by policy "
                                 f"{', '.join(recheck.deciding_policies)}"),
                    clusters=(p.cluster,),
                    source=", ".join(recheck.deciding_policies)
                ))
            contradiction = contradiction_conflict(recheck)
            if contradiction is not None:
                conflicts.append(contradiction)
        return conflicts

    def check_affinity(
        self,
        request: WorkloadRequest,
        placements: Sequence[ClusterPlacement],
        candidates: Mapping[str, Candidate]
    ) -> List[Conflict]:
        conflicts = []
        for p in placements:
            hosted = candidates[p.cluster].workloads
            for term in request.colocate_with:
                if term.workload not in hosted:
                    conflicts.append(Conflict(
                        type=ConflictType.AFFINITY_VIOLATION,
                        severity=Severity.FATAL if term.required else Severity.ADVISORY,
                        description=f"{p.cluster} does not host {term.workload}",
                        clusters=(p.cluster,),
                        source=f"colocate_with {term.workload}"
                    ))
            for term in request.separate_from:
                if term.workload in hosted:
                    conflicts.append(Conflict(
                        type=ConflictType.ANTI_AFFINITY_VIOLATION,
                        severity=Severity.FATAL if term.required else Severity.ADVISORY,
                        description=f"{p.cluster} already hosts {term.workload}",
                        clusters=(p.cluster,),
                        source=f"separate_from {term.workload}"
                    ))
        return conflicts

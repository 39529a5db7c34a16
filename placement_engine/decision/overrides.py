"""
Override manager
Applies operator Force / Exclude / Prefer / Avoid directives to a ranking
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Mapping, Sequence, Tuple

from ..common.models import (
    Candidate,
    Conflict,
    ConflictType,
    Override,
    OverrideType,
    RejectedCandidate,
    Severity,
    SkippedOverride,
    WorkloadRequest,
    dedupe
)
from ..metrics import prometheus_metrics as metrics
from ..utils.logger import get_logger
from .combiner import RankedCandidate

logger = get_logger("OverrideManager")


@dataclass
class OverrideOutcome:
    """What the overrides did to one evaluation"""
    ranking: List[RankedCandidate] = field(default_factory=list)
    forced: Dict[str, str] = field(default_factory=dict)
    excluded: Dict[str, str] = field(default_factory=dict)
    applied: List[str] = field(default_factory=list)
    skipped: List[SkippedOverride] = field(default_factory=list)
    conflicts: List[Conflict] = field(default_factory=list)
    factors: List[str] = field(default_factory=list)

    def selection(self, max_clusters: int) -> List[str]:
        """Forced clusters first, then the top max_clusters of the adjusted ranking"""
        forced = list(self.forced)
        rest = [r.name for r in self.ranking if r.name not in self.forced]
        return forced + rest[:max_clusters]

    def rejected(self, scores: Mapping[str, Tuple[float, float]]) -> List[RejectedCandidate]:
        out = []
        for cluster, override_id in sorted(self.excluded.items()):
            scheduler_score, policy_score = scores.get(cluster, (0.0, 0.0))
            out.append(RejectedCandidate(
                cluster=cluster,
                reason=f"excluded by override {override_id}",
                scheduler_score=scheduler_score,
                policy_score=policy_score
            ))
        return out


class OverrideManager:
    """
    Applies overrides in type order Force > Exclude > Prefer > Avoid

    Before anything is applied:
    - expired overrides, overrides for other workloads and overrides that
      target no candidate are skipped (and reported);
    - when opposing overrides (Force/Exclude, Prefer/Avoid) target the
      same cluster, the higher priority wins, then the most recently
      created, then the lower id; the loser is reported as an advisory
      OVERRIDE_CONFLICT and has no effect on that cluster.

    Force is still bound by hard capacity: a cluster that cannot fit one
    replica is not forced and a fatal (resolved) conflict is recorded.
    """

    def __init__(
        self,
        overcommit_factor: float = 1.0,
        prefer_factor: float = 1.2,
        avoid_factor: float = 0.8
    ):
        if prefer_factor < 1.0:
            raise ValueError(f"prefer_factor must be >= 1.0, got {prefer_factor}")
        if not 0.0 <= avoid_factor <= 1.0:
            raise ValueError(f"avoid_factor must be in [0, 1], got {avoid_factor}")
        self.overcommit_factor = overcommit_factor
        self.prefer_factor = prefer_factor
        self.avoid_factor = avoid_factor

    def _skip(self, outcome: OverrideOutcome, override: Override, reason: str):
        outcome.skipped.append(SkippedOverride(override_id=override.id, reason=reason))
        metrics.overrides_total.labels(type=override.type.value, result="skipped").inc()
        logger.info(f"Skipping override {override.id}: {reason}")

    def _active(
        self,
        request: WorkloadRequest,
        overrides: Sequence[Override],
        candidates: Mapping[str, Candidate],
        now: datetime,
        outcome: OverrideOutcome
    ) -> List[Tuple[Override, List[str]]]:
        active = []
        for override in sorted(overrides, key=lambda o: o.id):
            if override.is_expired(now):
                self._skip(outcome, override, f"expired at {override.expires_at.isoformat()}")
                continue
            if not override.matches_workload(request):
                self._skip(outcome, override, f"does not match workload {request.key}")
                continue
            targets = sorted(name for name, c in candidates.items() if override.targets(c))
            if not targets:
                self._skip(outcome, override, "targets no candidate cluster")
                continue
            active.append((override, targets))
        return active

    def _resolve(
        self,
        active: Sequence[Tuple[Override, List[str]]],
        outcome: OverrideOutcome
    ) -> List[Tuple[Override, str]]:
        """Drop the losing side of opposing overrides on each cluster"""
        by_cluster: Dict[str, List[Override]] = {}
        for override, targets in active:
            for cluster in targets:
                by_cluster.setdefault(cluster, []).append(override)

        effective: List[Tuple[Override, str]] = []
        for cluster in sorted(by_cluster):
            entries = by_cluster[cluster]
            losers = set()
            for override in sorted(entries, key=lambda o: o.precedence_key()):
                if override.id in losers:
                    continue
                for other in entries:
                    if other.type == override.type.opposite and other.id not in losers:
                        losers.add(other.id)
                        outcome.conflicts.append(Conflict(
                            type=ConflictType.OVERRIDE_CONFLICT,
                            severity=Severity.ADVISORY,
                            description=(f"{other.type.value} override {other.id} on {cluster} "
                                         f"lost to {override.type.value} override {override.id}"),
                            clusters=(cluster,),
                            source=other.id,
                            resolution=f"{override.id} wins (priority, then recency)"
                        ))
                        logger.warning(f"⚠️  Override conflict on {cluster}: "
                                       f"{override.id} beats {other.id}")
            effective.extend((o, cluster) for o in entries if o.id not in losers)

        return sorted(
            effective,
            key=lambda pair: (pair[0].type.precedence,) + pair[0].precedence_key() + (pair[1],)
        )

    def apply(
        self,
        request: WorkloadRequest,
        ranking: Sequence[RankedCandidate],
        candidates: Mapping[str, Candidate],
        overrides: Sequence[Override],
        now: datetime
    ) -> OverrideOutcome:
        """
        Apply overrides to an eligible ranking

        Args:
            request: Workload being placed
            ranking: Eligible candidates in rank order
            candidates: Whole candidate snapshot by name (Force may pick a
                candidate the ranking dropped)
            overrides: Overrides returned by the override store
            now: Evaluation time for expiry checks

        Returns:
            OverrideOutcome with the adjusted ranking and bookkeeping
        """
        outcome = OverrideOutcome()
        active = self._active(request, overrides, candidates, now, outcome)
        effective = self._resolve(active, outcome)

        adjusted: Dict[str, RankedCandidate] = {r.name: r for r in ranking}
        applied: List[str] = []

        for override, cluster in effective:
            if override.type == OverrideType.FORCE:
                candidate = candidates[cluster]
                fit = candidate.replicas_that_fit(request.resources, self.overcommit_factor)
                if not candidate.ready or fit < 1:
                    why = "is not ready" if not candidate.ready else "cannot fit a single replica"
                    outcome.conflicts.append(Conflict(
                        type=(ConflictType.STRUCTURAL if not candidate.ready
                              else ConflictType.RESOURCE_OVERCOMMIT),
                        severity=Severity.FATAL,
                        description=f"Force override {override.id}: {cluster} {why}",
                        clusters=(cluster,),
                        source=override.id,
                        resolution="Force not applied"
                    ))
                    logger.warning(f"⛔ Force override {override.id} on {cluster} not applied: {why}")
                    continue
                outcome.forced.setdefault(cluster, override.id)
                outcome.factors.append(f"{override.describe()}: {cluster} forced into the selection")

            elif override.type == OverrideType.EXCLUDE:
                adjusted.pop(cluster, None)
                outcome.excluded.setdefault(cluster, override.id)
                outcome.factors.append(f"{override.describe()}: {cluster} excluded")

            else:
                if cluster not in adjusted:
                    continue
                factor = self.prefer_factor if override.type == OverrideType.PREFER else self.avoid_factor
                adjusted[cluster] = adjusted[cluster].adjusted(
                    factor, f"{override.type.value.lower()} x{factor:g} ({override.id})"
                )
                outcome.factors.append(f"{override.describe()}: {cluster} scores x{factor:g}")

            applied.append(override.id)

        outcome.applied = dedupe(applied)
        outcome.ranking = sorted(adjusted.values(), key=lambda r: r.rank_key)

        applied_types = {o.id: o.type.value for o, _ in effective}
        for override_id in outcome.applied:
            metrics.overrides_total.labels(type=applied_types[override_id], result="applied").inc()

        if outcome.applied:
            logger.info(f"Applied overrides {outcome.applied} to {request.key}")
        return outcome

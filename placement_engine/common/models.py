"""
Shared data models for the placement engine
"""
import hashlib
import json
import math
import sys
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Sequence, Tuple, Union

from ..utils.quantity import parse_cpu, parse_memory
from ..utils.selectors import matches_selector, validate_selector

RESOURCE_NAMES = ('cpu', 'memory', 'storage')

# Replica count reported when a request asks for none of a resource
UNBOUNDED_REPLICAS = sys.maxsize

SCORE_MIN = 0.0
SCORE_MAX = 100.0


def clamp_score(value: float) -> float:
    """Clamp a score into [0, 100]"""
    return max(SCORE_MIN, min(SCORE_MAX, float(value)))


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if not isinstance(value, datetime):
        raise ValueError(f"Expected a datetime, got {type(value).__name__}")
    if value.tzinfo is None or value.tzinfo.utcoffset(value) is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ============================================================================
# Enumerations
# ============================================================================

class OverrideType(str, Enum):
    """Manual directive kinds, in application order"""
    FORCE = "Force"
    EXCLUDE = "Exclude"
    PREFER = "Prefer"
    AVOID = "Avoid"

    @property
    def precedence(self) -> int:
        return _OVERRIDE_PRECEDENCE[self]

    @property
    def opposite(self) -> "OverrideType":
        return _OVERRIDE_OPPOSITES[self]


_OVERRIDE_PRECEDENCE = {
    OverrideType.FORCE: 0,
    OverrideType.EXCLUDE: 1,
    OverrideType.PREFER: 2,
    OverrideType.AVOID: 3,
}

_OVERRIDE_OPPOSITES = {
    OverrideType.FORCE: OverrideType.EXCLUDE,
    OverrideType.EXCLUDE: OverrideType.FORCE,
    OverrideType.PREFER: OverrideType.AVOID,
    OverrideType.AVOID: OverrideType.PREFER,
}


class PolicyEffect(str, Enum):
    """
    How a policy expression result is interpreted

    require: false excludes the candidate
    deny:    true excludes the candidate
    allow:   true includes the candidate (beats lower-priority excludes)
    score:   bool or number, contributes to the policy score
    """
    REQUIRE = "require"
    DENY = "deny"
    ALLOW = "allow"
    SCORE = "score"


class Verdict(str, Enum):
    INCLUDE = "include"
    EXCLUDE = "exclude"


class ConflictType(str, Enum):
    STRUCTURAL = "Structural"
    RESOURCE_OVERCOMMIT = "ResourceOvercommit"
    INSUFFICIENT_CAPACITY = "InsufficientCapacity"
    AFFINITY_VIOLATION = "AffinityViolation"
    ANTI_AFFINITY_VIOLATION = "AntiAffinityViolation"
    POLICY_VIOLATION = "PolicyViolation"
    POLICY_CONTRADICTION = "PolicyContradiction"
    OVERRIDE_CONFLICT = "OverrideConflict"


class Severity(str, Enum):
    FATAL = "Fatal"
    ADVISORY = "Advisory"


class DecisionStatus(str, Enum):
    COMPLETE = "Complete"
    OVERRIDDEN = "Overridden"
    # Audit entry of an evaluation that raised ValidationFailedError
    FAILED = "Failed"


# ============================================================================
# Resources and locations
# ============================================================================

@dataclass(frozen=True)
class Resources:
    """CPU in cores, memory and storage in GB"""
    cpu: float = 0.0
    memory: float = 0.0
    storage: float = 0.0

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "Resources":
        """Build from {"cpu": "500m", "memory": "2Gi", "storage": 10}"""
        data = data or {}
        unknown = set(data) - set(RESOURCE_NAMES)
        if unknown:
            raise ValueError(f"Unknown resource names: {sorted(unknown)}")
        return cls(
            cpu=parse_cpu(data.get('cpu', 0)),
            memory=parse_memory(data.get('memory', 0)),
            storage=parse_memory(data.get('storage', 0))
        )

    def get(self, name: str) -> float:
        if name not in RESOURCE_NAMES:
            raise KeyError(f"Unknown resource: {name}")
        return getattr(self, name)

    def scale(self, factor: float) -> "Resources":
        return Resources(self.cpu * factor, self.memory * factor, self.storage * factor)

    def __add__(self, other: "Resources") -> "Resources":
        return Resources(
            self.cpu + other.cpu,
            self.memory + other.memory,
            self.storage + other.storage
        )

    def __sub__(self, other: "Resources") -> "Resources":
        return Resources(
            self.cpu - other.cpu,
            self.memory - other.memory,
            self.storage - other.storage
        )

    def fits_within(self, limit: "Resources", tolerance: float = 1e-9) -> bool:
        return all(self.get(n) <= limit.get(n) + tolerance for n in RESOURCE_NAMES)

    def as_dict(self) -> Dict[str, float]:
        return asdict(self)


@dataclass(frozen=True)
class Location:
    """Topology of a cluster: region and (optional) zone"""
    region: str = ""
    zone: str = ""

    @classmethod
    def parse(cls, value: Union["Location", str, Mapping[str, str], None]) -> "Location":
        """Accept "eu-west", "eu-west/eu-west-1a" or {"region", "zone"}"""
        if value is None:
            return cls()
        if isinstance(value, Location):
            return value
        if isinstance(value, Mapping):
            return cls(region=value.get('region', ''), zone=value.get('zone', ''))
        region, _, zone = str(value).partition('/')
        return cls(region=region.strip(), zone=zone.strip())

    def __str__(self) -> str:
        return f"{self.region}/{self.zone}" if self.zone else self.region


# ============================================================================
# Workload request
# ============================================================================

@dataclass(frozen=True)
class WorkloadReference:
    """Identifies the workload being placed"""
    name: str
    namespace: str = "default"
    kind: str = "Deployment"
    workspace: str = "root"

    @property
    def key(self) -> str:
        """Workload identifier used for history and override matching"""
        return f"{self.workspace}/{self.namespace}/{self.kind}/{self.name}"

    def __str__(self) -> str:
        return self.key


@dataclass(frozen=True)
class AffinityTerm:
    """Co-location or separation requirement against another workload"""
    workload: str
    required: bool = True

    @classmethod
    def parse(cls, value: Union["AffinityTerm", str, Mapping[str, Any]]) -> "AffinityTerm":
        if isinstance(value, AffinityTerm):
            return value
        if isinstance(value, Mapping):
            return cls(workload=value['workload'], required=bool(value.get('required', True)))
        return cls(workload=str(value))


@dataclass(frozen=True)
class WorkloadRequest:
    """
    A placement request for one workload

    resources are per replica; replicas is the total to distribute across
    at most max_clusters clusters (Force overrides may add more).
    """
    workload: WorkloadReference
    resources: Resources = field(default_factory=Resources)
    replicas: int = 1
    max_clusters: int = 1
    labels: Mapping[str, str] = field(default_factory=dict)
    location_preferences: Tuple[str, ...] = ()
    colocate_with: Tuple[AffinityTerm, ...] = ()
    separate_from: Tuple[AffinityTerm, ...] = ()
    weights: Optional[Mapping[str, float]] = None
    seed: Optional[int] = None
    workload_class: Optional[str] = None
    policy_scope: Optional[str] = None

    def __post_init__(self):
        if self.replicas < 1:
            raise ValueError(f"replicas must be >= 1, got {self.replicas}")
        if self.max_clusters < 1:
            raise ValueError(f"max_clusters must be >= 1, got {self.max_clusters}")
        if self.weights is not None:
            unknown = set(self.weights) - {'scheduler', 'policy'}
            if unknown:
                raise ValueError(f"Unknown weight names: {sorted(unknown)}")
            total = sum(self.weights.values())
            if abs(total - 1.0) > 1e-6:
                raise ValueError(f"Weights must sum to 1.0, got {total}")
            object.__setattr__(self, 'weights', dict(self.weights))
        # Freeze sequence fields so the request stays immutable
        object.__setattr__(self, 'labels', dict(self.labels or {}))
        object.__setattr__(self, 'location_preferences', tuple(self.location_preferences))
        object.__setattr__(
            self, 'colocate_with', tuple(AffinityTerm.parse(t) for t in self.colocate_with)
        )
        object.__setattr__(
            self, 'separate_from', tuple(AffinityTerm.parse(t) for t in self.separate_from)
        )

    @property
    def key(self) -> str:
        return self.workload.key

    @property
    def rotation_key(self) -> str:
        """Workload class used to scope the round-robin cursor"""
        return self.workload_class or self.workload.kind

    @property
    def scope(self) -> str:
        """Scope handed to the policy store (defaults to the namespace)"""
        return self.policy_scope or self.workload.namespace

    def total_resources(self, replicas: Optional[int] = None) -> Resources:
        return self.resources.scale(self.replicas if replicas is None else replicas)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "WorkloadRequest":
        workload = data['workload']
        if isinstance(workload, Mapping):
            workload = WorkloadReference(**workload)
        return cls(
            workload=workload,
            resources=Resources.from_dict(data.get('resources')),
            replicas=int(data.get('replicas', 1)),
            max_clusters=int(data.get('max_clusters', 1)),
            labels=data.get('labels', {}),
            location_preferences=tuple(data.get('location_preferences', ())),
            colocate_with=tuple(data.get('colocate_with', ())),
            separate_from=tuple(data.get('separate_from', ())),
            weights=data.get('weights'),
            seed=data.get('seed'),
            workload_class=data.get('workload_class'),
            policy_scope=data.get('policy_scope')
        )


# ============================================================================
# Candidates
# ============================================================================

@dataclass(frozen=True)
class Candidate:
    """A cluster under consideration, as reported by the candidate supplier"""
    name: str
    capacity: Resources
    allocated: Resources = field(default_factory=Resources)
    labels: Mapping[str, str] = field(default_factory=dict)
    location: Location = field(default_factory=Location)
    workspace: str = "root"
    ready: bool = True
    workloads: FrozenSet[str] = frozenset()

    def __post_init__(self):
        object.__setattr__(self, 'labels', dict(self.labels or {}))
        object.__setattr__(self, 'workloads', frozenset(self.workloads or ()))
        object.__setattr__(self, 'location', Location.parse(self.location))

    @property
    def available(self) -> Resources:
        """Unallocated capacity (never negative)"""
        free = self.capacity - self.allocated
        return Resources(max(0.0, free.cpu), max(0.0, free.memory), max(0.0, free.storage))

    @property
    def utilization(self) -> float:
        """Highest allocated/capacity fraction across resources, in [0, 1]"""
        fractions = [
            self.allocated.get(n) / self.capacity.get(n)
            for n in RESOURCE_NAMES
            if self.capacity.get(n) > 0
        ]
        if not fractions:
            return 1.0
        return max(0.0, min(1.0, max(fractions)))

    def resource_utilization(self, resource: str) -> float:
        total = self.capacity.get(resource)
        if total <= 0:
            return 1.0
        return max(0.0, min(1.0, self.allocated.get(resource) / total))

    def headroom(self, overcommit: float = 1.0) -> Resources:
        """Capacity times overcommit minus what is already allocated"""
        return self.capacity.scale(overcommit) - self.allocated

    def replicas_that_fit(self, per_replica: Resources, overcommit: float = 1.0) -> int:
        """How many replicas of per_replica fit under the overcommit factor"""
        room = self.headroom(overcommit)
        fits = []
        for name in RESOURCE_NAMES:
            need = per_replica.get(name)
            if need <= 0:
                continue
            fits.append(max(0, int(math.floor(room.get(name) / need + 1e-9))))
        return min(fits) if fits else UNBOUNDED_REPLICAS

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Candidate":
        return cls(
            name=data['name'],
            capacity=Resources.from_dict(data.get('capacity')),
            allocated=Resources.from_dict(data.get('allocated')),
            labels=data.get('labels', {}),
            location=Location.parse(data.get('location')),
            workspace=data.get('workspace', 'root'),
            ready=bool(data.get('ready', True)),
            workloads=frozenset(data.get('workloads', ()))
        )


@dataclass(frozen=True)
class ScoredCandidate:
    """A candidate annotated with a scheduler score in [0, 100]"""
    candidate: Candidate
    score: float
    algorithm: str
    reason: str = ""

    @property
    def name(self) -> str:
        return self.candidate.name

    def __repr__(self):
        return f"Scored({self.name}, score={self.score:.2f}, algo={self.algorithm})"


# ============================================================================
# Policies and their outcomes
# ============================================================================

@dataclass(frozen=True)
class PlacementPolicy:
    """A named, versioned placement rule supplied by the policy store"""
    id: str
    expression: str
    version: str = "1"
    name: str = ""
    effect: PolicyEffect = PolicyEffect.REQUIRE
    priority: int = 0
    weight: float = 100.0
    namespaces: Tuple[str, ...] = ()
    workload_selector: Optional[Mapping[str, Any]] = None
    author: str = ""
    description: str = ""

    def __post_init__(self):
        object.__setattr__(self, 'effect', PolicyEffect(self.effect))
        object.__setattr__(self, 'version', str(self.version))
        object.__setattr__(self, 'namespaces', tuple(self.namespaces))
        validate_selector(self.workload_selector)
        if not 0.0 <= self.weight <= SCORE_MAX:
            raise ValueError(f"Policy {self.id}: weight must be in [0, 100], got {self.weight}")

    @property
    def cache_key(self) -> Tuple[str, str]:
        return (self.id, self.version)

    @property
    def is_hard(self) -> bool:
        return self.effect != PolicyEffect.SCORE

    def applies_to(self, request: WorkloadRequest) -> bool:
        """Scope check: namespace list and workload label selector"""
        if self.namespaces and request.workload.namespace not in self.namespaces:
            return False
        return matches_selector(self.workload_selector, request.labels)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PlacementPolicy":
        return cls(
            id=data['id'],
            expression=data['expression'],
            version=str(data.get('version', '1')),
            name=data.get('name', data['id']),
            effect=PolicyEffect(data.get('effect', 'require')),
            priority=int(data.get('priority', 0)),
            weight=float(data.get('weight', 100.0)),
            namespaces=tuple(data.get('namespaces', ())),
            workload_selector=data.get('workload_selector'),
            author=data.get('author', ''),
            description=data.get('description', '')
        )


@dataclass(frozen=True)
class VerdictOutcome:
    """Expression produced a boolean"""
    include: bool


@dataclass(frozen=True)
class ScoreOutcome:
    """Expression produced a number (clamped to [0, 100])"""
    value: float


@dataclass(frozen=True)
class ErrorOutcome:
    """Expression failed to compile or evaluate"""
    message: str


PolicyOutcome = Union[VerdictOutcome, ScoreOutcome, ErrorOutcome]


@dataclass(frozen=True)
class PolicyResult:
    """One policy evaluated against one candidate"""
    policy_id: str
    version: str
    priority: int
    effect: PolicyEffect
    weight: float
    outcome: PolicyOutcome

    @property
    def failed(self) -> bool:
        return isinstance(self.outcome, ErrorOutcome)

    @property
    def vote(self) -> Optional[Verdict]:
        """Hard verdict implied by the effect, or None for no opinion"""
        if not isinstance(self.outcome, VerdictOutcome):
            return None
        passed = self.outcome.include
        if self.effect == PolicyEffect.REQUIRE:
            return None if passed else Verdict.EXCLUDE
        if self.effect == PolicyEffect.DENY:
            return Verdict.EXCLUDE if passed else None
        if self.effect == PolicyEffect.ALLOW:
            return Verdict.INCLUDE if passed else None
        return None

    @property
    def score(self) -> float:
        """Soft score contribution; errors and hard policies contribute zero"""
        if self.effect != PolicyEffect.SCORE:
            return 0.0
        if isinstance(self.outcome, VerdictOutcome):
            return self.weight if self.outcome.include else 0.0
        if isinstance(self.outcome, ScoreOutcome):
            return clamp_score(self.outcome.value) * self.weight / SCORE_MAX
        return 0.0


@dataclass(frozen=True)
class PolicyError:
    """A per-policy evaluation failure, degraded to a neutral score"""
    policy_id: str
    version: str
    message: str
    cluster: Optional[str] = None


@dataclass(frozen=True)
class PolicyEvaluation:
    """Every policy result for one candidate, plus the aggregated view"""
    cluster: str
    results: Tuple[PolicyResult, ...] = ()
    score: float = 0.0
    verdict: Optional[Verdict] = None
    deciding_policies: Tuple[str, ...] = ()
    contradicting_policies: Tuple[str, ...] = ()
    errors: Tuple[PolicyError, ...] = ()

    @property
    def excluded(self) -> bool:
        return self.verdict == Verdict.EXCLUDE

    @property
    def contradiction(self) -> bool:
        return bool(self.contradicting_policies)


# ============================================================================
# Overrides
# ============================================================================

@dataclass(frozen=True)
class Override:
    """
    An operator directive

    Targets clusters by name and/or label selector. Applies to the workloads
    listed in `workloads` (key or bare name) and/or matched by
    `workload_selector` on request labels; both empty means every workload.
    """
    id: str
    type: OverrideType
    created_at: datetime
    clusters: Tuple[str, ...] = ()
    cluster_selector: Optional[Mapping[str, Any]] = None
    workloads: Tuple[str, ...] = ()
    workload_selector: Optional[Mapping[str, Any]] = None
    priority: int = 0
    created_by: str = ""
    expires_at: Optional[datetime] = None
    reason: str = ""

    def __post_init__(self):
        object.__setattr__(self, 'type', OverrideType(self.type))
        object.__setattr__(self, 'clusters', tuple(self.clusters))
        object.__setattr__(self, 'workloads', tuple(self.workloads))
        # Naive timestamps are taken as UTC
        object.__setattr__(self, 'created_at', _as_utc(self.created_at))
        if self.expires_at is not None:
            object.__setattr__(self, 'expires_at', _as_utc(self.expires_at))
        validate_selector(self.cluster_selector)
        validate_selector(self.workload_selector)
        if not self.clusters and not self.cluster_selector:
            raise ValueError(f"Override {self.id} must target clusters or a cluster selector")

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now

    def matches_workload(self, request: WorkloadRequest) -> bool:
        if self.workloads:
            ref = request.workload
            names = {ref.key, ref.name, f"{ref.namespace}/{ref.name}"}
            if not names.intersection(self.workloads):
                return False
        return matches_selector(self.workload_selector, request.labels)

    def targets(self, candidate: Candidate) -> bool:
        if candidate.name in self.clusters:
            return True
        return bool(self.cluster_selector) and matches_selector(
            self.cluster_selector, candidate.labels
        )

    def precedence_key(self) -> Tuple:
        """Higher priority first, then most recent, then id for determinism"""
        return (-self.priority, -self.created_at.timestamp(), self.id)

    def describe(self) -> str:
        by = f" by {self.created_by}" if self.created_by else ""
        why = f": {self.reason}" if self.reason else ""
        return f"{self.type.value} override {self.id}{by}{why}"


# ============================================================================
# Conflicts and validation
# ============================================================================

@dataclass(frozen=True)
class Conflict:
    """A detected violation attached to a Decision"""
    type: ConflictType
    severity: Severity
    description: str
    clusters: Tuple[str, ...] = ()
    source: str = ""
    resolution: Optional[str] = None

    @property
    def fatal(self) -> bool:
        return self.severity == Severity.FATAL

    @property
    def resolved(self) -> bool:
        return self.resolution is not None

    def resolve(self, resolution: str) -> "Conflict":
        return Conflict(
            type=self.type,
            severity=self.severity,
            description=self.description,
            clusters=self.clusters,
            source=self.source,
            resolution=resolution
        )

    def __str__(self) -> str:
        text = f"[{self.severity.value}] {self.type.value}: {self.description}"
        if self.resolution:
            text += f" (resolved: {self.resolution})"
        return text


@dataclass
class ValidationResult:
    """Pass/fail plus every typed conflict found"""
    conflicts: List[Conflict] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return not self.unresolved_fatal

    @property
    def fatal(self) -> List[Conflict]:
        return [c for c in self.conflicts if c.fatal]

    @property
    def unresolved_fatal(self) -> List[Conflict]:
        return [c for c in self.conflicts if c.fatal and not c.resolved]

    @property
    def advisory(self) -> List[Conflict]:
        return [c for c in self.conflicts if not c.fatal]

    def offending_clusters(self) -> List[str]:
        """Clusters named by unresolved fatal conflicts, deduplicated in order"""
        seen: Dict[str, None] = {}
        for conflict in self.unresolved_fatal:
            for name in conflict.clusters:
                seen.setdefault(name, None)
        return list(seen)


# ============================================================================
# Decision
# ============================================================================

@dataclass(frozen=True)
class ClusterPlacement:
    """A selected cluster and the replicas it receives"""
    cluster: str
    replicas: int
    scheduler_score: float
    policy_score: float
    final_score: float
    reason: str = ""
    forced: bool = False

    def __repr__(self):
        return (f"Placement({self.cluster}, replicas={self.replicas}, "
                f"final={self.final_score:.2f}{', forced' if self.forced else ''})")


@dataclass(frozen=True)
class CandidateScore:
    """Per-candidate scores and the rationale behind the final one"""
    cluster: str
    scheduler_score: float
    policy_score: float
    final_score: float
    rationale: str = ""


@dataclass(frozen=True)
class RejectedCandidate:
    """A candidate that was considered but not selected"""
    cluster: str
    reason: str
    scheduler_score: float = 0.0
    policy_score: float = 0.0
    final_score: float = 0.0


@dataclass(frozen=True)
class SkippedOverride:
    override_id: str
    reason: str


@dataclass(frozen=True)
class DecisionRationale:
    """Structured explanation of a decision"""
    summary: str = ""
    algorithm: str = ""
    scheduler_factors: Tuple[str, ...] = ()
    policy_factors: Tuple[str, ...] = ()
    override_factors: Tuple[str, ...] = ()
    constraint_violations: Tuple[str, ...] = ()

    def lines(self) -> List[str]:
        out = [self.summary] if self.summary else []
        for title, items in (
            ("scheduler", self.scheduler_factors),
            ("policy", self.policy_factors),
            ("override", self.override_factors),
            ("constraint", self.constraint_violations),
        ):
            out.extend(f"{title}: {item}" for item in items)
        return out


@dataclass(frozen=True)
class Decision:
    """The engine's output for one evaluation; immutable once built"""
    decision_id: str
    workload: WorkloadReference
    selected: Tuple[ClusterPlacement, ...]
    candidate_scores: Tuple[CandidateScore, ...]
    rejected: Tuple[RejectedCandidate, ...]
    scheduler_algorithm: str
    combination_algorithm: str
    rationale: DecisionRationale
    created_at: datetime
    overrides_applied: Tuple[str, ...] = ()
    overrides_skipped: Tuple[SkippedOverride, ...] = ()
    conflicts: Tuple[Conflict, ...] = ()
    policy_errors: Tuple[PolicyError, ...] = ()
    attempts: int = 1
    fairness: float = 0.0
    status: DecisionStatus = DecisionStatus.COMPLETE

    @property
    def workload_key(self) -> str:
        return self.workload.key

    @property
    def selected_clusters(self) -> List[str]:
        return [p.cluster for p in self.selected]

    @property
    def total_replicas(self) -> int:
        return sum(p.replicas for p in self.selected)

    @property
    def succeeded(self) -> bool:
        return bool(self.selected) and not any(
            c.fatal and not c.resolved for c in self.conflicts
        )

    def placement_for(self, cluster: str) -> Optional[ClusterPlacement]:
        return next((p for p in self.selected if p.cluster == cluster), None)

    def to_dict(self) -> dict:
        """JSON-ready dict of the decision"""
        data = asdict(self)
        data['workload_key'] = self.workload_key
        data['created_at'] = self.created_at.isoformat()
        return json.loads(json.dumps(data, default=_json_default))

    def fingerprint(self) -> str:
        """Hash of the deterministic content (id and timestamp excluded)"""
        data = self.to_dict()
        data.pop('decision_id', None)
        data.pop('created_at', None)
        payload = json.dumps(data, sort_keys=True)
        return hashlib.sha256(payload.encode('utf-8')).hexdigest()


def _json_default(value):
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    raise TypeError(f"Not serializable: {type(value).__name__}")


@dataclass(frozen=True)
class AuditRecord:
    """A decision plus its full rejection and conflict trail"""
    decision: Decision
    rejected: Tuple[RejectedCandidate, ...]
    conflicts: Tuple[Conflict, ...]
    recorded_at: datetime

    @property
    def workload_key(self) -> str:
        return self.decision.workload_key

    @property
    def decision_id(self) -> str:
        return self.decision.decision_id

    @classmethod
    def for_decision(cls, decision: Decision, recorded_at: datetime) -> "AuditRecord":
        return cls(
            decision=decision,
            rejected=decision.rejected,
            conflicts=decision.conflicts,
            recorded_at=recorded_at
        )


def sort_key(final_score: float, tiebreak: float, name: str) -> Tuple[float, float, str]:
    """Descending scores, then ascending cluster name"""
    return (-round(final_score, 9), -round(tiebreak, 9), name)


def dedupe(names: Sequence[str]) -> List[str]:
    return list(dict.fromkeys(names))

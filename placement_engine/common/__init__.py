"""
Data model, errors and deadline shared by every pipeline stage
"""

from .deadline import Deadline
from .errors import (
    PlacementError,
    NoCandidatesError,
    ValidationFailedError,
    EvaluationCancelled,
    DeadlineExceeded,
    CollaboratorError,
    PolicyCompileError,
    PolicyEvaluationError,
    PersistenceFailure
)
from .models import (
    OverrideType,
    PolicyEffect,
    Verdict,
    ConflictType,
    Severity,
    DecisionStatus,
    Resources,
    Location,
    WorkloadReference,
    AffinityTerm,
    WorkloadRequest,
    Candidate,
    ScoredCandidate,
    PlacementPolicy,
    VerdictOutcome,
    ScoreOutcome,
    ErrorOutcome,
    PolicyResult,
    PolicyError,
    PolicyEvaluation,
    Override,
    Conflict,
    ValidationResult,
    ClusterPlacement,
    CandidateScore,
    RejectedCandidate,
    SkippedOverride,
    DecisionRationale,
    Decision,
    AuditRecord
)

__all__ = [
    'Deadline',
    'PlacementError',
    'NoCandidatesError',
    'ValidationFailedError',
    'EvaluationCancelled',
    'DeadlineExceeded',
    'CollaboratorError',
    'PolicyCompileError',
    'PolicyEvaluationError',
    'PersistenceFailure',
    'OverrideType',
    'PolicyEffect',
    'Verdict',
    'ConflictType',
    'Severity',
    'DecisionStatus',
    'Resources',
    'Location',
    'WorkloadReference',
    'AffinityTerm',
    'WorkloadRequest',
    'Candidate',
    'ScoredCandidate',
    'PlacementPolicy',
    'VerdictOutcome',
    'ScoreOutcome',
    'ErrorOutcome',
    'PolicyResult',
    'PolicyError',
    'PolicyEvaluation',
    'Override',
    'Conflict',
    'ValidationResult',
    'ClusterPlacement',
    'CandidateScore',
    'RejectedCandidate',
    'SkippedOverride',
    'DecisionRationale',
    'Decision',
    'AuditRecord'
]

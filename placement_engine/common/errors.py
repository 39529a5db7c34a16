"""
Typed failures raised by the placement engine

Per-candidate and per-policy problems never abort an evaluation; they are
degraded locally and recorded on the Decision. Only whole-evaluation
failures leave decide() as exceptions.
"""

from typing import List, Optional, Sequence


class PlacementError(Exception):
    """Base class for every engine failure"""

    def __init__(self, message: str, rationale: Optional[Sequence[str]] = None):
        super().__init__(message)
        self.message = message
        self.rationale: List[str] = list(rationale or [])


class NoCandidatesError(PlacementError):
    """The candidate supplier returned an empty set (or every candidate was removed)"""


class ValidationFailedError(PlacementError):
    """
    Fatal conflicts remained after every allowed re-derivation was tried

    Attributes:
        conflicts: Every conflict detected across all attempts
        attempts: Number of combine/validate attempts performed
        decision_id: Id of the failed evaluation's audit record, if any
    """

    def __init__(
        self,
        message: str,
        conflicts: Optional[Sequence] = None,
        attempts: int = 0,
        rationale: Optional[Sequence[str]] = None,
        decision_id: Optional[str] = None
    ):
        super().__init__(message, rationale)
        self.conflicts = list(conflicts or [])
        self.attempts = attempts
        self.decision_id = decision_id


class EvaluationCancelled(PlacementError):
    """The caller cancelled the evaluation"""


class DeadlineExceeded(PlacementError):
    """The evaluation ran past the caller-supplied deadline"""


class CollaboratorError(PlacementError):
    """A candidate supplier, policy store or override store call failed"""

    def __init__(self, collaborator: str, cause: BaseException):
        super().__init__(f"{collaborator} failed: {cause}")
        self.collaborator = collaborator
        self.cause = cause


class PolicyCompileError(PlacementError):
    """A policy expression is malformed or uses a forbidden construct"""


class PolicyEvaluationError(PlacementError):
    """A compiled policy expression failed while being evaluated"""


class PersistenceFailure(PlacementError):
    """
    Recorder storage did not acknowledge a write

    Never raised out of decide(); delivered on the recorder's error channel.
    """

    def __init__(self, workload_key: str, decision_id: str, cause: BaseException):
        super().__init__(
            f"Failed to persist decision {decision_id} for {workload_key}: {cause}"
        )
        self.workload_key = workload_key
        self.decision_id = decision_id
        self.cause = cause

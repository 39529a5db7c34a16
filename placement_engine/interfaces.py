"""
Collaborator contracts consumed by the placement engine

The engine depends on these narrow interfaces only; concrete suppliers
and stores (cluster registry, policy CRDs, databases...) live outside.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, List, Mapping, Optional, Sequence

from .common.models import AuditRecord, Candidate, Override, PlacementPolicy, WorkloadRequest


class CandidateSupplier(ABC):
    """Supplies a point-in-time snapshot of candidate clusters"""

    @abstractmethod
    def list_candidates(self, workload_selector: Mapping[str, Any]) -> List[Candidate]:
        """
        Args:
            workload_selector: Labels of the workload being placed

        Returns:
            Candidate snapshot; the engine never retains or watches it
        """


class PolicyStore(ABC):
    """Supplies the placement policies in force for a scope"""

    @abstractmethod
    def get_policies(self, scope: str) -> List[PlacementPolicy]:
        """Every policy version currently active for scope (usually a namespace)"""


class OverrideStore(ABC):
    """Supplies operator overrides"""

    @abstractmethod
    def list_active_overrides(self, request: WorkloadRequest, as_of: datetime) -> List[Override]:
        """
        Overrides that may apply to a workload

        Stores are allowed to return expired or non-matching overrides;
        the engine re-checks expiry and selectors and records the skips.
        """


class RecorderStorage(ABC):
    """Durable backing for the decision history"""

    @abstractmethod
    def append(self, workload_key: str, record: AuditRecord) -> None:
        """Persist one record; raise on failure"""

    @abstractmethod
    def query(
        self,
        workload_key: Optional[str] = None,
        decision_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None
    ) -> List[AuditRecord]:
        """Records matching every given filter, oldest first"""

    @abstractmethod
    def prune(self, workload_key: str, keep: int, older_than: Optional[datetime] = None) -> int:
        """
        Drop all but the newest `keep` records of a workload, and any
        record older than `older_than`

        Returns:
            Number of records removed
        """

    def workload_keys(self) -> Sequence[str]:
        """Workloads with at least one record"""
        return sorted({r.workload_key for r in self.query()})

"""
In-memory collaborators

Thread-safe implementations of the collaborator interfaces, used by
tests and by embedders that do not need durable storage.
"""

import threading
from collections import deque
from datetime import datetime
from typing import Any, Deque, Dict, Iterable, List, Mapping, Optional, Sequence

from .common.models import AuditRecord, Candidate, Override, PlacementPolicy, WorkloadRequest, utcnow
from .interfaces import CandidateSupplier, OverrideStore, PolicyStore, RecorderStorage
from .utils.logger import get_logger
from .utils.selectors import matches_selector

logger = get_logger("MemoryStores")


class StaticCandidateSupplier(CandidateSupplier):
    """
    Returns a fixed candidate list

    If `cluster_selector` is given only candidates whose labels match it
    are returned. The list can be swapped with set_candidates().
    """

    def __init__(self, candidates: Iterable[Candidate] = (), cluster_selector: Optional[Mapping] = None):
        self._lock = threading.Lock()
        self._candidates = list(candidates)
        self.cluster_selector = cluster_selector

    def set_candidates(self, candidates: Iterable[Candidate]):
        with self._lock:
            self._candidates = list(candidates)

    def list_candidates(self, workload_selector: Mapping[str, Any]) -> List[Candidate]:
        with self._lock:
            snapshot = list(self._candidates)
        return [c for c in snapshot if matches_selector(self.cluster_selector, c.labels)]


class InMemoryPolicyStore(PolicyStore):
    """Policies held in a dict keyed by id; put() replaces a policy (new version)"""

    def __init__(self, policies: Iterable[PlacementPolicy] = ()):
        self._lock = threading.Lock()
        self._policies: Dict[str, PlacementPolicy] = {}
        for policy in policies:
            self.put(policy)

    def put(self, policy: PlacementPolicy):
        with self._lock:
            self._policies[policy.id] = policy

    def remove(self, policy_id: str) -> bool:
        with self._lock:
            return self._policies.pop(policy_id, None) is not None

    def get_policies(self, scope: str) -> List[PlacementPolicy]:
        with self._lock:
            policies = sorted(self._policies.values(), key=lambda p: p.id)
        return [p for p in policies if not p.namespaces or scope in p.namespaces]


class InMemoryOverrideStore(OverrideStore):
    """Override lifecycle: create, revoke, list active as of a time, purge expired"""

    def __init__(self, overrides: Iterable[Override] = ()):
        self._lock = threading.Lock()
        self._overrides: Dict[str, Override] = {}
        for override in overrides:
            self.create(override)

    def create(self, override: Override) -> Override:
        with self._lock:
            if override.id in self._overrides:
                raise ValueError(f"Override {override.id} already exists")
            self._overrides[override.id] = override
        logger.info(f"Created {override.describe()}")
        return override

    def revoke(self, override_id: str) -> bool:
        with self._lock:
            removed = self._overrides.pop(override_id, None)
        if removed is not None:
            logger.info(f"Revoked override {override_id}")
        return removed is not None

    def get(self, override_id: str) -> Optional[Override]:
        with self._lock:
            return self._overrides.get(override_id)

    def list_all(self) -> List[Override]:
        with self._lock:
            return sorted(self._overrides.values(), key=lambda o: o.id)

    def list_active_overrides(self, request: WorkloadRequest, as_of: datetime) -> List[Override]:
        # Expired entries are returned on purpose so the engine can report them as skipped
        return [o for o in self.list_all() if o.matches_workload(request)]

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        with self._lock:
            expired = [oid for oid, o in self._overrides.items() if o.is_expired(now)]
            for oid in expired:
                del self._overrides[oid]
        if expired:
            logger.info(f"Purged {len(expired)} expired override(s)")
        return len(expired)


class InMemoryRecorderStorage(RecorderStorage):
    """
    Per-workload bounded deques

    max_per_workload caps each history on append, so a workload never
    holds more records than that even before the recorder prunes.
    """

    def __init__(self, max_per_workload: Optional[int] = None):
        self.max_per_workload = max_per_workload
        self._lock = threading.Lock()
        self._records: Dict[str, Deque[AuditRecord]] = {}

    def append(self, workload_key: str, record: AuditRecord) -> None:
        with self._lock:
            history = self._records.get(workload_key)
            if history is None:
                history = self._records[workload_key] = deque(maxlen=self.max_per_workload)
            history.append(record)

    def query(
        self,
        workload_key: Optional[str] = None,
        decision_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None
    ) -> List[AuditRecord]:
        with self._lock:
            if workload_key is not None:
                records = list(self._records.get(workload_key, ()))
            else:
                records = [r for history in self._records.values() for r in history]

        if decision_id is not None:
            records = [r for r in records if r.decision_id == decision_id]
        if start is not None:
            records = [r for r in records if r.decision.created_at >= start]
        if end is not None:
            records = [r for r in records if r.decision.created_at <= end]
        return sorted(records, key=lambda r: (r.decision.created_at, r.recorded_at))

    def prune(self, workload_key: str, keep: int, older_than: Optional[datetime] = None) -> int:
        with self._lock:
            history = self._records.get(workload_key)
            if not history:
                return 0
            before = len(history)
            kept: Sequence[AuditRecord] = list(history)
            if older_than is not None:
                kept = [r for r in kept if r.decision.created_at >= older_than]
            kept = kept[-keep:] if keep > 0 else []
            if kept:
                self._records[workload_key] = deque(kept, maxlen=self.max_per_workload)
            else:
                del self._records[workload_key]
            return before - len(kept)

    def workload_keys(self) -> Sequence[str]:
        with self._lock:
            return sorted(self._records)

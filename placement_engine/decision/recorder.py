"""
Decision recorder
Bounded per-workload decision history with an out-of-band error channel
"""

import queue
import threading
from concurrent.futures import Executor, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from ..common.deadline import Deadline
from ..common.errors import PersistenceFailure
from ..common.models import AuditRecord, Decision, utcnow
from ..interfaces import RecorderStorage
from ..metrics import prometheus_metrics as metrics
from ..utils.logger import get_logger

logger = get_logger("DecisionRecorder")


@dataclass
class HistoryStats:
    """Summary of the recorded history"""
    total_records: int = 0
    workloads: int = 0
    by_status: Dict[str, int] = field(default_factory=dict)
    oldest: Optional[datetime] = None
    newest: Optional[datetime] = None


class DecisionRecorder:
    """
    Appends decisions to RecorderStorage

    - writes for one workload are serialized by a per-workload lock,
      writes for different workloads run concurrently
    - the caller waits at most persistence_timeout (or the deadline,
      whichever is shorter); a failed or slow write becomes a
      PersistenceFailure on the error channel, never an exception
    - pruning to history_depth (and the optional retention window) runs
      in the background after each successful append
    """

    def __init__(
        self,
        storage: RecorderStorage,
        history_depth: int = 10,
        retention: Optional[timedelta] = None,
        persistence_timeout: float = 2.0,
        executor: Optional[Executor] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        if history_depth < 1:
            raise ValueError(f"history_depth must be >= 1, got {history_depth}")
        self.storage = storage
        self.history_depth = history_depth
        self.retention = retention
        self.persistence_timeout = persistence_timeout
        self._clock = clock or utcnow
        self._executor = executor
        self._owns_executor = executor is None
        if self._owns_executor:
            self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="recorder")

        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self.errors: "queue.Queue[PersistenceFailure]" = queue.Queue()

    def _lock_for(self, workload_key: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(workload_key)
            if lock is None:
                lock = self._locks[workload_key] = threading.Lock()
            return lock

    def _write(self, record: AuditRecord):
        key = record.workload_key
        with self._lock_for(key):
            self.storage.append(key, record)

    def _prune(self, workload_key: str):
        cutoff = self._clock() - self.retention if self.retention is not None else None
        try:
            with self._lock_for(workload_key):
                removed = self.storage.prune(workload_key, self.history_depth, cutoff)
        except Exception as e:
            logger.warning(f"⚠️  Pruning history of {workload_key} failed: {e}")
            return
        if removed:
            logger.debug(f"Pruned {removed} old decision(s) of {workload_key}")

    def _fail(self, decision: Decision, cause: BaseException):
        failure = PersistenceFailure(decision.workload_key, decision.decision_id, cause)
        self.errors.put(failure)
        metrics.persistence_failures_total.inc()
        logger.error(f"❌ {failure.message}")

    def record(self, decision: Decision, deadline: Optional[Deadline] = None) -> bool:
        """
        Persist a decision and its rejection/conflict trail

        Returns:
            True if storage acknowledged the write in time
        """
        record = AuditRecord.for_decision(decision, recorded_at=self._clock())
        timeout = (deadline or Deadline()).bound(self.persistence_timeout)

        future = self._executor.submit(self._write, record)
        try:
            future.result(timeout=timeout)
        except FutureTimeout:
            self._fail(decision, TimeoutError(f"storage did not acknowledge within {timeout:.3f}s"))
            return False
        except Exception as e:
            self._fail(decision, e)
            return False

        self._executor.submit(self._prune, decision.workload_key)
        logger.debug(f"Recorded decision {decision.decision_id} for {decision.workload_key}")
        return True

    def drain_errors(self) -> List[PersistenceFailure]:
        """Pop every pending persistence failure"""
        drained = []
        while True:
            try:
                drained.append(self.errors.get_nowait())
            except queue.Empty:
                return drained

    def history(self, workload_key: str) -> List[AuditRecord]:
        """Records of one workload, oldest first"""
        return self.storage.query(workload_key=workload_key)

    def get(self, decision_id: str) -> Optional[AuditRecord]:
        records = self.storage.query(decision_id=decision_id)
        return records[0] if records else None

    def between(self, start: datetime, end: datetime) -> List[AuditRecord]:
        """Records whose decision was created in [start, end]"""
        return self.storage.query(start=start, end=end)

    def stats(self) -> HistoryStats:
        """Record counts per decision status and the oldest/newest decision times"""
        stats = HistoryStats()
        for key in self.storage.workload_keys():
            records = self.storage.query(workload_key=key)
            if not records:
                continue
            stats.workloads += 1
            for record in records:
                stats.total_records += 1
                status = record.decision.status.value
                stats.by_status[status] = stats.by_status.get(status, 0) + 1
                created = record.decision.created_at
                if stats.oldest is None or created < stats.oldest:
                    stats.oldest = created
                if stats.newest is None or created > stats.newest:
                    stats.newest = created
        return stats

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        """Drop every record older than the retention window"""
        if self.retention is None:
            return 0
        cutoff = (now or self._clock()) - self.retention
        removed = 0
        for key in self.storage.workload_keys():
            with self._lock_for(key):
                removed += self.storage.prune(key, self.history_depth, cutoff)
        if removed:
            logger.info(f"Purged {removed} decision(s) older than {cutoff.isoformat()}")
        return removed

    def close(self):
        if self._owns_executor:
            self._executor.shutdown(wait=True)

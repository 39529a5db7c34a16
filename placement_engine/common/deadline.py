"""
Deadline and cancellation signal for a single evaluation
"""

import threading
import time
from concurrent.futures import ALL_COMPLETED, Future, wait
from typing import Optional, Sequence, Union

from .errors import DeadlineExceeded, EvaluationCancelled

POLL_INTERVAL = 0.05


class Deadline:
    """
    Caller-supplied deadline plus a cancellation flag

    The engine checks it between pipeline stages and bounds every
    collaborator call by remaining(). cancel() may be called from any
    thread.
    """

    def __init__(self, timeout: Optional[float] = None):
        """
        Args:
            timeout: Seconds from now, or None for no deadline
        """
        self._expires_at = (
            time.monotonic() + timeout if timeout is not None else None
        )
        self._cancelled = threading.Event()
        self._reason = ""

    @classmethod
    def coerce(
        cls,
        value: Union["Deadline", float, int, None],
        default_timeout: Optional[float] = None
    ) -> "Deadline":
        """Accept a Deadline, a timeout in seconds, or None (use default)"""
        if isinstance(value, Deadline):
            return value
        if value is None:
            return cls(default_timeout)
        return cls(float(value))

    def cancel(self, reason: str = "cancelled by caller") -> None:
        self._reason = reason
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def expired(self) -> bool:
        return self._expires_at is not None and time.monotonic() >= self._expires_at

    def remaining(self) -> Optional[float]:
        """Seconds left (never negative), or None if unbounded"""
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - time.monotonic())

    def bound(self, timeout: Optional[float]) -> Optional[float]:
        """The smaller of timeout and remaining()"""
        remaining = self.remaining()
        if remaining is None:
            return timeout
        if timeout is None:
            return remaining
        return min(timeout, remaining)

    def check(self, stage: str) -> None:
        """Raise if cancelled or past the deadline"""
        if self.cancelled:
            raise EvaluationCancelled(f"Evaluation cancelled during {stage}: {self._reason}")
        if self.expired:
            raise DeadlineExceeded(f"Deadline exceeded during {stage}")

    def wait(self, futures: Sequence[Future], stage: str, poll_interval: float = POLL_INTERVAL) -> None:
        """
        Block until every future is done, the deadline passes or the
        evaluation is cancelled

        Unfinished futures are cancelled before raising.
        """
        pending = set(futures)
        while pending:
            timeout = self.bound(poll_interval)
            _, pending = wait(pending, timeout=timeout, return_when=ALL_COMPLETED)
            if pending and (self.cancelled or self.expired):
                for future in pending:
                    future.cancel()
                self.check(stage)
        self.check(stage)

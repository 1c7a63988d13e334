"""
Per-request cancellation for retry loops.

An OperationContext carries an optional deadline and an explicit cancel flag.
Services check it before every store call they are about to issue; a store
call already dispatched always runs to completion, so cancelling only stops
further retries.
"""

from __future__ import annotations

import threading
import time
from typing import Optional

from achievement_points.errors import OperationCancelled


class OperationContext:
    """
    Cancellation token with an optional timeout.

    Parameters
    ----------
    timeout : float | None
        Seconds from construction after which the context counts as cancelled.
    """

    def __init__(self, timeout: Optional[float] = None) -> None:
        self._cancelled = threading.Event()
        self._deadline = time.monotonic() + timeout if timeout is not None else None
        self._reason: Optional[str] = None

    @classmethod
    def background(cls) -> "OperationContext":
        """A context that is never cancelled unless ``cancel`` is called."""
        return cls()

    def cancel(self, reason: str = "cancelled by caller") -> None:
        self._reason = reason
        self._cancelled.set()

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, or None without one."""
        if self._deadline is None:
            return None
        return max(self._deadline - time.monotonic(), 0.0)

    @property
    def cancelled(self) -> bool:
        if self._cancelled.is_set():
            return True
        return self._deadline is not None and time.monotonic() >= self._deadline

    def raise_if_cancelled(self) -> None:
        if self._cancelled.is_set():
            raise OperationCancelled(self._reason)
        if self._deadline is not None and time.monotonic() >= self._deadline:
            raise OperationCancelled("deadline exceeded")

    def sleep(self, seconds: float) -> None:
        """
        Back off for ``seconds``, waking early on cancel or at the deadline.

        Signature matches what tenacity expects for its ``sleep`` hook.
        """
        remaining = self.remaining()
        if remaining is not None:
            seconds = min(seconds, remaining)
        if seconds > 0:
            self._cancelled.wait(timeout=seconds)


__all__ = ["OperationContext"]

"""
Deadlines threaded through persistence calls.
"""

import threading
import time
from typing import Optional

from .errors import DeadlineExceededError


class Deadline:
    """Absolute point in time after which an operation gives up."""

    def __init__(self, timeout: Optional[float] = None):
        """
        Args:
            timeout: Seconds from now, None for no deadline
        """
        if timeout is not None and timeout < 0:
            raise ValueError("timeout must not be negative")
        self.timeout = timeout
        self.expires_at = None if timeout is None else time.monotonic() + timeout

    def __repr__(self) -> str:
        return f"Deadline(remaining={self.remaining()})"

    def remaining(self) -> Optional[float]:
        """Seconds left, None when unbounded, never negative."""
        if self.expires_at is None:
            return None
        return max(0.0, self.expires_at - time.monotonic())

    @property
    def expired(self) -> bool:
        return self.expires_at is not None and time.monotonic() >= self.expires_at

    def check(self, what: str, table: Optional[str] = None) -> None:
        """Raise DeadlineExceededError if the deadline has passed."""
        if self.expired:
            raise DeadlineExceededError(
                f"Deadline of {self.timeout}s exceeded before {what}", table=table
            )

    def acquire(self, lock: threading.Lock, what: str, table: Optional[str] = None) -> None:
        """
        Acquire a lock, waiting no longer than the deadline allows.

        Raises:
            DeadlineExceededError: If the lock could not be taken in time
        """
        remaining = self.remaining()
        acquired = lock.acquire() if remaining is None else lock.acquire(timeout=remaining)
        if not acquired:
            raise DeadlineExceededError(
                f"Deadline of {self.timeout}s exceeded waiting for {what}", table=table
            )

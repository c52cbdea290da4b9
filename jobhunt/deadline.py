"""Cooperative deadlines for fetch and poll work.

A Deadline bounds a unit of work (a poll cycle, one source, one company).
Children expire no later than their parent, and cancelling a parent
cancels every child. Work checks ``done`` in its loops and returns
partial results instead of raising.
"""

from __future__ import annotations

import threading
import time

from jobhunt.errors import DeadlineExceeded

# Upper bound on a single sleep slice so cancellation is noticed promptly.
_WAIT_SLICE = 0.05


class Deadline:
    """A monotonic-clock deadline with cancellation."""

    def __init__(self, timeout: float | None = None, parent: Deadline | None = None):
        self.parent = parent
        self._cancelled = threading.Event()
        self._expires_at: float | None = None
        if timeout is not None:
            self._expires_at = time.monotonic() + max(0.0, timeout)
        if parent is not None and parent.expires_at is not None:
            if self._expires_at is None or parent.expires_at < self._expires_at:
                self._expires_at = parent.expires_at

    @property
    def expires_at(self) -> float | None:
        return self._expires_at

    def child(self, timeout: float | None = None) -> Deadline:
        return Deadline(timeout, parent=self)

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        node: Deadline | None = self
        while node is not None:
            if node._cancelled.is_set():
                return True
            node = node.parent
        return False

    @property
    def expired(self) -> bool:
        return self._expires_at is not None and time.monotonic() >= self._expires_at

    @property
    def done(self) -> bool:
        return self.cancelled or self.expired

    def remaining(self) -> float | None:
        """Seconds left, or None when unbounded."""
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - time.monotonic())

    def check(self) -> None:
        """Raise DeadlineExceeded if the deadline is done."""
        if self.cancelled:
            raise DeadlineExceeded("cancelled")
        if self.expired:
            raise DeadlineExceeded("deadline exceeded")

    def wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``. Returns False if the deadline ended first."""
        end = time.monotonic() + max(0.0, seconds)
        while True:
            if self.done:
                return False
            left = end - time.monotonic()
            if left <= 0:
                return True
            self._cancelled.wait(min(left, _WAIT_SLICE))

    def timeout_for(self, default: float) -> float:
        """Clamp a request timeout to what is left of the deadline."""
        left = self.remaining()
        if left is None:
            return default
        return max(0.001, min(default, left))

    def __repr__(self) -> str:
        return f"Deadline(remaining={self.remaining()!r}, cancelled={self.cancelled})"


def background() -> Deadline:
    """An unbounded deadline, used when the caller supplies none."""
    return Deadline()

"""Cancellation context threaded through digest resolution."""

import threading
import time
from typing import Optional


class ContextCancelled(Exception):
    """Raised when a resolution is aborted through its context"""


class DeadlineExceeded(ContextCancelled):
    """Raised when a context's deadline passes before the work finishes"""


class ResolveContext:
    """Carries cancellation and an optional deadline for one resolution.

    The context can be cancelled from another thread with cancel(); work
    that blocks polls check() or remaining() and aborts promptly.
    """

    def __init__(self, timeout: Optional[float] = None, cancel_event: Optional[threading.Event] = None):
        """Initialize context

        Args:
            timeout: Seconds from now until the deadline (None = no deadline)
            cancel_event: Event shared with the canceller (created if omitted)
        """
        self._event = cancel_event or threading.Event()
        self.deadline = time.monotonic() + timeout if timeout is not None else None

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, or None without one"""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def check(self) -> None:
        """Raise if the context was cancelled or its deadline has passed"""
        if self.cancelled:
            raise ContextCancelled("context cancelled")
        if self.deadline is not None and time.monotonic() >= self.deadline:
            raise DeadlineExceeded("context deadline exceeded")


def background() -> ResolveContext:
    """Return a context that is never cancelled and has no deadline"""
    return ResolveContext()

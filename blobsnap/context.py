"""
Cancellation and deadline context for storage operations.

A Context is passed to every storage operation. Buckets call ``check()``
before each backend request and while streaming, the same way a
``cancellation_check`` callable is polled between upload chunks.
"""

import threading
import time
from typing import Optional

from .errors import DeadlineExceeded, OperationCancelled


class Context:
    """
    Cancellation flag with an optional deadline.

    Child contexts created with ``with_timeout`` or ``with_cancel`` are
    cancelled when their parent is.
    """

    def __init__(self, deadline: Optional[float] = None, parent: Optional['Context'] = None):
        """
        Args:
            deadline: Absolute ``time.monotonic()`` value, or None for no deadline
            parent: Context whose cancellation propagates to this one
        """
        self._parent = parent
        self._deadline = deadline
        self._cancelled = threading.Event()
        self._reason = None

        if parent is not None and parent.deadline is not None:
            if deadline is None or parent.deadline < deadline:
                self._deadline = parent.deadline

    @property
    def deadline(self) -> Optional[float]:
        return self._deadline

    def cancel(self, reason: str = 'context cancelled'):
        """Cancel this context and every context derived from it."""
        self._reason = reason
        self._cancelled.set()

    def cancelled(self) -> bool:
        if self._cancelled.is_set():
            return True
        return self._parent is not None and self._parent.cancelled()

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, or None without a deadline."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def err(self):
        """Return the error describing why the context is done, or None."""
        if self._cancelled.is_set():
            return OperationCancelled(self._reason)
        if self._parent is not None:
            parent_err = self._parent.err()
            if parent_err is not None:
                return parent_err
        if self._deadline is not None and time.monotonic() >= self._deadline:
            return DeadlineExceeded('context deadline exceeded')
        return None

    def check(self):
        """
        Raise if the context is cancelled or past its deadline.

        Raises:
            OperationCancelled: If cancel() was called on this or a parent context
            DeadlineExceeded: If the deadline has passed
        """
        err = self.err()
        if err is not None:
            raise err

    def with_timeout(self, seconds: float) -> 'Context':
        return Context(deadline=time.monotonic() + seconds, parent=self)

    def with_cancel(self) -> 'Context':
        return Context(parent=self)

    def __repr__(self):
        return f'<Context cancelled={self.cancelled()} remaining={self.remaining()}>'


def background() -> Context:
    """Return a context that is never cancelled and has no deadline."""
    return Context()


def ensure(ctx: Optional[Context]) -> Context:
    return ctx if ctx is not None else background()

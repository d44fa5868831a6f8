"""Cooperative cancellation and deadlines for long-running bulk work."""

import time
from typing import Optional

from ..exceptions import OperationCancelledError, OperationTimeoutError


class CancellationToken:
    """Cancellation flag with an optional deadline.

    Checked by the batch processor between items and by the template engine
    between dates. ``timeout`` is in seconds, measured from construction.
    """

    def __init__(self, timeout: Optional[float] = None):
        self._cancelled = False
        self._reason: Optional[str] = None
        self.deadline = time.monotonic() + timeout if timeout is not None else None

    def cancel(self, reason: str = "Operation cancelled") -> None:
        self._cancelled = True
        self._reason = reason

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    @property
    def is_expired(self) -> bool:
        return self.deadline is not None and time.monotonic() >= self.deadline

    def raise_if_stopped(self) -> None:
        """Raise if cancellation was requested or the deadline has passed."""
        if self._cancelled:
            raise OperationCancelledError(self._reason or "Operation cancelled")
        if self.is_expired:
            raise OperationTimeoutError("Operation deadline exceeded")

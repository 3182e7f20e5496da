"""Cooperative cancellation for long-running fetches.

Transfers are the only long-running step of a download, so a caller-supplied
:class:`CancellationToken` is passed straight through to the strategy's
``fetch``.  Strategies poll the token between chunks instead of relying on
thread interruption so partially written temporary files can be cleaned up.
"""

from __future__ import annotations

import threading
import time
from typing import Optional

from .errors import DownloadCancelledError


class CancellationToken:
    """Thread-safe cancellation token with an optional deadline.

    Examples:
        >>> token = CancellationToken()
        >>> token.is_cancelled()
        False
        >>> token.cancel()
        >>> token.is_cancelled()
        True
    """

    def __init__(self, *, timeout: Optional[float] = None) -> None:
        self._is_cancelled = threading.Event()
        self._deadline = time.monotonic() + timeout if timeout is not None else None

    @classmethod
    def with_timeout(cls, timeout: Optional[float]) -> "CancellationToken":
        """Return a token that reports cancellation once ``timeout`` seconds elapse."""
        return cls(timeout=timeout)

    def cancel(self) -> None:
        """Signal that cancellation has been requested."""
        self._is_cancelled.set()

    def is_cancelled(self) -> bool:
        """Return True once cancelled explicitly or past the deadline."""
        if self._is_cancelled.is_set():
            return True
        if self._deadline is not None and time.monotonic() >= self._deadline:
            self._is_cancelled.set()
            return True
        return False

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, or None when no deadline was set."""
        if self._deadline is None:
            return None
        return max(self._deadline - time.monotonic(), 0.0)

    def raise_if_cancelled(self, *, token: Optional[str] = None) -> None:
        """Raise :class:`DownloadCancelledError` when cancellation was requested."""
        if self.is_cancelled():
            subject = f"Cask '{token}'" if token else "artifact"
            raise DownloadCancelledError(f"Download of {subject} was cancelled", token=token)


__all__ = ["CancellationToken"]

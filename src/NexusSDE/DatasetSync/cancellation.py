"""Cooperative cancellation for work running outside the event loop.

Hashing and archive extraction run in worker threads, where cancelling the
awaiting task does not stop the thread. Those routines poll a
:class:`CancellationToken` between units of work instead.
"""

from __future__ import annotations

import threading

__all__ = ["CancellationToken", "OperationCancelled"]


class OperationCancelled(Exception):
    """Raised inside worker code when its token has been cancelled."""


class CancellationToken:
    """Thread-safe cancellation token for cooperative task cancellation.

    Examples:
        >>> token = CancellationToken()
        >>> token.is_cancelled()
        False
        >>> token.cancel()
        >>> token.is_cancelled()
        True
    """

    def __init__(self) -> None:
        self._is_cancelled = threading.Event()

    def cancel(self) -> None:
        """Signal that cancellation has been requested."""
        self._is_cancelled.set()

    def is_cancelled(self) -> bool:
        return self._is_cancelled.is_set()

    def raise_if_cancelled(self) -> None:
        """Raise :class:`OperationCancelled` when cancellation was requested."""
        if self._is_cancelled.is_set():
            raise OperationCancelled("operation cancelled")

    def reset(self) -> None:
        """Reset the token to its initial state.

        This should only be used for testing or when reusing tokens
        in controlled scenarios.
        """
        self._is_cancelled.clear()

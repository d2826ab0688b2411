"""
Cancellation support for deployment runs.

A token is checked by the orchestrator between stages, never in the middle
of one: once cancelled, no new creation calls are issued but calls already
in flight complete and their outcomes are kept.
"""

import threading
from typing import Protocol


class CancellationToken(Protocol):
    """Protocol for cancellation tokens."""

    def is_cancelled(self) -> bool:
        """Check if cancellation has been requested."""
        ...

    def throw_if_cancelled(self) -> None:
        """Raise exception if cancelled."""
        ...


class SimpleCancellationToken:
    """Thread-safe cancellation token; ``cancel()`` may be called from a signal handler."""

    def __init__(self) -> None:
        self._cancelled = threading.Event()

    def cancel(self) -> None:
        """Request cancellation."""
        self._cancelled.set()

    def is_cancelled(self) -> bool:
        return self._cancelled.is_set()

    def throw_if_cancelled(self) -> None:
        if self._cancelled.is_set():
            raise DeploymentCancelledException("Deployment cancelled")


class DeploymentCancelledException(Exception):
    """Raised when a deployment is cancelled between stages."""
    pass

"""Error types for the file mutex.

Stale locks are not errors: a lock or reader registration whose owning
process is gone is discarded silently and the operation is retried.
"""
from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path


class LockError(Exception):
    """Base class for all file-mutex errors."""


class LockTimeoutError(LockError, TimeoutError):
    """Raised when a lock could not be obtained within its timeout.

    Parameters
    ----------
    path:
        The lock path that stayed contended.
    message:
        Human-readable description. Defaults to ``"<path> is locked"``.
    blocking_pids:
        PIDs of the processes still holding the lock, when known. For a
        writer waiting on readers these are the reader PIDs.
    """

    def __init__(
        self,
        path: str | Path,
        message: str | None = None,
        blocking_pids: Iterable[int] = (),
    ) -> None:
        self.path = Path(path)
        self.blocking_pids: tuple[int, ...] = tuple(blocking_pids)
        super().__init__(message or f"{self.path} is locked")

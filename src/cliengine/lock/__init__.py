"""Filesystem reader/writer mutex.

Locks are plain directories and files next to a lock path, so they work
across unrelated processes on one host without a server, and a lock left
behind by a crashed process is recovered by the next process that sees it.
"""
from __future__ import annotations

from cliengine.lock.errors import LockError, LockTimeoutError
from cliengine.lock.process import pid_active
from cliengine.lock.rwlock import LockManager, ReleaseFn
from cliengine.lock.update_lock import UpdateLock

__all__ = [
    "LockError",
    "LockManager",
    "LockTimeoutError",
    "ReleaseFn",
    "UpdateLock",
    "pid_active",
]

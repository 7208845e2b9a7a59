"""The lock guarding the plugin cache against concurrent rebuilds."""
from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from cliengine.lock.errors import LockError
from cliengine.lock.rwlock import LockManager, ReleaseFn

logger = logging.getLogger(__name__)


class UpdateLock:
    """A :class:`LockManager` bound to one lock path and timeout.

    Every CLI process holds a read registration on the update lock while it
    runs. A process that needs to rebuild shared state upgrades to the
    writer lock, which waits for all other readers to finish first.
    """

    def __init__(self, locks: LockManager, path: str | Path, timeout: float | None = None) -> None:
        self.locks = locks
        self.path = Path(path)
        self.timeout = timeout

    def __repr__(self) -> str:
        return f"UpdateLock(path={str(self.path)!r}, timeout={self.timeout!r})"

    def read(self) -> ReleaseFn:
        return self.locks.read(self.path, self.timeout)

    def unread(self) -> None:
        self.locks.unread(self.path, self.timeout)

    def upgrade(self) -> ReleaseFn:
        """Drop the read registration and take the writer lock.

        Returns the downgrade function.
        """
        return self.locks.upgrade(self.path, self.timeout)

    @contextmanager
    def upgraded(self) -> Iterator[None]:
        """Hold the writer lock for the duration of the block.

        If the block raises and the downgrade then fails too, the downgrade
        error is logged and the block's exception propagates.
        """
        downgrade = self.upgrade()
        try:
            yield
        except BaseException:
            try:
                downgrade()
            except LockError as exc:
                logger.warning("downgrade of %s failed after an error: %s", self.path, exc)
            raise
        downgrade()

    def has_writer(self) -> bool:
        return self.locks.has_writer(self.path)

    def has_readers(self, skip_own_pid: bool = False) -> bool:
        return self.locks.has_readers(self.path, self.timeout, skip_own_pid)

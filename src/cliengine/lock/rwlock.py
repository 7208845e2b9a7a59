"""Filesystem reader/writer mutex.

A lock is identified by a path prefix (the *lock path*). Everything the
lock needs lives next to it as ordinary files and directories, so the lock
state can be inspected and cleaned up by any process:

``<path>.writer/pid``
    Directory lock held by the single active writer.
``<path>.readers``
    Newline-separated PIDs of the registered readers.
``<path>.readers.lock/pid``
    Directory lock serialising updates to the readers file.

A directory lock is taken by ``mkdir``, which is atomic on every platform.
The owner writes its PID inside; a lock whose owner is no longer alive is
stale and is removed by whichever process next runs into it.

Usage
-----
::

    from cliengine.lock import LockManager

    locks = LockManager()
    locks.install_exit_hook()

    release = locks.read(cache_dir / "update.lock")
    try:
        ...  # shared access
    finally:
        release()

    release = locks.write(cache_dir / "update.lock", timeout=10)
    try:
        ...  # exclusive access
    finally:
        release()
"""
from __future__ import annotations

import atexit
import logging
import os
import shutil
import signal
import threading
import time
from collections.abc import Callable, Iterable
from pathlib import Path

from cliengine.lock.errors import LockError, LockTimeoutError
from cliengine.lock import process

logger = logging.getLogger(__name__)

ReleaseFn = Callable[[], None]

PID_FILE = "pid"

#: Seconds a lock directory without a readable pid file is still treated as
#: held. Covers the window between ``mkdir`` and the owner writing its PID.
STALE_GRACE = 5.0

DEFAULT_TIMEOUT = 60.0
DEFAULT_POLL_INTERVAL = 1.0


def _parse_pid(text: str) -> int | None:
    try:
        return int(text.strip())
    except ValueError:
        return None


def _once(fn: Callable[[], None]) -> ReleaseFn:
    done = False

    def release() -> None:
        nonlocal done
        if done:
            return
        done = True
        fn()

    return release


def _exit_on_signal(signum: int, frame: object) -> None:
    raise SystemExit(128 + signum)


class LockManager:
    """Owns the directory locks and reader registrations of one process.

    Parameters
    ----------
    pid:
        PID written into lock files. Defaults to ``os.getpid()``; tests pass
        distinct values to simulate several processes in one interpreter.
    pid_active:
        Liveness check for other PIDs. The manager's own PID is always
        considered alive.
    sleep:
        Called with ``poll_interval`` between polls of a contended lock.
    poll_interval:
        Seconds between polls. Each poll also consumes this much of the
        caller's timeout budget.
    default_timeout:
        Timeout in seconds used when an operation is called without one.
    """

    def __init__(
        self,
        pid: int | None = None,
        *,
        pid_active: Callable[[int], bool] | None = None,
        sleep: Callable[[float], None] | None = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        default_timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.pid = pid if pid is not None else os.getpid()
        self.poll_interval = poll_interval
        self.default_timeout = default_timeout
        self._pid_active = pid_active or process.pid_active
        self._sleep = sleep or time.sleep
        self._locks: set[Path] = set()
        self._readers: set[Path] = set()
        self._exit_hook_installed = False

    def __repr__(self) -> str:
        return (
            f"LockManager(pid={self.pid}, locks={sorted(map(str, self._locks))}, "
            f"readers={sorted(map(str, self._readers))})"
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def is_active(self, pid: int | None) -> bool:
        """Return True if ``pid`` names a live process."""
        if pid is None:
            return False
        return pid == self.pid or self._pid_active(pid)

    def _timeout(self, timeout: float | None) -> float:
        return self.default_timeout if timeout is None else timeout

    def _wait(self) -> None:
        self._sleep(self.poll_interval)

    @staticmethod
    def _writer_path(path: Path) -> Path:
        return Path(f"{path}.writer")

    @staticmethod
    def _readers_path(path: Path) -> Path:
        return Path(f"{path}.readers")

    @staticmethod
    def _sublock_path(path: Path) -> Path:
        return Path(f"{path}.readers.lock")

    @property
    def held_locks(self) -> frozenset[Path]:
        """Directory locks currently held by this manager."""
        return frozenset(self._locks)

    @property
    def registrations(self) -> frozenset[Path]:
        """Lock paths this manager is registered as a reader of."""
        return frozenset(self._readers)

    # ------------------------------------------------------------------
    # Directory locks
    # ------------------------------------------------------------------

    def acquire_directory_lock(
        self, path: str | Path, timeout: float | None = None
    ) -> ReleaseFn:
        """Take the exclusive directory lock at ``path``.

        Stale locks (owner PID no longer alive) are removed and the
        acquisition retried immediately, without consuming ``timeout``.

        Returns
        -------
        ReleaseFn
            Removes the lock directory. Calling it more than once is a no-op.

        Raises
        ------
        LockTimeoutError
            If a live process still holds the lock when ``timeout`` runs out.
        """
        path = Path(path)
        remaining = self._timeout(timeout)
        path.parent.mkdir(parents=True, exist_ok=True)
        while True:
            try:
                path.mkdir()
            except FileExistsError:
                if not self._owner_active(path):
                    logger.debug("removing stale lock %s", path)
                    self._remove_lock_dir(path)
                    continue
                if remaining <= 0:
                    raise LockTimeoutError(path) from None
                logger.debug("locking %s %ss...", path, remaining)
                self._wait()
                remaining -= self.poll_interval
                continue
            break

        self._locks.add(path)
        try:
            (path / PID_FILE).write_text(str(self.pid), encoding="utf-8")
        except OSError:
            self._release_directory_lock(path)
            raise
        return _once(lambda: self._release_directory_lock(path))

    def _owner_active(self, lock_dir: Path) -> bool:
        try:
            text = (lock_dir / PID_FILE).read_text(encoding="utf-8")
        except FileNotFoundError:
            text = ""
        pid = _parse_pid(text)
        if pid is None:
            return not self._past_grace(lock_dir)
        active = self.is_active(pid)
        if not active:
            logger.debug("stale pid %s %s", lock_dir, pid)
        return active

    @staticmethod
    def _past_grace(lock_dir: Path) -> bool:
        try:
            age = time.time() - lock_dir.stat().st_mtime
        except FileNotFoundError:
            return True
        return age > STALE_GRACE

    def _release_directory_lock(self, path: Path) -> None:
        if path not in self._locks:
            return
        self._locks.discard(path)
        self._remove_lock_dir(path)

    @staticmethod
    def _remove_lock_dir(path: Path) -> None:
        try:
            shutil.rmtree(path)
        except FileNotFoundError:
            # another process cleaned it up first
            pass

    # ------------------------------------------------------------------
    # Readers file
    # ------------------------------------------------------------------

    def _read_readers(self, path: Path) -> list[int | None]:
        try:
            text = self._readers_path(path).read_text(encoding="utf-8")
        except FileNotFoundError:
            return []
        return [_parse_pid(line) for line in text.splitlines() if line.strip()]

    def _save_readers(self, path: Path, pids: Iterable[int]) -> None:
        pids = list(pids)
        readers_path = self._readers_path(path)
        if not pids:
            readers_path.unlink(missing_ok=True)
            return
        readers_path.write_text("\n".join(str(pid) for pid in pids), encoding="utf-8")

    def active_readers(
        self,
        path: str | Path,
        timeout: float | None = None,
        skip_own_pid: bool = False,
    ) -> list[int]:
        """Return the PIDs of live readers of ``path``.

        Dead or unparsable entries are pruned from the readers file as a
        side effect.
        """
        path = Path(path)
        release = self.acquire_directory_lock(
            self._sublock_path(path), self._timeout(timeout)
        )
        try:
            entries = self._read_readers(path)
            active = [pid for pid in entries if pid is not None and self.is_active(pid)]
            if len(active) != len(entries):
                self._save_readers(path, active)
        finally:
            release()
        if skip_own_pid:
            active = [pid for pid in active if pid != self.pid]
        return active

    def has_readers(
        self,
        path: str | Path,
        timeout: float | None = None,
        skip_own_pid: bool = False,
    ) -> bool:
        """Return True if any live process is registered as a reader."""
        return bool(self.active_readers(path, timeout, skip_own_pid))

    def writer_pid(self, path: str | Path) -> int | None:
        """Return the PID of the live writer of ``path``, or None."""
        pid_path = self._writer_path(Path(path)) / PID_FILE
        try:
            text = pid_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        pid = _parse_pid(text)
        return pid if self.is_active(pid) else None

    def has_writer(self, path: str | Path) -> bool:
        """Return True if a live process holds the writer lock."""
        return self.writer_pid(path) is not None

    # ------------------------------------------------------------------
    # Read / write
    # ------------------------------------------------------------------

    def read(self, path: str | Path, timeout: float | None = None) -> ReleaseFn:
        """Register this process as a reader of ``path``.

        Waits while a live writer holds the lock.

        Returns
        -------
        ReleaseFn
            Equivalent to ``unread(path)``; idempotent.

        Raises
        ------
        LockTimeoutError
            If the writer is still active when ``timeout`` runs out.
        """
        path = Path(path)
        timeout = self._timeout(timeout)
        logger.debug("read %s", path)
        remaining = timeout
        while True:
            writer = self.writer_pid(path)
            if writer is None:
                break
            if remaining <= 0:
                raise LockTimeoutError(
                    path,
                    f"{path} is locked with an active writer: {writer}",
                    blocking_pids=[writer],
                )
            logger.debug("waiting for writer: path=%s timeout=%s", path, remaining)
            self._wait()
            remaining -= self.poll_interval

        release = self.acquire_directory_lock(self._sublock_path(path), max(remaining, 0))
        try:
            entries = [pid for pid in self._read_readers(path) if pid is not None]
            if self.pid not in entries:
                self._save_readers(path, [*entries, self.pid])
        finally:
            release()
        self._readers.add(path)
        return _once(lambda: self.unread(path, timeout))

    def unread(self, path: str | Path, timeout: float | None = None) -> None:
        """Remove this process from the readers of ``path``.

        Calling it when not registered is a no-op.
        """
        path = Path(path)
        release = self.acquire_directory_lock(
            self._sublock_path(path), self._timeout(timeout)
        )
        try:
            entries = self._read_readers(path)
            if self.pid in entries:
                self._save_readers(
                    path, [pid for pid in entries if pid is not None and pid != self.pid]
                )
        finally:
            release()
        self._readers.discard(path)

    def write(
        self,
        path: str | Path,
        timeout: float | None = None,
        skip_own_pid: bool = False,
    ) -> ReleaseFn:
        """Take the exclusive writer lock of ``path``.

        Waits until the readers observed when the call started have all gone,
        then acquires ``<path>.writer``. Readers registering after the first
        sample do not extend the wait.

        Parameters
        ----------
        skip_own_pid:
            Do not wait on this process's own reader registration.

        Raises
        ------
        LockTimeoutError
            If readers remain or another writer holds the lock when
            ``timeout`` runs out. ``blocking_pids`` names the readers.
        """
        path = Path(path)
        timeout = self._timeout(timeout)
        logger.debug("write %s", path)
        remaining = timeout
        snapshot: set[int] | None = None
        while True:
            readers = self.active_readers(path, max(remaining, 0), skip_own_pid)
            if snapshot is None:
                snapshot = set(readers)
            else:
                readers = [pid for pid in readers if pid in snapshot]
            if not readers:
                break
            if remaining <= 0:
                noun = "a reader" if len(readers) == 1 else "readers"
                raise LockTimeoutError(
                    path,
                    f"{path} is locked with {noun} active: "
                    + " ".join(str(pid) for pid in readers),
                    blocking_pids=readers,
                )
            logger.debug(
                "waiting for readers: %s timeout=%s",
                " ".join(str(pid) for pid in readers),
                remaining,
            )
            self._wait()
            remaining -= self.poll_interval

        return self.acquire_directory_lock(self._writer_path(path), remaining)

    def upgrade(self, path: str | Path, timeout: float | None = None) -> ReleaseFn:
        """Trade this process's reader registration for the writer lock.

        Returns
        -------
        ReleaseFn
            Downgrades back: releases the writer lock and registers as a
            reader again. Idempotent.
        """
        path = Path(path)
        timeout = self._timeout(timeout)
        self.unread(path, timeout)
        try:
            release_writer = self.write(path, timeout, skip_own_pid=True)
        except LockError:
            self.read(path, timeout)
            raise

        def downgrade() -> None:
            release_writer()
            try:
                self.read(path, timeout)
            except LockError as exc:
                logger.warning("could not register again as a reader of %s: %s", path, exc)
                raise

        return _once(downgrade)

    # ------------------------------------------------------------------
    # Process exit
    # ------------------------------------------------------------------

    def dispose_all(self) -> None:
        """Drop every lock and reader registration this manager still holds.

        Runs synchronously; intended for interpreter exit.
        """
        for lock_dir in list(self._locks):
            try:
                self._release_directory_lock(lock_dir)
            except OSError as exc:
                logger.debug("could not remove lock %s: %s", lock_dir, exc)
        for path in list(self._readers):
            try:
                self.unread(path, timeout=0)
            except LockTimeoutError:
                logger.debug("readers of %s busy; removing own pid unguarded", path)
                entries = self._read_readers(path)
                self._save_readers(
                    path, [pid for pid in entries if pid is not None and pid != self.pid]
                )
                self._readers.discard(path)
            except OSError as exc:
                logger.debug("could not unregister reader of %s: %s", path, exc)

    def install_exit_hook(
        self, signals: Iterable[signal.Signals] = (signal.SIGTERM,)
    ) -> None:
        """Register :meth:`dispose_all` to run at interpreter exit.

        Signals in ``signals`` that still have their default handler are
        turned into ``SystemExit`` so that exit hooks run. Safe to call
        repeatedly.
        """
        if self._exit_hook_installed:
            return
        self._exit_hook_installed = True
        atexit.register(self.dispose_all)
        if threading.current_thread() is not threading.main_thread():
            return
        for signum in signals:
            if signal.getsignal(signum) is signal.SIG_DFL:
                signal.signal(signum, _exit_on_signal)

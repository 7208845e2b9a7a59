"""Unit tests for cliengine.lock.rwlock — directory locks, readers, writers,
upgrades, stale-lock recovery and exit cleanup.
"""
from __future__ import annotations

import logging
import os
import signal
import time
from pathlib import Path

import pytest

from cliengine.lock import LockError, LockManager, LockTimeoutError
from cliengine.lock import rwlock
from cliengine.lock.rwlock import STALE_GRACE, _exit_on_signal


def _readers_file(path: Path) -> Path:
    return Path(f"{path}.readers")


def _writer_dir(path: Path) -> Path:
    return Path(f"{path}.writer")


def _age(path: Path, seconds: float) -> None:
    past = time.time() - seconds
    os.utime(path, (past, past))


# ===========================================================================
# LockTimeoutError
# ===========================================================================


class TestLockTimeoutError:
    def test_is_lock_error_and_timeout_error(self) -> None:
        error = LockTimeoutError("/tmp/x")
        assert isinstance(error, LockError)
        assert isinstance(error, TimeoutError)

    def test_default_message(self) -> None:
        assert str(LockTimeoutError("/tmp/x")) == "/tmp/x is locked"

    def test_blocking_pids_is_tuple(self) -> None:
        error = LockTimeoutError("/tmp/x", "busy", blocking_pids=[3, 4])
        assert error.blocking_pids == (3, 4)
        assert error.path == Path("/tmp/x")


# ===========================================================================
# Directory locks
# ===========================================================================


class TestAcquireDirectoryLock:
    def test_creates_directory_with_pid(self, tmp_path: Path, make_locks) -> None:
        locks = make_locks(100)
        lock_dir = tmp_path / "a" / "b.lock"
        locks.acquire_directory_lock(lock_dir)
        assert (lock_dir / "pid").read_text() == "100"
        assert lock_dir in locks.held_locks

    def test_release_removes_directory(self, tmp_path: Path, make_locks) -> None:
        locks = make_locks(100)
        lock_dir = tmp_path / "x.lock"
        release = locks.acquire_directory_lock(lock_dir)
        release()
        assert not lock_dir.exists()
        assert locks.held_locks == frozenset()

    def test_release_twice_is_noop(self, tmp_path: Path, make_locks) -> None:
        a = make_locks(100)
        b = make_locks(200)
        lock_dir = tmp_path / "x.lock"
        release = a.acquire_directory_lock(lock_dir)
        release()
        b.acquire_directory_lock(lock_dir)
        release()
        assert (lock_dir / "pid").read_text() == "200"

    def test_times_out_on_live_owner(self, tmp_path: Path, make_locks, sleeps) -> None:
        a = make_locks(100)
        b = make_locks(200)
        lock_dir = tmp_path / "x.lock"
        a.acquire_directory_lock(lock_dir)
        with pytest.raises(LockTimeoutError, match="is locked"):
            b.acquire_directory_lock(lock_dir, timeout=3)
        assert sleeps == [1.0, 1.0, 1.0]

    def test_zero_timeout_fails_without_sleeping(self, tmp_path: Path, make_locks, sleeps) -> None:
        a = make_locks(100)
        b = make_locks(200)
        lock_dir = tmp_path / "x.lock"
        a.acquire_directory_lock(lock_dir)
        with pytest.raises(LockTimeoutError):
            b.acquire_directory_lock(lock_dir, timeout=0)
        assert sleeps == []

    def test_stale_owner_is_replaced_immediately(
        self, tmp_path: Path, make_locks, processes, sleeps
    ) -> None:
        a = make_locks(100)
        b = make_locks(200)
        lock_dir = tmp_path / "x.lock"
        a.acquire_directory_lock(lock_dir)
        processes.crash(100)
        b.acquire_directory_lock(lock_dir, timeout=0)
        assert (lock_dir / "pid").read_text() == "200"
        assert sleeps == []

    def test_fresh_directory_without_pid_is_held(self, tmp_path: Path, make_locks) -> None:
        locks = make_locks(100)
        lock_dir = tmp_path / "x.lock"
        lock_dir.mkdir()
        with pytest.raises(LockTimeoutError):
            locks.acquire_directory_lock(lock_dir, timeout=0)

    def test_old_directory_without_pid_is_stale(self, tmp_path: Path, make_locks) -> None:
        locks = make_locks(100)
        lock_dir = tmp_path / "x.lock"
        lock_dir.mkdir()
        _age(lock_dir, STALE_GRACE + 10)
        locks.acquire_directory_lock(lock_dir, timeout=0)
        assert (lock_dir / "pid").read_text() == "100"

    def test_old_directory_with_garbled_pid_is_stale(self, tmp_path: Path, make_locks) -> None:
        locks = make_locks(100)
        lock_dir = tmp_path / "x.lock"
        lock_dir.mkdir()
        (lock_dir / "pid").write_text("not a pid")
        _age(lock_dir, STALE_GRACE + 10)
        locks.acquire_directory_lock(lock_dir, timeout=0)
        assert (lock_dir / "pid").read_text() == "100"


# ===========================================================================
# Readers
# ===========================================================================


class TestRead:
    def test_registers_pid(self, lock_path: Path, make_locks) -> None:
        locks = make_locks(100)
        locks.read(lock_path)
        assert _readers_file(lock_path).read_text().splitlines() == ["100"]
        assert lock_path in locks.registrations

    def test_read_twice_registers_once(self, lock_path: Path, make_locks) -> None:
        locks = make_locks(100)
        locks.read(lock_path)
        locks.read(lock_path)
        assert locks.active_readers(lock_path) == [100]

    def test_several_readers(self, lock_path: Path, make_locks) -> None:
        make_locks(100).read(lock_path)
        make_locks(200).read(lock_path)
        assert make_locks(300).active_readers(lock_path) == [100, 200]

    def test_release_unregisters_and_removes_empty_file(self, lock_path: Path, make_locks) -> None:
        locks = make_locks(100)
        release = locks.read(lock_path)
        release()
        assert not _readers_file(lock_path).exists()
        assert locks.registrations == frozenset()

    def test_release_is_idempotent(self, lock_path: Path, make_locks) -> None:
        a = make_locks(100)
        release = a.read(lock_path)
        release()
        a.read(lock_path)
        release()
        assert a.active_readers(lock_path) == [100]

    def test_unread_keeps_other_readers(self, lock_path: Path, make_locks) -> None:
        a = make_locks(100)
        b = make_locks(200)
        a.read(lock_path)
        b.read(lock_path)
        a.unread(lock_path)
        assert _readers_file(lock_path).read_text().splitlines() == ["200"]

    def test_unread_when_not_registered_is_noop(self, lock_path: Path, make_locks) -> None:
        make_locks(200).read(lock_path)
        make_locks(100).unread(lock_path)
        assert make_locks(300).active_readers(lock_path) == [200]

    def test_sublock_is_released(self, lock_path: Path, make_locks) -> None:
        locks = make_locks(100)
        locks.read(lock_path)
        assert not Path(f"{lock_path}.readers.lock").exists()
        assert locks.held_locks == frozenset()

    def test_blocked_by_live_writer(self, lock_path: Path, make_locks, sleeps) -> None:
        writer = make_locks(100)
        reader = make_locks(200)
        writer.write(lock_path)
        with pytest.raises(LockTimeoutError) as excinfo:
            reader.read(lock_path, timeout=2)
        assert excinfo.value.blocking_pids == (100,)
        assert "active writer: 100" in str(excinfo.value)
        assert sleeps == [1.0, 1.0]
        assert not _readers_file(lock_path).exists()

    def test_proceeds_once_writer_releases(self, lock_path: Path, make_locks) -> None:
        writer = make_locks(100)
        release_writer = writer.write(lock_path)

        def sleep(seconds: float) -> None:
            release_writer()

        reader = make_locks(200, sleep=sleep)
        reader.read(lock_path)
        assert reader.active_readers(lock_path) == [200]

    def test_sublock_wait_uses_remaining_budget(self, lock_path: Path, make_locks) -> None:
        release_writer = make_locks(100).write(lock_path)
        holder = make_locks(300)
        polls: list[float] = []

        def sleep(seconds: float) -> None:
            polls.append(seconds)
            if len(polls) == 1:
                release_writer()
                holder.acquire_directory_lock(Path(f"{lock_path}.readers.lock"))

        reader = make_locks(200, sleep=sleep)
        with pytest.raises(LockTimeoutError):
            reader.read(lock_path, timeout=3)
        assert polls == [1.0, 1.0, 1.0]
        assert not _readers_file(lock_path).exists()

    def test_ignores_dead_writer(self, lock_path: Path, make_locks, processes) -> None:
        make_locks(100).write(lock_path)
        processes.crash(100)
        reader = make_locks(200)
        reader.read(lock_path, timeout=0)
        assert reader.writer_pid(lock_path) is None
        assert reader.active_readers(lock_path) == [200]


class TestActiveReaders:
    def test_no_file_means_no_readers(self, lock_path: Path, make_locks) -> None:
        locks = make_locks(100)
        assert locks.active_readers(lock_path) == []
        assert locks.has_readers(lock_path) is False

    def test_prunes_dead_and_garbled_entries(self, lock_path: Path, make_locks) -> None:
        locks = make_locks(100)
        lock_path.parent.mkdir(parents=True)
        _readers_file(lock_path).write_text("100\n999\ngarbage\n\n")
        assert locks.active_readers(lock_path) == [100]
        assert _readers_file(lock_path).read_text().splitlines() == ["100"]

    def test_all_dead_removes_file(self, lock_path: Path, make_locks) -> None:
        locks = make_locks(100)
        lock_path.parent.mkdir(parents=True)
        _readers_file(lock_path).write_text("998\n999")
        assert locks.active_readers(lock_path) == []
        assert not _readers_file(lock_path).exists()

    def test_skip_own_pid(self, lock_path: Path, make_locks) -> None:
        a = make_locks(100)
        make_locks(200).read(lock_path)
        a.read(lock_path)
        assert a.active_readers(lock_path, skip_own_pid=True) == [200]
        assert a.has_readers(lock_path, skip_own_pid=True) is True

    def test_crashed_reader_is_forgotten(self, lock_path: Path, make_locks, processes) -> None:
        make_locks(100).read(lock_path)
        processes.crash(100)
        assert make_locks(200).has_readers(lock_path) is False


# ===========================================================================
# Writers
# ===========================================================================


class TestWrite:
    def test_acquires_writer_directory(self, lock_path: Path, make_locks) -> None:
        locks = make_locks(100)
        locks.write(lock_path)
        assert (_writer_dir(lock_path) / "pid").read_text() == "100"
        assert locks.writer_pid(lock_path) == 100
        assert locks.has_writer(lock_path) is True

    def test_release_clears_writer(self, lock_path: Path, make_locks) -> None:
        locks = make_locks(100)
        release = locks.write(lock_path)
        release()
        assert not _writer_dir(lock_path).exists()
        assert locks.writer_pid(lock_path) is None

    def test_second_writer_is_excluded(self, lock_path: Path, make_locks) -> None:
        make_locks(100).write(lock_path)
        with pytest.raises(LockTimeoutError, match="is locked"):
            make_locks(200).write(lock_path, timeout=0)

    def test_blocked_by_single_reader(self, lock_path: Path, make_locks, sleeps) -> None:
        make_locks(100).read(lock_path)
        with pytest.raises(LockTimeoutError) as excinfo:
            make_locks(200).write(lock_path, timeout=3)
        assert str(excinfo.value) == f"{lock_path} is locked with a reader active: 100"
        assert excinfo.value.blocking_pids == (100,)
        assert sleeps == [1.0, 1.0, 1.0]
        assert not _writer_dir(lock_path).exists()

    def test_blocked_by_several_readers(self, lock_path: Path, make_locks) -> None:
        make_locks(100).read(lock_path)
        make_locks(101).read(lock_path)
        with pytest.raises(LockTimeoutError) as excinfo:
            make_locks(200).write(lock_path, timeout=0)
        assert str(excinfo.value) == f"{lock_path} is locked with readers active: 100 101"
        assert excinfo.value.blocking_pids == (100, 101)

    def test_own_registration_blocks_without_skip(self, lock_path: Path, make_locks) -> None:
        locks = make_locks(100)
        locks.read(lock_path)
        with pytest.raises(LockTimeoutError):
            locks.write(lock_path, timeout=0)
        locks.write(lock_path, timeout=0, skip_own_pid=True)
        assert locks.writer_pid(lock_path) == 100

    def test_waits_for_reader_to_finish(self, lock_path: Path, make_locks) -> None:
        release_reader = make_locks(100).read(lock_path)
        polls: list[float] = []

        def sleep(seconds: float) -> None:
            polls.append(seconds)
            release_reader()

        writer = make_locks(200, sleep=sleep)
        writer.write(lock_path)
        assert polls == [1.0]
        assert writer.writer_pid(lock_path) == 200

    def test_dead_reader_does_not_block(self, lock_path: Path, make_locks, processes) -> None:
        make_locks(100).read(lock_path)
        processes.crash(100)
        make_locks(200).write(lock_path, timeout=0)

    def test_stale_writer_is_recovered(self, lock_path: Path, make_locks, processes) -> None:
        make_locks(100).write(lock_path)
        processes.crash(100)
        make_locks(200).write(lock_path, timeout=0)
        assert (_writer_dir(lock_path) / "pid").read_text() == "200"

    def test_late_readers_do_not_starve_writer(self, lock_path: Path, make_locks) -> None:
        release_first = make_locks(100).read(lock_path)
        late = make_locks(300)

        def sleep(seconds: float) -> None:
            release_first()
            late.read(lock_path)

        writer = make_locks(200, sleep=sleep)
        writer.write(lock_path)
        assert writer.writer_pid(lock_path) == 200
        assert writer.active_readers(lock_path) == [300]

    def test_sublock_wait_uses_remaining_budget(self, lock_path: Path, make_locks) -> None:
        make_locks(100).read(lock_path)
        holder = make_locks(300)
        polls: list[float] = []

        def sleep(seconds: float) -> None:
            polls.append(seconds)
            if len(polls) == 1:
                holder.acquire_directory_lock(Path(f"{lock_path}.readers.lock"))

        writer = make_locks(200, sleep=sleep)
        with pytest.raises(LockTimeoutError):
            writer.write(lock_path, timeout=3)
        assert polls == [1.0, 1.0, 1.0]
        assert writer.writer_pid(lock_path) is None

    def test_reader_waits_while_writer_holds(self, lock_path: Path, make_locks) -> None:
        release_writer = make_locks(100).write(lock_path)
        with pytest.raises(LockTimeoutError):
            make_locks(200).read(lock_path, timeout=0)
        release_writer()
        make_locks(200).read(lock_path, timeout=0)


# ===========================================================================
# Upgrade
# ===========================================================================


class TestUpgrade:
    def test_trades_registration_for_writer(self, lock_path: Path, make_locks) -> None:
        locks = make_locks(100)
        locks.read(lock_path)
        locks.upgrade(lock_path)
        assert locks.writer_pid(lock_path) == 100
        assert locks.active_readers(lock_path) == []

    def test_downgrade_restores_registration(self, lock_path: Path, make_locks) -> None:
        locks = make_locks(100)
        locks.read(lock_path)
        downgrade = locks.upgrade(lock_path)
        downgrade()
        downgrade()
        assert locks.writer_pid(lock_path) is None
        assert locks.active_readers(lock_path) == [100]

    def test_failure_keeps_registration(self, lock_path: Path, make_locks) -> None:
        a = make_locks(100)
        make_locks(200).read(lock_path)
        a.read(lock_path)
        with pytest.raises(LockTimeoutError) as excinfo:
            a.upgrade(lock_path, timeout=0)
        assert excinfo.value.blocking_pids == (200,)
        assert a.active_readers(lock_path) == [200, 100]
        assert a.writer_pid(lock_path) is None

    def test_failed_downgrade_is_logged(self, lock_path: Path, make_locks, caplog) -> None:
        locks = make_locks(100)
        locks.read(lock_path)
        downgrade = locks.upgrade(lock_path, timeout=0)
        make_locks(300).acquire_directory_lock(Path(f"{lock_path}.readers.lock"))
        with caplog.at_level(logging.WARNING, logger="cliengine.lock.rwlock"):
            with pytest.raises(LockTimeoutError):
                downgrade()
        assert locks.writer_pid(lock_path) is None
        assert "could not register again as a reader" in caplog.text

    def test_waits_for_other_reader(self, lock_path: Path, make_locks) -> None:
        release_other = make_locks(200).read(lock_path)

        def sleep(seconds: float) -> None:
            release_other()

        locks = make_locks(100, sleep=sleep)
        locks.read(lock_path)
        locks.upgrade(lock_path)
        assert locks.writer_pid(lock_path) == 100


# ===========================================================================
# Exit cleanup
# ===========================================================================


class TestDisposeAll:
    def test_releases_everything(self, tmp_path: Path, make_locks) -> None:
        locks = make_locks(100)
        other = make_locks(200)
        locks.write(tmp_path / "one.lock")
        locks.read(tmp_path / "two.lock")
        other.read(tmp_path / "two.lock")

        locks.dispose_all()

        assert locks.held_locks == frozenset()
        assert locks.registrations == frozenset()
        assert not _writer_dir(tmp_path / "one.lock").exists()
        assert other.active_readers(tmp_path / "two.lock") == [200]

    def test_removes_registration_when_sublock_busy(self, lock_path: Path, make_locks) -> None:
        locks = make_locks(100)
        other = make_locks(200)
        locks.read(lock_path)
        other.read(lock_path)
        other.acquire_directory_lock(Path(f"{lock_path}.readers.lock"))

        locks.dispose_all()

        assert _readers_file(lock_path).read_text().splitlines() == ["200"]
        assert locks.registrations == frozenset()

    def test_nothing_held_is_noop(self, make_locks) -> None:
        make_locks(100).dispose_all()


class TestInstallExitHook:
    def test_registers_once(self, make_locks, monkeypatch: pytest.MonkeyPatch) -> None:
        registered: list[object] = []
        monkeypatch.setattr(rwlock.atexit, "register", registered.append)
        locks = make_locks(100)
        locks.install_exit_hook(signals=())
        locks.install_exit_hook(signals=())
        assert registered == [locks.dispose_all]

    def test_default_signal_handler_replaced(
        self, make_locks, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        installed: dict[int, object] = {}
        monkeypatch.setattr(rwlock.atexit, "register", lambda fn: None)
        monkeypatch.setattr(rwlock.signal, "getsignal", lambda signum: signal.SIG_DFL)
        monkeypatch.setattr(rwlock.signal, "signal", installed.__setitem__)
        make_locks(100).install_exit_hook(signals=(signal.SIGTERM,))
        assert installed == {signal.SIGTERM: _exit_on_signal}

    def test_custom_signal_handler_kept(
        self, make_locks, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        installed: dict[int, object] = {}
        monkeypatch.setattr(rwlock.atexit, "register", lambda fn: None)
        monkeypatch.setattr(rwlock.signal, "getsignal", lambda signum: print)
        monkeypatch.setattr(rwlock.signal, "signal", installed.__setitem__)
        make_locks(100).install_exit_hook(signals=(signal.SIGTERM,))
        assert installed == {}

    def test_signal_becomes_system_exit(self) -> None:
        with pytest.raises(SystemExit) as excinfo:
            _exit_on_signal(signal.SIGTERM, None)
        assert excinfo.value.code == 128 + signal.SIGTERM


class TestDefaults:
    def test_own_pid_is_default(self) -> None:
        assert LockManager().pid == os.getpid()

    def test_own_pid_always_active(self) -> None:
        locks = LockManager(12345, pid_active=lambda pid: False)
        assert locks.is_active(12345) is True
        assert locks.is_active(54321) is False
        assert locks.is_active(None) is False

    def test_repr(self) -> None:
        assert "pid=7" in repr(LockManager(7))


# ===========================================================================
# Concurrency scenarios
# ===========================================================================


class TestScenarios:
    def test_second_writer_proceeds_after_first_releases(self, lock_path: Path, make_locks) -> None:
        release_first = make_locks(100).write(lock_path, timeout=2)
        polls: list[float] = []

        def sleep(seconds: float) -> None:
            polls.append(seconds)
            release_first()

        second = make_locks(200, sleep=sleep)
        second.write(lock_path, timeout=2)
        assert polls == [1.0]
        assert second.writer_pid(lock_path) == 200

    def test_dead_writer_pid_recovered_without_waiting(
        self, lock_path: Path, make_locks, sleeps
    ) -> None:
        writer_dir = _writer_dir(lock_path)
        writer_dir.mkdir(parents=True)
        (writer_dir / "pid").write_text("999999")
        locks = make_locks(100)
        locks.read(lock_path, timeout=0.1)
        locks.unread(lock_path)
        locks.write(lock_path, timeout=0.1)
        assert sleeps == []
        assert (writer_dir / "pid").read_text() == "100"

    @pytest.mark.parametrize("count", [0, 1, 5])
    def test_reader_set_converges_to_empty(self, lock_path: Path, make_locks, count: int) -> None:
        releases = [make_locks(100 + n).read(lock_path) for n in range(count)]
        for release in reversed(releases):
            release()
        assert not _readers_file(lock_path).exists()
        assert make_locks(1).has_readers(lock_path) is False

    def test_release_does_not_touch_other_path(self, tmp_path: Path, make_locks) -> None:
        locks = make_locks(100)
        release_one = locks.write(tmp_path / "one.lock")
        locks.write(tmp_path / "two.lock")
        release_one()
        release_one()
        assert locks.writer_pid(tmp_path / "two.lock") == 100

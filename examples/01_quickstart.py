#!/usr/bin/env python3
"""Example: Quickstart — cliengine

Minimal working example: register as a reader of a lock, see that a
writer is kept out, then take the writer lock once the reader is gone.

Usage:
    python examples/01_quickstart.py

Requirements:
    pip install cliengine
"""
from __future__ import annotations

import tempfile
from pathlib import Path

import cliengine
from cliengine.lock import LockManager, LockTimeoutError


def main() -> None:
    print(f"cliengine version: {cliengine.__version__}")

    with tempfile.TemporaryDirectory() as tmp:
        path = Path(tmp) / "update.lock"

        # Two managers with different PIDs stand in for two processes.
        reader = LockManager(pid=1_000_001, pid_active=lambda pid: True)
        writer = LockManager()

        # Step 1: Register as a reader
        release_read = reader.read(path)
        print(f"Readers: {writer.active_readers(path)}")

        # Step 2: A writer cannot get in while the reader is active
        try:
            writer.write(path, timeout=0)
        except LockTimeoutError as exc:
            print(f"Writer blocked: {exc} (blocking pids: {exc.blocking_pids})")

        # Step 3: Once the reader is done, the writer proceeds
        release_read()
        release_write = writer.write(path, timeout=0)
        print(f"Writer PID: {writer.writer_pid(path)}")
        release_write()
        print(f"Writer after release: {writer.writer_pid(path)}")


if __name__ == "__main__":
    main()

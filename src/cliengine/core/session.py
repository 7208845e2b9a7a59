"""Per-invocation lifecycle around the shared plugin cache.

Every CLI process is registered as a reader of the update lock for as long
as it runs a command, so that no other process rebuilds the plugin cache
underneath it::

    with CommandSession(Config.load()) as session:
        command = session.plugins.find_command("cache:show")
        ...
"""
from __future__ import annotations

import logging
from types import TracebackType

from cliengine.core.config import Config
from cliengine.lock import LockManager, ReleaseFn, UpdateLock
from cliengine.plugins import PluginCache, Plugins

logger = logging.getLogger(__name__)


class CommandSession:
    """Holds the read registration, cache and plugins of one invocation.

    Parameters
    ----------
    config:
        Settings; defaults to ``Config.load()``.
    locks:
        Lock manager; defaults to one for this process using
        ``config.lock_timeout``.
    plugins:
        Plugin set; defaults to the built-in and entry-point managers.
    """

    def __init__(
        self,
        config: Config | None = None,
        locks: LockManager | None = None,
        plugins: Plugins | None = None,
    ) -> None:
        self.config = config or Config.load()
        self.locks = locks or LockManager(default_timeout=self.config.lock_timeout)
        self.update_lock = UpdateLock(
            self.locks, self.config.update_lock_path, self.config.lock_timeout
        )
        self.cache = plugins.cache if plugins is not None else PluginCache(self.config, self.update_lock)
        self.plugins = plugins or Plugins(self.config, self.cache)
        self._release: ReleaseFn | None = None

    def __repr__(self) -> str:
        state = "open" if self.is_open else "closed"
        return f"CommandSession({state}, cache_dir={str(self.config.cache_dir)!r})"

    @property
    def is_open(self) -> bool:
        return self._release is not None

    def open(self) -> CommandSession:
        """Register as a reader of the update lock. Idempotent."""
        if self._release is None:
            self.locks.install_exit_hook()
            self._release = self.update_lock.read()
            logger.debug("registered reader of %s", self.update_lock.path)
        return self

    def close(self) -> None:
        """Drop the read registration. Idempotent."""
        release, self._release = self._release, None
        if release is not None:
            release()
            logger.debug("unregistered reader of %s", self.update_lock.path)

    def __enter__(self) -> CommandSession:
        return self.open()

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

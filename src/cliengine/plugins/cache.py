"""The plugin cache: ``plugins.json`` in the cache directory.

Discovering a plugin's commands means importing it, which is too slow to do
on every invocation. The cache keeps the result per plugin path and is
shared by every CLI process running on the machine.

The cache is invalidated in two ways:

* a different tool version discards all cached plugins on load, since a new
  release may change what gets cached;
* a different runtime version triggers a rebuild under the update lock's
  writer lock, after every other running CLI process has finished reading.
"""
from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING

from cliengine.plugins.models import CacheData, CachedPlugin
from cliengine.plugins.plugin import Plugin
from cliengine.plugins.plugin_path import PluginPath, PluginType

if TYPE_CHECKING:
    from cliengine.core.config import Config
    from cliengine.lock.update_lock import UpdateLock
    from cliengine.plugins.manager import Manager

logger = logging.getLogger(__name__)

CACHE_FILE = "plugins.json"


class PluginCache:
    """Versioned map of plugin path to :class:`CachedPlugin`.

    Loaded lazily on first access, mutated during the process's lifetime,
    and written back at most once per :meth:`fetch_managers` when
    something changed.

    Parameters
    ----------
    config:
        Supplies the cache directory, tool version, runtime version and
        the clear-cache flag.
    lock:
        Update lock used to rebuild exclusively after a runtime change.
        Without one, the rebuild runs unguarded.
    """

    def __init__(self, config: Config, lock: UpdateLock | None = None) -> None:
        self.config = config
        self.lock = lock
        self.dirty = False
        self._data: CacheData | None = None

    def __repr__(self) -> str:
        return f"PluginCache(file={str(self.file)!r}, dirty={self.dirty})"

    @property
    def file(self) -> Path:
        return self.config.cache_dir / CACHE_FILE

    @property
    def data(self) -> CacheData:
        if self._data is None:
            self._data = self.load()
        return self._data

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def load(self) -> CacheData:
        """Read ``plugins.json``, discarding plugins cached by another version.

        A missing or malformed file yields a fresh, empty cache. Other
        filesystem errors propagate.
        """
        data: CacheData | None = None
        try:
            data = CacheData.from_dict(json.loads(self.file.read_text(encoding="utf-8")))
        except FileNotFoundError:
            pass
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning("Ignoring unreadable plugin cache %s: %s", self.file, exc)

        if data is None:
            data = CacheData(version=self.config.version)
        elif data.version != self.config.version or self.config.clear_cache:
            logger.debug(
                "clearing plugin cache (cached version %s, running %s)",
                data.version,
                self.config.version,
            )
            data = CacheData(version=self.config.version, node_version=data.node_version)
        self._data = data
        return data

    def clear(self) -> None:
        """Forget every cached plugin, keeping the runtime version."""
        node_version = self._data.node_version if self._data is not None else None
        self._data = CacheData(version=self.config.version, node_version=node_version)
        self.dirty = True

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def plugin(self, path: str) -> CachedPlugin | None:
        return self.data.plugins.get(path)

    def update_plugin(self, path: str, plugin: CachedPlugin) -> None:
        self.data.plugins[path] = plugin
        self.dirty = True

    def delete_plugin(self, *paths: str) -> None:
        """Remove cached records and write the cache immediately."""
        for path in paths:
            self.data.plugins.pop(path, None)
        self.dirty = True
        self.save()

    def fetch(self, plugin_path: PluginPath) -> CachedPlugin:
        """Return the cached record for ``plugin_path``, parsing it if needed.

        A plugin that fails to parse gets one repair attempt. If it still
        fails, a warning is logged and an empty placeholder is cached in its
        place. Built-in plugins are trusted: their failures propagate.
        """
        cached = self.plugin(plugin_path.path)
        if cached is not None:
            return cached
        try:
            cached = plugin_path.convert_to_cached()
        except Exception as exc:
            if plugin_path.type is PluginType.BUILTIN:
                raise
            cached = self._retry_after_repair(plugin_path, exc)
        self.update_plugin(plugin_path.path, cached)
        return cached

    def _retry_after_repair(self, plugin_path: PluginPath, exc: Exception) -> CachedPlugin:
        try:
            if plugin_path.repair(exc):
                return plugin_path.convert_to_cached()
        except Exception as retry_exc:
            exc = retry_exc
        logger.warning("Error parsing plugin %s: %s", plugin_path.path, exc)
        return CachedPlugin.placeholder(plugin_path.path)

    # ------------------------------------------------------------------
    # Orchestration
    # ------------------------------------------------------------------

    def fetch_managers(self, *managers: Manager) -> list[Plugin]:
        """Load every plugin the managers provide.

        Rebuilds first if the cache was built under another runtime
        version. When two plugins share a name, the one from the manager
        listed first is kept.
        """
        if self.data.node_version != self.config.runtime_version:
            logger.info(
                "Runtime changed from %s to %s; rebuilding plugin cache",
                self.data.node_version,
                self.config.runtime_version,
            )
            if self.lock is not None:
                with self.lock.upgraded():
                    self._rebuild(managers)
            else:
                self._rebuild(managers)
            self.data.node_version = self.config.runtime_version
            self.dirty = True

        plugins: list[Plugin] = []
        names: set[str] = set()
        for manager in managers:
            for plugin_path in manager.list():
                cached = self.fetch(plugin_path)
                if cached.name in names:
                    logger.debug("skipping %s: plugin %r already loaded", plugin_path.path, cached.name)
                    continue
                names.add(cached.name)
                plugins.append(Plugin(plugin_path, cached))

        self.save()
        return plugins

    @staticmethod
    def _rebuild(managers: tuple[Manager, ...]) -> None:
        for manager in managers:
            manager.handle_node_version_change()

    def save(self) -> None:
        """Write the cache if it changed. Failures are logged, not raised."""
        if not self.dirty:
            return
        try:
            self._write()
        except OSError as exc:
            logger.warning("Could not write plugin cache %s: %s", self.file, exc)
            return
        self.dirty = False

    def _write(self) -> None:
        self.file.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.file.parent, prefix=".plugins.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(self.data.to_dict(), fh, indent=2)
            os.replace(tmp, self.file)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

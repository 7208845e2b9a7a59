"""Plugin managers: the sources the plugin cache discovers plugins from.

Each manager lists the plugins of one kind. ``PluginCache.fetch_managers``
walks managers in order, so a manager listed earlier wins when two plugins
share a name.

Third-party plugins are declared as package entry-points under the
``cliengine.plugins`` group, naming the plugin module::

    [project.entry-points."cliengine.plugins"]
    deploy = "cliengine_deploy.commands"
"""
from __future__ import annotations

import importlib
import importlib.metadata
import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from cliengine.plugins.plugin_path import PluginPath, PluginType

if TYPE_CHECKING:
    from cliengine.core.config import Config
    from cliengine.plugins.cache import PluginCache

logger = logging.getLogger(__name__)

BUILTIN_MODULE = "cliengine.commands"
ENTRY_POINT_GROUP = "cliengine.plugins"


class Manager(ABC):
    """A source of plugins.

    Parameters
    ----------
    config:
        Settings of the running process.
    cache:
        The plugin cache, used by the runtime-version hook.
    """

    type: PluginType

    def __init__(self, config: Config, cache: PluginCache) -> None:
        self.config = config
        self.cache = cache

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"

    @abstractmethod
    def list(self) -> list[PluginPath]:
        """Return the plugins this manager provides, in precedence order."""

    def handle_node_version_change(self) -> None:
        """Rebuild state that depends on the interpreter version.

        Called under the update lock's writer lock. The default drops this
        manager's cached records so they are re-parsed by the new runtime.
        """
        importlib.invalidate_caches()
        paths = [p.path for p in self.list() if self.cache.plugin(p.path) is not None]
        if paths:
            logger.debug("runtime changed; dropping %d cached plugin(s)", len(paths))
            self.cache.delete_plugin(*paths)


class BuiltinManager(Manager):
    """The commands bundled with the tool."""

    type = PluginType.BUILTIN

    def __init__(self, config: Config, cache: PluginCache, module: str = BUILTIN_MODULE) -> None:
        super().__init__(config, cache)
        self.module = module

    def list(self) -> list[PluginPath]:
        return [PluginPath(self.module, self.type)]


class EntryPointManager(Manager):
    """Plugins declared by installed packages as entry-points.

    An entry-point whose value names an attribute (``module:attr``) uses the
    module part only.
    """

    type = PluginType.USER

    def __init__(
        self,
        config: Config,
        cache: PluginCache,
        group: str = ENTRY_POINT_GROUP,
    ) -> None:
        super().__init__(config, cache)
        self.group = group

    def list(self) -> list[PluginPath]:
        paths: list[PluginPath] = []
        seen: set[str] = set()
        for ep in importlib.metadata.entry_points(group=self.group):
            if ep.name in seen:
                logger.debug("entry-point %r declared twice in %r; skipping", ep.name, self.group)
                continue
            seen.add(ep.name)
            module = ep.value.partition(":")[0].strip()
            dist = getattr(ep, "dist", None)
            paths.append(
                PluginPath(
                    module,
                    self.type,
                    name=ep.name,
                    version=dist.version if dist is not None else None,
                )
            )
        return paths

"""Plugin subsystem.

Plugins are discovered by managers, described once by importing them, and
remembered in the shared plugin cache so later invocations can resolve
commands without importing every plugin.

Declare a third-party plugin in its package's pyproject.toml:

.. code-block:: toml

    [project.entry-points."cliengine.plugins"]
    my_plugin = "my_package.commands"
"""
from __future__ import annotations

from cliengine.plugins.cache import PluginCache
from cliengine.plugins.errors import PluginError, PluginParseError
from cliengine.plugins.manager import BuiltinManager, EntryPointManager, Manager
from cliengine.plugins.models import CacheData, CachedCommand, CachedPlugin, CachedTopic, Group
from cliengine.plugins.plugin import Plugin
from cliengine.plugins.plugin_path import PluginPath, PluginType
from cliengine.plugins.plugins import Plugins

__all__ = [
    "BuiltinManager",
    "CacheData",
    "CachedCommand",
    "CachedPlugin",
    "CachedTopic",
    "EntryPointManager",
    "Group",
    "Manager",
    "Plugin",
    "PluginCache",
    "PluginError",
    "PluginParseError",
    "PluginPath",
    "PluginType",
    "Plugins",
]

"""Built-in commands.

This package is itself a plugin: it is listed by ``BuiltinManager`` and
cached like any third-party plugin.
"""
from __future__ import annotations

from cliengine.commands.cache import cache_clear_command, cache_show_command
from cliengine.commands.info import plugins_command, version_command
from cliengine.commands.lock import lock_status_command

commands = [
    version_command,
    plugins_command,
    cache_show_command,
    cache_clear_command,
    lock_status_command,
]

topics = [
    {"id": "cache", "description": "inspect and clear the plugin cache"},
    {"id": "lock", "description": "inspect the plugin cache lock"},
]

__all__ = ["commands", "topics"]

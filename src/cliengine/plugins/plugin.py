"""A discovered plugin: its cached metadata plus the means to load it."""
from __future__ import annotations

import click

from cliengine.plugins.models import CachedCommand, CachedPlugin, CachedTopic, Group
from cliengine.plugins.plugin_path import PluginPath, PluginType


class Plugin:
    """Answers command and topic lookups from the cache.

    The plugin module is only imported when a command is actually loaded.
    """

    def __init__(self, plugin_path: PluginPath, cached: CachedPlugin) -> None:
        self.plugin_path = plugin_path
        self.cached = cached

    def __repr__(self) -> str:
        return f"Plugin(name={self.name!r}, version={self.version!r}, type={self.type.value!r})"

    @property
    def name(self) -> str:
        return self.cached.name

    @property
    def version(self) -> str:
        return self.cached.version

    @property
    def path(self) -> str:
        return self.cached.path

    @property
    def type(self) -> PluginType:
        return self.plugin_path.type

    @property
    def commands(self) -> list[CachedCommand]:
        return self.cached.commands

    @property
    def topics(self) -> list[CachedTopic]:
        return self.cached.topics

    @property
    def groups(self) -> list[Group]:
        return self.cached.groups

    def cached_command(self, command_id: str) -> CachedCommand | None:
        """Return the cached command whose id or alias is ``command_id``."""
        for command in self.commands:
            if command.id == command_id or command_id in command.aliases:
                return command
        return None

    def find_command(self, command_id: str) -> click.Command | None:
        """Load the command whose id or alias is ``command_id``."""
        command = self.cached_command(command_id)
        if command is None:
            return None
        return self.plugin_path.load_command(command.id)

    def find_topic(self, topic_id: str) -> CachedTopic | None:
        for topic in self.topics:
            if topic.id == topic_id:
                return topic
        return None

"""Lookups across all loaded plugins."""
from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING

import click

from cliengine.plugins.manager import BuiltinManager, EntryPointManager, Manager
from cliengine.plugins.models import CachedCommand, CachedTopic, Group
from cliengine.plugins.plugin import Plugin

if TYPE_CHECKING:
    from cliengine.core.config import Config
    from cliengine.plugins.cache import PluginCache

logger = logging.getLogger(__name__)


class Plugins:
    """All plugins available to the running command.

    Plugins are loaded through the cache on first use.

    Parameters
    ----------
    config:
        Settings of the running process.
    cache:
        The plugin cache to load through.
    managers:
        Plugin sources in precedence order. Defaults to the built-in
        commands followed by entry-point plugins.
    """

    def __init__(
        self,
        config: Config,
        cache: PluginCache,
        managers: list[Manager] | None = None,
    ) -> None:
        self.config = config
        self.cache = cache
        if managers is None:
            managers = [BuiltinManager(config, cache), EntryPointManager(config, cache)]
        self.managers = managers
        self._plugins: list[Plugin] | None = None

    def __repr__(self) -> str:
        loaded = "not loaded" if self._plugins is None else f"{len(self._plugins)} plugin(s)"
        return f"Plugins({loaded})"

    @property
    def loaded(self) -> bool:
        return self._plugins is not None

    def load(self) -> list[Plugin]:
        if self._plugins is None:
            self._plugins = self.cache.fetch_managers(*self.managers)
        return self._plugins

    def list(self) -> list[Plugin]:
        return self.load()

    @property
    def commands(self) -> list[CachedCommand]:
        commands: list[CachedCommand] = []
        for plugin in self.load():
            commands.extend(plugin.commands)
        return commands

    @property
    def topics(self) -> list[CachedTopic]:
        """Topics of all plugins, the first occurrence of each id winning."""
        seen: set[str] = set()
        topics: list[CachedTopic] = []
        for plugin in self.load():
            for topic in plugin.topics:
                if topic.id in seen:
                    continue
                seen.add(topic.id)
                topics.append(topic)
        return topics

    @property
    def groups(self) -> list[Group]:
        groups: list[Group] = []
        for plugin in self.load():
            groups.extend(plugin.groups)
        return groups

    def is_plugin_installed(self, name: str) -> bool:
        return any(p.name == name for p in self.load())

    def find_plugin_with_command(self, command_id: str) -> Plugin | None:
        for plugin in self.load():
            if plugin.cached_command(command_id) is not None:
                return plugin
        return None

    def find_command(self, command_id: str) -> click.Command | None:
        """Load the command ``command_id`` from the first plugin providing it."""
        plugin = self.find_plugin_with_command(command_id)
        if plugin is None:
            return None
        return plugin.find_command(command_id)

    def find_topic(self, topic_id: str) -> CachedTopic | None:
        if not topic_id:
            return None
        for plugin in self.load():
            topic = plugin.find_topic(topic_id)
            if topic is not None:
                return topic
        return None

    def commands_for_topic(self, topic_id: str) -> list[CachedCommand]:
        """Return the commands filed under ``topic_id``, unique by id."""
        seen: set[str] = set()
        commands: list[CachedCommand] = []
        for command in self.commands:
            if command.topic != topic_id or command.id in seen:
                continue
            seen.add(command.id)
            commands.append(command)
        return commands

    def subtopics_for_topic(self, topic_id: str) -> list[CachedTopic] | None:
        """Return the topics nested under ``topic_id`` (``topic:sub``)."""
        if not topic_id:
            return None
        prefix = re.compile(rf"^{re.escape(topic_id)}:")
        for plugin in self.load():
            if plugin.find_topic(topic_id) is not None:
                return [t for t in plugin.topics if prefix.match(t.id)]
        return None

    def clear_cache(self, *paths: str) -> None:
        self.cache.delete_plugin(*paths)

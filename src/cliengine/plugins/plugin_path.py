"""Locating a plugin module and turning its exports into cache records.

A plugin is an importable module that exports:

``commands``
    A list of :class:`click.Command` objects. The command name is the id
    typed on the command line, ``"topic"`` or ``"topic:command"``.
``topics`` (optional)
    A list of dicts with ``id`` (or ``name``), ``description``, ``hidden``
    and ``group``.
``groups`` (optional)
    A list of dicts (or :class:`Group` objects) with ``key``, ``name`` and
    ``deprecated``.

Commands may carry ``aliases`` and ``plugin_group`` attributes.
"""
from __future__ import annotations

import importlib
import importlib.util
import logging
from enum import Enum
from pathlib import Path
from types import ModuleType
from typing import Any

import click

from cliengine.plugins.errors import PluginParseError
from cliengine.plugins.models import CachedCommand, CachedPlugin, CachedTopic, Group

logger = logging.getLogger(__name__)


class PluginType(str, Enum):
    """Where a plugin comes from."""

    BUILTIN = "builtin"
    USER = "user"


def module_location(module: str) -> str | None:
    """Return the absolute path of ``module`` without importing the module itself.

    Packages resolve to their directory. Returns None if the module cannot
    be found. Finding a submodule imports its parent package, so a parent
    that fails to import also yields None; the import error then surfaces
    when the plugin itself is loaded.
    """
    try:
        spec = importlib.util.find_spec(module)
    except Exception as exc:
        logger.debug("cannot locate %s: %s", module, exc)
        return None
    if spec is None or spec.origin is None:
        return None
    origin = Path(spec.origin).resolve()
    if spec.submodule_search_locations is not None:
        return str(origin.parent)
    return str(origin)


class PluginPath:
    """A plugin that has been found but not necessarily loaded.

    Parameters
    ----------
    module:
        Importable module name of the plugin.
    type:
        Where the plugin was found.
    name:
        Plugin name; defaults to the module's ``__plugin_name__`` or the
        module name.
    version:
        Plugin version; defaults to the module's ``__version__``.
    path:
        Cache key; defaults to the module's absolute location.
    """

    def __init__(
        self,
        module: str,
        type: PluginType,
        *,
        name: str | None = None,
        version: str | None = None,
        path: str | None = None,
    ) -> None:
        self.module = module
        self.type = PluginType(type)
        self.name = name
        self.version = version
        self.path = path or module_location(module) or module

    def __repr__(self) -> str:
        return f"PluginPath(module={self.module!r}, type={self.type.value!r}, path={self.path!r})"

    def require(self) -> ModuleType:
        logger.debug("importing %s", self.module)
        return importlib.import_module(self.module)

    def convert_to_cached(self) -> CachedPlugin:
        """Import the plugin and describe its commands, topics and groups.

        Raises
        ------
        PluginParseError
            If the module exports no commands or an invalid entry.
        ImportError
            If the module cannot be imported.
        """
        module = self.require()
        exported = getattr(module, "commands", None)
        if not exported:
            raise PluginParseError(self.path, "no commands found")

        commands = [self._cache_command(cmd) for cmd in exported]
        topics = [self._cache_topic(t) for t in getattr(module, "topics", None) or []]
        known = {t.id for t in topics}
        for command in commands:
            if command.topic in known:
                continue
            topics.append(
                CachedTopic(
                    id=command.topic,
                    topic=command.topic,
                    hidden=True,
                    group=command.group,
                )
            )
            known.add(command.topic)

        groups = [
            g if isinstance(g, Group) else Group.from_dict(g)
            for g in getattr(module, "groups", None) or []
        ]
        name, version = self._metadata(module)
        return CachedPlugin(
            name=name,
            path=self.path,
            version=version,
            commands=commands,
            topics=topics,
            groups=groups,
        )

    def load_command(self, command_id: str) -> click.Command | None:
        """Import the plugin and return the command named ``command_id``."""
        module = self.require()
        for cmd in getattr(module, "commands", None) or []:
            if cmd.name == command_id:
                return cmd
        return None

    def repair(self, exc: BaseException) -> bool:
        """Try to fix whatever made conversion fail.

        Returns True if the conversion should be retried. The default
        implementation cannot repair anything.
        """
        logger.debug("cannot repair plugin %s: %s", self.path, exc)
        return False

    # ------------------------------------------------------------------
    # Conversion helpers
    # ------------------------------------------------------------------

    def _metadata(self, module: ModuleType) -> tuple[str, str]:
        if self.type is PluginType.BUILTIN:
            from cliengine import __version__

            return "builtin", __version__
        name = self.name or getattr(module, "__plugin_name__", None) or self.module
        version = self.version or getattr(module, "__version__", None) or ""
        return str(name), str(version)

    def _cache_command(self, cmd: Any) -> CachedCommand:
        if not isinstance(cmd, click.Command) or not cmd.name:
            raise PluginParseError(self.path, f"not a named click command: {cmd!r}")
        topic, _, sub = cmd.name.partition(":")
        usage = " ".join(cmd.collect_usage_pieces(click.Context(cmd, info_name=cmd.name)))
        return CachedCommand(
            id=cmd.name,
            topic=topic,
            command=sub or None,
            aliases=list(getattr(cmd, "aliases", None) or []),
            description=cmd.get_short_help_str() or None,
            help=cmd.help,
            usage=usage or None,
            hidden=cmd.hidden,
            group=getattr(cmd, "plugin_group", None) or "",
        )

    def _cache_topic(self, data: Any) -> CachedTopic:
        if not isinstance(data, dict):
            raise PluginParseError(self.path, f"invalid topic: {data!r}")
        topic_id = data.get("id") or data.get("topic") or data.get("name")
        if not topic_id:
            raise PluginParseError(self.path, f"topic without an id: {data!r}")
        return CachedTopic(
            id=topic_id,
            topic=topic_id,
            description=data.get("description"),
            hidden=bool(data.get("hidden", False)),
            group=data.get("group") or "",
        )

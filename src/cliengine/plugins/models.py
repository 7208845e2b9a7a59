"""Cached plugin metadata and the on-disk cache document.

These records are what ``plugins.json`` stores: enough about each plugin's
commands and topics to list and resolve commands without importing the
plugin. Serialization goes through plain dicts so the JSON stays readable.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any


@dataclass
class CachedCommand:
    """One command contributed by a plugin.

    ``id`` is the full command name as typed on the command line, e.g.
    ``"cache:clear"``; ``topic`` and ``command`` are its two halves.
    """

    id: str
    topic: str
    command: str | None = None
    aliases: list[str] = field(default_factory=list)
    description: str | None = None
    help: str | None = None
    usage: str | None = None
    hidden: bool = False
    group: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CachedCommand:
        return cls(
            id=data["id"],
            topic=data.get("topic", ""),
            command=data.get("command"),
            aliases=list(data.get("aliases") or []),
            description=data.get("description"),
            help=data.get("help"),
            usage=data.get("usage"),
            hidden=bool(data.get("hidden", False)),
            group=data.get("group") or "",
        )


@dataclass
class CachedTopic:
    """A command topic (the part of a command id before the colon)."""

    id: str
    topic: str
    description: str | None = None
    hidden: bool = False
    group: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CachedTopic:
        return cls(
            id=data["id"],
            topic=data.get("topic", data["id"]),
            description=data.get("description"),
            hidden=bool(data.get("hidden", False)),
            group=data.get("group") or "",
        )


@dataclass
class Group:
    """A named group commands and topics can be listed under."""

    key: str
    name: str
    deprecated: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Group:
        return cls(
            key=data["key"],
            name=data.get("name", data["key"]),
            deprecated=bool(data.get("deprecated", False)),
        )


@dataclass
class CachedPlugin:
    """Everything the CLI needs to know about one plugin without loading it.

    Parameters
    ----------
    name:
        Plugin name; the first plugin registered under a name wins.
    path:
        Absolute location of the plugin; the cache key.
    version:
        Plugin version, ``""`` when unknown.
    """

    name: str
    path: str
    version: str
    commands: list[CachedCommand] = field(default_factory=list)
    topics: list[CachedTopic] = field(default_factory=list)
    groups: list[Group] = field(default_factory=list)

    @classmethod
    def placeholder(cls, path: str) -> CachedPlugin:
        """Return the empty record stored for a plugin that failed to parse."""
        return cls(name=path, path=path, version="")

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CachedPlugin:
        return cls(
            name=data["name"],
            path=data["path"],
            version=data.get("version") or "",
            commands=[CachedCommand.from_dict(c) for c in data.get("commands") or []],
            topics=[CachedTopic.from_dict(t) for t in data.get("topics") or []],
            groups=[Group.from_dict(g) for g in data.get("groups") or []],
        )


@dataclass
class CacheData:
    """The contents of ``plugins.json``.

    Parameters
    ----------
    version:
        Tool version that wrote the cache.
    node_version:
        Runtime version the cache was built under, or ``None`` if it has
        never been built.
    plugins:
        Cached plugins keyed by absolute plugin path.
    """

    version: str
    node_version: str | None = None
    plugins: dict[str, CachedPlugin] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "node_version": self.node_version,
            "plugins": {path: p.to_dict() for path, p in self.plugins.items()},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CacheData:
        """Build a ``CacheData`` from a decoded ``plugins.json``.

        Raises
        ------
        TypeError, KeyError, ValueError
            If the document does not have the expected shape.
        """
        if not isinstance(data, dict):
            raise TypeError(f"expected an object, got {type(data).__name__}")
        version = data["version"]
        if not isinstance(version, str):
            raise ValueError(f"invalid cache version {version!r}")
        plugins = data.get("plugins") or {}
        if not isinstance(plugins, dict):
            raise TypeError("'plugins' must be an object")
        return cls(
            version=version,
            node_version=data.get("node_version"),
            plugins={path: CachedPlugin.from_dict(p) for path, p in plugins.items()},
        )

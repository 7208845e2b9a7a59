"""Error types for plugin discovery and loading."""
from __future__ import annotations


class PluginError(Exception):
    """Base class for plugin errors."""


class PluginParseError(PluginError):
    """Raised when a plugin's exports cannot be turned into cache metadata.

    The plugin cache catches this per plugin: one broken plugin degrades to
    an empty placeholder record and never aborts the whole load.
    """

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Error parsing plugin {path}: {reason}")

"""Runtime configuration.

Settings come from three layers, later layers winning:

1. built-in defaults
2. ``config.yml`` in the configuration directory
3. environment variables

Environment
-----------
``CLIENGINE_CACHE_DIR``
    Directory holding ``plugins.json`` and the update lock.
``CLIENGINE_CONFIG_DIR``
    Directory holding ``config.yml``.
``CLIENGINE_LOCK_TIMEOUT``
    Seconds to wait for the update lock before giving up.
``CLIENGINE_CLEAR_CACHE``
    When set (to anything but ``0``/``false``/``no``), discard the plugin
    cache on load.
"""
from __future__ import annotations

import os
import platform
import sys
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from cliengine import __version__

APP_NAME = "cliengine"
CONFIG_FILE = "config.yml"
UPDATE_LOCK = "update.lock"

_FALSE_VALUES = frozenset({"", "0", "false", "no", "off"})


class ConfigError(Exception):
    """Raised for an unreadable configuration file or invalid setting."""


def runtime_version() -> str:
    """Return the version string of the running interpreter.

    Stored in the plugin cache; a change forces a rebuild.
    """
    return f"{sys.implementation.name}-{platform.python_version()}"


def _home() -> Path:
    return Path.home()


def default_cache_dir(env: Mapping[str, str]) -> Path:
    """Return the platform cache directory for the tool."""
    if env.get("XDG_CACHE_HOME"):
        return Path(env["XDG_CACHE_HOME"]) / APP_NAME
    if sys.platform == "darwin":
        return _home() / "Library" / "Caches" / APP_NAME
    if sys.platform == "win32" and env.get("LOCALAPPDATA"):
        return Path(env["LOCALAPPDATA"]) / APP_NAME
    return _home() / ".cache" / APP_NAME


def default_config_dir(env: Mapping[str, str]) -> Path:
    """Return the platform configuration directory for the tool."""
    if env.get("XDG_CONFIG_HOME"):
        return Path(env["XDG_CONFIG_HOME"]) / APP_NAME
    if sys.platform == "win32" and env.get("APPDATA"):
        return Path(env["APPDATA"]) / APP_NAME
    return _home() / ".config" / APP_NAME


def _flag(value: object) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() not in _FALSE_VALUES


def _seconds(value: object, source: str) -> float:
    try:
        seconds = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        raise ConfigError(f"{source}: expected a number of seconds, got {value!r}") from None
    if seconds < 0:
        raise ConfigError(f"{source}: timeout must not be negative, got {value!r}")
    return seconds


@dataclass
class Config:
    """Resolved settings for one CLI process.

    Parameters
    ----------
    cache_dir:
        Directory holding ``plugins.json`` and ``update.lock``.
    config_dir:
        Directory searched for ``config.yml``.
    version:
        Version of the running tool; a cache written by another version is
        discarded.
    runtime_version:
        Interpreter version; a cache built under another runtime is rebuilt
        under the writer lock.
    lock_timeout:
        Seconds to wait for the update lock.
    clear_cache:
        Discard the plugin cache on load regardless of version.
    """

    cache_dir: Path
    config_dir: Path
    version: str = __version__
    runtime_version: str = field(default_factory=runtime_version)
    lock_timeout: float = 60.0
    clear_cache: bool = False

    @property
    def update_lock_path(self) -> Path:
        return self.cache_dir / UPDATE_LOCK

    @property
    def config_file(self) -> Path:
        return self.config_dir / CONFIG_FILE

    @classmethod
    def load(cls, env: Mapping[str, str] | None = None) -> Config:
        """Build a ``Config`` from defaults, ``config.yml`` and ``env``.

        Parameters
        ----------
        env:
            Environment to read; defaults to ``os.environ``.

        Raises
        ------
        ConfigError
            If ``config.yml`` is not valid YAML or holds invalid values.
        """
        env = os.environ if env is None else env
        config_dir = (
            Path(env["CLIENGINE_CONFIG_DIR"])
            if env.get("CLIENGINE_CONFIG_DIR")
            else default_config_dir(env)
        )
        config = cls(cache_dir=default_cache_dir(env), config_dir=config_dir)
        config._apply_file(_read_config_file(config.config_file))

        if env.get("CLIENGINE_CACHE_DIR"):
            config.cache_dir = Path(env["CLIENGINE_CACHE_DIR"])
        if env.get("CLIENGINE_LOCK_TIMEOUT"):
            config.lock_timeout = _seconds(
                env["CLIENGINE_LOCK_TIMEOUT"], "CLIENGINE_LOCK_TIMEOUT"
            )
        if "CLIENGINE_CLEAR_CACHE" in env:
            config.clear_cache = _flag(env["CLIENGINE_CLEAR_CACHE"])
        return config

    def _apply_file(self, data: dict[str, Any]) -> None:
        source = str(self.config_file)
        unknown = set(data) - {"cache_dir", "lock_timeout", "clear_cache"}
        if unknown:
            raise ConfigError(f"{source}: unknown setting(s): {', '.join(sorted(unknown))}")
        if "cache_dir" in data:
            self.cache_dir = Path(str(data["cache_dir"])).expanduser()
        if "lock_timeout" in data:
            self.lock_timeout = _seconds(data["lock_timeout"], f"{source}: lock_timeout")
        if "clear_cache" in data:
            self.clear_cache = _flag(data["clear_cache"])


def _read_config_file(path: Path) -> dict[str, Any]:
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return {}
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Cannot parse {path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: expected a mapping at the top level")
    return data

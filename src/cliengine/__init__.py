"""cliengine — plugin-based command-line engine with a shared, lock-guarded plugin cache.

Public API
----------
The stable public surface is everything exported from this module and
from :mod:`cliengine.lock` and :mod:`cliengine.plugins`.

Example
-------
::

    import cliengine

    with cliengine.open_session() as session:
        for plugin in session.plugins.list():
            print(plugin.name, plugin.version)

    cliengine.__version__
    '0.1.0'
"""
from __future__ import annotations

from typing import TYPE_CHECKING

__version__: str = "0.1.0"

if TYPE_CHECKING:
    from cliengine.core.config import Config
    from cliengine.core.session import CommandSession


def load_config() -> "Config":
    """Return the configuration from ``config.yml`` and the environment.

    Raises
    ------
    cliengine.core.config.ConfigError
        If the configuration file or an environment setting is invalid.
    """
    from cliengine.core.config import Config

    return Config.load()


def open_session(config: "Config | None" = None) -> "CommandSession":
    """Register this process as a reader of the plugin cache.

    Parameters
    ----------
    config:
        Settings to use; loaded from the environment when omitted.

    Returns
    -------
    CommandSession
        An open session; close it (or use it as a context manager) when the
        command is done.
    """
    from cliengine.core.session import CommandSession

    return CommandSession(config).open()


__all__ = [
    "__version__",
    "load_config",
    "open_session",
]

"""Shared state for CLI commands: consoles and the invocation's session."""
from __future__ import annotations

import logging
import os

import click
from rich.console import Console
from rich.logging import RichHandler

from cliengine.core.config import Config
from cliengine.core.session import CommandSession

console = Console()
err_console = Console(stderr=True)

#: Decorator passing the open :class:`CommandSession` to a command.
pass_session = click.make_pass_decorator(CommandSession)


def configure_logging(verbose: bool) -> None:
    """Send log records to stderr through rich.

    DEBUG with ``--verbose`` or ``CLIENGINE_DEBUG``, WARNING otherwise. Does
    nothing if the root logger is already configured.
    """
    level = logging.DEBUG if verbose or os.environ.get("CLIENGINE_DEBUG") else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_time=False, show_path=False)],
    )


def get_session(ctx: click.Context) -> CommandSession:
    """Return the session of this invocation, opening it on first use.

    The session is closed, and the read registration dropped, when the root
    context is torn down.

    Raises
    ------
    cliengine.core.config.ConfigError
        If the configuration is invalid.
    cliengine.lock.LockTimeoutError
        If a writer keeps the plugin cache locked past the timeout.
    """
    root = ctx.find_root()
    session = root.obj if isinstance(root.obj, CommandSession) else None
    if session is None:
        session = CommandSession(Config.load())
        root.obj = session
    if not session.is_open:
        root.with_resource(session)
    return session

"""CLI entry point for cliengine.

Invoked as::

    cliengine [OPTIONS] COMMAND [ARGS]...

or, during development::

    python -m cliengine.cli.main

Commands are not defined here: every command, the built-in ones included,
comes from a plugin and is resolved through the shared plugin cache. The
process stays registered as a reader of the cache for the whole command.
"""
from __future__ import annotations

import click
from rich.markup import escape

from cliengine.cli.context import configure_logging, err_console, get_session
from cliengine.core.config import ConfigError
from cliengine.lock import LockError


def _report(exc: Exception) -> None:
    err_console.print(f"[red]Error:[/red] {escape(str(exc))}", soft_wrap=True)


class PluginGroup(click.Group):
    """Root group whose subcommands are looked up in the loaded plugins."""

    def list_commands(self, ctx: click.Context) -> list[str]:
        try:
            commands = get_session(ctx).plugins.commands
        except (ConfigError, LockError) as exc:
            _report(exc)
            return []
        return sorted({c.id for c in commands if not c.hidden})

    def get_command(self, ctx: click.Context, cmd_name: str) -> click.Command | None:
        return get_session(ctx).plugins.find_command(cmd_name)

    def format_commands(self, ctx: click.Context, formatter: click.HelpFormatter) -> None:
        # Listed from the cache so that help does not import every plugin.
        try:
            commands = get_session(ctx).plugins.commands
        except (ConfigError, LockError) as exc:
            _report(exc)
            return
        rows: dict[str, str] = {}
        for command in commands:
            if not command.hidden and command.id not in rows:
                rows[command.id] = command.description or ""
        if rows:
            with formatter.section("Commands"):
                formatter.write_dl(sorted(rows.items()))

    def invoke(self, ctx: click.Context) -> object:
        try:
            return super().invoke(ctx)
        except (ConfigError, LockError) as exc:
            _report(exc)
            ctx.exit(1)


def _verbose_callback(ctx: click.Context, param: click.Parameter, value: bool) -> bool:
    configure_logging(value)
    return value


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group(cls=PluginGroup)
@click.version_option(package_name="cliengine")
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    default=False,
    is_eager=True,
    expose_value=False,
    callback=_verbose_callback,
    help="Log lock and cache activity to stderr",
)
def cli() -> None:
    """Plugin-based command-line engine."""


if __name__ == "__main__":
    cli()

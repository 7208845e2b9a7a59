"""``version`` and ``plugins`` commands."""
from __future__ import annotations

import platform
import sys

import click
from rich.table import Table

from cliengine.cli.context import console, pass_session
from cliengine.core.session import CommandSession
from cliengine.plugins import PluginType


@click.command(name="version")
@pass_session
def version_command(session: CommandSession) -> None:
    """Show detailed version information."""
    config = session.config

    table = Table(show_header=False, box=None)
    table.add_row("[bold]cliengine[/bold]", f"v{config.version}")
    table.add_row("Python", platform.python_version())
    table.add_row("Runtime", config.runtime_version)
    table.add_row("Platform", sys.platform)
    console.print(table)


@click.command(name="plugins")
@click.option("--core", "show_core", is_flag=True, default=False, help="Include built-in plugins")
@pass_session
def plugins_command(session: CommandSession, show_core: bool) -> None:
    """List installed plugins."""
    plugins = [
        p for p in session.plugins.list() if show_core or p.type is not PluginType.BUILTIN
    ]
    if not plugins:
        console.print("No plugins installed.")
        return

    table = Table(title="Plugins")
    table.add_column("Name", style="bold")
    table.add_column("Version")
    table.add_column("Type")
    table.add_column("Commands", justify="right")
    table.add_column("Path", style="dim")
    for plugin in plugins:
        table.add_row(
            plugin.name,
            plugin.version or "-",
            plugin.type.value,
            str(len(plugin.commands)),
            plugin.path,
        )
    console.print(table)

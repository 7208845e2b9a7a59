"""``cache:show`` and ``cache:clear`` commands."""
from __future__ import annotations

import click
from rich.markup import escape
from rich.table import Table

from cliengine.cli.context import console, pass_session
from cliengine.core.session import CommandSession


@click.command(name="cache:show")
@pass_session
def cache_show_command(session: CommandSession) -> None:
    """Show what the plugin cache currently holds."""
    cache = session.cache
    data = cache.data

    console.print(f"[bold]File:[/bold] {escape(str(cache.file))}", soft_wrap=True)
    console.print(f"[bold]Version:[/bold] {data.version}")
    console.print(f"[bold]Runtime:[/bold] {data.node_version or '-'}")

    if not data.plugins:
        console.print("\n(The cache is empty.)")
        return

    table = Table(show_lines=False)
    table.add_column("Name", style="bold")
    table.add_column("Version")
    table.add_column("Commands", justify="right")
    table.add_column("Path", style="dim")
    for path, plugin in sorted(data.plugins.items()):
        table.add_row(plugin.name, plugin.version or "-", str(len(plugin.commands)), path)
    console.print(table)


@click.command(name="cache:clear")
@click.argument("paths", nargs=-1)
@pass_session
def cache_clear_command(session: CommandSession, paths: tuple[str, ...]) -> None:
    """Remove plugins from the cache so they are parsed again.

    PATHS are cached plugin paths as shown by cache:show. Without PATHS the
    whole cache is cleared. Waits for other running commands to finish.
    """
    cache = session.cache
    with session.update_lock.upgraded():
        if paths:
            unknown = [p for p in paths if cache.plugin(p) is None]
            cache.delete_plugin(*paths)
        else:
            unknown = []
            cache.clear()
            cache.save()

    for path in unknown:
        console.print(f"[yellow]Not cached:[/yellow] {escape(path)}", soft_wrap=True)
    removed = len(paths) - len(unknown) if paths else None
    if removed is None:
        console.print("[green]Plugin cache cleared[/green]")
    else:
        console.print(f"[green]Removed[/green] {removed} plugin(s) from the cache")

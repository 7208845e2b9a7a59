"""``lock:status`` command."""
from __future__ import annotations

import click
from rich.table import Table

from cliengine.cli.context import console, pass_session
from cliengine.core.session import CommandSession


@click.command(name="lock:status")
@pass_session
def lock_status_command(session: CommandSession) -> None:
    """Show which processes hold the plugin cache lock."""
    locks = session.locks
    path = session.update_lock.path

    writer = locks.writer_pid(path)
    readers = locks.active_readers(path, session.update_lock.timeout)

    table = Table(title=f"Lock: {path}")
    table.add_column("Role", style="bold")
    table.add_column("PID", justify="right")
    table.add_column("")
    if writer is not None:
        table.add_row("[red]writer[/red]", str(writer), "this process" if writer == locks.pid else "")
    for pid in readers:
        table.add_row("reader", str(pid), "this process" if pid == locks.pid else "")
    console.print(table)
    console.print(f"\n[bold]{len(readers)}[/bold] reader(s), {'1 writer' if writer else 'no writer'}")

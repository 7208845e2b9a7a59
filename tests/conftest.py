"""Shared test fixtures for cliengine.

Several "processes" are simulated in one interpreter by giving each
:class:`LockManager` its own fake PID and a shared liveness table, so that
crashes are a matter of removing a PID from the table.
"""
from __future__ import annotations

import importlib
import sys
import textwrap
from collections.abc import Callable, Iterator
from pathlib import Path

import pytest

from cliengine.core.config import Config
from cliengine.lock import LockManager
from cliengine.plugins import Manager, PluginCache, PluginPath, PluginType


class Processes:
    """Liveness table for simulated processes."""

    def __init__(self) -> None:
        self.alive: set[int] = set()

    def pid_active(self, pid: int) -> bool:
        return pid in self.alive

    def crash(self, pid: int) -> None:
        self.alive.discard(pid)


class ListManager(Manager):
    """Provides a fixed list of plugin modules."""

    def __init__(
        self,
        config: Config,
        cache: PluginCache,
        modules: list[str],
        type: PluginType = PluginType.USER,
    ) -> None:
        super().__init__(config, cache)
        self.modules = modules
        self.type = type
        self.rebuilds = 0

    def list(self) -> list[PluginPath]:
        return [PluginPath(module, self.type) for module in self.modules]

    def handle_node_version_change(self) -> None:
        self.rebuilds += 1
        super().handle_node_version_change()


@pytest.fixture()
def package_name() -> str:
    """Return the importable package name for assertions."""
    return "cliengine"


@pytest.fixture()
def expected_version() -> str:
    """Return the current expected version string.

    Update this fixture when cutting a release so that the version
    test immediately catches stale ``__version__`` values.
    """
    return "0.1.0"


@pytest.fixture()
def lock_path(tmp_path: Path) -> Path:
    return tmp_path / "locks" / "update.lock"


@pytest.fixture()
def processes() -> Processes:
    return Processes()


@pytest.fixture()
def sleeps() -> list[float]:
    """Records every poll sleep of managers built by ``make_locks``."""
    return []


@pytest.fixture()
def make_locks(
    processes: Processes, sleeps: list[float]
) -> Callable[..., LockManager]:
    """Return a factory for lock managers of simulated, live processes.

    Timeouts are whole numbers of one-second polls and sleeping is a no-op,
    so ``timeout=3`` means exactly three polls before giving up.
    """

    def factory(
        pid: int,
        *,
        sleep: Callable[[float], None] | None = None,
        default_timeout: float = 3.0,
    ) -> LockManager:
        processes.alive.add(pid)
        return LockManager(
            pid,
            pid_active=processes.pid_active,
            sleep=sleep or sleeps.append,
            poll_interval=1.0,
            default_timeout=default_timeout,
        )

    return factory


@pytest.fixture()
def config(tmp_path: Path) -> Config:
    return Config(
        cache_dir=tmp_path / "cache",
        config_dir=tmp_path / "config",
        version="1.0.0",
        runtime_version="cpython-3.12.0",
        lock_timeout=3.0,
    )


@pytest.fixture()
def list_manager() -> type[ListManager]:
    return ListManager


@pytest.fixture()
def make_plugin(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> Iterator[Callable[[str, str], str]]:
    """Return a factory writing an importable plugin module.

    ``make_plugin("hello_plugin", source)`` writes ``hello_plugin.py`` and
    returns the module name. Modules are unloaded after the test.
    """
    plugin_dir = tmp_path / "plugins"
    plugin_dir.mkdir()
    monkeypatch.syspath_prepend(str(plugin_dir))
    created: list[str] = []

    def factory(name: str, source: str) -> str:
        (plugin_dir / f"{name}.py").write_text(textwrap.dedent(source), encoding="utf-8")
        importlib.invalidate_caches()
        sys.modules.pop(name, None)
        created.append(name)
        return name

    yield factory

    for name in created:
        sys.modules.pop(name, None)


HELLO_PLUGIN = '''
import click

__version__ = "2.0.0"
__plugin_name__ = "hello"


@click.command(name="hello:world")
@click.argument("who", required=False)
def hello_world(who):
    """Say hello to WHO."""
    click.echo(f"hello {who or 'world'}")


@click.command(name="hello")
def hello():
    """Say hello."""
    click.echo("hello")


hello_world.aliases = ["hi"]

commands = [hello_world, hello]
topics = [{"id": "hello", "description": "greetings"}]
groups = [{"key": "fun", "name": "Fun stuff"}]
'''


@pytest.fixture()
def hello_plugin(make_plugin: Callable[[str, str], str]) -> str:
    return make_plugin("hello_plugin", HELLO_PLUGIN)

#!/usr/bin/env python3
"""Example: Plugin Cache

Demonstrates opening a session against a private cache directory, listing
the plugins and commands it caches, and clearing the cache under the
writer lock.

Usage:
    python examples/02_plugin_cache.py

Requirements:
    pip install cliengine
"""
from __future__ import annotations

import tempfile
from pathlib import Path

import cliengine
from cliengine.core.config import Config


def main() -> None:
    with tempfile.TemporaryDirectory() as tmp:
        config = Config(cache_dir=Path(tmp) / "cache", config_dir=Path(tmp) / "config")

        with cliengine.open_session(config) as session:
            # Step 1: Plugins are parsed once and remembered in plugins.json
            for plugin in session.plugins.list():
                print(f"Plugin '{plugin.name}' v{plugin.version} ({plugin.type.value})")
                for command in plugin.commands:
                    print(f"  {command.id:<14} {command.description or ''}")
            print(f"Cache file: {session.cache.file}")

            # Step 2: Topics group commands by the part before the colon
            for topic in session.plugins.topics:
                if not topic.hidden:
                    ids = [c.id for c in session.plugins.commands_for_topic(topic.id)]
                    print(f"Topic '{topic.id}': {', '.join(ids)}")

            # Step 3: Clear the cache while holding the writer lock
            with session.update_lock.upgraded():
                session.cache.clear()
                session.cache.save()
            print(f"Cached plugins after clear: {len(session.cache.data.plugins)}")


if __name__ == "__main__":
    main()

"""CLI package.

The ``cli`` sub-package contains the Click root group. Commands themselves
live in plugins, including the built-in ones in :mod:`cliengine.commands`.
"""
from __future__ import annotations

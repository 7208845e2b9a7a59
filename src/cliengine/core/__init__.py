"""Core runtime: configuration and the per-invocation session.

Submodules in core/ may import from lock/ and plugins/ but never from cli/.
"""
from __future__ import annotations

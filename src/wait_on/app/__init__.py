"""Application module for the wait-on command line."""

from __future__ import annotations

from wait_on.app.cli import cli

__all__ = [
    "cli",
]

"""Command-line interface for nightfall."""

from nightfall.cli.main import app, main

__all__ = ["app", "main"]

"""Command-line interface for udptracker."""

from udptracker.cli.main import cli, main

__all__ = [
    "cli",
    "main",
]

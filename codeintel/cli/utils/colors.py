"""
CLI output helpers built on Click.

    success(), error(), warning(), info()
    section()  — section divider with title
    kv()       — key-value pair, aligned

click.style handles NO_COLOR / TERM=dumb.
"""

from __future__ import annotations

import click

_CHECK = "✓"
_CROSS = "✗"


def success(message: str) -> None:
    """Print success message in green."""
    click.echo(click.style(message, fg="green"))


def error(message: str) -> None:
    """Print error message in red to stderr."""
    click.echo(click.style(message, fg="red"), err=True)


def warning(message: str) -> None:
    """Print warning message in yellow."""
    click.echo(click.style(message, fg="yellow"))


def info(message: str) -> None:
    """Print informational message in cyan."""
    click.echo(click.style(message, fg="cyan"))


def section(title: str) -> None:
    """Print a section header."""
    click.echo(click.style(f"── {title} ", fg="cyan", bold=True) + click.style("─" * 20, dim=True))


def kv(key: str, value: object, key_width: int = 28) -> None:
    """Print an aligned key-value pair."""
    click.echo(f"  {click.style(key.ljust(key_width), dim=True)} {value}")

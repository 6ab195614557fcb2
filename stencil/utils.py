"""Shared utility functions for Stencil.

Provides the Rich console used for all user-facing output, small formatting
helpers, and name sanitisation used for cache directory keys.
"""

from __future__ import annotations

import re
from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

console = Console()
err_console = Console(stderr=True)


# ---------------------------------------------------------------------------
# String / name helpers
# ---------------------------------------------------------------------------


def sanitize_name(name: str) -> str:
    """Convert an arbitrary string to a safe directory name.

    * Lowercases the input.
    * Replaces every character other than ASCII letters, digits, hyphens and
      underscores with a hyphen.
    * Collapses consecutive hyphens and strips leading/trailing hyphens.

    Examples::

        sanitize_name("https://github.com/acme/tpl") -> "https-github-com-acme-tpl"
        sanitize_name("  My Template  ") -> "my-template"
    """
    result = re.sub(r"[^a-zA-Z0-9_-]", "-", name.strip().lower())
    result = re.sub(r"-+", "-", result)
    return result.strip("-")


def parse_assignments(pairs: list[str]) -> dict[str, str]:
    """Parse ``key=value`` strings into a dict.

    Raises:
        ValueError: If an entry has no ``=`` or an empty key.
    """
    result: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        key = key.strip()
        if not sep or not key:
            raise ValueError(f"Expected key=value, got {pair!r}")
        result[key] = value
    return result


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------


def format_duration(seconds: float) -> str:
    """Format a duration in seconds to a human-readable string.

    Examples::

        format_duration(3.7)    -> "3.7s"
        format_duration(65.2)   -> "1m 5s"
    """
    if seconds < 0:
        return "0.0s"

    minutes = int(seconds // 60)
    secs = seconds % 60
    if minutes > 0:
        return f"{minutes}m {int(secs)}s"
    return f"{secs:.1f}s"


def short_revision(revision: str | None) -> str:
    """Abbreviate a commit id for display."""
    if not revision:
        return "(working tree)"
    return revision[:12]


# ---------------------------------------------------------------------------
# Rich output helpers
# ---------------------------------------------------------------------------


def print_step(message: str) -> None:
    """Print a pipeline step line."""
    console.print(f"[bold cyan]>[/bold cyan] {message}")


def print_detail(message: str, verbose: bool = True) -> None:
    """Print a dimmed detail line when *verbose* is set."""
    if verbose:
        console.print(f"  [dim]{message}[/dim]")


def print_success(message: str) -> None:
    """Print a green success message."""
    console.print(f"[bold green]{message}[/bold green]")


def print_error(message: str) -> None:
    """Print a red error message to stderr."""
    err_console.print(f"[bold red]{message}[/bold red]")


def print_warning(message: str) -> None:
    """Print a yellow warning message."""
    console.print(f"[bold yellow]{message}[/bold yellow]")


def print_summary_table(data: dict[str, Any], title: str = "Summary") -> None:
    """Print a two-column key/value summary table."""
    table = Table(title=title, show_header=True, header_style="bold cyan")
    table.add_column("Item", style="dim", no_wrap=True)
    table.add_column("Value")

    for key, value in data.items():
        table.add_row(key, str(value))

    console.print(table)
    console.print()


def print_panel(body: str, title: str, border_style: str = "cyan") -> None:
    """Print a bordered panel."""
    console.print(Panel(body, title=title, border_style=border_style))

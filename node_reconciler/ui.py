"""Console output for node-reconciler runs.

Thin layer over :mod:`rich`.  Operator-facing status lines go through
here; ``logger.*`` calls stay in the library modules for file/debug logs.
Rich decides on colour and TTY handling, so piped/CI output stays plain.
"""

from __future__ import annotations

from typing import Iterable

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

console = Console(stderr=False, force_terminal=None)

_PASS = "[bold green]✓[/]"
_FAIL = "[bold red]✗[/]"
_WARN = "[bold yellow]⚠[/]"
_ARROW = "[bold cyan]›[/]"
_SKIP = "[dim]-[/]"

# ── Phase headers ──────────────────────────────────────────────────────────


def phase(title: str) -> None:
    """Print a bold phase header (``PRECONDITIONS``, ``ROLLOUT``...)."""
    console.print()
    console.print(f"[bold blue]── {title} ──[/]")


# ── Status lines ───────────────────────────────────────────────────────────


def ok(msg: str) -> None:
    console.print(f"  {_PASS} {msg}")


def fail(msg: str) -> None:
    console.print(f"  {_FAIL} [red]{msg}[/]")


def warn(msg: str) -> None:
    console.print(f"  {_WARN} [yellow]{msg}[/]")


def step(msg: str) -> None:
    console.print(f"  {_ARROW} {msg}")


def skipped(msg: str) -> None:
    console.print(f"  {_SKIP} [dim]{msg}[/]")


def detail(key: str, value: str) -> None:
    """Indented key/value pair."""
    console.print(f"    [bold]{key}[/]: {value}")


def error_msg(msg: str) -> None:
    """Bold red error message (not indented)."""
    console.print(f"[bold red]ERROR:[/] {msg}")


def lines(block: Iterable[str]) -> None:
    """Print raw lines without markup interpretation (rendered config)."""
    for line in block:
        console.print(line, markup=False, highlight=False)


# ── Panels / tables ────────────────────────────────────────────────────────


def result_panel(title: str, body: str, *, success: bool) -> None:
    colour = "green" if success else "red"
    console.print()
    console.print(
        Panel(
            body,
            title=f"[bold {colour}]{title}[/]",
            border_style=colour,
            padding=(1, 2),
        )
    )


def node_table(rows: Iterable[tuple[str, str, str]]) -> None:
    """Render ``(node, outcome, detail)`` rows as a table."""
    table = Table(show_header=True, header_style="bold")
    table.add_column("Node")
    table.add_column("Outcome")
    table.add_column("Detail", overflow="fold")
    styles = {"Succeeded": "green", "Failed": "red", "Skipped": "yellow"}
    for node, outcome, info in rows:
        style = styles.get(outcome, "")
        table.add_row(node, f"[{style}]{outcome}[/]" if style else outcome, info)
    console.print(table)


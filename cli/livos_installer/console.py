from __future__ import annotations

from typing import Iterable

from rich.console import Console
from rich.markup import escape
from rich.table import Table

console = Console(highlight=False)


def info(msg: str) -> None:
    console.print(f"[bold cyan]•[/] {escape(msg)}")


def ok(msg: str) -> None:
    console.print(f"[bold green]OK[/] {escape(msg)}")


def warn(msg: str) -> None:
    console.print(f"[bold yellow]WARN[/] {escape(msg)}")


def err(msg: str) -> None:
    console.print(f"[bold red]ERR[/] {escape(msg)}")


def step(index: int, total: int, msg: str) -> None:
    console.print(f"[dim]{index}/{total}[/] {escape(msg)}")


def key_values(rows: Iterable[tuple[str, str]], *, title: str | None = None) -> None:
    """Two-column table; values may carry rich markup, keys may not."""
    table = Table(show_header=False, title=title)
    table.add_column("key", style="bold")
    table.add_column("value")
    for key, value in rows:
        table.add_row(escape(key), value)
    console.print(table)


def print(*args, **kwargs):
    """Proxy to underlying rich Console.print()."""
    console.print(*args, **kwargs)


def rule(*args, **kwargs):
    """Proxy to underlying rich Console.rule()."""
    console.rule(*args, **kwargs)

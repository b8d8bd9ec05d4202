from __future__ import annotations

from typing import Any, Dict, Iterable, Optional

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table


def _console(console: Optional[Console] = None) -> Console:
    return console or Console()


def panel(title: str, body: str, console: Optional[Console] = None) -> None:
    _console(console).print(Panel(body, title=title, border_style="cyan", expand=False))


def kv_table(title: str, data: Dict[str, Any], console: Optional[Console] = None) -> None:
    t = Table(title=title, box=box.SIMPLE, expand=False)
    t.add_column("Key", style="bold cyan")
    t.add_column("Value")
    for k, v in data.items():
        t.add_row(str(k), str(v))
    _console(console).print(t)


def rows_table(
    title: str,
    columns: Iterable[str],
    rows: Iterable[Iterable[Any]],
    console: Optional[Console] = None,
) -> None:
    t = Table(title=title, box=box.MINIMAL_DOUBLE_HEAD, expand=False)
    for col in columns:
        t.add_column(str(col))
    for r in rows:
        t.add_row(*[str(x) for x in r])
    _console(console).print(t)

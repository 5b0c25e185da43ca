from typing import Any, Dict, Iterable, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

console = Console()


def banner(title: str, subtitle: Optional[str] = None) -> None:
    text = title if subtitle is None else f"{title}\n{subtitle}"
    console.print(Panel.fit(text, border_style="cyan"))


def error_banner(health: Dict[str, Any]) -> None:
    """Show the scheduler's failure state, if any."""
    if not health.get("consecutive_failures"):
        return
    console.print(Panel.fit(
        f"{health['consecutive_failures']} consecutive failed cycle(s)\n"
        f"Last error: {health.get('last_error')}\n"
        f"Last success: {health.get('last_success_at') or 'never'}",
        title="Automation engine degraded",
        border_style="red"
    ))


def table(title: str, columns: Iterable[str], rows: Iterable[Iterable[Any]]) -> Table:
    result = Table(title=title, show_lines=False)
    for column in columns:
        result.add_column(column)
    for row in rows:
        result.add_row(*["" if value is None else str(value) for value in row])
    return result

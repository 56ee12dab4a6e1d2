"""Rich console helpers for CLI output."""
import json
import logging
from typing import Any, Iterable, List, Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table

console = Console()


def setup_logging(level: str = "INFO") -> None:
    """Route library logging through rich."""
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
        force=True,
    )


def print_success(message: str) -> None:
    """Print a success message."""
    console.print(f"[bold green]✓[/bold green] {message}")


def print_error(message: str) -> None:
    """Print an error message."""
    console.print(f"[bold red]✗[/bold red] {message}", style="red")


def print_info(message: str) -> None:
    """Print an info message."""
    console.print(f"[bold blue]ℹ[/bold blue] {message}")


def print_warning(message: str) -> None:
    """Print a warning message."""
    console.print(f"[bold yellow]⚠[/bold yellow] {message}", style="yellow")


def print_messages(messages: Iterable[str], title: str, style: str = "yellow") -> None:
    """Print a list of warnings or recommendations inside a panel."""
    items = list(messages)
    if not items:
        return
    body = "\n".join(f"• {item}" for item in items)
    console.print(Panel(body, title=title, border_style=style))


def print_table(title: str, headers: List[str], rows: List[List[str]], styles: Optional[List[str]] = None) -> None:
    """Print rows as a rich table."""
    table = Table(title=title, show_header=True, header_style="bold violet")
    styles = styles or []
    for index, header in enumerate(headers):
        table.add_column(header, style=styles[index] if index < len(styles) else None)
    for row in rows:
        table.add_row(*row)
    console.print(table)


def print_json(data: Any, title: str = "Result") -> None:
    """Print JSON with syntax highlighting."""
    body = json.dumps(data, indent=2, default=str)
    syntax = Syntax(body, "json", theme="monokai", line_numbers=False)
    console.print(Panel(syntax, title=title, border_style="green"))


def print_banner() -> None:
    """Print the schemaseed banner."""
    banner = """
[bold cyan]
   ┏━┓┏━╸╻ ╻┏━╸┏┳┓┏━┓┏━┓┏━╸┏━╸╺┳┓
   ┗━┓┃  ┣━┫┣╸ ┃┃┃┣━┫┗━┓┣╸ ┣╸  ┃┃
   ┗━┛┗━╸╹ ╹┗━╸╹ ╹╹ ╹┗━┛┗━╸┗━╸╺┻┛
[/bold cyan]
[dim]    Constraint-aware test data seeding[/dim]
    """
    console.print(banner)


def confirm(message: str, default: bool = False) -> bool:
    """Ask for user confirmation."""
    suffix = " [Y/n]: " if default else " [y/N]: "
    response = console.input(f"[bold yellow]?[/bold yellow] {message}{suffix}")

    if not response:
        return default

    return response.lower() in ["y", "yes"]

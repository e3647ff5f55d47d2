"""
Rich-powered console output for the portless CLIs.
"""

import sys

from rich.console import Console
from rich.markup import escape
from rich.table import Table

console = Console(highlight=False, soft_wrap=True)
err_console = Console(stderr=True, highlight=False, soft_wrap=True)

# ASCII icons when stdout is not a terminal
_USE_ASCII = not sys.stdout.isatty()


def print_success(message: str):
    """Print a success message"""
    icon = "+" if _USE_ASCII else "✓"
    console.print(f"[green]{icon}[/green] {escape(message)}")


def print_error(message: str):
    """Print an error message to stderr"""
    icon = "x" if _USE_ASCII else "✗"
    err_console.print(f"[red]{icon}[/red] {escape(message)}", style="red")


def print_hint(message: str):
    """Print a remediation hint to stderr"""
    err_console.print(f"  {escape(message)}", style="dim")


def print_warning(message: str):
    """Print a warning message"""
    console.print(f"[yellow]![/yellow] {escape(message)}")


def print_info(message: str):
    console.print(escape(message))


def routes_table(routes: dict[str, str], urls: dict[str, str], title: str = "Active services") -> Table:
    """
    Create a Rich table of active routes.

    Args:
        routes: Dict of service name -> backend URL
        urls: Dict of service name -> browsable proxy URL
        title: Table title
    """
    table = Table(title=escape(title), show_header=True, header_style="bold cyan", title_justify="left")
    table.add_column("Name", style="bold")
    table.add_column("URL", style="cyan")
    table.add_column("Backend", style="dim")

    for name in sorted(routes):
        table.add_row(escape(name), escape(urls[name]), escape(routes[name]))
    return table

"""
Rich-powered console output for the CLI.
"""

import sys

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

console = Console(force_terminal=None, legacy_windows=True)

_USE_ASCII = not sys.stdout.isatty()


def print_error(message: str):
    icon = "x" if _USE_ASCII else "✗"
    console.print(f"[red]{icon}[/red] {message}", style="red")


def print_info(message: str):
    icon = "i" if _USE_ASCII else "ℹ"
    console.print(f"[blue]{icon}[/blue] {message}")


def print_startup_summary(host: str, port: int, static_dir: str, proxy_config: str, plugin_dir: str):
    """Print where the server listens and what it serves"""
    table = Table(show_header=False, box=None, padding=(0, 1))
    table.add_column(style="dim")
    table.add_column()
    table.add_row("URL", f"http://{host}:{port}")
    table.add_row("Static", static_dir)
    table.add_row("Proxy config", proxy_config)
    table.add_row("Plugins", plugin_dir)
    table.add_row("Health", f"http://{host}:{port}/health")
    console.print(Panel(table, title="frontdoor", border_style="cyan", expand=False))

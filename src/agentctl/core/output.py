"""Output formatting for agentctl commands.

Tables and messages go through Rich. ``json`` and ``yaml`` output is written
with plain ``print`` when color is off so it can be piped into ``jq``.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any

import click
import yaml
from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table
from tabulate import tabulate


class OutputFormat(str, Enum):
    """Supported output formats."""

    TABLE = "table"
    JSON = "json"
    YAML = "yaml"
    RAW = "raw"


# Deployment, check and approval statuses share one palette.
STATUS_STYLES = {
    "completed": "green",
    "passed": "green",
    "approved": "green",
    "failed": "red",
    "rejected": "red",
    "rolling_back": "yellow",
    "rolled_back": "yellow",
    "skipped": "dim",
    "pending": "cyan",
    "pending_approval": "cyan",
}

LEVEL_STYLES = {"debug": "dim", "info": "", "warn": "yellow", "error": "red"}


def status_markup(status: str) -> str:
    """Wrap a status value in its Rich style."""
    style = STATUS_STYLES.get(status, "blue")
    return f"[{style}]{status}[/{style}]"


def _cell(value: Any) -> str:
    if value is None:
        return "-"
    if isinstance(value, bool):
        return "yes" if value else "no"
    if isinstance(value, datetime):
        return value.strftime("%Y-%m-%d %H:%M:%S")
    return str(value)


class OutputFormatter:
    """Handles output formatting for CLI commands."""

    def __init__(
        self,
        format: OutputFormat = OutputFormat.TABLE,
        color: bool = True,
        quiet: bool = False,
    ):
        self.format = format
        self.color = color
        self.quiet = quiet
        self._console = Console(force_terminal=color, no_color=not color)
        self._err_console = Console(stderr=True, no_color=not color)

    def print(self, message: str, style: str | None = None) -> None:
        if self.quiet:
            return
        self._console.print(message, style=style)

    def print_header(self, message: str) -> None:
        if self.quiet:
            return
        self._console.print(f"\n[bold cyan]{message}[/bold cyan]")

    def print_error(self, message: str) -> None:
        """Print an error to stderr. Quiet mode does not suppress errors."""
        self._err_console.print(f"[red]Error:[/red] {message}")

    def print_warning(self, message: str) -> None:
        if self.quiet:
            return
        self._console.print(f"[yellow]Warning:[/yellow] {message}")

    def print_success(self, message: str) -> None:
        if self.quiet:
            return
        self._console.print(f"[green]✓[/green] {message}")

    def print_info(self, message: str) -> None:
        if self.quiet:
            return
        self._console.print(f"[blue]ℹ[/blue] {message}")

    def print_fields(self, fields: dict[str, Any]) -> None:
        """Print ``label: value`` lines, skipping unset values."""
        if self.quiet:
            return
        for label, value in fields.items():
            if value is not None:
                self._console.print(f"{label}: {value}")

    def print_log_line(self, timestamp: datetime, level: str, component: str, message: str) -> None:
        """Print one audit log entry, colored by level."""
        if self.quiet:
            return
        style = LEVEL_STYLES.get(level) or None
        line = f"[{timestamp.strftime('%H:%M:%S')}] {level.upper():5} {component}: {message}"
        # Messages come from probes and services; do not parse them as markup
        self._console.print(line, style=style, markup=False, highlight=False)

    def print_data(
        self,
        data: list[dict[str, Any]] | dict[str, Any],
        headers: list[str] | None = None,
        title: str | None = None,
    ) -> None:
        """Print data in the configured format. Not affected by quiet mode."""
        if self.format == OutputFormat.JSON:
            self._print_json(data)
        elif self.format == OutputFormat.YAML:
            self._print_yaml(data)
        elif self.format == OutputFormat.RAW:
            self._print_raw(data, headers)
        else:
            self._print_table(data, headers, title)

    def _print_json(self, data: Any) -> None:
        json_str = json.dumps(data, indent=2, default=str)
        if self.color:
            self._console.print(Syntax(json_str, "json", theme="monokai"))
        else:
            print(json_str)

    def _print_yaml(self, data: Any) -> None:
        yaml_str = yaml.safe_dump(data, default_flow_style=False, allow_unicode=True, sort_keys=False)
        if self.color:
            self._console.print(Syntax(yaml_str, "yaml", theme="monokai"))
        else:
            print(yaml_str)

    def _print_raw(self, data: Any, headers: list[str] | None = None) -> None:
        """Print unstyled text; row lists become a plain tabulate table."""
        if isinstance(data, list) and data and isinstance(data[0], dict):
            keys = headers or list(data[0].keys())
            rows = [[_cell(row.get(k)) for k in keys] for row in data]
            print(tabulate(rows, headers=keys, tablefmt="plain"))
        elif isinstance(data, list):
            for item in data:
                print(item)
        elif isinstance(data, dict):
            for key, value in data.items():
                print(f"{key}: {_cell(value)}")
        else:
            print(data)

    def _print_table(
        self,
        data: list[dict[str, Any]] | dict[str, Any],
        headers: list[str] | None = None,
        title: str | None = None,
    ) -> None:
        table = Table(title=title, show_header=True, header_style="bold cyan")

        if isinstance(data, dict):
            # Single record as field/value rows
            table.add_column("Field", style="dim")
            table.add_column("Value")
            for key, value in data.items():
                table.add_row(str(key), _cell(value))
        elif data:
            headers = headers or list(data[0].keys())
            for header in headers:
                table.add_column(header)
            for row in data:
                cells = [_cell(row.get(h)) for h in headers]
                if "status" in headers:
                    index = headers.index("status")
                    cells[index] = status_markup(cells[index])
                table.add_row(*cells)
        else:
            self._console.print("[dim]No data to display[/dim]")
            return

        self._console.print(table)

    def print_panel(self, content: str, title: str | None = None, style: str = "blue") -> None:
        if self.quiet:
            return
        self._console.print(Panel(content, title=title, border_style=style))

    def confirm(self, message: str, default: bool = False) -> bool:
        """Ask a yes/no question. Quiet mode answers with ``default``."""
        if self.quiet:
            return default
        return click.confirm(message, default=default)


def format_duration(seconds: float) -> str:
    """Format seconds to a short human-readable duration."""
    if seconds < 60:
        return f"{seconds:.1f}s"
    if seconds < 3600:
        return f"{seconds / 60:.1f}m"
    if seconds < 86400:
        return f"{seconds / 3600:.1f}h"
    return f"{seconds / 86400:.1f}d"

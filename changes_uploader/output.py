"""Console output formatting built on rich."""

import json
import sys
from typing import Any, Optional, Sequence

from rich.console import Console
from rich.table import Table


class OutputFormatter:
    """Formats user-facing messages, tables and JSON.

    In quiet mode only warnings and errors are printed. In JSON mode
    human-readable messages go to stderr so stdout stays machine-readable.
    """

    def __init__(
        self,
        json_output: bool = False,
        quiet: bool = False,
        console: Optional[Console] = None,
        err_console: Optional[Console] = None,
    ):
        self.json_output = json_output
        self.quiet = quiet
        self.console = console or Console(highlight=False)
        self.err_console = err_console or Console(stderr=True, highlight=False)

    @property
    def _message_console(self) -> Console:
        return self.err_console if self.json_output else self.console

    def print(self, message: str = "") -> None:
        if not self.quiet:
            self._message_console.print(message)

    def info(self, message: str) -> None:
        if not self.quiet:
            self._message_console.print(message)

    def success(self, message: str) -> None:
        if not self.quiet:
            self._message_console.print(f"[green]{message}[/green]")

    def warning(self, message: str) -> None:
        self.err_console.print(f"[yellow]Warning:[/yellow] {message}")

    def error(self, message: str) -> None:
        self.err_console.print(f"[red]Error:[/red] {message}")

    def notify(self, kind: str, message: str) -> None:
        """User-visible notification with a severity ``kind``.

        ``kind`` is one of "info", "success", "warning" or "error";
        anything else is treated as "info".
        """
        handler = {
            "success": self.success,
            "warning": self.warning,
            "error": self.error,
        }.get(kind, self.info)
        handler(message)

    def output_json(self, data: Any) -> None:
        sys.stdout.write(json.dumps(data, indent=2, default=str) + "\n")
        sys.stdout.flush()

    def print_summary(self, title: str, items: Sequence[tuple[str, str]]) -> None:
        """Print a titled two-column summary."""
        if self.quiet:
            return
        table = Table(title=title, show_header=False, title_justify="left")
        table.add_column("Key", style="bold")
        table.add_column("Value")
        for key, value in items:
            table.add_row(key, value)
        self._message_console.print(table)

    def print_table(
        self, columns: Sequence[str], rows: Sequence[Sequence[str]]
    ) -> None:
        table = Table(*columns)
        for row in rows:
            table.add_row(*row)
        self.console.print(table)

"""Output formatters for console and JSON display."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

from rich.console import Console
from rich.markup import escape
from rich.table import Table

if TYPE_CHECKING:
    from .core import OperationResult, StatusRow, StatusSummary

STATUS_LEGEND = "Status Legend: < Pullable, > Unpushed, ! Conflict"


class OutputFormatter:
    """Format output for console or JSON."""

    def __init__(self, console: Console, use_json: bool = False):
        self.console = console
        self.use_json = use_json

    def _print_json(self, output: dict):
        # soft_wrap keeps long paths on one line so the output stays parseable
        self.console.print(
            json.dumps(output, indent=2),
            soft_wrap=True,
            markup=False,
            highlight=False,
        )

    def print_status_list(self, rows: list[StatusRow], summary: StatusSummary):
        """Print status list."""
        if self.use_json:
            self._print_status_json(rows, summary)
        else:
            self._print_status_table(rows, summary)

    def _print_status_table(self, rows: list[StatusRow], summary: StatusSummary):
        """Print rich table output."""
        table = Table()

        table.add_column("Repository", style="cyan", no_wrap=True)
        table.add_column("Config Ref")
        table.add_column("Local Branch/Rev", no_wrap=True)
        table.add_column("Remote Rev", no_wrap=True)
        table.add_column("Status", justify="center")

        for row in rows:
            remote = escape(row.remote_ref)
            if row.is_pullable:
                remote = f"[yellow]{remote}[/]"
            table.add_row(
                escape(row.name),
                escape(row.config_ref),
                escape(row.local_ref),
                remote,
                self._get_status_display(row),
            )

        self.console.print(table)
        self._print_summary(summary)
        self.console.print(STATUS_LEGEND, markup=False)

    def _get_status_display(self, row: StatusRow) -> str:
        """Get status cell text."""
        from .core import SyncStatus

        match row.sync_status:
            case SyncStatus.CONFLICT:
                return "[yellow]! conflict[/]"
            case SyncStatus.DIVERGED:
                return "[green]>[/][yellow]<[/] diverged"
            case SyncStatus.UNPUSHED:
                return "[green]> unpushed[/]"
            case SyncStatus.PULLABLE:
                return "[yellow]< pullable[/]"
            case _:
                return "clean"

    def _print_summary(self, summary: StatusSummary):
        """Print summary."""
        parts = [f"[bold]Total:[/] {summary.total}"]

        if summary.clean > 0:
            parts.append(f"Clean: {summary.clean}")
        if summary.unpushed > 0:
            parts.append(f"[green]> Unpushed:[/] {summary.unpushed}")
        if summary.pullable > 0:
            parts.append(f"[yellow]< Pullable:[/] {summary.pullable}")
        if summary.diverged > 0:
            parts.append(f"[yellow]>< Diverged:[/] {summary.diverged}")
        if summary.conflict > 0:
            parts.append(f"[bold yellow]! Conflict:[/] {summary.conflict}")

        self.console.print(" | ".join(parts))

    def _print_status_json(self, rows: list[StatusRow], summary: StatusSummary):
        """Print JSON output."""
        output = {
            "repositories": [r.to_dict() for r in rows],
            "summary": summary.to_dict(),
        }
        self._print_json(output)

    def print_operation_results(self, results: list[OperationResult], operation: str):
        """Print operation results."""
        if self.use_json:
            self._print_operation_json(results)
        else:
            self._print_operation_table(results, operation)

    def _print_operation_table(self, results: list[OperationResult], operation: str):
        """Print operation results as table."""
        if not results:
            self.console.print(f"[dim]No repositories to {operation}[/]")
            return

        table = Table(title=f"{operation.title()} Results")
        table.add_column("Repository", style="cyan")
        table.add_column("Status", justify="center")
        table.add_column("Message")

        success_count = 0
        for result in results:
            if result.success:
                success_count += 1
                status = "[green]✓[/]"
                message = escape(result.message[:60]) if result.message else "OK"
            else:
                status = "[red]✗[/]"
                message = f"[red]{escape(result.error[:60])}[/]" if result.error else "Failed"

            table.add_row(escape(result.name), status, message)

        self.console.print(table)
        self.console.print(f"\n[bold]Success:[/] {success_count}/{len(results)}")

    def _print_operation_json(self, results: list[OperationResult]):
        """Print operation results as JSON."""
        output = {
            "results": [r.to_dict() for r in results],
            "summary": {
                "total": len(results),
                "success": sum(1 for r in results if r.success),
                "failed": sum(1 for r in results if not r.success),
            },
        }
        self._print_json(output)

from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional, Sequence

from rich import box
from rich.console import Console
from rich.table import Table

from retailbi.domain.models import (
    DataQualityIssue,
    DerivedViewDescriptor,
    RefreshBatch,
    RefreshOutcome,
    Severity,
    ViewFreshness,
)

_STATUS_STYLES = {"SUCCESS": "green", "FAILED": "bold red", "RUNNING": "yellow", "PARTIAL": "yellow"}
_SEVERITY_STYLES: Dict[Severity, str] = {
    Severity.CRITICAL: "bold red",
    Severity.HIGH: "red",
    Severity.MEDIUM: "yellow",
    Severity.LOW: "dim",
}


def _fmt_ts(value: Optional[datetime]) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S") if value else "never"


def _fmt_rows(value: Optional[int]) -> str:
    return f"{value:,}" if value is not None else "N/A"


def _fmt_status(status: str) -> str:
    style = _STATUS_STYLES.get(status, "white")
    return f"[{style}]{status}[/{style}]"


def _outcome_table(title: str, outcomes: Sequence[RefreshOutcome], caption: Optional[str] = None) -> Table:
    table = Table(title=title, box=box.ROUNDED, caption=caption)
    table.add_column("View", style="cyan", no_wrap=True)
    table.add_column("Status")
    table.add_column("Rows Before", justify="right", style="magenta")
    table.add_column("Rows After", justify="right", style="magenta")
    table.add_column("Duration (s)", justify="right", style="green")
    table.add_column("Error", style="red")
    for outcome in outcomes:
        table.add_row(
            outcome.view_name,
            _fmt_status(outcome.status.value),
            _fmt_rows(outcome.rows_before),
            _fmt_rows(outcome.rows_after),
            f"{outcome.duration:.2f}",
            outcome.error or "",
        )
    return table


def print_batch(batch: RefreshBatch, console: Optional[Console] = None) -> None:
    """
    Render one refresh batch as a rich table, failures included.
    """
    console = console or Console()
    if not batch.outcomes:
        console.print(f"[yellow]No views to refresh in scope '{batch.scope}'.[/yellow]")
        return
    title = f"Refresh: {batch.scope}\n[dim]{batch.batch_id} │ {batch.trigger_source.value}[/dim]"
    console.print(_outcome_table(title, batch.outcomes, caption=batch.summary()))


def print_history(outcomes: List[RefreshOutcome], console: Optional[Console] = None) -> None:
    console = console or Console()
    if not outcomes:
        console.print("[yellow]No refresh history recorded.[/yellow]")
        return
    console.print(_outcome_table("Refresh History", outcomes, caption="Most recent first"))


def print_freshness(rows: List[ViewFreshness], console: Optional[Console] = None) -> None:
    """
    Freshness of one or more views; stale snapshots are highlighted.
    """
    console = console or Console()
    table = Table(title="View Freshness", box=box.ROUNDED)
    table.add_column("View", style="cyan", no_wrap=True)
    table.add_column("Cadence")
    table.add_column("Last Refreshed")
    table.add_column("Rows", justify="right", style="magenta")
    table.add_column("Avg Duration (s)", justify="right", style="green")
    table.add_column("Stale", justify="center")
    for row in rows:
        avg = f"{row.avg_refresh_duration:.2f}" if row.avg_refresh_duration is not None else "N/A"
        table.add_row(
            row.name,
            row.refresh_cadence.value,
            _fmt_ts(row.last_refreshed),
            _fmt_rows(row.last_row_count),
            avg,
            "[bold red]yes[/bold red]" if row.is_stale else "no",
        )
    console.print(table)


def print_catalog(views: List[DerivedViewDescriptor], console: Optional[Console] = None) -> None:
    console = console or Console()
    table = Table(title="Derived Views", box=box.ROUNDED, caption=f"{len(views)} views")
    table.add_column("Module", style="blue")
    table.add_column("View", style="cyan", no_wrap=True)
    table.add_column("Kind")
    table.add_column("Cadence")
    table.add_column("Title")
    for view in views:
        table.add_row(view.category, view.name, view.kind.value, view.refresh_cadence.value, view.title)
    console.print(table)


def print_issues(issues: List[DataQualityIssue], console: Optional[Console] = None) -> None:
    console = console or Console()
    if not issues:
        console.print("[green]All data-quality checks passed.[/green]")
        return
    table = Table(title="Data Quality Issues", box=box.ROUNDED, caption=f"{len(issues)} open issues")
    table.add_column("Check", style="cyan")
    table.add_column("Category")
    table.add_column("Severity")
    table.add_column("Source")
    table.add_column("Affected", justify="right", style="magenta")
    for issue in issues:
        style = _SEVERITY_STYLES.get(issue.severity, "white")
        table.add_row(
            issue.check_name,
            issue.category.value,
            f"[{style}]{issue.severity.value}[/{style}]",
            issue.source_table or "",
            f"{issue.affected_record_count:,}",
        )
    console.print(table)


__all__ = ["print_batch", "print_catalog", "print_freshness", "print_history", "print_issues"]

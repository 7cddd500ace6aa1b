from __future__ import annotations

import json
import sys
from typing import List, Optional

import typer

from retailbi.config import get_settings
from retailbi.domain.models import TriggerSource
from retailbi.errors import RetailBIError
from retailbi.infrastructure.db_factory import get_sync_connection, get_sync_pool
from retailbi.orchestrator import DEFAULT_HISTORY_LIMIT, build_orchestrator
from retailbi.registry import default_registry
from retailbi.reporter import print_batch, print_catalog, print_freshness, print_history, print_issues
from retailbi.store.postgres import PostgresMetadataStore
from retailbi.store.schema import ensure_schema
from retailbi.utils.logging import configure_logging, get_logger

app = typer.Typer(help="RetailBI derived-view refresh and metadata CLI.")
log = get_logger(__name__)


@app.callback()
def setup(
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Override LOG_LEVEL."),
    json_logs: Optional[bool] = typer.Option(None, "--json-logs/--no-json-logs", help="Override JSON_LOGS."),
) -> None:
    settings = get_settings()
    configure_logging(
        level=log_level or settings.log_level,
        json_logs=settings.json_logs if json_logs is None else json_logs,
    )


@app.command()
def info() -> None:
    """
    Show effective configuration values.
    """
    settings = get_settings()
    typer.echo(
        f"DB={settings.db_user}@{settings.db_host}:{settings.db_port}/{settings.db_name} | "
        f"schema={settings.analytics_schema} concurrent={settings.refresh_concurrent} "
        f"timeout={settings.refresh_timeout_seconds}s env={settings.app_env}"
    )


@app.command("init-db")
def init_db() -> None:
    """
    Create the metadata tables and register the view catalog.
    """
    settings = get_settings()
    with get_sync_connection() as conn:
        ensure_schema(conn, settings.analytics_schema)
    store = PostgresMetadataStore(get_sync_pool(), schema=settings.analytics_schema)
    registered = default_registry().sync(store)
    typer.echo(f"Metadata schema '{settings.analytics_schema}' ready; {registered} views registered.")


@app.command()
def views(
    module: Optional[str] = typer.Option(None, "--module", "-m", help="Only list one module."),
) -> None:
    """
    List the declared derived views.
    """
    registry = default_registry()
    try:
        selected = registry.views_in(module) if module else registry.all()
    except RetailBIError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=1)
    print_catalog(selected)


@app.command()
def refresh(
    module: Optional[str] = typer.Option(None, "--module", "-m", help="Refresh one module's snapshots."),
    view: Optional[List[str]] = typer.Option(None, "--view", "-v", help="Refresh specific views (repeatable)."),
    concurrent: Optional[bool] = typer.Option(
        None, "--concurrent/--no-concurrent", help="Refresh without blocking readers."
    ),
    source: TriggerSource = typer.Option(TriggerSource.MANUAL, "--source", "-s", case_sensitive=False),
    as_json: bool = typer.Option(False, "--json", help="Print the batch as JSON."),
) -> None:
    """
    Refresh all snapshots, one module, or an explicit list of views.

    Exits 0 whenever a batch was produced, even if some views failed.
    """
    if module and view:
        raise typer.BadParameter("use either --module or --view, not both")
    settings = get_settings()
    use_concurrent = settings.refresh_concurrent if concurrent is None else concurrent

    try:
        orchestrator = build_orchestrator(settings)
        if view:
            batch = orchestrator.refresh(view, use_concurrent, trigger_source=source)
        elif module:
            batch = orchestrator.refresh_module(module, use_concurrent, trigger_source=source)
        else:
            batch = orchestrator.refresh_all(use_concurrent, trigger_source=source)
    except Exception as exc:
        log.error(f"[REFRESH CRASHED] {exc}", extra={"error_type": type(exc).__name__})
        typer.echo(f"Refresh failed: {exc}", err=True)
        raise typer.Exit(code=1)

    if as_json:
        typer.echo(batch.model_dump_json(indent=2))
    else:
        print_batch(batch)


@app.command()
def history(
    limit: int = typer.Option(DEFAULT_HISTORY_LIMIT, "--limit", "-n", min=1, help="Rows to show."),
    as_json: bool = typer.Option(False, "--json", help="Print as JSON."),
) -> None:
    """
    Show the most recent refresh outcomes.
    """
    outcomes = build_orchestrator(sync_catalog=False).get_refresh_history(limit)
    if as_json:
        typer.echo(json.dumps([o.model_dump(mode="json") for o in outcomes], indent=2))
    else:
        print_history(outcomes)


@app.command()
def freshness(
    name: Optional[str] = typer.Argument(None, help="View name; omit to show every snapshot."),
    stale: bool = typer.Option(False, "--stale", help="Only snapshots past their cadence."),
) -> None:
    """
    Show when views were last refreshed and whether they are stale.
    """
    orchestrator = build_orchestrator(sync_catalog=False)
    try:
        if name:
            rows = [orchestrator.get_view_freshness(name)]
        elif stale:
            rows = orchestrator.stale_views()
        else:
            rows = [orchestrator.get_view_freshness(v.name) for v in orchestrator.registry.refreshable()]
    except RetailBIError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=1)
    print_freshness(rows)


@app.command()
def quality(
    as_json: bool = typer.Option(False, "--json", help="Print issues as JSON."),
) -> None:
    """
    Run the data-quality battery and show the open issues it found.
    """
    issues = build_orchestrator(sync_catalog=False).run_quality_checks()
    if as_json:
        typer.echo(json.dumps([i.model_dump(mode="json") for i in issues], indent=2))
    else:
        print_issues(issues)


def main() -> None:
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)


if __name__ == "__main__":
    main()

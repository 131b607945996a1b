"""Typer CLI for the Report Architect."""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

# Load .env early so GOOGLE_API_KEY is available to the AI service
load_dotenv()

from ra_agent.config import Settings

app = typer.Typer(
    name="ra",
    help="Report Architect: turn flat CSV exports into related tables and reports.",
    no_args_is_help=True,
)
console = Console()


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose or Settings().verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def _acquire_ingest_lock(lock_path: Path) -> None:
    """Acquire an exclusive on-disk lock for ingestion runs."""
    payload = {
        "pid": os.getpid(),
        "started_at_utc": datetime.now(timezone.utc).isoformat(),
    }

    try:
        fd = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
    except FileExistsError as e:
        details = ""
        try:
            details = lock_path.read_text(encoding="utf-8").strip()
        except OSError:
            pass

        hint = f" Existing lock details: {details}" if details else ""
        raise RuntimeError(
            f"Another ingestion is already running (lock: {lock_path}).{hint}"
        ) from e

    with os.fdopen(fd, "w", encoding="utf-8") as f:
        f.write(json.dumps(payload))


def _release_ingest_lock(lock_path: Path) -> None:
    """Release ingestion run lock."""
    try:
        lock_path.unlink(missing_ok=True)
    except OSError:
        # Stale lock details stay inspectable.
        pass


def _open_store(settings: Settings, *, readonly: bool = False):
    """Open the table store; read-only stores require an existing database."""
    from ra_agent.storage.store import TableStore

    settings.ensure_dirs()
    if readonly and not settings.db_path.exists():
        console.print("[dim]No database yet. Run [cyan]ra ingest[/cyan] first.[/dim]")
        raise typer.Exit(code=1)
    return TableStore(settings.db_path, readonly=readonly)


def _agent_manager(settings: Settings, store):
    from ra_agent.agents.ai_service import AIService, store_key_loader
    from ra_agent.agents.manager import AgentManager

    return AgentManager(lambda: AIService.from_settings(settings, store_key_loader(store)))


def _print_rows(title: str, columns: list[str], rows: list[dict], limit: int | None = None) -> None:
    table = Table(title=title)
    for col in columns:
        table.add_column(col)
    for row in rows[:limit] if limit else rows:
        table.add_row(*("" if row.get(c) is None else str(row.get(c)) for c in columns))
    console.print(table)


@app.command()
def ingest(
    file: Path = typer.Argument(..., exists=True, dir_okay=False, help="CSV file to ingest"),
    table: str | None = typer.Option(
        None, "--table", "-t", help="Store the file as one table, skipping the schema proposal"
    ),
) -> None:
    """Ingest a CSV file into related tables."""
    from ra_agent.errors import ReportArchitectError
    from ra_agent.pipeline.orchestrator import PipelineOrchestrator, default_table_name

    settings = Settings()
    settings.ensure_dirs()

    def ask_table_name(path: Path) -> str:
        return typer.prompt(
            "AI schema unavailable. Enter a table name", default=default_table_name(path)
        )

    lock_path = settings.runs_dir / ".ingest.lock"
    try:
        _acquire_ingest_lock(lock_path)
    except RuntimeError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1) from e

    try:
        with _open_store(settings) as store:
            orchestrator = PipelineOrchestrator(
                store, _agent_manager(settings, store), settings, fallback_namer=ask_table_name
            )
            ctx = orchestrator.ingest(file, table_name=table)
    except ReportArchitectError as e:
        console.print(f"[red]Ingestion failed:[/red] {e}")
        raise typer.Exit(code=1) from e
    finally:
        _release_ingest_lock(lock_path)

    summary = Table(title="Ingested Tables")
    summary.add_column("Table", style="cyan")
    summary.add_column("Rows", justify="right", style="green")
    summary.add_column("Duplicates", justify="right")
    summary.add_column("Warnings", justify="right")
    for outcome in ctx.outcomes:
        summary.add_row(
            outcome.name,
            str(outcome.rows_written),
            str(outcome.duplicates),
            str(outcome.warnings),
        )
    console.print(summary)
    for warning in ctx.warnings:
        console.print(f"[yellow]Warning:[/yellow] {warning}")


@app.command()
def tables() -> None:
    """List stored tables with their row counts."""
    settings = Settings()
    with _open_store(settings, readonly=True) as store:
        names = store.list_tables()
        counts = {name: store.row_count(name) for name in names}

    if not names:
        console.print("[dim]No tables yet. Run [cyan]ra ingest[/cyan] first.[/dim]")
        return

    table = Table(title="Tables")
    table.add_column("Table", style="cyan")
    table.add_column("Rows", justify="right", style="green")
    for name in names:
        table.add_row(name, str(counts[name]))
    console.print(table)


@app.command()
def show(
    name: str = typer.Argument(..., help="Table name"),
    limit: int = typer.Option(20, "--limit", "-n", help="Rows to display"),
) -> None:
    """Display the rows of a stored table."""
    settings = Settings()
    with _open_store(settings, readonly=True) as store:
        if not store.has_table(name):
            console.print(f"[red]Error:[/red] Unknown table '{name}'")
            raise typer.Exit(code=1)
        rows = store.load_rows(name)

    columns = list(rows[0]) if rows else []
    _print_rows(f"{name} ({len(rows)} rows)", columns, rows, limit)


@app.command()
def drop(
    name: str = typer.Argument(..., help="Table name"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
) -> None:
    """Delete a stored table and its rows."""
    from ra_agent.pipeline.ordering import get_downstream_chain

    settings = Settings()
    with _open_store(settings) as store:
        if not store.has_table(name):
            console.print(f"[red]Error:[/red] Unknown table '{name}'")
            raise typer.Exit(code=1)

        plan = store.load_schema_plan()
        dependents = get_downstream_chain(plan, name) if plan and plan.get(name) else []
        if dependents:
            console.print(
                f"[yellow]Warning:[/yellow] {', '.join(dependents)} reference '{name}'"
            )
        if not yes and not typer.confirm(f"Delete table '{name}'?"):
            raise typer.Abort()
        store.delete_table(name)

    console.print(f"[green]Deleted[/green] {name}")


@app.command()
def plan() -> None:
    """Show the stored schema plan and its execution order."""
    from ra_agent.errors import CyclicDependencyError
    from ra_agent.pipeline.ordering import resolve_execution_order

    settings = Settings()
    with _open_store(settings, readonly=True) as store:
        schema_plan = store.load_schema_plan()

    if schema_plan is None:
        console.print("[dim]No schema plan stored. Run [cyan]ra ingest[/cyan] first.[/dim]")
        raise typer.Exit(code=1)

    table = Table(title="Schema Plan")
    table.add_column("Table", style="cyan")
    table.add_column("Primary key")
    table.add_column("Natural key")
    table.add_column("Foreign keys")
    for name, schema in schema_plan.tables.items():
        table.add_row(
            name,
            ", ".join(schema.primary_key_columns),
            ", ".join(schema.key_fields),
            ", ".join(f"{col} -> {fk}" for col, fk in schema.foreign_keys.items()),
        )
    console.print(table)

    try:
        order = resolve_execution_order(schema_plan)
    except CyclicDependencyError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1) from e
    console.print(f"Execution order: {' -> '.join(order)}")


@app.command()
def lineage(name: str = typer.Argument(..., help="Table name")) -> None:
    """Show which tables a table depends on and which depend on it."""
    from ra_agent.pipeline.ordering import get_downstream_chain, get_upstream_chain

    settings = Settings()
    with _open_store(settings, readonly=True) as store:
        schema_plan = store.load_schema_plan()

    if schema_plan is None or schema_plan.get(name) is None:
        console.print(f"[red]Error:[/red] '{name}' is not in the stored schema plan")
        raise typer.Exit(code=1)

    upstream = get_upstream_chain(schema_plan, name)
    downstream = get_downstream_chain(schema_plan, name)
    console.print(f"[bold]{name}[/bold]")
    console.print(f"  Upstream:   {' -> '.join(upstream) or '(root)'}")
    console.print(f"  Downstream: {', '.join(downstream) or '(none)'}")


@app.command("set-key")
def set_key(key: str = typer.Argument(..., help="Google AI API key")) -> None:
    """Store the API key used by the AI agents."""
    from ra_agent.agents.ai_service import API_KEY_CONFIG

    settings = Settings()
    with _open_store(settings) as store:
        store.save_config(API_KEY_CONFIG, key.strip())
    console.print("[green]API key saved.[/green]")


@app.command()
def suggest() -> None:
    """Ask the BI analyst for report suggestions over the stored schema."""
    from ra_agent.errors import ReportArchitectError
    from ra_agent.reporting import ReportService

    settings = Settings()
    with _open_store(settings) as store:
        service = ReportService(store, _agent_manager(settings, store), settings)
        try:
            suggestions = service.suggest_reports()
        except ReportArchitectError as e:
            console.print(f"[red]Error:[/red] {e}")
            raise typer.Exit(code=1) from e

    table = Table(title="Report Suggestions")
    table.add_column("#", style="dim", justify="right")
    table.add_column("Title", style="cyan")
    table.add_column("Query", max_width=60)
    for i, suggestion in enumerate(suggestions, 1):
        table.add_row(str(i), suggestion.title, suggestion.to_request().describe())
    console.print(table)
    console.print("\nRun [cyan]ra report --index N[/cyan] to generate one.")


@app.command()
def report(
    index: int | None = typer.Option(None, "--index", "-i", help="Suggestion number from 'ra suggest'"),
    request_file: Path | None = typer.Option(
        None, "--request", "-r", exists=True, dir_okay=False, help="JSON report request"
    ),
) -> None:
    """Run a report, summarize it and write the output artifacts."""
    from pydantic import ValidationError

    from ra_agent.errors import ReportArchitectError
    from ra_agent.models import ReportRequest
    from ra_agent.output.writer import ReportWriter
    from ra_agent.query.engine import ReportQueryEngine
    from ra_agent.reporting import ReportService

    if (index is None) == (request_file is None):
        console.print("[red]Error:[/red] Pass exactly one of --index or --request")
        raise typer.Exit(code=1)

    settings = Settings()
    with _open_store(settings) as store, _open_store(settings, readonly=True) as query_store:
        engine = ReportQueryEngine(query_store, settings.join_precedence)
        service = ReportService(store, _agent_manager(settings, store), settings, engine=engine)
        try:
            if request_file is not None:
                request = ReportRequest.model_validate_json(request_file.read_text(encoding="utf-8"))
                document = service.run_request(request, title=request_file.stem)
            else:
                suggestions = service.saved_suggestions()
                if not 1 <= index <= len(suggestions):
                    console.print(
                        f"[red]Error:[/red] No suggestion #{index}. Run [cyan]ra suggest[/cyan] first."
                    )
                    raise typer.Exit(code=1)
                document = service.run_suggestion(suggestions[index - 1])
        except (ReportArchitectError, ValidationError) as e:
            console.print(f"[red]Report failed:[/red] {e}")
            raise typer.Exit(code=1) from e
        audit_log = service.engine.get_audit_entries()

    result = document.result
    _print_rows(document.title, result.columns, result.rows, settings.preview_rows)
    console.print(f"\n[bold]Summary:[/bold] {document.summary}")

    artifacts = ReportWriter(settings).write_all(document, audit_log)
    console.print("[green]Report artifacts written:[/green]")
    for name, path in artifacts.items():
        console.print(f"  {name}: {path}")


if __name__ == "__main__":
    app()

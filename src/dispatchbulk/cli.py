#!/usr/bin/env python3
"""
dispatchbulk - bulk operations for route dispatch data

The dataset is a JSON snapshot passed with ``--data``. Commands run against an
in-memory copy; ``--save`` writes the mutated snapshot back to the same file.
"""

import asyncio
import sys
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from . import __version__
from .bulk.batch import BulkOperationResults
from .bulk.engine import BulkOperationsEngine
from .bulk.processors import FileFormatDetector
from .bulk.reporting import ProgressDisplay, SummaryRenderer, export
from .datastore.memory import InMemoryDatastore
from .exceptions import DispatchBulkError
from .templates.registry import TemplateRegistry
from .utils.config import BulkSettings, Config
from .utils.logging_config import LoggingConfig, LogLevel, setup_logging

app = typer.Typer(
    help="Bulk route assignment, staff/asset updates, route templates and timestamp reports.",
    add_completion=False,
    no_args_is_help=True,
)
templates_app = typer.Typer(help="Inspect route templates.", no_args_is_help=True)
app.add_typer(templates_app, name="templates")

console = Console()


class _State:
    config_file: Optional[Path] = None


state = _State()


def _data_option():
    return typer.Option(..., "--data", "-d", help="Dataset snapshot (JSON)")


def _save_option():
    return typer.Option(False, "--save", help="Write the updated dataset back to --data")


@app.callback()
def main(
    config_file: Optional[Path] = typer.Option(
        None, "--config", help="Config file (default: $DISPATCHBULK_CONFIG or ~/.dispatchbulk/config.yaml)"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Configure logging before any command runs."""
    state.config_file = config_file
    try:
        logging_config = LoggingConfig.from_dict(Config(config_file).get_logging_config())
    except (DispatchBulkError, ValueError) as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)
    if verbose:
        logging_config.level = LogLevel.DEBUG
    setup_logging(logging_config)


def _build_engine(data: Path) -> BulkOperationsEngine:
    config = Config(state.config_file)
    settings = BulkSettings.from_config(config)
    template_config = config.get_template_config()
    registry = TemplateRegistry(
        storage_directory=template_config["storage_directory"],
        default_format=template_config["default_format"],
    )
    registry.load_directory()
    datastore = InMemoryDatastore.load(data)
    return BulkOperationsEngine(datastore, settings=settings, registry=registry)


def _progress(engine: BulkOperationsEngine, show_children: bool = False) -> ProgressDisplay:
    """Live progress bars, drawn only when stdout is a terminal."""
    return ProgressDisplay(
        console, engine.event_bus, enabled=sys.stdout.isatty(), show_children=show_children
    )


def _fail(message: str) -> None:
    console.print(f"[red]Error: {message}[/red]")
    raise typer.Exit(1)


def _finish(engine: BulkOperationsEngine, results: BulkOperationResults, label: str, data: Path, save: bool):
    renderer = SummaryRenderer(console)
    renderer.render_results(results, label)
    if results.failed_count:
        renderer.render_errors(results)
    if save:
        engine.datastore.save(data)
        console.print(f"[green]Dataset saved to {data}[/green]")


def _run_file_action(input_file: Path, kind: str, data: Path, save: bool, label: str, action):
    try:
        items = FileFormatDetector.get_processor(input_file, kind).parse()
        engine = _build_engine(data)
        console.print(f"[blue]Processing {len(items)} {kind} records from {input_file}[/blue]")
        with _progress(engine):
            results = asyncio.run(action(engine, items))
    except (DispatchBulkError, OSError, ValueError) as e:
        _fail(str(e))
    _finish(engine, results, label, data, save)


@app.command("assign")
def assign(
    input_file: Path = typer.Argument(..., help="CSV or JSON file with route_id, shift, date, staff_id, asset_id"),
    data: Path = _data_option(),
    overwrite: bool = typer.Option(False, "--overwrite", help="Replace assignments that already exist"),
    batch_size: Optional[int] = typer.Option(None, "--batch-size", help="Items per batch"),
    assigned_by: Optional[str] = typer.Option(None, "--assigned-by", help="Recorded as the assigner"),
    save: bool = _save_option(),
):
    """Bulk assign staff and assets to routes.

    Existing assignments for the same route, shift and date are skipped unless
    --overwrite is given.

    Examples:
        $ dispatchbulk assign assignments.csv --data dispatch.json --save
    """
    if batch_size is not None and batch_size < 1:
        _fail("Batch size must be a positive integer.")
    _run_file_action(
        input_file, "assignments", data, save, "Bulk Assign",
        lambda engine, items: engine.bulk_assign_routes(
            items, overwrite=overwrite, assigned_by=assigned_by, batch_size=batch_size
        ),
    )


@app.command("update-staff")
def update_staff(
    input_file: Path = typer.Argument(..., help="CSV or JSON file with staff_id and the fields to change"),
    data: Path = _data_option(),
    updated_by: Optional[str] = typer.Option(None, "--updated-by", help="Recorded as the updater"),
    save: bool = _save_option(),
):
    """Bulk update staff records."""
    _run_file_action(
        input_file, "staff", data, save, "Staff Update",
        lambda engine, items: engine.bulk_update_staff(items, updated_by=updated_by),
    )


@app.command("update-assets")
def update_assets(
    input_file: Path = typer.Argument(..., help="CSV or JSON file with asset_id and the fields to change"),
    data: Path = _data_option(),
    updated_by: Optional[str] = typer.Option(None, "--updated-by", help="Recorded as the updater"),
    save: bool = _save_option(),
):
    """Bulk update asset records."""
    _run_file_action(
        input_file, "assets", data, save, "Asset Update",
        lambda engine, items: engine.bulk_update_assets(items, updated_by=updated_by),
    )


@app.command("apply-template")
def apply_template(
    template_id: str = typer.Argument(..., help="Template id, e.g. daily-gen-ed"),
    dates: List[str] = typer.Argument(..., help="One or more dates (YYYY-MM-DD)"),
    data: Path = _data_option(),
    overwrite: bool = typer.Option(False, "--overwrite", help="Update routes that already exist"),
    save: bool = _save_option(),
):
    """Generate dated routes from a template.

    Examples:
        $ dispatchbulk apply-template daily-gen-ed 2024-09-03 2024-09-04 --data dispatch.json
    """
    try:
        engine = _build_engine(data)
        with _progress(engine, show_children=True):
            results = asyncio.run(engine.bulk_apply_template(template_id, dates, overwrite=overwrite))
    except (DispatchBulkError, OSError, ValueError) as e:
        _fail(str(e))

    table = Table(title=f"Template {template_id}", show_header=True, header_style="bold magenta")
    table.add_column("Date", style="cyan")
    table.add_column("Processed", justify="right", style="green")
    table.add_column("Skipped", justify="right", style="yellow")
    table.add_column("Failed", justify="right", style="red")
    table.add_column("Error", style="red")
    for application in results.applications:
        counts = application.results
        table.add_row(
            application.date,
            str(counts.processed_count) if counts else "-",
            str(counts.skipped_count) if counts else "-",
            str(counts.failed_count) if counts else "-",
            application.error or "",
        )
    console.print(table)
    console.print(
        f"[bold]{results.dates_processed}/{results.total_dates} dates applied, "
        f"{results.routes_processed} routes written, {results.routes_skipped} skipped[/bold]"
    )

    if save:
        engine.datastore.save(data)
        console.print(f"[green]Dataset saved to {data}[/green]")


@app.command("report")
def report(
    data: Path = _data_option(),
    start: Optional[str] = typer.Option(None, "--start", help="First date included (YYYY-MM-DD)"),
    end: Optional[str] = typer.Option(None, "--end", help="Last date included (YYYY-MM-DD)"),
    include: Optional[List[str]] = typer.Option(
        None, "--type", "-t", help="Category to include (assignments, routes, staff, assets); repeatable"
    ),
    fmt: str = typer.Option("json", "--format", "-f", help="Export format: json or csv"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write the export to a file"),
):
    """Generate a timestamp report for a date range."""
    try:
        engine = _build_engine(data)
        result = asyncio.run(
            engine.generate_timestamp_report({"start": start, "end": end}, include or [])
        )
        content = export(result, fmt)
    except (DispatchBulkError, OSError, ValueError) as e:
        _fail(str(e))

    if output is None:
        typer.echo(content)
        return

    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(content, encoding="utf-8")
    SummaryRenderer(console).render_report(result)
    console.print(f"[green]Report written to {output}[/green]")


@templates_app.command("list")
def list_templates(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show route entries"),
):
    """List built-in and stored templates."""
    try:
        template_config = Config(state.config_file).get_template_config()
        registry = TemplateRegistry(storage_directory=template_config["storage_directory"])
        registry.load_directory()
    except DispatchBulkError as e:
        _fail(str(e))

    templates = registry.list_templates()
    table = Table(title="Route Templates", show_header=True, header_style="bold magenta")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Routes", justify="right")
    table.add_column("Version", justify="right")
    table.add_column("Description", style="dim")
    for template in templates:
        table.add_row(
            template.id, template.name, str(template.route_count), str(template.version), template.description
        )
    console.print(table)

    if verbose:
        for template in templates:
            entries = Table(title=template.id, show_header=True, box=None)
            entries.add_column("Name")
            entries.add_column("Type")
            entries.add_column("Shift")
            entries.add_column("Estimated Time")
            for entry in template.routes:
                entries.add_row(entry.name, entry.type, entry.shift, entry.estimated_time)
            console.print(entries)


@app.command()
def version():
    """Show the application version and exit."""
    console.print(f"dispatchbulk version: {__version__}")


if __name__ == "__main__":
    app()

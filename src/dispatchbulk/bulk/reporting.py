"""Reporting components for bulk operations.

This module builds date-filtered timestamp reports from the dataset, exports
reports and raw entity collections as JSON or flattened CSV, and renders
operation results with Rich formatting for console output.

Classes:
    DateRange: Inclusive, day-granular date interval
    Report: A generated timestamp report
    ReportGenerator: Read-only dataset scan producing reports
    SummaryRenderer: Rich console summaries of bulk results and reports
    ProgressDisplay: Live progress bars fed by operation lifecycle events
"""

import csv
import io
import json
import time
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from rich.columns import Columns
from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from ..datastore.interfaces import DatastoreInterface
from ..datastore.models import parse_date
from ..events import (
    OPERATION_COMPLETED,
    OPERATION_FAILED,
    OPERATION_PROGRESS,
    OPERATION_STARTED,
    EventBus,
)
from ..exceptions import InvalidOperationError
from .batch import BulkOperationResults

REPORT_CATEGORIES = ("assignments", "routes", "staff", "assets")
EXPORT_FORMATS = ("json", "csv")

DateLike = Union[str, date, datetime, None]


@dataclass(frozen=True)
class DateRange:
    """Inclusive date interval compared at day granularity.

    A missing bound leaves that side open.
    """

    start: Optional[date] = None
    end: Optional[date] = None

    @classmethod
    def of(cls, value: Any) -> "DateRange":
        """Build a range from a DateRange, a ``(start, end)`` pair or a ``{start, end}`` dict."""
        if value is None:
            return cls()
        if isinstance(value, DateRange):
            return value
        if isinstance(value, dict):
            start, end = value.get("start"), value.get("end")
        else:
            start, end = value
        date_range = cls(parse_date(start), parse_date(end))
        if date_range.start and date_range.end and date_range.start > date_range.end:
            raise InvalidOperationError(
                f"Date range start {date_range.start} is after end {date_range.end}"
            )
        return date_range

    @property
    def is_unbounded(self) -> bool:
        return self.start is None and self.end is None

    def contains(self, value: DateLike) -> bool:
        day = parse_date(value)
        if day is None:
            return False
        if self.start is not None and day < self.start:
            return False
        if self.end is not None and day > self.end:
            return False
        return True

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {
            "start": self.start.isoformat() if self.start else None,
            "end": self.end.isoformat() if self.end else None,
        }


@dataclass
class Report:
    """A timestamp report: per-category entries that fall inside the date range."""

    date_range: DateRange
    include_types: List[str]
    data: Dict[str, List[Dict[str, Any]]] = field(default_factory=dict)
    generated_at: datetime = field(default_factory=datetime.now)

    def counts(self) -> Dict[str, int]:
        return {category: len(entries) for category, entries in self.data.items()}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "generated_at": self.generated_at.isoformat(),
            "date_range": self.date_range.to_dict(),
            "include_types": list(self.include_types),
            "data": self.data,
        }


def _pick(data: Dict[str, Any], keys: Sequence[str]) -> Dict[str, Any]:
    return {key: data.get(key) for key in keys}


class ReportGenerator:
    """Builds timestamp reports with a read-only scan of the dataset."""

    def __init__(self, datastore: DatastoreInterface):
        self.datastore = datastore

    def timestamp_report(
        self, date_range: Any = None, include_types: Optional[Iterable[str]] = None
    ) -> Report:
        """Generate a timestamp report.

        Args:
            date_range: Inclusive range; see :meth:`DateRange.of`
            include_types: Categories to include; empty or None means all of them

        Returns:
            Report with one entry list per included category

        Raises:
            InvalidOperationError: If a category is unknown or the range is inverted
        """
        date_range = DateRange.of(date_range)
        include_types = list(include_types or [])
        unknown = set(include_types) - set(REPORT_CATEGORIES)
        if unknown:
            raise InvalidOperationError(
                f"Unknown report categories: {', '.join(sorted(unknown))}. "
                f"Valid categories are: {', '.join(REPORT_CATEGORIES)}"
            )

        selected = [c for c in REPORT_CATEGORIES if not include_types or c in include_types]
        collectors = {
            "assignments": self._assignment_entries,
            "routes": self._route_entries,
            "staff": self._staff_entries,
            "assets": self._asset_entries,
        }
        report = Report(date_range=date_range, include_types=include_types)
        for category in selected:
            report.data[category] = collectors[category](date_range)
        return report

    def _assignment_entries(self, date_range: DateRange) -> List[Dict[str, Any]]:
        assignments = self.datastore.find_by("assignments", lambda a: date_range.contains(a.date))
        keys = (
            "id", "route_id", "staff_id", "asset_id", "date", "shift",
            "assigned_at", "assigned_by", "completed_at", "status",
        )
        return [_pick(a.to_dict(), keys) for a in assignments]

    def _route_entries(self, date_range: DateRange) -> List[Dict[str, Any]]:
        routes = self.datastore.find_by("routes", lambda r: date_range.contains(r.date))
        keys = (
            "id", "name", "type", "shift", "date", "status",
            "created_at", "activated_at", "completed_at",
        )
        return [_pick(r.to_dict(), keys) for r in routes]

    def _with_changes(self, kind: str, date_range: DateRange, keys: Sequence[str]):
        entries = []
        for entity in self.datastore.all(kind):
            changes = [c for c in entity.status_changes if date_range.contains(c.timestamp)]
            if not changes and not date_range.is_unbounded:
                continue
            entry = _pick(entity.to_dict(), keys)
            entry["status_changes"] = [c.to_dict() for c in changes]
            entries.append(entry)
        return entries

    def _staff_entries(self, date_range: DateRange) -> List[Dict[str, Any]]:
        return self._with_changes("staff", date_range, ("id", "name", "role", "status", "last_updated"))

    def _asset_entries(self, date_range: DateRange) -> List[Dict[str, Any]]:
        return self._with_changes(
            "assets",
            date_range,
            ("id", "number", "type", "status", "last_updated", "last_maintenance"),
        )


# ----- export -----


def _scalar(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return str(value)


def flatten_record(record: Dict[str, Any], prefix: str = "") -> List[Dict[str, str]]:
    """Flatten a nested record into one or more flat rows.

    Nested mappings become dotted column names, lists of mappings expand into
    one row per element (an empty list leaves a single blank column)
    and lists of scalars are joined with ``;``.
    """
    rows: List[Dict[str, str]] = [{}]
    for key, value in record.items():
        column = f"{prefix}{key}"
        if isinstance(value, dict):
            nested = flatten_record(value, f"{column}.")
            rows = [{**row, **extra} for row in rows for extra in nested]
        elif isinstance(value, list) and any(isinstance(v, dict) for v in value):
            expanded: List[Dict[str, str]] = []
            for element in value:
                if isinstance(element, dict):
                    expanded.extend(flatten_record(element, f"{column}."))
                else:
                    expanded.append({column: _scalar(element)})
            rows = [{**row, **extra} for row in rows for extra in expanded]
        elif isinstance(value, list):
            joined = ";".join(_scalar(v) for v in value)
            rows = [{**row, column: joined} for row in rows]
        else:
            rows = [{**row, column: _scalar(value)} for row in rows]
    return rows


def _write_csv(rows: List[Dict[str, str]], leading: Tuple[str, ...] = ()) -> str:
    columns: List[str] = list(leading)
    for row in rows:
        for column in row:
            if column not in columns:
                columns.append(column)

    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=columns, restval="", lineterminator="\n")
    writer.writeheader()
    writer.writerows(rows)
    return buffer.getvalue()


def _check_format(fmt: str) -> str:
    fmt = fmt.lower()
    if fmt not in EXPORT_FORMATS:
        raise ValueError(
            f"Unsupported format: {fmt}. Supported formats are: {', '.join(EXPORT_FORMATS)}"
        )
    return fmt


def export(report: Report, fmt: str = "json") -> str:
    """Render a report as JSON or CSV.

    The CSV form has one table: a ``category`` column followed by the union of
    the flattened columns of every category.

    Raises:
        ValueError: If the format is not supported
    """
    if _check_format(fmt) == "json":
        return json.dumps(report.to_dict(), indent=2)

    rows = []
    for category, entries in report.data.items():
        for entry in entries:
            rows.extend({"category": category, **row} for row in flatten_record(entry))
    return _write_csv(rows, leading=("category",))


def export_records(records: Iterable[Any], fmt: str = "json") -> str:
    """Render a raw entity collection as JSON or CSV."""
    fmt = _check_format(fmt)
    dicts = [r.to_dict() if hasattr(r, "to_dict") else dict(r) for r in records]
    if fmt == "json":
        return json.dumps(dicts, indent=2)

    rows = [row for record in dicts for row in flatten_record(record)]
    return _write_csv(rows)


# ----- console -----


class SummaryRenderer:
    """Renders bulk results and reports on a Rich console."""

    def __init__(self, console: Console):
        """Initialize summary renderer.

        Args:
            console: Rich console for output
        """
        self.console = console

    def render_results(self, results: BulkOperationResults, operation: str) -> None:
        """Display summary table and status panels for a bulk run.

        Args:
            results: Bulk operation results
            operation: Operation label shown in the title
        """
        summary_table = Table(show_header=False, box=None, padding=(0, 1))
        summary_table.add_column("Metric", style="bold cyan")
        summary_table.add_column("Value", style="bold")

        summary_table.add_row("Operation", operation)
        summary_table.add_row("Total Items", str(results.total_items))
        summary_table.add_row("Processed", f"[green]{results.processed_count}[/green]")
        summary_table.add_row("Failed", f"[red]{results.failed_count}[/red]")
        summary_table.add_row("Skipped", f"[yellow]{results.skipped_count}[/yellow]")
        summary_table.add_row("Success Rate", f"{results.success_rate:.1f}%")
        summary_table.add_row("Duration", format_duration(results.duration))

        status_panels = []
        if results.processed_count > 0:
            status_panels.append(
                Panel(f"[bold green]{results.processed_count}[/bold green]\nProcessed", style="green", width=15)
            )
        if results.failed_count > 0:
            status_panels.append(
                Panel(f"[bold red]{results.failed_count}[/bold red]\nFailed", style="red", width=15)
            )
        if results.skipped_count > 0:
            status_panels.append(
                Panel(f"[bold yellow]{results.skipped_count}[/bold yellow]\nSkipped", style="yellow", width=15)
            )

        self.console.print()
        self.console.print(
            Panel(summary_table, title=f"[bold]{operation} Summary[/bold]", border_style="blue")
        )
        if status_panels:
            self.console.print()
            self.console.print(Columns(status_panels, equal=True, expand=True))

        if results.start_time and results.end_time:
            timing_table = Table(show_header=False, box=None, padding=(0, 1))
            timing_table.add_column("Metric", style="dim")
            timing_table.add_column("Value", style="dim")
            timing_table.add_row(
                "Started", time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(results.start_time))
            )
            timing_table.add_row(
                "Completed", time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(results.end_time))
            )
            self.console.print()
            self.console.print(
                Panel(timing_table, title="[dim]Timing Information[/dim]", border_style="dim")
            )

    def render_errors(self, results: BulkOperationResults, limit: int = 20) -> None:
        """Display recorded item errors grouped by error type."""
        if not results.errors:
            self.console.print("[green]No errors encountered![/green]")
            return

        groups: Dict[str, List[Any]] = {}
        for error in results.errors:
            groups.setdefault(error.error_type, []).append(error)

        error_table = Table(title="Error Summary", show_header=True, header_style="bold red")
        error_table.add_column("Error Type", style="red", width=22)
        error_table.add_column("Count", justify="right", width=8)
        error_table.add_column("Examples", style="dim", width=60)

        for error_type, errors in groups.items():
            examples = [f"#{e.index}: {e.reason}" for e in errors[:3]]
            if len(errors) > 3:
                examples.append(f"... and {len(errors) - 3} more")
            error_table.add_row(error_type, str(len(errors)), "; ".join(examples))

        self.console.print()
        self.console.print(error_table)
        if results.errors_truncated:
            self.console.print(
                f"[yellow]{results.errors_dropped} further errors were not recorded "
                f"(limit {results.max_errors})[/yellow]"
            )

    def render_report(self, report: Report) -> None:
        """Display per-category counts for a timestamp report."""
        table = Table(title="Timestamp Report", show_header=True, header_style="bold magenta")
        table.add_column("Category", style="cyan")
        table.add_column("Entries", justify="right")
        for category, count in report.counts().items():
            table.add_row(category, str(count))

        bounds = report.date_range.to_dict()
        self.console.print()
        self.console.print(table)
        self.console.print(
            f"[dim]Range: {bounds['start'] or '-'} .. {bounds['end'] or '-'}; "
            f"generated {report.generated_at:%Y-%m-%d %H:%M:%S}[/dim]"
        )


class ProgressDisplay:
    """Shows a progress bar per running operation while bulk work runs.

    Bars are driven by the tracker's lifecycle events, so anything that runs
    through the engine is shown without further wiring. Sub-operations (one
    per template date) only get their own bar when ``show_children`` is set.
    Use as a context manager around the work.
    """

    _EVENTS = (OPERATION_STARTED, OPERATION_PROGRESS, OPERATION_COMPLETED, OPERATION_FAILED)

    def __init__(
        self,
        console: Console,
        event_bus: EventBus,
        enabled: bool = True,
        show_children: bool = False,
    ):
        """Initialize the display.

        Args:
            console: Rich console for output
            event_bus: Channel carrying operation lifecycle events
            enabled: When False nothing is drawn or subscribed
            show_children: Also draw bars for sub-operations
        """
        self.console = console
        self.event_bus = event_bus
        self.enabled = enabled
        self.show_children = show_children
        self.progress: Optional[Progress] = None
        self._tasks: Dict[str, TaskID] = {}

    def __enter__(self) -> "ProgressDisplay":
        if not self.enabled:
            return self
        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
            TextColumn("({task.completed}/{task.total})"),
            TimeElapsedColumn(),
            console=self.console,
        )
        self.progress.start()
        for event in self._EVENTS:
            self.event_bus.subscribe(event, self.handle_event)
        return self

    def __exit__(self, *exc_info) -> None:
        if self.progress is None:
            return
        for event in self._EVENTS:
            self.event_bus.unsubscribe(event, self.handle_event)
        self.progress.stop()
        self.progress = None
        self._tasks.clear()

    def handle_event(self, event: str, payload: Dict[str, Any]) -> None:
        if self.progress is None or not isinstance(payload, dict):
            return
        if payload.get("parent_id") and not self.show_children:
            return

        operation_id = payload["id"]
        if event == OPERATION_STARTED:
            self._tasks[operation_id] = self.progress.add_task(
                payload["type"], total=payload["total_items"]
            )
            return

        task_id = self._tasks.get(operation_id)
        if task_id is None:
            return
        if event == OPERATION_PROGRESS:
            self.progress.update(task_id, completed=payload["processed_items"])
        elif event == OPERATION_COMPLETED:
            self.progress.update(task_id, completed=payload["total_items"])
        elif event == OPERATION_FAILED:
            self.progress.update(task_id, description=f"[red]{payload['type']} failed[/red]")


def format_duration(seconds: float) -> str:
    """Format duration in seconds to a human-readable string."""
    if seconds < 0:
        return "N/A"
    if seconds < 1:
        return f"{seconds*1000:.0f}ms"
    elif seconds < 60:
        return f"{seconds:.2f}s"
    elif seconds < 3600:
        minutes = int(seconds // 60)
        return f"{minutes}m {seconds % 60:.1f}s"
    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)
    return f"{hours}h {minutes}m {seconds % 60:.1f}s"

"""Dispatch Bulk - batch assignment, template and reporting engine for route dispatch data."""

from .bulk.batch import BatchProcessor, BulkOperationResults, ItemError
from .bulk.cancellation import CancellationToken
from .bulk.engine import BulkOperationsEngine
from .bulk.reporting import DateRange, Report, ReportGenerator
from .bulk.tracker import Operation, OperationStatus, OperationTracker
from .datastore import InMemoryDatastore
from .events import EventBus
from .templates import Template, TemplateEngine, TemplateRegistry


def _get_version():
    """Get the version from package metadata or pyproject.toml."""
    try:
        from importlib.metadata import PackageNotFoundError, version

        return version("dispatchbulk")
    except PackageNotFoundError:
        import re
        from pathlib import Path

        pyproject_path = Path(__file__).parent.parent.parent / "pyproject.toml"
        if not pyproject_path.exists():
            return "0.0.0"

        with open(pyproject_path, "r", encoding="utf-8") as f:
            version_match = re.search(r'^version\s*=\s*["\']([^"\']+)["\']', f.read(), re.MULTILINE)
        return version_match.group(1) if version_match else "0.0.0"


__version__ = _get_version()

__all__ = [
    "__version__",
    # Engine
    "BulkOperationsEngine",
    "BatchProcessor",
    "BulkOperationResults",
    "ItemError",
    "CancellationToken",
    # Tracking
    "Operation",
    "OperationStatus",
    "OperationTracker",
    # Reports
    "DateRange",
    "Report",
    "ReportGenerator",
    # Data and events
    "InMemoryDatastore",
    "EventBus",
    # Templates
    "Template",
    "TemplateEngine",
    "TemplateRegistry",
]

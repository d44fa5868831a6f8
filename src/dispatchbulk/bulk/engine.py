"""Top-level bulk actions over the dispatch dataset.

:class:`BulkOperationsEngine` is constructed explicitly with its datastore and
collaborators and handed to callers. Each public action runs inside a tracked
operation and goes through the shared batch processor.
"""

import logging
from dataclasses import fields
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence

from ..datastore.interfaces import DatastoreInterface
from ..datastore.models import Assignment, StatusChange, normalize_keys, parse_date
from ..events import (
    ASSETS_UPDATED,
    ASSIGNMENTS_UPDATED,
    ROUTES_UPDATED,
    STAFF_UPDATED,
    EventBus,
)
from ..exceptions import EntityReferenceError, InvalidOperationError, ItemValidationError
from ..templates.engine import TemplateApplicationResults, TemplateEngine
from ..templates.models import Template
from ..templates.registry import TemplateRegistry
from ..utils.config import BulkSettings
from .batch import BatchProcessor, BulkOperationResults
from .cancellation import CancellationToken
from .conflicts import ConflictResolver
from .reporting import Report, ReportGenerator
from .tracker import Operation, OperationTracker
from .validation import Validator

logger = logging.getLogger(__name__)

BULK_ASSIGN_ROUTES = "bulk-assign-routes"
BULK_UPDATE_STAFF = "bulk-update-staff"
BULK_UPDATE_ASSETS = "bulk-update-assets"
TIMESTAMP_REPORT = "timestamp-report"

# Fields a bulk update may not overwrite
_PROTECTED_FIELDS = frozenset({"id", "status_changes", "last_updated", "updated_by"})


def _as_items(items: Any) -> List[Any]:
    if isinstance(items, (str, bytes, dict)) or not isinstance(items, Iterable):
        raise InvalidOperationError(f"Expected a list of items, got {type(items).__name__}")
    return list(items)


_TRUE_FLAGS = frozenset({"true", "yes", "1"})
_FALSE_FLAGS = frozenset({"false", "no", "0"})


def _parse_overwrite(value: Any, default: bool) -> bool:
    """Read a per-item overwrite flag, which may arrive as text from CSV or JSON."""
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        flag = value.strip().lower()
        if flag in _TRUE_FLAGS:
            return True
        if flag in _FALSE_FLAGS:
            return False
    raise ItemValidationError(f"Invalid overwrite flag: {value!r}")


class BulkOperationsEngine:
    """Entry point for bulk assignment, update, template and report actions."""

    def __init__(
        self,
        datastore: DatastoreInterface,
        event_bus: Optional[EventBus] = None,
        settings: Optional[BulkSettings] = None,
        tracker: Optional[OperationTracker] = None,
        registry: Optional[TemplateRegistry] = None,
    ):
        """Initialize the engine.

        Args:
            datastore: Dataset the actions read and mutate
            event_bus: Notification channel; a private one is created if omitted
            settings: Engine settings, defaults when omitted
            tracker: Operation tracker; built from ``settings`` when omitted
            registry: Template registry; built-in templates only when omitted
        """
        self.datastore = datastore
        self.settings = settings or BulkSettings()
        self.event_bus = event_bus or (tracker.event_bus if tracker else EventBus())
        self.tracker = tracker or OperationTracker(
            event_bus=self.event_bus,
            history_limit=self.settings.history_limit,
            max_concurrent=self.settings.max_concurrent,
            reject_when_busy=self.settings.reject_when_busy,
        )
        self.validator = Validator(datastore)
        self.resolver = ConflictResolver(datastore)
        self.batch_processor = BatchProcessor(
            tracker=self.tracker,
            datastore=datastore,
            batch_size=self.settings.batch_size,
            batch_delay=self.settings.batch_delay_seconds,
            max_errors=self.settings.max_errors,
        )
        self.reports = ReportGenerator(datastore)
        self.templates = TemplateEngine(
            datastore,
            self.tracker,
            registry=registry or TemplateRegistry(event_bus=self.event_bus),
            batch_processor=self.batch_processor,
            settings=self.settings,
            event_bus=self.event_bus,
        )

    # ----- route assignment -----

    async def bulk_assign_routes(
        self,
        assignments: Sequence[Dict[str, Any]],
        overwrite: bool = False,
        assigned_by: Optional[str] = None,
        batch_size: Optional[int] = None,
        cancellation: Optional[CancellationToken] = None,
    ) -> BulkOperationResults:
        """Create or update route assignments.

        Each item needs ``route_id``, ``shift`` and ``date`` and may name a
        ``staff_id`` and ``asset_id``. An item may carry its own ``overwrite``
        flag, which takes precedence over the argument.

        Returns:
            BulkOperationResults for the run
        """
        items = _as_items(assignments)
        assigned_by = assigned_by or self.settings.assigned_by

        async def work(operation_id: str) -> BulkOperationResults:
            results = await self.batch_processor.run(
                items,
                lambda item: self._assign_one(item, overwrite, assigned_by),
                batch_size=batch_size,
                operation_id=operation_id,
                cancellation=cancellation,
                operation_type=BULK_ASSIGN_ROUTES,
            )
            payload = {"operation_id": operation_id, "processed": results.processed_count}
            self.event_bus.emit(ROUTES_UPDATED, payload)
            self.event_bus.emit(ASSIGNMENTS_UPDATED, payload)
            return results

        return await self.tracker.run(BULK_ASSIGN_ROUTES, len(items), work)

    def _assign_one(self, item: Dict[str, Any], overwrite: bool, assigned_by: str) -> None:
        if not isinstance(item, dict):
            raise ItemValidationError(f"Assignment must be a mapping, got {type(item).__name__}")
        self.validator.validate_assignment(item).raise_for_error()

        data = normalize_keys(item)
        item_overwrite = _parse_overwrite(data.get("overwrite"), overwrite)
        route_id = data["route_id"]
        if self.datastore.find_by_id("routes", route_id) is None:
            raise EntityReferenceError("route", route_id)

        on_date = parse_date(data["date"])
        existing = self.resolver.find_existing(route_id, data["shift"], on_date)

        def build(assignment_id: str, existing: Optional[Assignment]) -> Assignment:
            return Assignment(
                id=assignment_id,
                route_id=route_id,
                shift=data["shift"],
                date=on_date,
                staff_id=data.get("staff_id") or None,
                asset_id=data.get("asset_id") or None,
                status="assigned",
                assigned_at=datetime.now(),
                assigned_by=assigned_by,
                completed_at=existing.completed_at if existing else None,
            )

        self.resolver.resolve("assignments", existing, item_overwrite, build)

    # ----- staff and asset updates -----

    async def bulk_update_staff(
        self,
        updates: Sequence[Dict[str, Any]],
        updated_by: Optional[str] = None,
        batch_size: Optional[int] = None,
        cancellation: Optional[CancellationToken] = None,
    ) -> BulkOperationResults:
        """Apply ``{staff_id, changes}`` updates to staff records."""
        return await self._bulk_update(
            "staff", "staff_id", BULK_UPDATE_STAFF, STAFF_UPDATED,
            updates, updated_by, batch_size, cancellation,
        )

    async def bulk_update_assets(
        self,
        updates: Sequence[Dict[str, Any]],
        updated_by: Optional[str] = None,
        batch_size: Optional[int] = None,
        cancellation: Optional[CancellationToken] = None,
    ) -> BulkOperationResults:
        """Apply ``{asset_id, changes}`` updates to asset records."""
        return await self._bulk_update(
            "assets", "asset_id", BULK_UPDATE_ASSETS, ASSETS_UPDATED,
            updates, updated_by, batch_size, cancellation,
        )

    async def _bulk_update(
        self,
        kind: str,
        id_field: str,
        operation_type: str,
        event: str,
        updates: Sequence[Dict[str, Any]],
        updated_by: Optional[str],
        batch_size: Optional[int],
        cancellation: Optional[CancellationToken],
    ) -> BulkOperationResults:
        items = _as_items(updates)
        updated_by = updated_by or self.settings.updated_by

        async def work(operation_id: str) -> BulkOperationResults:
            results = await self.batch_processor.run(
                items,
                lambda item: self._update_one(kind, id_field, item, updated_by),
                batch_size=batch_size,
                operation_id=operation_id,
                cancellation=cancellation,
                operation_type=operation_type,
            )
            self.event_bus.emit(
                event, {"operation_id": operation_id, "processed": results.processed_count}
            )
            return results

        return await self.tracker.run(operation_type, len(items), work)

    def _update_one(self, kind: str, id_field: str, item: Dict[str, Any], updated_by: str) -> None:
        """Merge changes onto a copy, validate the copy, then store it."""
        if not isinstance(item, dict):
            raise ItemValidationError(f"Update must be a mapping, got {type(item).__name__}")
        data = normalize_keys(item)
        label = "Staff" if kind == "staff" else "Asset"

        entity_id = data.get(id_field)
        if not entity_id:
            raise ItemValidationError(f"{label} ID is required")
        changes = data.get("changes")
        if not isinstance(changes, dict):
            raise ItemValidationError("Changes must be an object")

        current = self.datastore.find_by_id(kind, entity_id)
        if current is None:
            raise EntityReferenceError(label.lower(), entity_id)

        model = type(current)
        known = {f.name for f in fields(model)}
        merged = current.to_dict()
        attributes = dict(merged.get("attributes") or {})
        for key, value in normalize_keys(changes).items():
            if key in _PROTECTED_FIELDS:
                raise ItemValidationError(f"Field cannot be changed: {key}")
            if key == "attributes":
                if not isinstance(value, dict):
                    raise ItemValidationError("Attributes must be an object")
                attributes.update(value)
            elif key in known:
                merged[key] = value
            else:
                attributes[key] = value
        merged["attributes"] = attributes

        candidate = model.from_dict(merged)
        self.validator.validate_entity(kind, candidate).raise_for_error()

        now = datetime.now()
        if candidate.status != current.status:
            candidate.status_changes.append(StatusChange(now, current.status, candidate.status))
        candidate.last_updated = now
        candidate.updated_by = updated_by
        self.datastore.update(kind, candidate)

    # ----- templates -----

    def create_template(
        self,
        name: str,
        routes: Iterable[Dict[str, Any]],
        description: str = "",
        created_by: str = "user",
    ) -> Template:
        return self.templates.registry.create_template(
            name, routes, description=description, created_by=created_by
        )

    async def apply_template(
        self,
        template_id: str,
        on_date: Any,
        overwrite: bool = False,
        created_by: Optional[str] = None,
        cancellation: Optional[CancellationToken] = None,
    ) -> BulkOperationResults:
        return await self.templates.apply_to_date(
            template_id, on_date, overwrite=overwrite, created_by=created_by, cancellation=cancellation
        )

    async def bulk_apply_template(
        self,
        template_id: str,
        dates: Sequence[Any],
        overwrite: bool = False,
        created_by: Optional[str] = None,
        cancellation: Optional[CancellationToken] = None,
    ) -> TemplateApplicationResults:
        return await self.templates.apply_to_dates(
            template_id, dates, overwrite=overwrite, created_by=created_by, cancellation=cancellation
        )

    # ----- reports -----

    async def generate_timestamp_report(
        self, date_range: Any = None, include_types: Optional[Iterable[str]] = None
    ) -> Report:
        """Build a timestamp report inside a tracked single-item operation."""

        async def work(operation_id: str) -> Report:
            report = self.reports.timestamp_report(date_range, include_types)
            self.tracker.update_progress(operation_id, 1)
            logger.info(f"Timestamp report {operation_id}: {report.counts()}")
            return report

        return await self.tracker.run(TIMESTAMP_REPORT, 1, work)

    # ----- operation queries -----

    def get_operation(self, operation_id: str) -> Optional[Operation]:
        return self.tracker.get(operation_id)

    def active_operations(self) -> List[Operation]:
        return self.tracker.active_operations()

    def operation_history(self) -> List[Operation]:
        return self.tracker.history()

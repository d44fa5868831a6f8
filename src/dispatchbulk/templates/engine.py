"""
Template engine: materializes route templates into dated routes.

Applying a template to one date runs a single tracked operation whose items
are the template's route entries. Applying it to several dates runs an outer
operation that walks the dates sequentially and starts one inner operation
per date. The outer operation's progress counts fully completed inner
operations; the inner operations are registered as its children so observers
can follow route-level progress too.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Sequence, Union

from ..bulk.batch import BatchProcessor, BulkOperationResults
from ..bulk.cancellation import CancellationToken
from ..bulk.conflicts import ConflictResolver
from ..bulk.tracker import OperationTracker
from ..datastore.interfaces import DatastoreInterface
from ..datastore.models import Route, parse_date
from ..events import ROUTES_UPDATED, EventBus
from ..exceptions import (
    InvalidOperationError,
    OperationCancelledError,
    OperationTimeoutError,
    TemplateNotFoundError,
)
from ..utils.config import BulkSettings
from .models import RouteTemplateEntry, Template
from .registry import TemplateRegistry

logger = logging.getLogger(__name__)

APPLY_TEMPLATE = "apply-template"
BULK_APPLY_TEMPLATE = "bulk-apply-template"

DateInput = Union[str, date, datetime]


@dataclass
class DateApplication:
    """Outcome of applying a template to one date."""

    date: str
    operation_id: Optional[str] = None
    results: Optional[BulkOperationResults] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date,
            "operation_id": self.operation_id,
            "results": self.results.to_dict() if self.results else None,
            "error": self.error,
        }


@dataclass
class TemplateApplicationResults:
    """Aggregated outcome of applying a template to several dates."""

    template_id: str
    total_dates: int
    applications: List[DateApplication] = field(default_factory=list)

    @property
    def dates_processed(self) -> int:
        return sum(1 for a in self.applications if a.succeeded)

    @property
    def dates_failed(self) -> int:
        return sum(1 for a in self.applications if not a.succeeded)

    def _route_total(self, name: str) -> int:
        return sum(getattr(a.results, name) for a in self.applications if a.results is not None)

    @property
    def routes_processed(self) -> int:
        return self._route_total("processed_count")

    @property
    def routes_failed(self) -> int:
        return self._route_total("failed_count")

    @property
    def routes_skipped(self) -> int:
        return self._route_total("skipped_count")

    @property
    def errors(self) -> List[Dict[str, str]]:
        return [{"date": a.date, "reason": a.error} for a in self.applications if a.error]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "template_id": self.template_id,
            "total_dates": self.total_dates,
            "dates_processed": self.dates_processed,
            "dates_failed": self.dates_failed,
            "routes_processed": self.routes_processed,
            "routes_failed": self.routes_failed,
            "routes_skipped": self.routes_skipped,
            "errors": self.errors,
            "applications": [a.to_dict() for a in self.applications],
        }


def _date_label(value: Any) -> str:
    if isinstance(value, (date, datetime)):
        return value.isoformat()[:10]
    return str(value)


class TemplateEngine:
    """Applies route templates to dates through the batch processor."""

    def __init__(
        self,
        datastore: DatastoreInterface,
        tracker: OperationTracker,
        registry: Optional[TemplateRegistry] = None,
        batch_processor: Optional[BatchProcessor] = None,
        settings: Optional[BulkSettings] = None,
        event_bus: Optional[EventBus] = None,
    ):
        self.datastore = datastore
        self.tracker = tracker
        self.settings = settings or BulkSettings()
        self.event_bus = event_bus or tracker.event_bus
        self.registry = registry or TemplateRegistry(event_bus=self.event_bus)
        self.batch_processor = batch_processor or BatchProcessor(
            tracker=tracker,
            datastore=datastore,
            batch_size=self.settings.batch_size,
            batch_delay=self.settings.batch_delay_seconds,
            max_errors=self.settings.max_errors,
        )
        self.resolver = ConflictResolver(datastore)

    async def apply_to_date(
        self,
        template_id: str,
        on_date: DateInput,
        overwrite: bool = False,
        created_by: Optional[str] = None,
        default_status: Optional[str] = None,
        cancellation: Optional[CancellationToken] = None,
    ) -> BulkOperationResults:
        """Create one dated route per template entry.

        Existing routes with the same ``(name, shift, date)`` are skipped, or
        updated in place when ``overwrite`` is set.

        Raises:
            TemplateNotFoundError: If the template does not exist
            InvalidOperationError: If the date cannot be parsed
        """
        return await self._apply_to_date(
            template_id, on_date, overwrite, created_by, default_status, cancellation
        )

    async def _apply_to_date(
        self,
        template_id: str,
        on_date: DateInput,
        overwrite: bool,
        created_by: Optional[str],
        default_status: Optional[str],
        cancellation: Optional[CancellationToken],
        parent_id: Optional[str] = None,
        application: Optional[DateApplication] = None,
    ) -> BulkOperationResults:
        template = self._find(template_id)
        total = template.route_count if template else 0

        async def work(operation_id: str) -> BulkOperationResults:
            if application is not None:
                application.operation_id = operation_id
            if template is None:
                raise TemplateNotFoundError(template_id)
            try:
                day = parse_date(on_date)
            except (TypeError, ValueError):
                day = None
            if day is None:
                raise InvalidOperationError(f"Invalid date: {on_date!r}")

            logger.info(f"Applying template {template.id} for {day}")
            results = await self.batch_processor.run(
                template.routes,
                lambda entry: self._materialize(
                    template,
                    entry,
                    day,
                    overwrite,
                    created_by or self.settings.created_by,
                    default_status or self.settings.default_route_status,
                ),
                batch_size=total,
                operation_id=operation_id,
                cancellation=cancellation,
                operation_type=APPLY_TEMPLATE,
            )
            self.event_bus.emit(
                ROUTES_UPDATED,
                {"operation_id": operation_id, "template_id": template.id, "date": day.isoformat()},
            )
            return results

        return await self.tracker.run(
            APPLY_TEMPLATE, total, work, parent_id=parent_id, acquire_slot=parent_id is None
        )

    def _find(self, template_id: str) -> Optional[Template]:
        try:
            return self.registry.get(template_id)
        except TemplateNotFoundError:
            return None

    def _materialize(
        self,
        template: Template,
        entry: RouteTemplateEntry,
        day: date,
        overwrite: bool,
        created_by: str,
        status: str,
    ) -> None:
        existing = self.resolver.find_existing_route(entry.name, entry.shift, day)

        def build(route_id: str, existing: Optional[Route]) -> Route:
            return Route(
                id=route_id,
                name=entry.name,
                type=entry.type,
                shift=entry.shift,
                date=day,
                status=status,
                description=entry.description,
                estimated_time=entry.estimated_time,
                stops=list(entry.stops),
                created_at=datetime.now(),
                created_by=created_by,
                template_id=template.id,
                activated_at=existing.activated_at if existing else None,
                completed_at=existing.completed_at if existing else None,
            )

        self.resolver.resolve("routes", existing, overwrite, build)

    async def apply_to_dates(
        self,
        template_id: str,
        dates: Sequence[DateInput],
        overwrite: bool = False,
        created_by: Optional[str] = None,
        default_status: Optional[str] = None,
        cancellation: Optional[CancellationToken] = None,
    ) -> TemplateApplicationResults:
        """Apply a template to each date in turn.

        Dates run one after another, never concurrently. A date that fails is
        recorded and the remaining dates are still attempted. Cancellation and
        deadlines stop the whole run.

        Raises:
            TemplateNotFoundError: If the template does not exist
            OperationCancelledError: If cancellation was requested
            OperationTimeoutError: If the deadline passed
        """
        dates = list(dates)

        async def work(operation_id: str) -> TemplateApplicationResults:
            self.registry.get(template_id)
            results = TemplateApplicationResults(template_id=template_id, total_dates=len(dates))
            completed = 0

            for index, on_date in enumerate(dates):
                label = _date_label(on_date)
                if cancellation is not None:
                    try:
                        cancellation.raise_if_stopped()
                    except (OperationCancelledError, OperationTimeoutError) as e:
                        e.partial_results = results
                        raise

                application = DateApplication(date=label)
                try:
                    application.results = await self._apply_to_date(
                        template_id,
                        on_date,
                        overwrite,
                        created_by,
                        default_status,
                        cancellation,
                        parent_id=operation_id,
                        application=application,
                    )
                    completed += 1
                except (OperationCancelledError, OperationTimeoutError) as e:
                    application.error = str(e)
                    results.applications.append(application)
                    e.partial_results = results
                    raise
                except Exception as e:
                    application.error = str(e)
                    logger.warning(f"Template {template_id} failed for {label}: {e}")

                results.applications.append(application)
                self.tracker.update_progress(operation_id, completed, len(dates))

                if index < len(dates) - 1:
                    await asyncio.sleep(self.settings.date_delay_seconds)

            logger.info(
                f"Template {template_id} applied to {results.dates_processed}/{len(dates)} dates: "
                f"{results.routes_processed} routes created or updated, "
                f"{results.routes_skipped} skipped, {results.routes_failed} failed"
            )
            return results

        return await self.tracker.run(BULK_APPLY_TEMPLATE, len(dates), work)

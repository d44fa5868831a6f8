"""Tests for applying route templates to dates."""

from datetime import date, datetime
from unittest.mock import AsyncMock, patch

import pytest

from dispatchbulk.bulk.cancellation import CancellationToken
from dispatchbulk.bulk.engine import BulkOperationsEngine
from dispatchbulk.bulk.tracker import OperationStatus
from dispatchbulk.events import OPERATION_COMPLETED, OPERATION_PROGRESS, ROUTES_UPDATED
from dispatchbulk.exceptions import InvalidOperationError, OperationCancelledError, TemplateNotFoundError
from dispatchbulk.templates.engine import APPLY_TEMPLATE, BULK_APPLY_TEMPLATE, TemplateEngine
from dispatchbulk.utils.config import BulkSettings

DATES = ["2024-09-03", "2024-09-04", "2024-09-05"]


def _dated_routes(datastore):
    return datastore.find_by("routes", lambda r: r.date is not None)


class TestApplyToDate:
    """Test cases for TemplateEngine.apply_to_date."""

    @pytest.fixture
    def template_engine(self, engine):
        return engine.templates

    @pytest.mark.asyncio
    async def test_creates_one_route_per_entry(self, template_engine, datastore, event_bus):
        results = await template_engine.apply_to_date("daily-gen-ed", "2024-09-03")

        assert results.processed_count == 6
        routes = _dated_routes(datastore)
        assert len(routes) == 6
        route = routes[0]
        assert route.id.startswith("route_")
        assert (route.name, route.type, route.shift) == ("1", "Gen Ed", "AM")
        assert route.date == date(2024, 9, 3)
        assert route.status == "inactive"
        assert route.estimated_time == "45 min"
        assert route.template_id == "daily-gen-ed"
        assert route.created_by == "template"
        assert route.created_at is not None
        assert ROUTES_UPDATED in event_bus.names()

    @pytest.mark.asyncio
    async def test_single_date_operation(self, template_engine):
        await template_engine.apply_to_date("se-routes", date(2024, 9, 3))

        operation = template_engine.tracker.history()[0]
        assert operation.type == APPLY_TEMPLATE
        assert operation.total_items == 4
        assert operation.status == OperationStatus.COMPLETED
        assert operation.parent_id is None

    @pytest.mark.asyncio
    async def test_overrides(self, template_engine, datastore):
        await template_engine.apply_to_date(
            "se-routes", datetime(2024, 9, 3, 6, 0), created_by="planner", default_status="active"
        )

        routes = _dated_routes(datastore)
        assert {r.created_by for r in routes} == {"planner"}
        assert {r.status for r in routes} == {"active"}
        assert {r.date for r in routes} == {date(2024, 9, 3)}

    @pytest.mark.asyncio
    async def test_missing_template_fails_operation(self, template_engine, datastore):
        with pytest.raises(TemplateNotFoundError):
            await template_engine.apply_to_date("nope", "2024-09-03")

        operation = template_engine.tracker.history()[0]
        assert operation.status == OperationStatus.FAILED
        assert operation.total_items == 0
        assert operation.error == "Template not found: nope"
        assert _dated_routes(datastore) == []

    @pytest.mark.asyncio
    async def test_invalid_date_fails_operation(self, template_engine):
        with pytest.raises(InvalidOperationError, match="Invalid date: '2024-02-30'"):
            await template_engine.apply_to_date("daily-gen-ed", "2024-02-30")

        assert template_engine.tracker.history()[0].status == OperationStatus.FAILED

    @pytest.mark.asyncio
    async def test_existing_routes_are_skipped(self, template_engine, datastore):
        await template_engine.apply_to_date("daily-gen-ed", "2024-09-03")

        results = await template_engine.apply_to_date("daily-gen-ed", "2024-09-03")

        assert results.processed_count == 0
        assert results.skipped_count == 6
        assert len(_dated_routes(datastore)) == 6

    @pytest.mark.asyncio
    async def test_overwrite_keeps_ids_and_lifecycle_times(self, template_engine, datastore):
        """Test that overwriting updates routes in place."""
        await template_engine.apply_to_date("daily-gen-ed", "2024-09-03")
        ids_before = [r.id for r in _dated_routes(datastore)]
        first = datastore.find_by_id("routes", ids_before[0])
        first.status = "active"
        first.activated_at = datetime(2024, 9, 3, 6, 45)

        results = await template_engine.apply_to_date("daily-gen-ed", "2024-09-03", overwrite=True)

        assert results.processed_count == 6
        assert [r.id for r in _dated_routes(datastore)] == ids_before
        refreshed = datastore.find_by_id("routes", ids_before[0])
        assert refreshed.status == "inactive"
        assert refreshed.activated_at == datetime(2024, 9, 3, 6, 45)

    @pytest.mark.asyncio
    async def test_created_template(self, engine, datastore):
        template = engine.create_template(
            "Late Runs",
            [{"name": "L1", "type": "Activity", "shift": "PM"}, {"name": "L2", "type": "Activity", "shift": "PM"}],
        )

        results = await engine.apply_template(template.id, "2024-09-03")

        assert results.processed_count == 2
        assert {r.template_id for r in _dated_routes(datastore)} == {template.id}

    @pytest.mark.asyncio
    async def test_standalone_engine(self, datastore, tracker):
        template_engine = TemplateEngine(
            datastore, tracker, settings=BulkSettings(batch_delay_seconds=0, date_delay_seconds=0)
        )

        results = await template_engine.apply_to_date("se-routes", "2024-09-03")

        assert results.processed_count == 4


class TestApplyToDates:
    """Test cases for TemplateEngine.apply_to_dates."""

    @pytest.mark.asyncio
    async def test_three_dates(self, engine, datastore):
        """Test applying the daily template to three dates."""
        results = await engine.bulk_apply_template("daily-gen-ed", DATES)

        assert results.total_dates == 3
        assert results.dates_processed == 3
        assert results.routes_processed == 18
        assert results.routes_failed == 0
        assert results.routes_skipped == 0
        assert results.errors == []
        assert len(_dated_routes(datastore)) == 18

    @pytest.mark.asyncio
    async def test_repeat_run_skips_everything(self, engine, datastore):
        await engine.bulk_apply_template("daily-gen-ed", DATES)

        results = await engine.bulk_apply_template("daily-gen-ed", DATES)

        assert results.routes_processed == 0
        assert results.routes_skipped == 18
        assert results.dates_processed == 3
        assert len(_dated_routes(datastore)) == 18

    @pytest.mark.asyncio
    async def test_outer_and_child_operations(self, engine, event_bus):
        """Test that the outer operation counts completed dates and owns the per-date operations."""
        results = await engine.bulk_apply_template("daily-gen-ed", DATES)

        outer = next(op for op in engine.operation_history() if op.type == BULK_APPLY_TEMPLATE)
        assert outer.status == OperationStatus.COMPLETED
        assert outer.total_items == 3
        assert outer.results is results

        children = engine.tracker.children_of(outer.id)
        assert len(children) == 3
        assert all(child.type == APPLY_TEMPLATE for child in children)
        assert all(child.parent_id == outer.id for child in children)
        assert [a.operation_id for a in results.applications] == [c.id for c in children]

        outer_progress = [
            p["processed_items"] for e, p in event_bus.events if e == OPERATION_PROGRESS and p["id"] == outer.id
        ]
        assert outer_progress == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_failed_date_does_not_stop_the_run(self, engine):
        results = await engine.bulk_apply_template("daily-gen-ed", ["2024-09-03", "not-a-date", "2024-09-05"])

        assert results.dates_processed == 2
        assert results.dates_failed == 1
        assert results.routes_processed == 12
        assert results.errors == [{"date": "not-a-date", "reason": "Invalid date: 'not-a-date'"}]
        assert results.applications[1].results is None
        outer = engine.operation_history()[0]
        assert outer.type == BULK_APPLY_TEMPLATE
        assert outer.status == OperationStatus.COMPLETED
        assert engine.tracker.get(results.applications[1].operation_id).status == OperationStatus.FAILED

    @pytest.mark.asyncio
    async def test_missing_template_fails_outer_operation(self, engine):
        with pytest.raises(TemplateNotFoundError):
            await engine.bulk_apply_template("nope", DATES)

        outer = engine.operation_history()[0]
        assert outer.type == BULK_APPLY_TEMPLATE
        assert outer.status == OperationStatus.FAILED
        assert outer.children == []

    @pytest.mark.asyncio
    async def test_cancellation_between_dates(self, engine, event_bus, datastore):
        """Test that cancelling after the first date keeps that date's routes."""
        token = CancellationToken()

        def cancel_after_first_date(event, payload):
            if payload["type"] == APPLY_TEMPLATE:
                token.cancel()

        event_bus.subscribe(OPERATION_COMPLETED, cancel_after_first_date)

        with pytest.raises(OperationCancelledError):
            await engine.bulk_apply_template("daily-gen-ed", DATES, cancellation=token)

        outer = engine.operation_history()[0]
        assert outer.type == BULK_APPLY_TEMPLATE
        assert outer.status == OperationStatus.FAILED
        assert outer.results.dates_processed == 1
        assert len(outer.children) == 1
        assert len(_dated_routes(datastore)) == 6

    @pytest.mark.asyncio
    async def test_dates_are_spaced_by_delay(self, datastore, event_bus):
        settings = BulkSettings(batch_delay_seconds=0, date_delay_seconds=0.5)
        engine = BulkOperationsEngine(datastore, event_bus=event_bus, settings=settings)

        with patch("dispatchbulk.templates.engine.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            await engine.bulk_apply_template("se-routes", DATES)

        date_sleeps = [c for c in mock_sleep.await_args_list if c.args == (0.5,)]
        assert len(date_sleeps) == 2

    @pytest.mark.asyncio
    async def test_empty_date_list(self, engine):
        results = await engine.bulk_apply_template("daily-gen-ed", [])

        assert results.total_dates == 0
        assert results.applications == []
        assert engine.operation_history()[0].status == OperationStatus.COMPLETED

"""Tests for the bulk operations engine."""

import asyncio
from datetime import date, datetime

import pytest

from dispatchbulk.bulk.cancellation import CancellationToken
from dispatchbulk.bulk.engine import (
    BULK_ASSIGN_ROUTES,
    BULK_UPDATE_ASSETS,
    BULK_UPDATE_STAFF,
    TIMESTAMP_REPORT,
    BulkOperationsEngine,
)
from dispatchbulk.bulk.tracker import OperationStatus
from dispatchbulk.events import (
    ASSETS_UPDATED,
    ASSIGNMENTS_UPDATED,
    OPERATION_PROGRESS,
    ROUTES_UPDATED,
    STAFF_UPDATED,
)
from dispatchbulk.exceptions import (
    InvalidOperationError,
    OperationCancelledError,
    OperationLimitError,
    OperationTimeoutError,
)
from dispatchbulk.utils.config import BulkSettings


def _progress_events(event_bus, operation_id):
    return [p for e, p in event_bus.events if e == OPERATION_PROGRESS and p["id"] == operation_id]


class TestBulkAssignRoutes:
    """Test cases for BulkOperationsEngine.bulk_assign_routes."""

    @pytest.mark.asyncio
    async def test_large_run_reports_progress_per_batch(self, engine, event_bus, make_assignments):
        """Test 120 assignments in batches of 50."""
        results = await engine.bulk_assign_routes(make_assignments(120), batch_size=50)

        assert results.processed_count == 120
        assert results.failed_count == 0
        assert results.skipped_count == 0

        operation = engine.operation_history()[0]
        assert operation.type == BULK_ASSIGN_ROUTES
        assert operation.status == OperationStatus.COMPLETED
        assert operation.processed_items == 120
        assert operation.progress == 100
        assert operation.results is results

        progress = _progress_events(event_bus, operation.id)
        assert [p["processed_items"] for p in progress] == [50, 100, 120]
        assert engine.datastore.count("assignments") == 120

    @pytest.mark.asyncio
    async def test_default_batch_size_from_settings(self, datastore, event_bus, make_assignments):
        settings = BulkSettings(batch_size=4, batch_delay_seconds=0, date_delay_seconds=0)
        engine = BulkOperationsEngine(datastore, event_bus=event_bus, settings=settings)

        results = await engine.bulk_assign_routes(make_assignments(10))

        operation = engine.operation_history()[0]
        assert results.batch_size == 4
        assert len(_progress_events(event_bus, operation.id)) == 3

    @pytest.mark.asyncio
    async def test_creates_assignment_records(self, engine):
        await engine.bulk_assign_routes(
            [{"route_id": "route-2", "shift": "PM", "date": "2024-09-03", "staff_id": "staff-1", "asset_id": "asset-1"}],
            assigned_by="dispatcher-7",
        )

        (assignment,) = engine.datastore.all("assignments")
        assert assignment.id.startswith("assignment_")
        assert assignment.route_id == "route-2"
        assert assignment.shift == "PM"
        assert assignment.date == date(2024, 9, 3)
        assert assignment.staff_id == "staff-1"
        assert assignment.asset_id == "asset-1"
        assert assignment.status == "assigned"
        assert assignment.assigned_by == "dispatcher-7"
        assert assignment.assigned_at is not None

    @pytest.mark.asyncio
    async def test_assigned_by_defaults_to_settings(self, engine, make_assignments):
        await engine.bulk_assign_routes(make_assignments(1))
        assert engine.datastore.all("assignments")[0].assigned_by == "bulk-operation"

    @pytest.mark.asyncio
    async def test_failures_do_not_stop_the_run(self, engine):
        """Test that bad items are recorded and the rest still run."""
        items = [
            {"route_id": "route-1", "shift": "AM", "date": "2024-09-03", "staff_id": "staff-1"},
            {"route_id": "route-9", "shift": "AM", "date": "2024-09-03"},
            {"route_id": "route-2", "shift": "AM", "date": "2024-09-03", "staff_id": "staff-2"},
            {"route_id": "route-3", "date": "2024-09-03"},
            "not an assignment",
            {"route_id": "route-3", "shift": "AM", "date": "2024-09-03", "asset_id": "asset-1"},
        ]

        results = await engine.bulk_assign_routes(items)

        assert results.processed_count == 2
        assert results.failed_count == 4
        assert [(e.index, e.error_type, e.reason) for e in results.errors] == [
            (1, "reference_error", "Route not found: route-9"),
            (2, "availability_error", "Staff not available: Ben Ortiz"),
            (3, "validation_error", "Shift is required"),
            (4, "validation_error", "Assignment must be a mapping, got str"),
        ]
        assert engine.operation_history()[0].status == OperationStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_duplicates_are_skipped(self, engine, make_assignments):
        await engine.bulk_assign_routes(make_assignments(3, staff_id="staff-1"))

        results = await engine.bulk_assign_routes(make_assignments(3, staff_id="staff-3"))

        assert results.processed_count == 0
        assert results.skipped_count == 3
        assert results.failed_count == 0
        assert {a.staff_id for a in engine.datastore.all("assignments")} == {"staff-1"}

    @pytest.mark.asyncio
    async def test_overwrite_replaces_in_place(self, engine, make_assignments):
        await engine.bulk_assign_routes(make_assignments(3, staff_id="staff-1"))
        ids_before = [a.id for a in engine.datastore.all("assignments")]

        results = await engine.bulk_assign_routes(make_assignments(3, staff_id="staff-3"), overwrite=True)

        assert results.processed_count == 3
        assignments = engine.datastore.all("assignments")
        assert [a.id for a in assignments] == ids_before
        assert {a.staff_id for a in assignments} == {"staff-3"}

    @pytest.mark.asyncio
    async def test_item_overwrite_flag_wins(self, engine, make_assignments):
        await engine.bulk_assign_routes(make_assignments(2, staff_id="staff-1"))
        items = make_assignments(2, staff_id="staff-3")
        items[0]["overwrite"] = True

        results = await engine.bulk_assign_routes(items)

        assert results.processed_count == 1
        assert results.skipped_count == 1

    @pytest.mark.asyncio
    async def test_overwrite_keeps_completion_time(self, engine, make_assignments):
        await engine.bulk_assign_routes(make_assignments(1, staff_id="staff-1"))
        (assignment,) = engine.datastore.all("assignments")
        assignment.completed_at = datetime(2024, 9, 2, 9, 0)
        engine.datastore.update("assignments", assignment)

        results = await engine.bulk_assign_routes(make_assignments(1, staff_id="staff-3"), overwrite=True)

        assert results.processed_count == 1
        (updated,) = engine.datastore.all("assignments")
        assert updated.id == assignment.id
        assert updated.staff_id == "staff-3"
        assert updated.completed_at == datetime(2024, 9, 2, 9, 0)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "flag, processed, skipped",
        [("false", 0, 1), ("FALSE", 0, 1), ("no", 0, 1), ("true", 1, 0), ("1", 1, 0), ("", 0, 1)],
    )
    async def test_text_overwrite_flags(self, engine, make_assignments, flag, processed, skipped):
        await engine.bulk_assign_routes(make_assignments(1, staff_id="staff-1"))

        results = await engine.bulk_assign_routes(make_assignments(1, staff_id="staff-3", overwrite=flag))

        assert results.processed_count == processed
        assert results.skipped_count == skipped
        expected_staff = "staff-3" if processed else "staff-1"
        assert engine.datastore.all("assignments")[0].staff_id == expected_staff

    @pytest.mark.asyncio
    @pytest.mark.parametrize("flag", ["maybe", 2, ["true"]])
    async def test_unreadable_overwrite_flag_fails_item(self, engine, make_assignments, flag):
        await engine.bulk_assign_routes(make_assignments(1, staff_id="staff-1"))

        results = await engine.bulk_assign_routes(make_assignments(1, staff_id="staff-3", overwrite=flag))

        assert results.failed_count == 1
        assert results.errors[0].error_type == "validation_error"
        assert results.errors[0].reason.startswith("Invalid overwrite flag")
        assert engine.datastore.all("assignments")[0].staff_id == "staff-1"

    @pytest.mark.asyncio
    async def test_later_items_see_earlier_writes(self, engine, make_assignments):
        items = make_assignments(1) + make_assignments(1)

        results = await engine.bulk_assign_routes(items)

        assert results.processed_count == 1
        assert results.skipped_count == 1

    @pytest.mark.asyncio
    async def test_emits_update_events(self, engine, event_bus, make_assignments):
        await engine.bulk_assign_routes(make_assignments(2))

        names = event_bus.names()
        assert ROUTES_UPDATED in names
        assert ASSIGNMENTS_UPDATED in names
        payload = dict(event_bus.events)[ASSIGNMENTS_UPDATED]
        assert payload["processed"] == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize("bad_input", ["route-1", {"route_id": "route-1"}, 42])
    async def test_rejects_non_list_input(self, engine, bad_input):
        with pytest.raises(InvalidOperationError):
            await engine.bulk_assign_routes(bad_input)
        assert engine.operation_history() == []

    @pytest.mark.asyncio
    async def test_invalid_batch_size_fails_operation(self, engine, make_assignments):
        with pytest.raises(InvalidOperationError):
            await engine.bulk_assign_routes(make_assignments(2), batch_size=0)

        operation = engine.operation_history()[0]
        assert operation.status == OperationStatus.FAILED
        assert engine.datastore.count("assignments") == 0

    @pytest.mark.asyncio
    async def test_cancellation_fails_with_partial_results(self, engine, event_bus, make_assignments):
        """Test cancelling after the first batch."""
        token = CancellationToken()
        event_bus.subscribe(OPERATION_PROGRESS, lambda event, payload: token.cancel())

        with pytest.raises(OperationCancelledError):
            await engine.bulk_assign_routes(make_assignments(120), batch_size=50, cancellation=token)

        operation = engine.operation_history()[0]
        assert operation.status == OperationStatus.FAILED
        assert operation.error == "Operation cancelled"
        assert operation.results.processed_count == 50
        assert engine.datastore.count("assignments") == 50
        assert engine.active_operations() == []

    @pytest.mark.asyncio
    async def test_deadline_fails_operation(self, engine, make_assignments):
        with pytest.raises(OperationTimeoutError):
            await engine.bulk_assign_routes(make_assignments(5), cancellation=CancellationToken(timeout=0))

        operation = engine.operation_history()[0]
        assert operation.status == OperationStatus.FAILED
        assert operation.results.handled_count == 0


class TestConcurrencyBound:
    """Test the system-wide operation bound through the engine."""

    @pytest.mark.asyncio
    async def test_rejects_when_busy(self, datastore, event_bus, make_assignments):
        settings = BulkSettings(
            max_concurrent=1, reject_when_busy=True, batch_delay_seconds=0, date_delay_seconds=0
        )
        engine = BulkOperationsEngine(datastore, event_bus=event_bus, settings=settings)

        first = asyncio.create_task(engine.bulk_assign_routes(make_assignments(30), batch_size=10))
        await asyncio.sleep(0)

        with pytest.raises(OperationLimitError):
            await engine.bulk_update_staff([{"staff_id": "staff-1", "changes": {"status": "break"}}])

        results = await first
        assert results.processed_count == 30
        assert engine.datastore.find_by_id("staff", "staff-1").status == "available"

    @pytest.mark.asyncio
    async def test_queues_when_busy(self, datastore, event_bus, make_assignments):
        settings = BulkSettings(max_concurrent=1, batch_delay_seconds=0, date_delay_seconds=0)
        engine = BulkOperationsEngine(datastore, event_bus=event_bus, settings=settings)

        assign_results, staff_results = await asyncio.gather(
            engine.bulk_assign_routes(make_assignments(30), batch_size=10),
            engine.bulk_update_staff([{"staff_id": "staff-1", "changes": {"status": "break"}}]),
        )

        assert assign_results.processed_count == 30
        assert staff_results.processed_count == 1
        history = engine.operation_history()
        assert [op.type for op in history] == [BULK_UPDATE_STAFF, BULK_ASSIGN_ROUTES]


class TestBulkUpdates:
    """Test cases for staff and asset bulk updates."""

    @pytest.mark.asyncio
    async def test_staff_status_change_is_recorded(self, engine, event_bus):
        results = await engine.bulk_update_staff(
            [{"staff_id": "staff-1", "changes": {"status": "break", "phone": "555-0100"}}],
            updated_by="supervisor",
        )

        assert results.processed_count == 1
        staff = engine.datastore.find_by_id("staff", "staff-1")
        assert staff.status == "break"
        assert staff.attributes == {"phone": "555-0100"}
        assert staff.updated_by == "supervisor"
        assert staff.last_updated is not None
        (change,) = staff.status_changes
        assert (change.from_status, change.to_status) == ("available", "break")
        assert change.timestamp == staff.last_updated
        assert STAFF_UPDATED in event_bus.names()
        assert engine.operation_history()[0].type == BULK_UPDATE_STAFF

    @pytest.mark.asyncio
    async def test_unchanged_status_adds_no_history(self, engine):
        await engine.bulk_update_staff([{"staff_id": "staff-1", "changes": {"name": "Alice M."}}])

        staff = engine.datastore.find_by_id("staff", "staff-1")
        assert staff.name == "Alice M."
        assert staff.status_changes == []
        assert staff.updated_by == "bulk-operation"

    @pytest.mark.asyncio
    async def test_camel_case_update_keys(self, engine):
        await engine.bulk_update_staff([{"staffId": "staff-1", "changes": {"status": "out"}}])
        assert engine.datastore.find_by_id("staff", "staff-1").status == "out"

    @pytest.mark.asyncio
    async def test_staff_update_failures(self, engine):
        """Test that each malformed update is recorded as a failure."""
        results = await engine.bulk_update_staff(
            [
                {"changes": {"status": "out"}},
                {"staff_id": "staff-1"},
                {"staff_id": "staff-404", "changes": {"status": "out"}},
                {"staff_id": "staff-1", "changes": {"status_changes": []}},
                {"staff_id": "staff-1", "changes": {"name": ""}},
                {"staff_id": "staff-3", "changes": {"role": "driver"}},
            ]
        )

        assert results.processed_count == 1
        assert [(e.error_type, e.reason) for e in results.errors] == [
            ("validation_error", "Staff ID is required"),
            ("validation_error", "Changes must be an object"),
            ("reference_error", "Staff not found: staff-404"),
            ("validation_error", "Field cannot be changed: status_changes"),
            ("validation_error", "Name and role are required"),
        ]
        staff = engine.datastore.find_by_id("staff", "staff-1")
        assert staff.name == "Alice Moreno"
        assert staff.last_updated is None

    @pytest.mark.asyncio
    async def test_asset_update(self, engine, event_bus):
        results = await engine.bulk_update_assets(
            [
                {"asset_id": "asset-2", "changes": {"status": "active", "last_maintenance": "2024-09-01T08:00:00"}},
                {"asset_id": "asset-9", "changes": {"status": "active"}},
            ]
        )

        assert results.processed_count == 1
        assert results.errors[0].reason == "Asset not found: asset-9"
        asset = engine.datastore.find_by_id("assets", "asset-2")
        assert asset.status == "active"
        assert asset.last_maintenance.isoformat() == "2024-09-01T08:00:00"
        assert asset.status_changes[0].from_status == "maintenance"
        assert ASSETS_UPDATED in event_bus.names()
        assert engine.operation_history()[0].type == BULK_UPDATE_ASSETS

    @pytest.mark.asyncio
    async def test_attributes_change_is_merged(self, engine):
        await engine.bulk_update_staff([{"staff_id": "staff-1", "changes": {"radio": "R-12"}}])

        results = await engine.bulk_update_staff(
            [
                {"staff_id": "staff-1", "changes": {"attributes": {"phone": "555-0100"}}},
                {"staff_id": "staff-3", "changes": {"attributes": "phone=555"}},
            ]
        )

        assert results.processed_count == 1
        assert results.errors[0].reason == "Attributes must be an object"
        staff = engine.datastore.find_by_id("staff", "staff-1")
        assert staff.attributes == {"radio": "R-12", "phone": "555-0100"}

    @pytest.mark.asyncio
    async def test_protected_asset_field(self, engine):
        results = await engine.bulk_update_assets([{"asset_id": "asset-1", "changes": {"id": "asset-7"}}])

        assert results.errors[0].reason == "Field cannot be changed: id"
        assert engine.datastore.find_by_id("assets", "asset-1") is not None


class TestReportsAndQueries:
    """Test report generation and operation queries through the engine."""

    @pytest.mark.asyncio
    async def test_timestamp_report_is_tracked(self, engine, make_assignments):
        await engine.bulk_assign_routes(make_assignments(3))

        report = await engine.generate_timestamp_report(
            {"start": "2024-09-02", "end": "2024-09-03"}, ["assignments"]
        )

        assert report.counts() == {"assignments": 2}
        operation = engine.operation_history()[0]
        assert operation.type == TIMESTAMP_REPORT
        assert operation.status == OperationStatus.COMPLETED
        assert operation.total_items == 1
        assert operation.processed_items == 1

    @pytest.mark.asyncio
    async def test_invalid_report_request_fails_operation(self, engine):
        with pytest.raises(InvalidOperationError):
            await engine.generate_timestamp_report(include_types=["invoices"])

        assert engine.operation_history()[0].status == OperationStatus.FAILED

    @pytest.mark.asyncio
    async def test_get_operation(self, engine, make_assignments):
        await engine.bulk_assign_routes(make_assignments(1))
        operation = engine.operation_history()[0]

        assert engine.get_operation(operation.id) is operation
        assert engine.get_operation("operation_missing") is None
        assert engine.active_operations() == []

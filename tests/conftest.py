"""Shared fixtures for dispatchbulk tests."""

import logging
from datetime import date, datetime, timedelta

import pytest

from dispatchbulk.bulk.engine import BulkOperationsEngine
from dispatchbulk.bulk.tracker import OperationTracker
from dispatchbulk.datastore import Asset, InMemoryDatastore, Route, Staff, StatusChange
from dispatchbulk.events import RecordingEventBus
from dispatchbulk.utils.config import BulkSettings
from dispatchbulk.utils.logging_config import ROOT_LOGGER_NAME


@pytest.fixture
def settings():
    """Default settings without the cooperative delays."""
    return BulkSettings(batch_delay_seconds=0, date_delay_seconds=0)


@pytest.fixture
def event_bus():
    return RecordingEventBus()


@pytest.fixture
def tracker(event_bus):
    return OperationTracker(event_bus=event_bus)


@pytest.fixture
def datastore():
    """Dataset with three undated routes, three staff members and two assets."""
    store = InMemoryDatastore()
    for number in (1, 2, 3):
        store.insert("routes", Route(id=f"route-{number}", name=str(number), type="Gen Ed"))

    store.insert("staff", Staff(id="staff-1", name="Alice Moreno", role="driver"))
    store.insert("staff", Staff(id="staff-2", name="Ben Ortiz", role="driver", status="out"))
    store.insert(
        "staff",
        Staff(
            id="staff-3",
            name="Cara Lee",
            role="aide",
            status="available",
            status_changes=[
                StatusChange(datetime(2024, 3, 1, 7, 30), "out", "available"),
                StatusChange(datetime(2024, 3, 20, 15, 0), "available", "break"),
            ],
        ),
    )

    store.insert("assets", Asset(id="asset-1", number="101", type="bus"))
    store.insert("assets", Asset(id="asset-2", number="102", type="bus", status="maintenance"))
    return store


@pytest.fixture
def empty_datastore():
    return InMemoryDatastore()


@pytest.fixture
def engine(datastore, event_bus, settings):
    return BulkOperationsEngine(datastore, event_bus=event_bus, settings=settings)


@pytest.fixture
def make_assignments():
    """Build ``count`` assignments with distinct dates on route-1."""

    def _make(count, start=date(2024, 9, 2), **extra):
        return [
            {
                "route_id": "route-1",
                "shift": "AM",
                "date": (start + timedelta(days=i)).isoformat(),
                **extra,
            }
            for i in range(count)
        ]

    return _make


@pytest.fixture(autouse=True)
def reset_package_logging():
    """Drop handlers installed by setup_logging so streams do not leak between tests."""
    yield
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in list(logger.handlers):
        if getattr(handler, "_dispatchbulk_handler", False):
            logger.removeHandler(handler)
            handler.close()
    logger.setLevel(logging.NOTSET)

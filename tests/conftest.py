"""
Shared fixtures for the analytics test suite.
"""

from unittest.mock import MagicMock

import pytest

from core.categories import CategoryRegistry, default_registry
from core.models import CountEvent, Item, Operator, StatusEvent
from core.time_windows.models import TimeWindow

HOUR = 3600000
MACHINE = 67408


def status(ts, code, serial=MACHINE, operators=()):
    return StatusEvent(timestamp=ts, status_code=code, machine_serial=serial, operators=tuple(operators))


def count(ts, operator_id=7, item_id=1, name="Towel", standard=720, misfeed=False,
          serial=MACHINE, operator_name="Alice"):
    operator = Operator(id=operator_id, name=operator_name) if operator_id is not None else None
    return CountEvent(
        timestamp=ts,
        machine_serial=serial,
        item=Item(id=item_id, name=name, standard=standard),
        operator=operator,
        misfeed=misfeed,
    )


@pytest.fixture
def registry() -> CategoryRegistry:
    return default_registry()


@pytest.fixture
def two_hour_window() -> TimeWindow:
    return TimeWindow(0, 2 * HOUR)


@pytest.fixture
def bookended_events():
    """Running across the start, a fault, a pause, running past the end."""
    return [
        status(-10 * 60000, 1),
        status(30 * 60000, 5),
        status(45 * 60000, 0),
        status(60 * 60000, 1),
        status(3 * HOUR, 1),
    ]


@pytest.fixture
def mock_store():
    """EventStore double returning whatever the test assigns."""
    store = MagicMock()
    store.get_status_events.return_value = []
    store.get_operator_status_events.return_value = []
    store.get_count_events.return_value = []
    store.get_active_machine_serials.return_value = []
    store.get_active_operator_ids.return_value = []
    return store

"""
Tests for concurrent batch report building.
"""

import pytest

from analysis.batch_reports import (
    BatchReport,
    build_active_machine_reports,
    build_active_operator_reports,
    build_machine_reports,
    build_operator_reports,
    run_batch,
)
from core.time_windows.models import TimeWindow

from conftest import HOUR, count, status


@pytest.fixture
def window():
    return TimeWindow(0, HOUR)


def _statuses(serial, start_ms, end_ms, include_bookends=True):
    if serial == 2:
        raise ConnectionError("event store unavailable")
    return [status(0, 1, serial=serial), status(2 * HOUR, 1, serial=serial)]


class TestRunBatch:

    def test_results_in_request_order(self):
        batch = run_batch([3, 1, 2], lambda i: i * 10, max_workers=3)

        assert batch.reports == [30, 10, 20]
        assert batch.failures == []

    def test_duplicates_built_once(self):
        calls = []

        def build(entity_id):
            calls.append(entity_id)
            return entity_id

        batch = run_batch([1, 1, 2], build)

        assert sorted(calls) == [1, 2]
        assert batch.succeeded == 2

    def test_failure_isolated(self):
        def build(entity_id):
            if entity_id == 2:
                raise ValueError("bad machine")
            return entity_id

        batch = run_batch([1, 2, 3], build)

        assert batch.reports == [1, 3]
        assert batch.failed == 1
        failure = batch.failures[0]
        assert (failure.entity_id, failure.error_type, failure.message) == (2, "ValueError", "bad machine")

    def test_empty(self):
        assert run_batch([], lambda i: i) == BatchReport()


class TestMachineBatch:

    def test_one_failing_machine_does_not_abort(self, mock_store, window):
        mock_store.get_status_events.side_effect = _statuses
        mock_store.get_count_events.return_value = [count(10)]

        batch = build_machine_reports(mock_store, [1, 2, 3], window, now_ms=10 * HOUR, max_workers=2)

        assert [r.machine_serial for r in batch.reports] == [1, 3]
        assert [f.entity_id for f in batch.failures] == [2]
        assert batch.reports[0].performance.kpis.availability == pytest.approx(1.0)

    def test_to_dict(self, mock_store, window):
        mock_store.get_status_events.side_effect = _statuses

        data = build_machine_reports(mock_store, [2], window, now_ms=10 * HOUR).to_dict()

        assert data["reports"] == []
        assert data["failures"][0]["errorType"] == "ConnectionError"


class TestOperatorBatch:

    def test_builds_each_operator(self, mock_store, window):
        batch = build_operator_reports(mock_store, [7, 8], window, now_ms=10 * HOUR)

        assert [r.operator_id for r in batch.reports] == [7, 8]
        assert mock_store.get_operator_status_events.call_count == 2


class TestActiveEntityBatch:

    def test_reports_every_active_machine(self, mock_store, window):
        mock_store.get_active_machine_serials.return_value = [3, 1]
        mock_store.get_status_events.side_effect = _statuses

        batch = build_active_machine_reports(mock_store, window, now_ms=10 * HOUR)

        mock_store.get_active_machine_serials.assert_called_once_with(0, HOUR)
        assert [r.machine_serial for r in batch.reports] == [3, 1]

    def test_discovery_uses_clamped_window(self, mock_store):
        mock_store.get_active_machine_serials.return_value = []

        batch = build_active_machine_reports(mock_store, TimeWindow(0, 4 * HOUR), now_ms=HOUR)

        mock_store.get_active_machine_serials.assert_called_once_with(0, HOUR)
        assert batch == BatchReport()

    def test_reports_every_active_operator(self, mock_store, window):
        mock_store.get_active_operator_ids.return_value = [7, 9]

        batch = build_active_operator_reports(mock_store, window, now_ms=10 * HOUR)

        assert [r.operator_id for r in batch.reports] == [7, 9]

    def test_discovery_errors_propagate(self, mock_store, window):
        mock_store.get_active_operator_ids.side_effect = ConnectionError("event store unavailable")

        with pytest.raises(ConnectionError):
            build_active_operator_reports(mock_store, window, now_ms=10 * HOUR)

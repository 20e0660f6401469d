"""
Tests for time windows and count selection.
"""

from datetime import datetime

import pytest
import pytz

from core.models import Cycle, CycleCategory
from core.time_windows.filters import filter_counts_by_window, select_counts_for_sessions, sort_counts
from core.time_windows.models import TimeWindow

from conftest import HOUR, count


def running(start, end):
    return Cycle(CycleCategory.RUNNING, start, end)


class TestTimeWindow:

    def test_inverted_window_raises(self):
        with pytest.raises(ValueError):
            TimeWindow(200, 100)

    def test_from_bounds_accepts_datetimes(self):
        start = datetime(2024, 1, 1, tzinfo=pytz.UTC)
        end = datetime(2024, 1, 1, 8, tzinfo=pytz.UTC)
        window = TimeWindow.from_bounds(start, end)

        assert window.duration_hours == pytest.approx(8.0)

    def test_contains_is_inclusive(self):
        window = TimeWindow(0, 100)

        assert window.contains(0) and window.contains(100)
        assert not window.contains(101)

    def test_hourly_intervals_truncates_last(self):
        intervals = TimeWindow(0, 2 * HOUR + 1).hourly_intervals()

        assert [(i.start, i.end) for i in intervals] == [(0, HOUR), (HOUR, 2 * HOUR), (2 * HOUR, 2 * HOUR + 1)]

    def test_hour_index(self):
        window = TimeWindow(1000, 1000 + 3 * HOUR)

        assert window.hour_index(1000) == 0
        assert window.hour_index(1000 + HOUR) == 1

    def test_clamped_to_now(self):
        window = TimeWindow(0, 10 * HOUR)

        assert window.clamped_to(now_ms=4 * HOUR) == TimeWindow(0, 4 * HOUR)
        assert window.clamped_to(now_ms=20 * HOUR) is window

    def test_clamped_future_window(self):
        window = TimeWindow(5 * HOUR, 10 * HOUR)

        assert window.clamped_to(now_ms=HOUR) == TimeWindow(5 * HOUR, 5 * HOUR)


class TestCountFilters:

    def test_filter_counts_by_window(self):
        counts = [count(-1), count(0), count(50), count(100), count(101)]

        assert [c.timestamp for c in filter_counts_by_window(counts, TimeWindow(0, 100))] == [0, 50, 100]

    def test_sort_counts_is_stable(self):
        counts = [count(10, operator_id=1), count(5), count(10, operator_id=2)]

        assert [c.operator_id for c in sort_counts(counts)] == [7, 1, 2]

    def test_boundary_count_goes_to_both_sessions(self):
        sessions = [running(0, 100), running(100, 200)]
        counts = [count(t) for t in (50, 100, 150, 200, 250)]

        first, second = select_counts_for_sessions(sessions, counts)
        assert [c.timestamp for c in first] == [50, 100]
        assert [c.timestamp for c in second] == [100, 150, 200]

    def test_gaps_between_sessions(self):
        sessions = [running(0, 10), running(50, 60)]
        counts = [count(t) for t in (5, 30, 55, 70)]

        selected = select_counts_for_sessions(sessions, counts)
        assert [[c.timestamp for c in s] for s in selected] == [[5], [55]]

    def test_result_follows_session_order(self):
        sessions = [running(50, 60), running(0, 10)]
        counts = [count(t) for t in (55, 5)]

        selected = select_counts_for_sessions(sessions, counts)
        assert [[c.timestamp for c in s] for s in selected] == [[55], [5]]

    def test_no_sessions(self):
        assert select_counts_for_sessions([], [count(0)]) == []

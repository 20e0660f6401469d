"""
Tests for fault classification.
"""

import pytest

from core.calculations.faults import FaultReport, classify_faults
from core.models import Cycle, CycleCategory


def fault(start, end, name="Estop/Door", code=5):
    return Cycle(CycleCategory.FAULTED, start, end, fault_name=name, status_code=code)


class TestClassifyFaults:

    def test_groups_by_name_in_first_seen_order(self):
        cycles = [
            fault(0, 100, "Estop/Door"),
            fault(200, 260, "Lo Air Pressure", 19),
            fault(300, 350, "Estop/Door", 7),
        ]
        report = classify_faults(cycles)

        assert [s.fault_name for s in report.fault_summaries] == ["Estop/Door", "Lo Air Pressure"]
        estop = report.fault_summaries[0]
        assert estop.occurrence_count == 2
        assert estop.total_duration_ms == 150
        assert estop.fault_code == 5

    def test_timeline_sorted_by_start(self):
        report = classify_faults([fault(300, 400), fault(0, 50)])

        assert [c.start for c in report.fault_cycles] == [0, 300]

    def test_unnamed_fault_goes_to_generic_bucket(self):
        report = classify_faults([fault(0, 10, name=None)])

        assert report.fault_summaries[0].fault_name == "Fault"
        assert report.total_fault_ms == 10

    def test_none_is_empty(self):
        assert classify_faults(None) == FaultReport()

    def test_rejects_running_cycle(self):
        with pytest.raises(ValueError):
            classify_faults([Cycle(CycleCategory.RUNNING, 0, 10)])

    def test_paused_cycles_grouped_by_status_name(self):
        cycles = [
            Cycle(CycleCategory.PAUSED, 100, 200, status_code=0, status_name="Timeout"),
            fault(300, 400),
            Cycle(CycleCategory.PAUSED, 500, 550, status_code=0, status_name="Timeout"),
            Cycle(CycleCategory.PAUSED, 600, 610, status_code=42),
        ]
        report = classify_faults(cycles)

        assert [(s.fault_name, s.occurrence_count, s.total_duration_ms) for s in report.fault_summaries] == [
            ("Timeout", 2, 150),
            ("Estop/Door", 1, 100),
            ("Fault", 1, 10),
        ]
        assert report.fault_summaries[0].fault_code == 0

    def test_rejects_non_cycle(self):
        with pytest.raises(TypeError):
            classify_faults([(0, 10)])

    def test_formatted_duration_truncates(self):
        report = classify_faults([fault(0, 3723999)])

        assert report.fault_summaries[0].formatted == {"hours": 1, "minutes": 2, "seconds": 3}

    def test_summary_dataframe_longest_first(self):
        report = classify_faults([fault(0, 10, "A"), fault(20, 120, "B"), fault(200, 210, "C")])
        df = report.summary_dataframe()

        assert df["fault_name"].tolist() == ["B", "A", "C"]

    def test_to_dict_shape(self):
        data = classify_faults([fault(0, 1000)]).to_dict()

        assert data["faultSummaries"][0]["count"] == 1
        assert data["faultCycles"][0]["faultName"] == "Estop/Door"

"""
Fault Classification

Groups non-running (paused and faulted) cycles by name into a timeline and
per-name summaries. Paused time is named after its status, e.g. "Timeout".
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import pandas as pd

from core.categories import GENERIC_FAULT_NAME
from core.models import Cycle, CycleCategory
from utils.formatting import format_duration_with_seconds

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FaultSummary:
    """Occurrences and total time of one fault name within a window"""
    fault_name: str
    occurrence_count: int
    total_duration_ms: int
    fault_code: Optional[int] = None

    @property
    def formatted(self) -> Dict[str, int]:
        """Total duration as whole hours, minutes and seconds (truncated)."""
        return format_duration_with_seconds(self.total_duration_ms)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "faultName": self.fault_name,
            "faultCode": self.fault_code,
            "count": self.occurrence_count,
            "totalDurationMs": self.total_duration_ms,
            "formatted": self.formatted,
        }


@dataclass(frozen=True)
class FaultReport:
    fault_cycles: List[Cycle] = field(default_factory=list)
    fault_summaries: List[FaultSummary] = field(default_factory=list)

    @property
    def total_fault_ms(self) -> int:
        return sum(s.total_duration_ms for s in self.fault_summaries)

    def summary_dataframe(self) -> pd.DataFrame:
        """Summaries as a DataFrame, longest total duration first."""
        columns = ["fault_name", "fault_code", "occurrence_count", "total_duration_ms"]
        df = pd.DataFrame(
            [
                {
                    "fault_name": s.fault_name,
                    "fault_code": s.fault_code,
                    "occurrence_count": s.occurrence_count,
                    "total_duration_ms": s.total_duration_ms,
                }
                for s in self.fault_summaries
            ],
            columns=columns,
        )
        return df.sort_values("total_duration_ms", ascending=False, kind="stable").reset_index(drop=True)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "faultCycles": [c.to_dict() for c in self.fault_cycles],
            "faultSummaries": [s.to_dict() for s in self.fault_summaries],
        }


def classify_faults(fault_cycles: Sequence) -> FaultReport:
    """
    Build the fault timeline and per-name summaries.

    Cycles are sorted by start; summaries appear in order of each name's
    first occurrence. Faulted cycles are named by fault, paused cycles by
    status. A cycle without either name is counted under the generic "Fault"
    bucket so that none is dropped.

    Args:
        fault_cycles: Paused and faulted cycles (None counts as empty)

    Returns:
        FaultReport with sorted cycles and summaries

    Raises:
        TypeError: If fault_cycles is not a sequence of Cycle
        ValueError: If a cycle is in the running category
    """
    if fault_cycles is None:
        return FaultReport()
    if not isinstance(fault_cycles, Sequence) or isinstance(fault_cycles, (str, bytes)):
        raise TypeError(f"fault_cycles must be a sequence of Cycle, got {type(fault_cycles).__name__}")

    for cycle in fault_cycles:
        if not isinstance(cycle, Cycle):
            raise TypeError(f"fault_cycles must contain Cycle instances, got {type(cycle).__name__}")
        if cycle.category is CycleCategory.RUNNING:
            raise ValueError("Cannot classify a running cycle as a fault")

    ordered = sorted(fault_cycles, key=lambda c: c.start)

    buckets: Dict[str, Dict[str, Any]] = {}
    for cycle in ordered:
        name = cycle.label or GENERIC_FAULT_NAME
        bucket = buckets.setdefault(name, {"count": 0, "duration": 0, "code": cycle.status_code})
        bucket["count"] += 1
        bucket["duration"] += cycle.duration_ms

    summaries = [
        FaultSummary(
            fault_name=name,
            occurrence_count=bucket["count"],
            total_duration_ms=bucket["duration"],
            fault_code=bucket["code"],
        )
        for name, bucket in buckets.items()
    ]

    logger.debug(f"Classified {len(ordered)} non-running cycles into {len(summaries)} fault types")
    return FaultReport(fault_cycles=ordered, fault_summaries=summaries)

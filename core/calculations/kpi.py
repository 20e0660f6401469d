"""
KPI Calculator

Pure functions turning cycle durations and count aggregates into
availability, throughput, efficiency, OEE, pieces-per-hour and time credit.

Every division guards its denominator: a zero or negative denominator gives
0, never NaN or infinity.

- Availability = Runtime / Window
- Throughput = Total / (Total + Misfeeds)
- Efficiency = Time credit earned / Runtime (not capped at 100%)
- OEE = Availability × Efficiency × Throughput
"""

import logging
from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from core.calculations.counts import group_by_key, item_key, partition_counts
from core.models import Cycle, CycleCategory, CycleSet, Item
from utils.formatting import MILLISECONDS_IN_HOUR, MILLISECONDS_IN_SECOND, format_duration

logger = logging.getLogger(__name__)

SECONDS_IN_HOUR = 3600

# Standards below this are taken to be pieces per minute
PER_MINUTE_STANDARD_LIMIT = 60


def _size(collection) -> int:
    return 0 if collection is None else len(collection)


def downtime(total_window_ms: float, runtime_ms: float) -> float:
    """Window time not spent running, never negative."""
    return max(total_window_ms - runtime_ms, 0)


def availability(runtime_ms: float, total_window_ms: float) -> float:
    """
    Calculate availability ratio.

    Example:
        >>> availability(6 * 3600000, 8 * 3600000)
        0.75
    """
    if not total_window_ms or total_window_ms <= 0:
        return 0.0
    return min(max(runtime_ms / total_window_ms, 0.0), 1.0)


def total_count(valid: Optional[Sequence], misfeed: Optional[Sequence]) -> int:
    """Valid counts plus misfeeds."""
    return _size(valid) + _size(misfeed)


def throughput(total: int, misfeed_count: int) -> float:
    """
    Calculate throughput ratio as total / (total + misfeeds).

    `total` already includes the misfeeds, so they are weighted twice in the
    denominator. This matches the plant reporting figures and is kept as is.

    Example:
        >>> round(throughput(10, 2), 4)
        0.8333
    """
    denominator = total + misfeed_count
    if denominator <= 0:
        return 0.0
    return min(max(total / denominator, 0.0), 1.0)


def standard_per_hour(standard: float) -> float:
    """
    Normalize an item standard to pieces per hour.

    Item standards are entered inconsistently upstream. Values under 60 are
    read as pieces per minute and scaled by 60; anything else is already
    per hour. Non-positive standards give 0.

    Example:
        >>> standard_per_hour(30)
        1800
        >>> standard_per_hour(720)
        720
    """
    if not standard or standard <= 0:
        return 0.0
    if standard < PER_MINUTE_STANDARD_LIMIT:
        return standard * 60
    return standard


def time_credit_per_item(item: Item, count_for_item: int) -> float:
    """
    Standard time earned by producing `count_for_item` pieces of `item`.

    Returns:
        Time credit in seconds (0 when the item has no usable standard)
    """
    per_hour = standard_per_hour(item.standard)
    if per_hour <= 0:
        return 0.0
    return count_for_item / (per_hour / SECONDS_IN_HOUR)


@dataclass(frozen=True)
class ItemTimeCredit:
    item: Item
    count: int
    standard_per_hour: float
    time_credit_seconds: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.item.id,
            "name": self.item.name,
            "standard": self.item.standard,
            "count": self.count,
            "timeCredit": round(self.time_credit_seconds, 2),
        }


def time_credits_by_item(counts: Optional[Sequence]) -> List[ItemTimeCredit]:
    """Time credit per distinct item (id and name), in first-seen order."""
    credits = []
    for group in group_by_key(counts, item_key).values():
        item = group[0].item
        credits.append(ItemTimeCredit(
            item=item,
            count=len(group),
            standard_per_hour=standard_per_hour(item.standard),
            time_credit_seconds=time_credit_per_item(item, len(group)),
        ))
    return credits


def total_time_credit(counts: Optional[Sequence]) -> float:
    """Sum of per-item time credits, in seconds."""
    return sum(c.time_credit_seconds for c in time_credits_by_item(counts))


def efficiency(runtime_ms: float, total: int, counts: Optional[Sequence]) -> float:
    """
    Calculate efficiency as time credit earned over running time.

    Not capped at 1: operators can outpace the nominal standard.

    Args:
        runtime_ms: Running time in milliseconds
        total: Total count for the period (0 short-circuits to 0)
        counts: Count events that earn time credit

    Returns:
        Efficiency ratio (>= 0)

    Example:
        >>> counts = [CountEvent(t, 1, Item(1, "Towel", 30), Operator(7)) for t in range(10)]
        >>> round(efficiency(3600000, 10, counts), 5)
        0.00556
    """
    if not runtime_ms or runtime_ms <= 0 or not total or total <= 0:
        return 0.0
    runtime_seconds = runtime_ms / MILLISECONDS_IN_SECOND
    return max(total_time_credit(counts) / runtime_seconds, 0.0)


def oee(availability_ratio: float, efficiency_ratio: float, throughput_ratio: float) -> float:
    """Overall Equipment Effectiveness = Availability × Efficiency × Throughput"""
    return availability_ratio * efficiency_ratio * throughput_ratio


def pieces_per_hour(total: int, runtime_ms: float) -> float:
    if not runtime_ms or runtime_ms <= 0:
        return 0.0
    return total / (runtime_ms / MILLISECONDS_IN_HOUR)


@dataclass(frozen=True)
class OperatorTimes:
    runtime_ms: int = 0
    paused_ms: int = 0
    fault_ms: int = 0

    @property
    def total_ms(self) -> int:
        return self.runtime_ms + self.paused_ms + self.fault_ms

    def to_dict(self) -> Dict[str, Any]:
        return {
            "runtime": {"total": self.runtime_ms, "formatted": format_duration(self.runtime_ms)},
            "pausedTime": {"total": self.paused_ms, "formatted": format_duration(self.paused_ms)},
            "faultTime": {"total": self.fault_ms, "formatted": format_duration(self.fault_ms)},
        }


def operator_times(cycles: Union[CycleSet, Sequence, None]) -> OperatorTimes:
    """
    Sum running, paused and faulted time.

    Args:
        cycles: A CycleSet or a sequence of Cycle (None counts as empty)
    """
    if cycles is None:
        return OperatorTimes()
    if isinstance(cycles, CycleSet):
        cycles = cycles.all()
    if isinstance(cycles, (str, bytes)) or not isinstance(cycles, Sequence):
        raise TypeError(f"cycles must be a CycleSet or a sequence of Cycle, got {type(cycles).__name__}")

    totals = {category: 0 for category in CycleCategory}
    for cycle in cycles:
        if not isinstance(cycle, Cycle):
            raise TypeError(f"cycles must contain Cycle instances, got {type(cycle).__name__}")
        totals[cycle.category] += cycle.duration_ms

    return OperatorTimes(
        runtime_ms=totals[CycleCategory.RUNNING],
        paused_ms=totals[CycleCategory.PAUSED],
        fault_ms=totals[CycleCategory.FAULTED],
    )


def standard_from_counts(counts: Optional[Sequence]) -> float:
    """
    Most frequent positive item standard among the counts.

    Ties go to the standard seen first. Returns 0 when no count carries a
    positive standard.
    """
    standards = Counter()
    for group in group_by_key(counts, lambda c: c.item.standard).values():
        standard = group[0].item.standard
        if standard and standard > 0:
            standards[standard] = len(group)
    if not standards:
        return 0.0
    # most_common keeps insertion order among equal counts
    return standards.most_common(1)[0][0]


@dataclass(frozen=True)
class KPIResult:
    """Container for one entity's KPIs over one window"""
    runtime_ms: int
    downtime_ms: int
    total_window_ms: int
    total_count: int
    valid_count: int
    misfeed_count: int
    availability: float     # 0.0 to 1.0
    throughput: float       # 0.0 to 1.0
    efficiency: float       # >= 0.0, may exceed 1.0
    oee: float
    pieces_per_hour: float

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for easy display"""
        return {
            "runtimeMs": self.runtime_ms,
            "downtimeMs": self.downtime_ms,
            "totalWindowMs": self.total_window_ms,
            "totalCount": self.total_count,
            "validCount": self.valid_count,
            "misfeedCount": self.misfeed_count,
            "availability": self.availability,
            "throughput": self.throughput,
            "efficiency": self.efficiency,
            "oee": self.oee,
            "piecesPerHour": self.pieces_per_hour,
        }

    def to_percentage_dict(self) -> Dict[str, float]:
        """Convert to percentage values for display"""
        return {
            "availability": round(self.availability * 100, 2),
            "throughput": round(self.throughput * 100, 2),
            "efficiency": round(self.efficiency * 100, 2),
            "oee": round(self.oee * 100, 2),
        }


def calculate_kpis(
    runtime_ms: int,
    total_window_ms: int,
    valid: Optional[Sequence],
    misfeed: Optional[Sequence]
) -> KPIResult:
    """
    Compute the full KPI set for one entity.

    Args:
        runtime_ms: Total running time in the window
        total_window_ms: Window length
        valid: Valid count events (earn time credit)
        misfeed: Misfeed count events

    Returns:
        KPIResult

    Example:
        >>> result = calculate_kpis(6 * 3600000, 8 * 3600000, valid, misfeed)
        >>> print(f"OEE: {result.oee:.1%}")
    """
    total = total_count(valid, misfeed)
    misfeed_count = _size(misfeed)

    availability_ratio = availability(runtime_ms, total_window_ms)
    throughput_ratio = throughput(total, misfeed_count)
    efficiency_ratio = efficiency(runtime_ms, total, valid)

    return KPIResult(
        runtime_ms=runtime_ms,
        downtime_ms=downtime(total_window_ms, runtime_ms),
        total_window_ms=total_window_ms,
        total_count=total,
        valid_count=_size(valid),
        misfeed_count=misfeed_count,
        availability=availability_ratio,
        throughput=throughput_ratio,
        efficiency=efficiency_ratio,
        oee=oee(availability_ratio, efficiency_ratio, throughput_ratio),
        pieces_per_hour=pieces_per_hour(total, runtime_ms),
    )


def calculate_kpis_from_counts(runtime_ms: int, total_window_ms: int, counts: Optional[Sequence]) -> KPIResult:
    """Partition raw counts, then compute KPIs."""
    partition = partition_counts(counts)
    return calculate_kpis(runtime_ms, total_window_ms, partition.valid, partition.misfeed)

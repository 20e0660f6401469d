"""
Report Composer

Builds machine and operator reports for one window from a single snapshot of
status and count events: performance KPIs, per-session item summaries, an
hourly item stack, fault data and hourly operator efficiency.
"""

import bisect
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import pandas as pd

from core.categories import CategoryRegistry
from core.calculations.counts import (
    CountStatistics,
    count_statistics,
    distinct_operator_ids,
    ensure_counts,
    group_by_key,
    item_key,
    item_names,
    operator_machine_key,
    partition_counts,
)
from core.calculations.cycles import (
    extract_cycles,
    extract_cycles_by_machine,
    hourly_state_breakdown,
)
from core.calculations.faults import FaultReport, classify_faults
from core.calculations.kpi import (
    KPIResult,
    OperatorTimes,
    availability,
    calculate_kpis,
    efficiency,
    oee,
    operator_times,
    pieces_per_hour,
    standard_from_counts,
    standard_per_hour,
    throughput,
)
from core.db.fetchers import EventStore
from core.models import CountEvent, Cycle, CycleCategory, CycleSet
from core.time_windows.filters import filter_counts_by_window, select_counts_for_sessions, sort_counts
from core.time_windows.models import TimeWindow
from utils.formatting import format_duration, format_percentage, format_timestamp

logger = logging.getLogger(__name__)


def _rate_efficiency(pph: float, standard: float) -> float:
    """Pieces per hour relative to the normalized standard."""
    per_hour = standard_per_hour(standard)
    return pph / per_hour if per_hour > 0 else 0.0


# =============================================================================
# Machine performance
# =============================================================================

@dataclass(frozen=True)
class MachinePerformance:
    kpis: KPIResult

    @property
    def runtime_ms(self) -> int:
        return self.kpis.runtime_ms

    @property
    def downtime_ms(self) -> int:
        return self.kpis.downtime_ms

    def to_dict(self) -> Dict[str, Any]:
        kpis = self.kpis
        return {
            "runtime": {"total": kpis.runtime_ms, "formatted": format_duration(kpis.runtime_ms)},
            "downtime": {"total": kpis.downtime_ms, "formatted": format_duration(kpis.downtime_ms)},
            "output": {"totalCount": kpis.total_count, "misfeedCount": kpis.misfeed_count},
            "performance": {
                name: {"value": value, "percentage": format_percentage(value)}
                for name, value in (
                    ("availability", kpis.availability),
                    ("throughput", kpis.throughput),
                    ("efficiency", kpis.efficiency),
                    ("oee", kpis.oee),
                )
            },
        }


def build_machine_performance(
    cycle_set: CycleSet,
    counts: Sequence[CountEvent],
    window: TimeWindow
) -> MachinePerformance:
    """
    Machine KPIs over the window.

    Runtime is the total running-cycle time; valid counts earn time credit.
    """
    partition = partition_counts(counts)
    runtime_ms = cycle_set.total_ms(CycleCategory.RUNNING)
    return MachinePerformance(
        kpis=calculate_kpis(runtime_ms, window.duration_ms, partition.valid, partition.misfeed)
    )


# =============================================================================
# Item summary
# =============================================================================

@dataclass(frozen=True)
class SessionItem:
    item_id: Optional[int]
    name: str
    count: int
    standard: float
    pph: float
    efficiency: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "itemId": self.item_id,
            "name": self.name,
            "countTotal": self.count,
            "standard": self.standard,
            "pph": round(self.pph, 2),
            "efficiency": round(self.efficiency * 100, 2),
        }


@dataclass(frozen=True)
class ItemSession:
    """One running session with the items produced in it."""
    start: int
    end: int
    operator_count: int
    worked_time_ms: int
    items: List[SessionItem] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "start": format_timestamp(self.start),
            "end": format_timestamp(self.end),
            "operators": self.operator_count,
            "workedTimeMs": self.worked_time_ms,
            "workedTimeFormatted": format_duration(self.worked_time_ms),
            "items": [i.to_dict() for i in self.items],
        }


@dataclass(frozen=True)
class ItemTotals:
    item_id: Optional[int]
    name: str
    standard: float
    count: int
    worked_time_ms: int

    @property
    def pph(self) -> float:
        return pieces_per_hour(self.count, self.worked_time_ms)

    @property
    def efficiency(self) -> float:
        return _rate_efficiency(self.pph, self.standard)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "itemId": self.item_id,
            "name": self.name,
            "standard": self.standard,
            "countTotal": self.count,
            "workedTimeMs": self.worked_time_ms,
            "workedTimeFormatted": format_duration(self.worked_time_ms),
            "pph": round(self.pph, 2),
            "efficiency": round(self.efficiency * 100, 2),
        }


@dataclass(frozen=True)
class ItemSummary:
    sessions: List[ItemSession] = field(default_factory=list)
    total_count: int = 0
    worked_time_ms: int = 0
    pph: float = 0.0
    prorated_standard: float = 0.0
    efficiency: float = 0.0
    items: List[ItemTotals] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sessions": [s.to_dict() for s in self.sessions],
            "machineSummary": {
                "totalCount": self.total_count,
                "workedTimeMs": self.worked_time_ms,
                "workedTimeFormatted": format_duration(self.worked_time_ms),
                "pph": round(self.pph, 2),
                "proratedStandard": round(self.prorated_standard, 2),
                "efficiency": round(self.efficiency * 100, 2),
                "itemSummaries": [i.to_dict() for i in self.items],
            },
        }


def build_item_summary(sessions: Sequence[Cycle], counts: Sequence[CountEvent]) -> ItemSummary:
    """
    Summarize production per running session and per item.

    Worked time of a session is its duration multiplied by the number of
    distinct operators counting in it (at least one), so two operators on
    one line for an hour account for two worked hours. Every item produced
    in a session is credited with the session's full worked time; the
    machine total counts each session once.

    Items without a positive standard are rated against the most common
    standard among the session's counts.

    Args:
        sessions: Running cycles, ordered by start
        counts: Count events for the same machine and window

    Returns:
        ItemSummary
    """
    valid = partition_counts(counts).valid
    selected_per_session = select_counts_for_sessions(sessions, valid)

    item_totals: Dict[Any, Dict[str, Any]] = {}
    result_sessions = []
    total_worked_ms = 0
    total_count = 0

    for session, selected in zip(sessions, selected_per_session):
        operator_count = len(distinct_operator_ids(selected))
        worked_ms = session.duration_ms * max(1, operator_count)
        total_worked_ms += worked_ms
        fallback_standard = standard_from_counts(selected)

        session_items = []
        for key, group in group_by_key(selected, item_key).items():
            item = group[0].item
            standard = item.standard if item.standard > 0 else fallback_standard
            pph = pieces_per_hour(len(group), worked_ms)
            session_items.append(SessionItem(
                item_id=item.id,
                name=item.name,
                count=len(group),
                standard=standard,
                pph=pph,
                efficiency=_rate_efficiency(pph, standard),
            ))

            totals = item_totals.setdefault(
                key, {"item": item, "standard": standard, "count": 0, "worked_ms": 0}
            )
            if totals["standard"] <= 0 < standard:
                totals["standard"] = standard
            totals["count"] += len(group)
            totals["worked_ms"] += worked_ms
            total_count += len(group)

        result_sessions.append(ItemSession(
            start=session.start,
            end=session.end,
            operator_count=operator_count,
            worked_time_ms=worked_ms,
            items=session_items,
        ))

    items = [
        ItemTotals(
            item_id=t["item"].id,
            name=t["item"].name,
            standard=t["standard"],
            count=t["count"],
            worked_time_ms=t["worked_ms"],
        )
        for t in item_totals.values()
    ]

    machine_pph = pieces_per_hour(total_count, total_worked_ms)
    # Count-weighted mean of normalized item standards
    prorated_standard = sum(
        (i.count / total_count) * standard_per_hour(i.standard) for i in items
    ) if total_count > 0 else 0.0
    machine_efficiency = machine_pph / prorated_standard if prorated_standard > 0 else 0.0

    return ItemSummary(
        sessions=result_sessions,
        total_count=total_count,
        worked_time_ms=total_worked_ms,
        pph=machine_pph,
        prorated_standard=prorated_standard,
        efficiency=machine_efficiency,
        items=items,
    )


# =============================================================================
# Item hourly stack
# =============================================================================

@dataclass(frozen=True)
class ItemHourlyStack:
    """Counts per item name for each hour offset from the window start."""
    hours: List[int] = field(default_factory=list)
    items: Dict[str, List[int]] = field(default_factory=dict)

    def to_dataframe(self) -> pd.DataFrame:
        df = pd.DataFrame(self.items, index=self.hours)
        df.index.name = "hour"
        return df

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": "Item Stacked Count Chart" if self.items else "No data",
            "data": {"hours": self.hours, "items": self.items},
        }


def build_item_hourly_stack(counts: Sequence[CountEvent], window: TimeWindow) -> ItemHourlyStack:
    """
    Bucket counts by item name into one-hour slots from the window start.

    Counts outside the window are ignored. A count exactly at the window end
    belongs to the last slot.
    """
    hour_count = max(1, len(window.hourly_intervals()))
    hours = list(range(hour_count))
    in_window = filter_counts_by_window(ensure_counts(counts), window)
    if not in_window:
        return ItemHourlyStack(hours=hours, items={})

    df = pd.DataFrame({
        "hour": [min(window.hour_index(c.timestamp), hour_count - 1) for c in in_window],
        "item": [c.item.name for c in in_window],
    })
    table = pd.crosstab(df["item"], df["hour"]).reindex(
        index=list(dict.fromkeys(df["item"])), columns=hours, fill_value=0
    )
    items = {name: [int(v) for v in row] for name, row in zip(table.index, table.values)}
    return ItemHourlyStack(hours=hours, items=items)


# =============================================================================
# Fault data
# =============================================================================

def build_fault_data(cycle_set: CycleSet) -> FaultReport:
    """Timeline and summaries of all non-running time (paused and faulted) in a window."""
    return classify_faults(cycle_set.paused + cycle_set.fault)


# =============================================================================
# Hourly operator efficiency
# =============================================================================

@dataclass(frozen=True)
class OperatorEfficiency:
    operator_id: int
    name: Optional[str]
    runtime_ms: int
    valid_count: int
    total_count: int
    efficiency: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.operator_id,
            "name": self.name or "Unknown",
            "efficiency": round(self.efficiency * 100, 2),
        }


@dataclass(frozen=True)
class HourlyOperatorEfficiency:
    hour_start: int
    hour_end: int
    availability: float
    throughput: float
    average_efficiency: float
    oee: float
    operators: List[OperatorEfficiency] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hour": format_timestamp(self.hour_start),
            "oee": round(self.oee * 100, 2),
            "operators": [o.to_dict() for o in self.operators],
        }


def build_operator_efficiency(
    cycle_set: CycleSet,
    counts: Sequence[CountEvent],
    window: TimeWindow,
    machine_serial: Optional[int]
) -> List[HourlyOperatorEfficiency]:
    """
    Per-operator efficiency and machine OEE for each hour of the window.

    Each hour's runtime is the running time overlapping it; every operator
    counting on this machine in that hour is rated against that runtime.
    Hours are half-open except the last, which includes the window end.

    Args:
        cycle_set: Machine cycles for the window
        counts: Machine count events
        window: Reporting window
        machine_serial: Serial the counts must belong to

    Returns:
        One entry per hourly interval
    """
    ordered = sort_counts(ensure_counts(counts))
    timestamps = [c.timestamp for c in ordered]
    intervals = window.hourly_intervals()

    hourly = []
    for index, interval in enumerate(intervals):
        lo = bisect.bisect_left(timestamps, interval.start)
        if index == len(intervals) - 1:
            hi = bisect.bisect_right(timestamps, interval.end)
        else:
            hi = bisect.bisect_left(timestamps, interval.end)
        hour_counts = ordered[lo:hi]

        runtime_ms = sum(c.overlap_ms(interval.start, interval.end) for c in cycle_set.running)
        grouped = group_by_key(hour_counts, operator_machine_key)

        operators = []
        for operator_id in distinct_operator_ids(hour_counts):
            group = grouped.get((operator_id, machine_serial))
            if not group:
                continue
            partition = partition_counts(group)
            name = next((c.operator.name for c in group if c.operator.name), None)
            operators.append(OperatorEfficiency(
                operator_id=operator_id,
                name=name,
                runtime_ms=runtime_ms,
                valid_count=len(partition.valid),
                total_count=partition.total,
                efficiency=efficiency(runtime_ms, partition.total, partition.valid),
            ))

        average_efficiency = (
            sum(o.efficiency for o in operators) / len(operators) if operators else 0.0
        )
        total = sum(o.total_count for o in operators)
        misfeeds = sum(o.total_count - o.valid_count for o in operators)
        availability_ratio = availability(runtime_ms, interval.duration_ms)
        throughput_ratio = throughput(total, misfeeds)

        hourly.append(HourlyOperatorEfficiency(
            hour_start=interval.start,
            hour_end=interval.end,
            availability=availability_ratio,
            throughput=throughput_ratio,
            average_efficiency=average_efficiency,
            oee=oee(availability_ratio, average_efficiency, throughput_ratio),
            operators=operators,
        ))

    return hourly


# =============================================================================
# Machine report
# =============================================================================

@dataclass(frozen=True)
class MachineReport:
    machine_serial: int
    window: TimeWindow
    cycles: CycleSet
    performance: MachinePerformance
    item_summary: ItemSummary
    item_hourly_stack: ItemHourlyStack
    fault_data: FaultReport
    operator_efficiency: List[HourlyOperatorEfficiency]
    state_breakdown: pd.DataFrame = field(compare=False, repr=False, default_factory=pd.DataFrame)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "machine": {"serial": self.machine_serial},
            "timeRange": {
                "start": format_timestamp(self.window.start),
                "end": format_timestamp(self.window.end),
            },
            "performance": self.performance.to_dict(),
            "itemSummary": self.item_summary.to_dict(),
            "itemHourlyStack": self.item_hourly_stack.to_dict(),
            "faultData": self.fault_data.to_dict(),
            "operatorEfficiency": [h.to_dict() for h in self.operator_efficiency],
        }


def compose_machine_report(
    machine_serial: int,
    window: TimeWindow,
    status_events: Sequence,
    counts: Sequence[CountEvent],
    registry: Optional[CategoryRegistry] = None
) -> MachineReport:
    """
    Build every machine sub-report from one snapshot of events.

    Args:
        machine_serial: Machine serial number
        window: Reporting window
        status_events: Bookended status events for the machine
        counts: Count events for the machine in the window
        registry: Status code classifier

    Returns:
        MachineReport
    """
    cycle_set = extract_cycles(status_events, window.start, window.end, registry)
    counts = ensure_counts(counts)
    valid = partition_counts(counts).valid

    report = MachineReport(
        machine_serial=machine_serial,
        window=window,
        cycles=cycle_set,
        performance=build_machine_performance(cycle_set, counts, window),
        item_summary=build_item_summary(cycle_set.running, counts),
        item_hourly_stack=build_item_hourly_stack(valid, window),
        fault_data=build_fault_data(cycle_set),
        operator_efficiency=build_operator_efficiency(cycle_set, counts, window, machine_serial),
        state_breakdown=hourly_state_breakdown(cycle_set, window),
    )
    logger.info(
        f"Built report for machine {machine_serial}: "
        f"OEE {report.performance.kpis.oee:.1%}, {len(counts)} counts"
    )
    return report


def build_machine_report(
    store: EventStore,
    machine_serial: int,
    window: TimeWindow,
    registry: Optional[CategoryRegistry] = None,
    now_ms: Optional[int] = None
) -> MachineReport:
    """
    Fetch one machine's events and build its report.

    A window ending in the future is clamped to now. Event-store errors
    propagate unchanged.
    """
    window = window.clamped_to(now_ms)
    status_events = store.get_status_events(machine_serial, window.start, window.end, include_bookends=True)
    counts = store.get_count_events(window.start, window.end, machine_serial=machine_serial)
    return compose_machine_report(machine_serial, window, status_events, counts, registry)


# =============================================================================
# Operator report
# =============================================================================

@dataclass(frozen=True)
class OperatorSession:
    machine_serial: Optional[int]
    start: int
    end: int
    total_count: int
    misfeed_count: int
    task: str
    standard: float
    pph: float
    efficiency: float

    @property
    def duration_ms(self) -> int:
        return self.end - self.start

    def to_dict(self) -> Dict[str, Any]:
        return {
            "machine": {"serial": self.machine_serial},
            "start": format_timestamp(self.start),
            "end": format_timestamp(self.end),
            "workTime": format_duration(self.duration_ms),
            "totalCount": self.total_count,
            "misfeeds": self.misfeed_count,
            "task": self.task,
            "standard": self.standard,
            "pph": round(self.pph, 2),
            "efficiency": round(self.efficiency * 100, 2),
        }


@dataclass(frozen=True)
class OperatorReport:
    operator_id: int
    operator_name: Optional[str]
    window: TimeWindow
    times: OperatorTimes
    kpis: KPIResult
    statistics: CountStatistics
    sessions: List[OperatorSession]
    fault_data: FaultReport

    def to_dict(self) -> Dict[str, Any]:
        return {
            "operator": {"id": self.operator_id, "name": self.operator_name or "Unknown"},
            "timeRange": {
                "start": format_timestamp(self.window.start),
                "end": format_timestamp(self.window.end),
            },
            **self.times.to_dict(),
            "output": {
                "totalCount": self.kpis.total_count,
                "validCount": self.kpis.valid_count,
                "misfeedCount": self.kpis.misfeed_count,
            },
            "performance": {
                "piecesPerHour": {
                    "value": self.kpis.pieces_per_hour,
                    "formatted": str(round(self.kpis.pieces_per_hour)),
                },
                "efficiency": {
                    "value": self.kpis.efficiency,
                    "percentage": format_percentage(self.kpis.efficiency),
                },
            },
            "sessions": [s.to_dict() for s in self.sessions],
            "faultData": self.fault_data.to_dict(),
        }


def _operator_name(operator_id: int, status_events: Sequence, counts: Sequence[CountEvent]) -> Optional[str]:
    for count in counts:
        if count.operator_id == operator_id and count.operator.name:
            return count.operator.name
    for event in status_events:
        for operator in event.operators:
            if operator.id == operator_id and operator.name:
                return operator.name
    return None


def compose_operator_report(
    operator_id: int,
    window: TimeWindow,
    status_events: Sequence,
    counts: Sequence[CountEvent],
    registry: Optional[CategoryRegistry] = None
) -> OperatorReport:
    """
    Build an operator report from one snapshot of events.

    Status events may come from several machines; cycles are extracted per
    machine and their times summed. Each running session is matched with
    the operator's counts on the same machine.

    Availability is the summed runtime over the single window length, so it
    is the operator's share of wall-clock time spent running. Runtime on
    machines the operator ran at the same time can add up to more than the
    window, in which case availability is capped at 1.
    """
    counts = ensure_counts(counts)
    cycles_by_machine = extract_cycles_by_machine(status_events, window.start, window.end, registry)

    times = OperatorTimes()
    fault_cycles: List[Cycle] = []
    sessions: List[OperatorSession] = []

    for serial, cycle_set in cycles_by_machine.items():
        machine_times = operator_times(cycle_set)
        times = OperatorTimes(
            runtime_ms=times.runtime_ms + machine_times.runtime_ms,
            paused_ms=times.paused_ms + machine_times.paused_ms,
            fault_ms=times.fault_ms + machine_times.fault_ms,
        )
        fault_cycles.extend(cycle_set.paused + cycle_set.fault)

        machine_counts = [c for c in counts if c.machine_serial == serial]
        selected_per_session = select_counts_for_sessions(cycle_set.running, machine_counts)
        for session, selected in zip(cycle_set.running, selected_per_session):
            partition = partition_counts(selected)
            sessions.append(OperatorSession(
                machine_serial=serial,
                start=session.start,
                end=session.end,
                total_count=partition.total,
                misfeed_count=len(partition.misfeed),
                task=item_names(partition.valid),
                standard=standard_from_counts(partition.valid),
                pph=pieces_per_hour(partition.total, session.duration_ms),
                efficiency=efficiency(session.duration_ms, partition.total, partition.valid),
            ))

    sessions.sort(key=lambda s: (s.start, s.machine_serial is None, s.machine_serial or 0))
    partition = partition_counts(counts)

    report = OperatorReport(
        operator_id=operator_id,
        operator_name=_operator_name(operator_id, status_events or [], counts),
        window=window,
        times=times,
        kpis=calculate_kpis(times.runtime_ms, window.duration_ms, partition.valid, partition.misfeed),
        statistics=count_statistics(counts, times.runtime_ms),
        sessions=sessions,
        fault_data=classify_faults(fault_cycles),
    )
    logger.info(
        f"Built report for operator {operator_id}: {len(sessions)} sessions "
        f"on {len(cycles_by_machine)} machines"
    )
    return report


def build_operator_report(
    store: EventStore,
    operator_id: int,
    window: TimeWindow,
    registry: Optional[CategoryRegistry] = None,
    now_ms: Optional[int] = None
) -> OperatorReport:
    """Fetch one operator's events and build their report."""
    window = window.clamped_to(now_ms)
    status_events = store.get_operator_status_events(operator_id, window.start, window.end, include_bookends=True)
    counts = store.get_count_events(window.start, window.end, operator_id=operator_id)
    return compose_operator_report(operator_id, window, status_events, counts, registry)

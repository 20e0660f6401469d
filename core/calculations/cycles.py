"""
Cycle Extraction

Turns a machine's status-change events into non-overlapping running, paused
and faulted cycles over a reporting window, and splits those cycles into
hourly state breakdowns.

Events are expected to be bookended: the last event before the window start
and the first event after the window end are included so the categories in
effect at both edges are known.
"""

import dataclasses
import logging
from collections.abc import Sequence
from typing import Dict, List, Optional

import numpy as np
import pandas as pd

from core.categories import CategoryRegistry, default_registry
from core.models import Cycle, CycleCategory, CycleSet, StatusEvent
from core.time_windows.models import TimeWindow
from utils.formatting import TimestampLike, to_millis

logger = logging.getLogger(__name__)


def _validate_events(events) -> List[StatusEvent]:
    """Return events as a list, treating None as empty."""
    if events is None:
        return []
    if isinstance(events, (str, bytes)) or not isinstance(events, Sequence):
        raise TypeError(
            f"events must be a sequence of StatusEvent, got {type(events).__name__}"
        )
    for event in events:
        if not isinstance(event, StatusEvent):
            raise TypeError(
                f"events must contain StatusEvent instances, got {type(event).__name__}"
            )
    return list(events)


def _same_label(previous: Cycle, fault_name: Optional[str], status_name: Optional[str]) -> bool:
    """Whether a new cycle continues the same fault or pause as the previous one."""
    if previous.category is CycleCategory.RUNNING:
        return True
    if previous.category is CycleCategory.FAULTED:
        return previous.fault_name == fault_name
    return previous.status_name == status_name


class _CycleBuilder:
    """Accumulates clipped cycles for one extraction run."""

    def __init__(self, window_start: int, window_end: int):
        self.window_start = window_start
        self.window_end = window_end
        self.cycles = {category: [] for category in CycleCategory}

    def emit(
        self,
        category: CycleCategory,
        start: int,
        end: int,
        fault_name: Optional[str],
        status_code: int,
        is_open: bool = False,
        status_name: Optional[str] = None
    ) -> None:
        start_c = max(start, self.window_start)
        end_c = min(end, self.window_end)

        if is_open:
            # Last known state: true end unknown, kept if it begins inside the window
            if start_c >= self.window_end:
                return
            end_c = max(end_c, start_c)
        elif end_c <= start_c:
            if start == end:
                logger.debug(f"Dropping zero-length {category.value} cycle at {start}")
            return

        if category is not CycleCategory.FAULTED:
            fault_name = None

        bucket = self.cycles[category]
        if bucket and bucket[-1].end == start_c and _same_label(bucket[-1], fault_name, status_name):
            # Rejoin a cycle split by a dropped zero-length cycle
            bucket[-1] = dataclasses.replace(bucket[-1], end=end_c, is_open=is_open)
            return

        bucket.append(Cycle(
            category=category,
            start=start_c,
            end=end_c,
            fault_name=fault_name,
            status_code=status_code,
            is_open=is_open,
            status_name=status_name,
        ))

    def build(self) -> CycleSet:
        return CycleSet(
            running=self.cycles[CycleCategory.RUNNING],
            paused=self.cycles[CycleCategory.PAUSED],
            fault=self.cycles[CycleCategory.FAULTED],
        )


def extract_cycles(
    events: Sequence,
    window_start: TimestampLike,
    window_end: TimestampLike,
    registry: Optional[CategoryRegistry] = None
) -> CycleSet:
    """
    Segment a status-event stream into cycles clipped to a window.

    A cycle stays open while consecutive events share a category; a category
    change at time t closes it at t and opens the next one at t. When there
    is no event before the window start, the first event's category is
    assumed to hold from the window start. The first event after the window
    end closes the open cycle at the window end. Without such an event the
    last cycle is closed at the final event's timestamp and marked open.

    Args:
        events: StatusEvent sequence, ideally bookended. None counts as empty.
        window_start: Start of the reporting window
        window_end: End of the reporting window
        registry: Status code classifier (defaults to the built-in fault table)

    Returns:
        CycleSet with running, paused and fault cycles, each ordered by start

    Raises:
        TypeError: If events is not a sequence of StatusEvent
        ValueError: If window_end is before window_start

    Example:
        >>> events = [StatusEvent(0, 1), StatusEvent(200, 5), StatusEvent(300, 1)]
        >>> cycles = extract_cycles(events, 0, 300)
        >>> [(c.category.value, c.start, c.end) for c in cycles.all()]
        [('running', 0, 200), ('faulted', 200, 300)]
    """
    window = TimeWindow(to_millis(window_start), to_millis(window_end))
    ordered = sorted(_validate_events(events), key=lambda e: e.timestamp)
    if not ordered:
        return CycleSet()

    registry = registry or default_registry()
    builder = _CycleBuilder(window.start, window.end)

    open_category = None
    open_start = None
    open_name = None
    open_code = None
    open_status_name = None
    last_timestamp = None
    closed_by_bookend = False

    for event in ordered:
        if event.timestamp > window.end:
            if open_category is not None:
                builder.emit(
                    open_category, open_start, window.end, open_name, open_code,
                    status_name=open_status_name
                )
            closed_by_bookend = True
            break

        category, fault_name = registry.classify(event.status_code)
        status_name = event.status_name or registry.status_name(event.status_code)

        if open_category is None:
            # No leading bookend: the first category is assumed from window start
            open_start = min(event.timestamp, window.start)
            open_category, open_name, open_code = category, fault_name, event.status_code
            open_status_name = status_name
        elif category is not open_category:
            builder.emit(
                open_category, open_start, event.timestamp, open_name, open_code,
                status_name=open_status_name
            )
            open_start = event.timestamp
            open_category, open_name, open_code = category, fault_name, event.status_code
            open_status_name = status_name

        last_timestamp = event.timestamp

    if not closed_by_bookend and open_category is not None:
        builder.emit(
            open_category, open_start, last_timestamp, open_name, open_code,
            is_open=True, status_name=open_status_name
        )

    cycle_set = builder.build()
    logger.info(
        f"Extracted {len(cycle_set.running)} running, {len(cycle_set.paused)} paused, "
        f"{len(cycle_set.fault)} fault cycles from {len(ordered)} events"
    )
    return cycle_set


def group_events_by_machine(events: Sequence) -> Dict[Optional[int], List[StatusEvent]]:
    """Split a mixed-machine status stream into one stream per machine serial."""
    grouped: Dict[Optional[int], List[StatusEvent]] = {}
    for event in _validate_events(events):
        grouped.setdefault(event.machine_serial, []).append(event)
    return grouped


def extract_cycles_by_machine(
    events: Sequence,
    window_start: TimestampLike,
    window_end: TimestampLike,
    registry: Optional[CategoryRegistry] = None
) -> Dict[Optional[int], CycleSet]:
    """
    Extract cycles separately for each machine in a mixed stream.

    Used for operator streams, where one operator may be logged into several
    machines and interleaved events would otherwise be read as transitions.
    """
    return {
        serial: extract_cycles(machine_events, window_start, window_end, registry)
        for serial, machine_events in group_events_by_machine(events).items()
    }


def hourly_state_breakdown(cycle_set: CycleSet, window: TimeWindow) -> pd.DataFrame:
    """
    Split cycles into one-hour buckets from the window start.

    Time in a bucket not covered by any cycle is reported as unrecorded.

    Args:
        cycle_set: Cycles extracted for the window
        window: Reporting window

    Returns:
        DataFrame with columns:
        - hour_start, hour_end: Bucket bounds (UTC timestamps)
        - running_ms, paused_ms, faulted_ms: Time in each category
        - unrecorded_ms: Time not covered by any cycle
        - total_ms: Bucket length
        - running_percent, paused_percent, faulted_percent: Share of total_ms
    """
    columns = [
        "hour_start", "hour_end", "running_ms", "paused_ms", "faulted_ms",
        "unrecorded_ms", "total_ms", "running_percent", "paused_percent", "faulted_percent",
    ]
    intervals = window.hourly_intervals()
    if not intervals:
        return pd.DataFrame(columns=columns)

    cycles = cycle_set.all()
    starts = np.array([c.start for c in cycles], dtype=np.int64)
    ends = np.array([c.end for c in cycles], dtype=np.int64)
    categories = np.array([c.category.value for c in cycles], dtype=object)

    hourly_data = []
    for interval in intervals:
        overlap = np.maximum(
            np.minimum(ends, interval.end) - np.maximum(starts, interval.start), 0
        )
        running_ms = int(overlap[categories == CycleCategory.RUNNING.value].sum())
        paused_ms = int(overlap[categories == CycleCategory.PAUSED.value].sum())
        faulted_ms = int(overlap[categories == CycleCategory.FAULTED.value].sum())
        total_ms = interval.duration_ms
        unrecorded_ms = max(0, total_ms - running_ms - paused_ms - faulted_ms)

        if total_ms > 0:
            running_pct = (running_ms / total_ms) * 100
            paused_pct = (paused_ms / total_ms) * 100
            faulted_pct = (faulted_ms / total_ms) * 100
        else:
            running_pct = paused_pct = faulted_pct = 0.0

        hourly_data.append({
            "hour_start": pd.to_datetime(interval.start, unit="ms", utc=True),
            "hour_end": pd.to_datetime(interval.end, unit="ms", utc=True),
            "running_ms": running_ms,
            "paused_ms": paused_ms,
            "faulted_ms": faulted_ms,
            "unrecorded_ms": unrecorded_ms,
            "total_ms": total_ms,
            "running_percent": running_pct,
            "paused_percent": paused_pct,
            "faulted_percent": faulted_pct,
        })

    result_df = pd.DataFrame(hourly_data, columns=columns)
    logger.debug(f"Calculated hourly state breakdown: {len(result_df)} hours")
    return result_df

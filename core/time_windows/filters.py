"""
Time Window Filtering Utilities

Functions to select count events by time window and by running session.
"""

import logging
from typing import List, Sequence

from core.models import CountEvent, Cycle
from core.time_windows.models import TimeWindow

logger = logging.getLogger(__name__)


def sort_counts(counts: Sequence[CountEvent]) -> List[CountEvent]:
    """Return counts ordered by timestamp (stable for equal timestamps)."""
    return sorted(counts, key=lambda c: c.timestamp)


def filter_counts_by_window(counts: Sequence[CountEvent], window: TimeWindow) -> List[CountEvent]:
    """
    Keep only counts whose timestamp falls within the window (inclusive).

    Args:
        counts: Count events
        window: Reporting window

    Returns:
        Filtered list, input order preserved
    """
    filtered = [c for c in counts if window.contains(c.timestamp)]
    if len(filtered) != len(counts):
        logger.debug(f"Window filter: {len(counts)} → {len(filtered)} counts")
    return filtered


def select_counts_for_sessions(
    sessions: Sequence[Cycle],
    counts: Sequence[CountEvent]
) -> List[List[CountEvent]]:
    """
    Assign counts to the sessions whose [start, end] contains them.

    Walks sessions and counts in one ascending pass, so the cost is
    O(sessions + counts) rather than one scan of the counts per session.
    A count on the boundary shared by two contiguous sessions goes to both,
    matching an inclusive per-session query.

    Args:
        sessions: Running cycles, non-overlapping
        counts: Count events

    Returns:
        One list of counts per session, in session order
    """
    ordered_sessions = sorted(enumerate(sessions), key=lambda pair: pair[1].start)
    ordered_counts = sort_counts(counts)
    selected: List[List[CountEvent]] = [[] for _ in sessions]

    i = 0
    for index, session in ordered_sessions:
        # Skip counts that fall before this session
        while i < len(ordered_counts) and ordered_counts[i].timestamp < session.start:
            i += 1

        j = i
        while j < len(ordered_counts) and ordered_counts[j].timestamp <= session.end:
            selected[index].append(ordered_counts[j])
            j += 1

        # Next session may start exactly where this one ended; leave i on the
        # first count at session.end so boundary counts are seen again
        while i < j and ordered_counts[i].timestamp < session.end:
            i += 1

    return selected

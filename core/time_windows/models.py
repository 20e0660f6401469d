"""
Time Window Models

A reporting window is a caller-supplied [start, end] range in epoch
milliseconds. Cycles and counts are clipped to it; hourly breakdowns are
bucketed relative to its start.
"""

from dataclasses import dataclass
from typing import List, Optional
import time

from utils.formatting import MILLISECONDS_IN_HOUR, TimestampLike, format_timestamp, to_millis


@dataclass(frozen=True)
class TimeWindow:
    """
    Represents a single reporting window.

    Both ends are inclusive for count selection; cycle durations are measured
    as end - start.
    """
    start: int
    end: int

    def __post_init__(self):
        """Normalize and validate the window"""
        object.__setattr__(self, "start", to_millis(self.start))
        object.__setattr__(self, "end", to_millis(self.end))
        if self.end < self.start:
            raise ValueError(
                f"Window end ({format_timestamp(self.end)}) must not be before "
                f"start ({format_timestamp(self.start)})"
            )

    @classmethod
    def from_bounds(cls, start: TimestampLike, end: TimestampLike) -> "TimeWindow":
        return cls(to_millis(start), to_millis(end))

    @property
    def duration_ms(self) -> int:
        return self.end - self.start

    @property
    def duration_hours(self) -> float:
        return self.duration_ms / MILLISECONDS_IN_HOUR

    def contains(self, timestamp: int) -> bool:
        """Check if timestamp falls within this window"""
        return self.start <= timestamp <= self.end

    def overlap_ms(self, start: int, end: int) -> int:
        """Milliseconds of [start, end] that fall inside this window."""
        return max(0, min(self.end, end) - max(self.start, start))

    def clamped_to(self, now_ms: Optional[int] = None) -> "TimeWindow":
        """
        Clamp a window that ends in the future to the current time.

        Args:
            now_ms: Current time in epoch ms (defaults to the system clock)

        Returns:
            The same window if it ends before now, otherwise a window ending at now
        """
        if now_ms is None:
            now_ms = int(time.time() * 1000)
        if self.end <= now_ms:
            return self
        return TimeWindow(self.start, max(self.start, now_ms))

    def hourly_intervals(self) -> List["TimeWindow"]:
        """
        Split the window into consecutive one-hour intervals from its start.

        The final interval is truncated at the window end.
        """
        intervals = []
        current = self.start
        while current < self.end:
            next_hour = current + MILLISECONDS_IN_HOUR
            intervals.append(TimeWindow(current, min(next_hour, self.end)))
            current = next_hour
        return intervals

    def hour_index(self, timestamp: int) -> int:
        """Whole hours elapsed between the window start and timestamp."""
        return (timestamp - self.start) // MILLISECONDS_IN_HOUR

    def __repr__(self) -> str:
        return (
            f"TimeWindow({format_timestamp(self.start)} → "
            f"{format_timestamp(self.end)}, hours={self.duration_hours:.2f})"
        )

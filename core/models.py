"""
Event and Cycle Models

Immutable records for the status-change and production-count events read from
the event store, and for the operational cycles derived from them.

All timestamps are integer epoch milliseconds.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
import pandas as pd

from utils.formatting import format_timestamp, to_millis

# Operator id used by the controller for "nobody assigned to this station"
UNASSIGNED_OPERATOR_ID = -1


class CycleCategory(str, Enum):
    """Operational category of a machine over an interval."""
    RUNNING = "running"
    PAUSED = "paused"
    FAULTED = "faulted"


@dataclass(frozen=True)
class Operator:
    id: int
    name: Optional[str] = None
    station: Optional[int] = None

    @property
    def is_assigned(self) -> bool:
        return self.id != UNASSIGNED_OPERATOR_ID

    @classmethod
    def from_record(cls, record: Optional[Dict[str, Any]]) -> Optional["Operator"]:
        if not record or record.get("id") is None:
            return None
        return cls(
            id=int(record["id"]),
            name=record.get("name"),
            station=record.get("station"),
        )


@dataclass(frozen=True)
class Item:
    id: Optional[int]
    name: str = "Unknown"
    standard: float = 0.0

    @classmethod
    def from_record(cls, record: Optional[Dict[str, Any]]) -> "Item":
        record = record or {}
        try:
            standard = float(record.get("standard") or 0)
        except (TypeError, ValueError):
            standard = 0.0
        return cls(
            id=record.get("id"),
            name=record.get("name") or "Unknown",
            standard=standard,
        )


@dataclass(frozen=True)
class StatusEvent:
    """
    A machine status change reported by the control system.

    Attributes:
        timestamp: When the status took effect (epoch ms)
        status_code: Controller status code (1 = running)
        machine_serial: Serial of the reporting machine
        operators: Operators logged in at the time, one per station
        status_name: Optional controller-supplied status label
    """
    timestamp: int
    status_code: int
    machine_serial: Optional[int] = None
    operators: Tuple[Operator, ...] = ()
    status_name: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "timestamp", to_millis(self.timestamp))
        if isinstance(self.status_code, bool) or not isinstance(self.status_code, int):
            raise TypeError(
                f"status_code must be an int, got {type(self.status_code).__name__}"
            )
        object.__setattr__(self, "operators", tuple(self.operators))

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "StatusEvent":
        """Build from an event-store document ({timestamp, status: {code, name}, machine, operators})."""
        status = record.get("status") or {}
        machine = record.get("machine") or {}
        operators = [
            op for op in (Operator.from_record(r) for r in record.get("operators") or [])
            if op is not None
        ]
        return cls(
            timestamp=record["timestamp"],
            status_code=int(status.get("code")),
            machine_serial=machine.get("serial"),
            operators=tuple(operators),
            status_name=status.get("name"),
        )


@dataclass(frozen=True)
class CountEvent:
    """
    A single production count. Misfeeds are rejected cycles, not output.
    """
    timestamp: int
    machine_serial: Optional[int]
    item: Item
    operator: Optional[Operator] = None
    misfeed: bool = False

    def __post_init__(self):
        object.__setattr__(self, "timestamp", to_millis(self.timestamp))

    @property
    def operator_id(self) -> Optional[int]:
        return self.operator.id if self.operator is not None else None

    @property
    def has_assigned_operator(self) -> bool:
        return self.operator is not None and self.operator.is_assigned

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "CountEvent":
        machine = record.get("machine") or {}
        return cls(
            timestamp=record["timestamp"],
            machine_serial=machine.get("serial", record.get("machine_serial")),
            item=Item.from_record(record.get("item")),
            operator=Operator.from_record(record.get("operator")),
            misfeed=bool(record.get("misfeed", False)),
        )


@dataclass(frozen=True)
class Cycle:
    """
    A maximal interval during which a machine stayed in one category.

    `is_open` marks the final cycle of a stream with no event after the window,
    whose true end is unknown and was closed at the last event seen.
    `status_name` is the controller or registry label of the status that opened
    the cycle, when one is known.
    """
    category: CycleCategory
    start: int
    end: int
    fault_name: Optional[str] = None
    status_code: Optional[int] = None
    is_open: bool = False
    status_name: Optional[str] = None

    def __post_init__(self):
        if self.end < self.start:
            raise ValueError(f"Cycle end ({self.end}) must not be before start ({self.start})")

    @property
    def duration_ms(self) -> int:
        return self.end - self.start

    @property
    def label(self) -> Optional[str]:
        """Name used to group non-running time: the fault name, else the status name."""
        return self.fault_name or self.status_name

    def overlap_ms(self, start: int, end: int) -> int:
        """Milliseconds of this cycle that fall inside [start, end]."""
        return max(0, min(self.end, end) - max(self.start, start))

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "category": self.category.value,
            "start": format_timestamp(self.start),
            "end": format_timestamp(self.end),
            "durationMs": self.duration_ms,
        }
        if self.category is CycleCategory.FAULTED:
            result["faultName"] = self.fault_name
            result["faultCode"] = self.status_code
        elif self.category is CycleCategory.PAUSED:
            result["statusName"] = self.status_name
            result["statusCode"] = self.status_code
        if self.is_open:
            result["open"] = True
        return result


@dataclass(frozen=True)
class CycleSet:
    """Cycles of one machine (or operator) over one window, split by category."""
    running: List[Cycle] = field(default_factory=list)
    paused: List[Cycle] = field(default_factory=list)
    fault: List[Cycle] = field(default_factory=list)

    def for_category(self, category: CycleCategory) -> List[Cycle]:
        return {
            CycleCategory.RUNNING: self.running,
            CycleCategory.PAUSED: self.paused,
            CycleCategory.FAULTED: self.fault,
        }[category]

    def all(self) -> List[Cycle]:
        """Every cycle, ordered by start."""
        return sorted(self.running + self.paused + self.fault, key=lambda c: c.start)

    def total_ms(self, category: CycleCategory) -> int:
        return sum(c.duration_ms for c in self.for_category(category))

    def is_empty(self) -> bool:
        return not (self.running or self.paused or self.fault)

    def to_dataframe(self) -> pd.DataFrame:
        columns = [
            "category", "fault_name", "status_name", "status_code", "start", "end", "duration_ms", "is_open",
        ]
        rows = [
            {
                "category": c.category.value,
                "fault_name": c.fault_name,
                "status_name": c.status_name,
                "status_code": c.status_code,
                "start": pd.to_datetime(c.start, unit="ms", utc=True),
                "end": pd.to_datetime(c.end, unit="ms", utc=True),
                "duration_ms": c.duration_ms,
                "is_open": c.is_open,
            }
            for c in self.all()
        ]
        return pd.DataFrame(rows, columns=columns)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "running": [c.to_dict() for c in self.running],
            "paused": [c.to_dict() for c in self.paused],
            "fault": [c.to_dict() for c in self.fault],
        }

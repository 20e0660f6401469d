"""
Count Aggregation

Partitions production counts into valid output and misfeeds, and groups them
by operator, machine and item.
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Hashable, List, Optional, Tuple

from core.models import CountEvent, UNASSIGNED_OPERATOR_ID
from utils.formatting import MILLISECONDS_IN_HOUR

logger = logging.getLogger(__name__)


def ensure_counts(counts) -> List[CountEvent]:
    """Return counts as a list, treating None as empty."""
    if counts is None:
        return []
    if isinstance(counts, (str, bytes)) or not isinstance(counts, Sequence):
        raise TypeError(f"counts must be a sequence of CountEvent, got {type(counts).__name__}")
    for count in counts:
        if not isinstance(count, CountEvent):
            raise TypeError(f"counts must contain CountEvent instances, got {type(count).__name__}")
    return list(counts)


@dataclass(frozen=True)
class CountPartition:
    """Valid output and misfeeds split out of one count list."""
    valid: List[CountEvent] = field(default_factory=list)
    misfeed: List[CountEvent] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.valid) + len(self.misfeed)


def partition_counts(counts: Sequence) -> CountPartition:
    """
    Split counts into valid output and misfeeds.

    Every misfeed lands in `misfeed`. Non-misfeed counts land in `valid` only
    when they carry an assigned operator; unassigned counts are in neither.

    Args:
        counts: CountEvent sequence (None counts as empty)

    Returns:
        CountPartition preserving input order
    """
    counts = ensure_counts(counts)
    valid = []
    misfeed = []
    unassigned = 0
    for count in counts:
        if count.misfeed:
            misfeed.append(count)
        elif count.has_assigned_operator:
            valid.append(count)
        else:
            unassigned += 1

    if unassigned:
        logger.debug(f"Excluded {unassigned} counts without an assigned operator")
    return CountPartition(valid=valid, misfeed=misfeed)


def operator_machine_key(count: CountEvent) -> Tuple[Optional[int], Optional[int]]:
    return (count.operator_id, count.machine_serial)


def item_key(count: CountEvent) -> Tuple[Optional[int], str]:
    # id and name together, since item ids are not unique across catalogs
    return (count.item.id, count.item.name)


def operator_key(count: CountEvent) -> Optional[int]:
    return count.operator_id


def group_by_key(
    counts: Sequence,
    key_fn: Callable[[CountEvent], Hashable]
) -> Dict[Hashable, List[CountEvent]]:
    """
    Group counts by key, preserving input order within each group.

    Every count lands in exactly one group, including counts whose key is None.

    Example:
        >>> groups = group_by_key(counts, item_key)
        >>> sum(len(g) for g in groups.values()) == len(counts)
        True
    """
    grouped: Dict[Hashable, List[CountEvent]] = {}
    for count in ensure_counts(counts):
        grouped.setdefault(key_fn(count), []).append(count)
    return grouped


@dataclass(frozen=True)
class ItemTally:
    id: Optional[int]
    name: str
    standard: float
    count: int

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "standard": self.standard, "count": self.count}


@dataclass(frozen=True)
class OperatorTally:
    id: int
    name: Optional[str]
    count: int

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "count": self.count}


@dataclass(frozen=True)
class CountStatistics:
    total: int
    valid: int
    misfeeds: int
    pph: float
    items: List[ItemTally] = field(default_factory=list)
    operators: List[OperatorTally] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "valid": self.valid,
            "misfeeds": self.misfeeds,
            "pph": self.pph,
            "items": [i.to_dict() for i in self.items],
            "operators": [o.to_dict() for o in self.operators],
        }


def count_statistics(counts: Sequence, runtime_ms: int = 0) -> CountStatistics:
    """
    Tally counts overall, per item and per operator.

    Args:
        counts: CountEvent sequence (None counts as empty)
        runtime_ms: Running time the counts were produced in; pph is 0 without it

    Returns:
        CountStatistics with item and operator tallies in first-seen order
    """
    counts = ensure_counts(counts)
    partition = partition_counts(counts)

    items: Dict[Tuple, Dict[str, Any]] = {}
    operators: Dict[int, Dict[str, Any]] = {}
    for count in counts:
        item_entry = items.setdefault(item_key(count), {"item": count.item, "count": 0})
        item_entry["count"] += 1

        if count.operator is not None:
            op_entry = operators.setdefault(count.operator.id, {"name": count.operator.name, "count": 0})
            if not op_entry["name"] and count.operator.name:
                op_entry["name"] = count.operator.name
            op_entry["count"] += 1

    runtime_hours = runtime_ms / MILLISECONDS_IN_HOUR if runtime_ms > 0 else 0.0
    pph = len(partition.valid) / runtime_hours if runtime_hours > 0 else 0.0

    return CountStatistics(
        total=len(counts),
        valid=len(partition.valid),
        misfeeds=len(partition.misfeed),
        pph=pph,
        items=[
            ItemTally(id=e["item"].id, name=e["item"].name, standard=e["item"].standard, count=e["count"])
            for e in items.values()
        ],
        operators=[
            OperatorTally(id=op_id, name=e["name"], count=e["count"])
            for op_id, e in operators.items()
        ],
    )


def item_names(counts: Sequence) -> str:
    """Distinct item names in first-seen order, comma-joined."""
    names = dict.fromkeys(c.item.name for c in ensure_counts(counts) if c.item.name)
    return ", ".join(names)


def distinct_operator_ids(counts: Sequence) -> List[int]:
    """Assigned operator ids in first-seen order."""
    ids = dict.fromkeys(
        c.operator_id for c in ensure_counts(counts)
        if c.operator_id is not None and c.operator_id != UNASSIGNED_OPERATOR_ID
    )
    return list(ids)

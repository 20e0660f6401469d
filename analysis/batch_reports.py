"""
Batch Reports

Builds reports for many machines or operators concurrently. Each entity is
computed independently; one entity failing is logged and recorded without
aborting the rest of the batch.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from analysis.reports import (
    MachineReport,
    OperatorReport,
    build_machine_report,
    build_operator_report,
)
from core.categories import CategoryRegistry
from core.db.fetchers import EventStore
from core.time_windows.models import TimeWindow

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 4


@dataclass(frozen=True)
class EntityFailure:
    """A machine or operator whose report could not be built"""
    entity_id: int
    error_type: str
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.entity_id, "errorType": self.error_type, "message": self.message}


@dataclass(frozen=True)
class BatchReport:
    """Successful reports and failures, each in the order the ids were requested."""
    reports: List[Any] = field(default_factory=list)
    failures: List[EntityFailure] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return len(self.reports)

    @property
    def failed(self) -> int:
        return len(self.failures)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reports": [r.to_dict() for r in self.reports],
            "failures": [f.to_dict() for f in self.failures],
        }


def run_batch(
    entity_ids: Sequence[int],
    build: Callable[[int], Any],
    max_workers: int = DEFAULT_MAX_WORKERS,
    label: str = "entity"
) -> BatchReport:
    """
    Run `build` for every id on a thread pool.

    Duplicate ids are built once.

    Args:
        entity_ids: Machine serials or operator ids
        build: Builds the report for one id
        max_workers: Thread pool size
        label: Entity kind used in log messages

    Returns:
        BatchReport ordered by the requested ids
    """
    unique_ids = list(dict.fromkeys(entity_ids))
    if not unique_ids:
        return BatchReport()

    t0 = time.monotonic()
    results: Dict[int, Any] = {}
    failures: Dict[int, EntityFailure] = {}

    with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(unique_ids)))) as pool:
        futures = {pool.submit(build, entity_id): entity_id for entity_id in unique_ids}

        for fut in as_completed(futures):
            entity_id = futures[fut]
            try:
                results[entity_id] = fut.result()
            except Exception as exc:
                logger.error(f"Failed to build report for {label} {entity_id}: {exc}", exc_info=True)
                failures[entity_id] = EntityFailure(
                    entity_id=entity_id,
                    error_type=type(exc).__name__,
                    message=str(exc),
                )

    elapsed_ms = (time.monotonic() - t0) * 1000
    logger.info(
        f"Batch of {len(unique_ids)} {label} reports in {elapsed_ms:.1f}ms: "
        f"{len(results)} ok, {len(failures)} failed"
    )
    return BatchReport(
        reports=[results[i] for i in unique_ids if i in results],
        failures=[failures[i] for i in unique_ids if i in failures],
    )


def build_machine_reports(
    store: EventStore,
    machine_serials: Sequence[int],
    window: TimeWindow,
    registry: Optional[CategoryRegistry] = None,
    now_ms: Optional[int] = None,
    max_workers: int = DEFAULT_MAX_WORKERS
) -> BatchReport:
    """
    Build a MachineReport for every serial.

    Example:
        >>> batch = build_machine_reports(store, [67408, 67409], window)
        >>> [r.machine_serial for r in batch.reports], batch.failures
    """
    def build(serial: int) -> MachineReport:
        return build_machine_report(store, serial, window, registry, now_ms)

    return run_batch(machine_serials, build, max_workers, label="machine")


def build_operator_reports(
    store: EventStore,
    operator_ids: Sequence[int],
    window: TimeWindow,
    registry: Optional[CategoryRegistry] = None,
    now_ms: Optional[int] = None,
    max_workers: int = DEFAULT_MAX_WORKERS
) -> BatchReport:
    """Build an OperatorReport for every operator id."""
    def build(operator_id: int) -> OperatorReport:
        return build_operator_report(store, operator_id, window, registry, now_ms)

    return run_batch(operator_ids, build, max_workers, label="operator")


def build_active_machine_reports(
    store: EventStore,
    window: TimeWindow,
    registry: Optional[CategoryRegistry] = None,
    now_ms: Optional[int] = None,
    max_workers: int = DEFAULT_MAX_WORKERS
) -> BatchReport:
    """
    Build reports for every machine that reported a status in the window.

    A failure to list the active machines is raised; per-machine failures
    are recorded in the batch as usual.
    """
    clamped = window.clamped_to(now_ms)
    serials = store.get_active_machine_serials(clamped.start, clamped.end)
    logger.info(f"Found {len(serials)} active machines")
    return build_machine_reports(store, serials, window, registry, now_ms, max_workers)


def build_active_operator_reports(
    store: EventStore,
    window: TimeWindow,
    registry: Optional[CategoryRegistry] = None,
    now_ms: Optional[int] = None,
    max_workers: int = DEFAULT_MAX_WORKERS
) -> BatchReport:
    """Build reports for every operator logged into a machine during the window."""
    clamped = window.clamped_to(now_ms)
    operator_ids = store.get_active_operator_ids(clamped.start, clamped.end)
    logger.info(f"Found {len(operator_ids)} active operators")
    return build_operator_reports(store, operator_ids, window, registry, now_ms, max_workers)

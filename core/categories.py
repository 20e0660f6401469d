"""
Status Category Registry

Maps controller status codes to a cycle category (running, paused, faulted)
and, for faults, a human-readable fault name.

The registry is an immutable lookup table injected into the cycle extractor,
so deployments and tests can swap it without touching extraction logic.
"""

import json
import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

from core.models import CycleCategory

logger = logging.getLogger(__name__)

RUNNING_CODE = 1
GENERIC_FAULT_NAME = "Fault"


@dataclass(frozen=True)
class CategoryEntry:
    category: CycleCategory
    name: Optional[str] = None


class CategoryRegistry:
    """
    Read-only status code lookup.

    Code 1 is always Running. Codes absent from the table fall back to
    `default_category` (Paused unless configured otherwise).
    """

    def __init__(
        self,
        entries: Mapping[int, CategoryEntry],
        default_category: CycleCategory = CycleCategory.PAUSED
    ):
        self._entries = MappingProxyType(dict(entries))
        self._default_category = CycleCategory(default_category)

    @property
    def default_category(self) -> CycleCategory:
        return self._default_category

    def __contains__(self, code: int) -> bool:
        return code in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def classify(self, code: int) -> Tuple[CycleCategory, Optional[str]]:
        """
        Classify a status code.

        Args:
            code: Controller status code

        Returns:
            Tuple of (category, fault_name). fault_name is None unless the
            category is FAULTED, in which case it is never empty.
        """
        if code == RUNNING_CODE:
            return CycleCategory.RUNNING, None

        entry = self._entries.get(code)
        category = entry.category if entry is not None else self._default_category

        if category is CycleCategory.FAULTED:
            name = entry.name.strip() if entry is not None and entry.name else ""
            return category, name or GENERIC_FAULT_NAME

        return category, None

    def status_name(self, code: int) -> Optional[str]:
        """Registry label for a status code, or None when the table has no name for it."""
        entry = self._entries.get(code)
        if entry is None or not entry.name:
            return None
        return entry.name.strip() or None

    def with_default(self, default_category: CycleCategory) -> "CategoryRegistry":
        """Return a copy of this registry with a different default category."""
        return CategoryRegistry(self._entries, default_category)

    @classmethod
    def from_records(
        cls,
        records: Iterable[Dict[str, Any]],
        default_category: CycleCategory = CycleCategory.PAUSED
    ) -> "CategoryRegistry":
        """
        Build a registry from {"code", "name", "category"} records.

        Records without a category are faults, matching the controller's fault table.

        Raises:
            ValueError: If a record has no code or an unknown category
        """
        entries = {}
        for record in records:
            if record.get("code") is None:
                raise ValueError(f"Category record without a code: {record}")
            raw_category = record.get("category", CycleCategory.FAULTED.value)
            try:
                category = CycleCategory(str(raw_category).lower())
            except ValueError:
                raise ValueError(
                    f"Unknown category '{raw_category}' for status code {record['code']}. "
                    f"Valid options: {[c.value for c in CycleCategory]}"
                )
            code = int(record["code"])
            if code in entries:
                logger.warning(f"Duplicate category record for status code {code}, keeping the last one")
            entries[code] = CategoryEntry(category, record.get("name"))
        return cls(entries, default_category)

    @classmethod
    def from_json(
        cls,
        path: str,
        default_category: CycleCategory = CycleCategory.PAUSED
    ) -> "CategoryRegistry":
        """Load a registry from a JSON file holding a list of category records."""
        with open(path, "r", encoding="utf-8") as f:
            records = json.load(f)
        if not isinstance(records, list):
            raise ValueError(f"Expected a list of category records in {path}")
        registry = cls.from_records(records, default_category)
        logger.info(f"Loaded {len(registry)} status categories from {path}")
        return registry

    def __repr__(self) -> str:
        return (
            f"CategoryRegistry(codes={len(self._entries)}, "
            f"default={self._default_category.value})"
        )


# Controller fault table. Code 0 is the controller's idle timeout.
DEFAULT_STATUS_RECORDS = [
    {"code": 0, "name": "Timeout", "category": "paused"},
    {"code": 3, "name": "Estop/Door"},
    {"code": 5, "name": "Estop/Door"},
    {"code": 6, "name": "Estop/Door"},
    {"code": 7, "name": "Estop/Door"},
    {"code": 8, "name": "Estop/Door"},
    {"code": 9, "name": "Estop/Door"},
    {"code": 10, "name": "Estop/Door"},
    {"code": 11, "name": "Estop/Door"},
    {"code": 12, "name": "Estop/Door"},
    {"code": 13, "name": "Estop/Door"},
    {"code": 14, "name": "Estop/Door"},
    {"code": 15, "name": "Estop/Door"},
    {"code": 16, "name": "Estop/Door"},
    {"code": 17, "name": "Fault"},
    {"code": 18, "name": "Fault"},
    {"code": 19, "name": "Lo Air Pressure"},
    {"code": 20, "name": "Fault"},
    {"code": 21, "name": "Fault"},
    {"code": 22, "name": "Fault"},
    {"code": 23, "name": "Fault"},
    {"code": 24, "name": "Fault"},
    {"code": 25, "name": "Lo Air Pressure"},
    {"code": 26, "name": "Fault"},
    {"code": 27, "name": "Fault"},
    {"code": 28, "name": "Fault"},
    {"code": 29, "name": "Fault"},
    {"code": 112, "name": "Feeder Estop"},
    {"code": 113, "name": "Feeder Estop"},
    {"code": 114, "name": "Feeder Estop"},
    {"code": 122, "name": "Feeder Estop Reset"},
    {"code": 124, "name": "Feeder Estop/Reset"},
    {"code": 125, "name": "Inverter Fault Feeder"},
    {"code": 130, "name": "Inverter Fault Ironer"},
    {"code": 134, "name": "Feeder Rollmotor Fault Left"},
    {"code": 135, "name": "Feeder Left Inlet Sensor"},
    {"code": 136, "name": "Feeder Left Inlet Left Array"},
    {"code": 137, "name": "Feeder Left Inlet Right Array"},
    {"code": 138, "name": "Feeder Left Inlet Left RollSensor"},
    {"code": 139, "name": "Feeder Left Inlet Right RollSensor"},
    {"code": 144, "name": "Feeder Rollmotor Fault Right"},
    {"code": 145, "name": "Feeder Right Inlet Sensor"},
    {"code": 146, "name": "Feeder Right Inlet Left Array"},
    {"code": 147, "name": "Feeder Right Inlet Right Array"},
    {"code": 148, "name": "Feeder Right Inlet Left RollSensor"},
    {"code": 149, "name": "Feeder Right Inlet Right RollSensor"},
    {"code": 151, "name": "Feeder Transverse Left Drive"},
    {"code": 155, "name": "Feeder Left Transverse Sensor Fault"},
    {"code": 161, "name": "Feeder Transverse Right Drive"},
    {"code": 165, "name": "Feeder Right Transverse Sensor Fault"},
    {"code": 171, "name": "Feeder Servo Fault"},
    {"code": 175, "name": "Feeder Spreader Home Failure"},
    {"code": 184, "name": "Feeder Rollmotor Fault Center"},
    {"code": 185, "name": "Feeder Center Inlet Sensor"},
    {"code": 186, "name": "Feeder Center Inlet Left Array"},
    {"code": 187, "name": "Feeder Center Inlet Right Array"},
    {"code": 188, "name": "Feeder Center Inlet Left RollSensor"},
    {"code": 189, "name": "Feeder Center Inlet Right RollSensor"},
]


def default_registry(default_category: CycleCategory = CycleCategory.PAUSED) -> CategoryRegistry:
    """Registry built from the controller's standard fault table."""
    return CategoryRegistry.from_records(DEFAULT_STATUS_RECORDS, default_category)


def load_registry(app_config: Dict[str, Any]) -> CategoryRegistry:
    """
    Build the registry described by application configuration.

    Uses `category_registry_path` when set, otherwise the built-in table.
    """
    default_category = CycleCategory(app_config.get("default_status_category", "paused"))
    path = app_config.get("category_registry_path")
    if path:
        return CategoryRegistry.from_json(path, default_category)
    return default_registry(default_category)

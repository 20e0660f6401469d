"""
Secure Query Builder Module

Builds parameterized queries for the status and count event tables. Entity
ids and timestamps are validated before being bound as parameters; only
fixed column and table names are ever interpolated into SQL text.
"""

import json
import logging
from typing import List, Optional, Tuple, Any

from core.models import UNASSIGNED_OPERATOR_ID
from utils.formatting import format_timestamp

logger = logging.getLogger(__name__)

STATUS_COLUMNS = ["ts", "machine_serial", "status_code", "status_name", "operators"]
COUNT_COLUMNS = [
    "ts", "machine_serial", "operator_id", "operator_name",
    "item_id", "item_name", "item_standard", "misfeed",
]

_STATUS_SELECT = "SELECT ts, machine_serial, status_code, status_name, operators FROM status_events"


class EventQueryBuilder:
    """Secure query builder with parameterized queries and input validation."""

    @staticmethod
    def validate_entity_id(entity_id: Any) -> bool:
        """
        Validate a machine serial or operator id.

        Returns:
            bool: True if entity_id is a non-negative integer
        """
        return isinstance(entity_id, int) and not isinstance(entity_id, bool) and entity_id >= 0

    @staticmethod
    def validate_window(start_ms: Any, end_ms: Any) -> bool:
        if not all(isinstance(v, int) and not isinstance(v, bool) for v in (start_ms, end_ms)):
            return False
        return end_ms >= start_ms

    def _check(self, entity_id: Any, label: str, start_ms: int, end_ms: int):
        if not self.validate_entity_id(entity_id):
            raise ValueError(f"Invalid {label}: {entity_id!r}")
        if not self.validate_window(start_ms, end_ms):
            raise ValueError(f"Invalid time window: {start_ms!r} to {end_ms!r}")

    def _bookended_query(
        self,
        filter_clause: str,
        filter_param: Any,
        start_ms: int,
        end_ms: int,
        include_bookends: bool
    ) -> Tuple[str, List[Any]]:
        start_iso = format_timestamp(start_ms)
        end_iso = format_timestamp(end_ms)

        if not include_bookends:
            query = f"""
                {_STATUS_SELECT}
                WHERE {filter_clause}
                  AND ts >= %s::timestamptz
                  AND ts <= %s::timestamptz
                ORDER BY ts ASC;
            """
            return query, [filter_param, start_iso, end_iso]

        query = f"""
            WITH before_window AS (
                -- Last status strictly before the window
                {_STATUS_SELECT}
                WHERE {filter_clause}
                  AND ts < %s::timestamptz
                ORDER BY ts DESC
                LIMIT 1
            ),
            in_window AS (
                {_STATUS_SELECT}
                WHERE {filter_clause}
                  AND ts >= %s::timestamptz
                  AND ts <= %s::timestamptz
            ),
            after_window AS (
                -- First status strictly after the window
                {_STATUS_SELECT}
                WHERE {filter_clause}
                  AND ts > %s::timestamptz
                ORDER BY ts ASC
                LIMIT 1
            )
            SELECT * FROM before_window
            UNION ALL
            SELECT * FROM in_window
            UNION ALL
            SELECT * FROM after_window
            ORDER BY ts ASC;
        """
        parameters = [
            filter_param, start_iso,            # before_window
            filter_param, start_iso, end_iso,   # in_window
            filter_param, end_iso,              # after_window
        ]
        return query, parameters

    def build_status_query(
        self,
        machine_serial: int,
        start_ms: int,
        end_ms: int,
        include_bookends: bool = True
    ) -> Tuple[str, List[Any]]:
        """
        Build the status-event query for one machine.

        Args:
            machine_serial: Machine serial number
            start_ms: Window start (epoch ms)
            end_ms: Window end (epoch ms)
            include_bookends: Also select the last event before and first event after the window

        Returns:
            Tuple[str, List[Any]]: (query_string, parameters)

        Raises:
            ValueError: If the serial or window is invalid
        """
        self._check(machine_serial, "machine serial", start_ms, end_ms)
        query, parameters = self._bookended_query(
            "machine_serial = %s", machine_serial, start_ms, end_ms, include_bookends
        )
        logger.debug(f"Built status query for machine {machine_serial} (bookends={include_bookends})")
        return query, parameters

    def build_operator_status_query(
        self,
        operator_id: int,
        start_ms: int,
        end_ms: int,
        include_bookends: bool = True
    ) -> Tuple[str, List[Any]]:
        """
        Build the status-event query for every machine an operator was logged into.

        Matches events whose operators array contains the operator id.
        """
        self._check(operator_id, "operator id", start_ms, end_ms)
        containment = json.dumps([{"id": operator_id}])
        query, parameters = self._bookended_query(
            "operators @> %s::jsonb", containment, start_ms, end_ms, include_bookends
        )
        logger.debug(f"Built status query for operator {operator_id} (bookends={include_bookends})")
        return query, parameters

    def build_count_query(
        self,
        start_ms: int,
        end_ms: int,
        machine_serial: Optional[int] = None,
        operator_id: Optional[int] = None
    ) -> Tuple[str, List[Any]]:
        """
        Build the count-event query for a window, optionally per machine and/or operator.

        Returns:
            Tuple[str, List[Any]]: (query_string, parameters)
        """
        if not self.validate_window(start_ms, end_ms):
            raise ValueError(f"Invalid time window: {start_ms!r} to {end_ms!r}")

        conditions = ["ts >= %s::timestamptz", "ts <= %s::timestamptz"]
        parameters: List[Any] = [format_timestamp(start_ms), format_timestamp(end_ms)]

        if machine_serial is not None:
            if not self.validate_entity_id(machine_serial):
                raise ValueError(f"Invalid machine serial: {machine_serial!r}")
            conditions.append("machine_serial = %s")
            parameters.append(machine_serial)

        if operator_id is not None:
            if not self.validate_entity_id(operator_id):
                raise ValueError(f"Invalid operator id: {operator_id!r}")
            conditions.append("operator_id = %s")
            parameters.append(operator_id)

        query = f"""
            SELECT {', '.join(COUNT_COLUMNS)}
            FROM count_events
            WHERE {' AND '.join(conditions)}
            ORDER BY ts ASC;
        """
        logger.debug(f"Built count query with {len(conditions)} conditions")
        return query, parameters

    def build_active_machines_query(self, start_ms: int, end_ms: int) -> Tuple[str, List[Any]]:
        """
        Build the query for serials of machines that reported a status in the window.

        Returns:
            Tuple[str, List[Any]]: (query_string, parameters)
        """
        if not self.validate_window(start_ms, end_ms):
            raise ValueError(f"Invalid time window: {start_ms!r} to {end_ms!r}")

        query = """
            SELECT DISTINCT machine_serial
            FROM status_events
            WHERE machine_serial IS NOT NULL
              AND ts >= %s::timestamptz
              AND ts <= %s::timestamptz
            ORDER BY machine_serial ASC;
        """
        return query, [format_timestamp(start_ms), format_timestamp(end_ms)]

    def build_active_operators_query(self, start_ms: int, end_ms: int) -> Tuple[str, List[Any]]:
        """
        Build the query for ids of operators logged into any machine in the window.

        The unassigned-station placeholder id is excluded.
        """
        if not self.validate_window(start_ms, end_ms):
            raise ValueError(f"Invalid time window: {start_ms!r} to {end_ms!r}")

        query = """
            SELECT DISTINCT (op->>'id')::int AS operator_id
            FROM status_events,
                 jsonb_array_elements(
                     CASE WHEN jsonb_typeof(operators) = 'array' THEN operators ELSE '[]'::jsonb END
                 ) AS op
            WHERE ts >= %s::timestamptz
              AND ts <= %s::timestamptz
              AND op->>'id' IS NOT NULL
              AND (op->>'id')::int <> %s
            ORDER BY operator_id ASC;
        """
        return query, [format_timestamp(start_ms), format_timestamp(end_ms), UNASSIGNED_OPERATOR_ID]


# Global instance for convenience
event_query_builder = EventQueryBuilder()

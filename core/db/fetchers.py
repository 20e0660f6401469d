"""
Data Fetching Module

Reads machine status events and production count events from the PostgreSQL
event store and converts them into engine events.

Event-store failures are logged and re-raised unchanged; retrying is left to
the caller.
"""

import logging
import json
from typing import List, Optional, Protocol

import pandas as pd
import psycopg2

from core.db.pool import DatabasePool, get_pool
from core.db.queries import COUNT_COLUMNS, STATUS_COLUMNS, EventQueryBuilder, event_query_builder
from core.models import CountEvent, Item, Operator, StatusEvent

logger = logging.getLogger(__name__)


class EventStore(Protocol):
    """Source of status and count events, ascending by timestamp."""

    def get_status_events(
        self,
        machine_serial: int,
        start_ms: int,
        end_ms: int,
        include_bookends: bool = True
    ) -> List[StatusEvent]:
        ...

    def get_operator_status_events(
        self,
        operator_id: int,
        start_ms: int,
        end_ms: int,
        include_bookends: bool = True
    ) -> List[StatusEvent]:
        ...

    def get_count_events(
        self,
        start_ms: int,
        end_ms: int,
        machine_serial: Optional[int] = None,
        operator_id: Optional[int] = None
    ) -> List[CountEvent]:
        ...

    def get_active_machine_serials(self, start_ms: int, end_ms: int) -> List[int]:
        ...

    def get_active_operator_ids(self, start_ms: int, end_ms: int) -> List[int]:
        ...


def _optional_int(value) -> Optional[int]:
    if value is None or pd.isna(value):
        return None
    return int(value)


def _optional_str(value) -> Optional[str]:
    if value is None or pd.isna(value):
        return None
    return str(value)


def _flag(value) -> bool:
    if value is None or pd.isna(value):
        return False
    return bool(value)


def _decode_operators(value) -> list:
    if value is None:
        return []
    if isinstance(value, str):
        value = json.loads(value)
    return value if isinstance(value, list) else []


def status_events_from_dataframe(df: pd.DataFrame) -> List[StatusEvent]:
    """
    Convert status rows into StatusEvent records.

    Rows without a status code are skipped with a warning.
    """
    events = []
    skipped = 0
    for row in df.itertuples(index=False):
        if row.status_code is None or pd.isna(row.status_code):
            skipped += 1
            continue
        operators = [
            op for op in (Operator.from_record(r) for r in _decode_operators(row.operators))
            if op is not None
        ]
        events.append(StatusEvent(
            timestamp=row.ts,
            status_code=int(row.status_code),
            machine_serial=_optional_int(row.machine_serial),
            operators=tuple(operators),
            status_name=_optional_str(row.status_name),
        ))

    if skipped:
        logger.warning(f"Skipped {skipped} status rows without a status code")
    return events


def count_events_from_dataframe(df: pd.DataFrame) -> List[CountEvent]:
    """Convert count rows into CountEvent records."""
    events = []
    for row in df.itertuples(index=False):
        operator_id = _optional_int(row.operator_id)
        standard = row.item_standard
        events.append(CountEvent(
            timestamp=row.ts,
            machine_serial=_optional_int(row.machine_serial),
            item=Item(
                id=_optional_int(row.item_id),
                name=_optional_str(row.item_name) or "Unknown",
                standard=float(standard) if standard is not None and not pd.isna(standard) else 0.0,
            ),
            operator=Operator(id=operator_id, name=_optional_str(row.operator_name)) if operator_id is not None else None,
            misfeed=_flag(row.misfeed),
        ))
    return events


class PostgresEventStore:
    """
    EventStore backed by the status_events and count_events tables.

    Example:
        >>> store = PostgresEventStore()
        >>> events = store.get_status_events(67408, start_ms, end_ms)
    """

    def __init__(
        self,
        db_pool: Optional[DatabasePool] = None,
        query_builder: Optional[EventQueryBuilder] = None
    ):
        self._pool = db_pool
        self.query_builder = query_builder or event_query_builder

    @property
    def pool(self) -> DatabasePool:
        if self._pool is None:
            self._pool = get_pool()
        return self._pool

    def _fetch_dataframe(self, query: str, parameters: list, columns: List[str], label: str) -> pd.DataFrame:
        try:
            with self.pool.get_connection() as conn:
                cursor = conn.cursor()
                cursor.execute(query, parameters)
                results = cursor.fetchall()
                cursor.close()
        except psycopg2.Error as e:
            logger.error(f"Error fetching {label}: {e}")
            raise

        logger.info(f"Fetched {len(results)} {label}")
        return pd.DataFrame(results, columns=columns)

    def get_status_events(
        self,
        machine_serial: int,
        start_ms: int,
        end_ms: int,
        include_bookends: bool = True
    ) -> List[StatusEvent]:
        """
        Fetch status events for one machine, ascending by timestamp.

        Args:
            machine_serial: Machine serial number
            start_ms: Window start (epoch ms)
            end_ms: Window end (epoch ms)
            include_bookends: Include the last event before and first event after the window

        Returns:
            List of StatusEvent

        Raises:
            ValueError: If the serial or window is invalid
            psycopg2.Error: If the query fails
        """
        query, parameters = self.query_builder.build_status_query(
            machine_serial, start_ms, end_ms, include_bookends
        )
        df = self._fetch_dataframe(query, parameters, STATUS_COLUMNS, f"status events for machine {machine_serial}")
        return status_events_from_dataframe(df)

    def get_operator_status_events(
        self,
        operator_id: int,
        start_ms: int,
        end_ms: int,
        include_bookends: bool = True
    ) -> List[StatusEvent]:
        """Fetch status events of every machine the operator was logged into."""
        query, parameters = self.query_builder.build_operator_status_query(
            operator_id, start_ms, end_ms, include_bookends
        )
        df = self._fetch_dataframe(query, parameters, STATUS_COLUMNS, f"status events for operator {operator_id}")
        return status_events_from_dataframe(df)

    def get_count_events(
        self,
        start_ms: int,
        end_ms: int,
        machine_serial: Optional[int] = None,
        operator_id: Optional[int] = None
    ) -> List[CountEvent]:
        """
        Fetch count events in the window, ascending by timestamp.

        Args:
            start_ms: Window start (epoch ms)
            end_ms: Window end (epoch ms)
            machine_serial: Restrict to one machine
            operator_id: Restrict to one operator

        Returns:
            List of CountEvent
        """
        query, parameters = self.query_builder.build_count_query(
            start_ms, end_ms, machine_serial=machine_serial, operator_id=operator_id
        )
        df = self._fetch_dataframe(query, parameters, COUNT_COLUMNS, "count events")
        return count_events_from_dataframe(df)

    def _fetch_ids(self, query: str, parameters: list, column: str, label: str) -> List[int]:
        df = self._fetch_dataframe(query, parameters, [column], label)
        return [int(v) for v in df[column] if v is not None and not pd.isna(v)]

    def get_active_machine_serials(self, start_ms: int, end_ms: int) -> List[int]:
        """
        Serials of machines that reported at least one status in the window, ascending.

        Raises:
            ValueError: If the window is invalid
            psycopg2.Error: If the query fails
        """
        query, parameters = self.query_builder.build_active_machines_query(start_ms, end_ms)
        return self._fetch_ids(query, parameters, "machine_serial", "active machine serials")

    def get_active_operator_ids(self, start_ms: int, end_ms: int) -> List[int]:
        """Ids of operators logged into any machine in the window, ascending, without the unassigned id."""
        query, parameters = self.query_builder.build_active_operators_query(start_ms, end_ms)
        return self._fetch_ids(query, parameters, "operator_id", "active operator ids")

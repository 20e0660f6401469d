"""
Tests for the PostgreSQL event store adapter, using mocked connections.
"""

import json
from datetime import datetime
from unittest.mock import MagicMock, patch

import numpy as np
import pandas as pd
import psycopg2
import pytest
import pytz
from psycopg2 import pool as pg_pool

from core.db.fetchers import (
    PostgresEventStore,
    count_events_from_dataframe,
    status_events_from_dataframe,
)
from core.db.pool import DatabasePool
from core.db.queries import COUNT_COLUMNS, STATUS_COLUMNS, EventQueryBuilder
from utils.formatting import format_timestamp

from conftest import HOUR, MACHINE

DB_CONFIG = {"host": "localhost", "port": "5432", "database": "events", "user": "reader", "password": "secret"}
T0 = datetime(2024, 1, 1, tzinfo=pytz.UTC)
T0_MS = 1704067200000


def _mock_pool(rows=None, error=None):
    cursor = MagicMock()
    cursor.fetchall.return_value = rows or []
    if error is not None:
        cursor.execute.side_effect = error
    conn = MagicMock()
    conn.cursor.return_value = cursor
    db_pool = MagicMock()
    db_pool.get_connection.return_value.__enter__.return_value = conn
    return db_pool, cursor


# =====================================================================
# Query builder
# =====================================================================

class TestQueryBuilder:

    def setup_method(self):
        self.builder = EventQueryBuilder()

    def test_bookended_status_query(self):
        query, params = self.builder.build_status_query(MACHINE, 0, HOUR)
        start, end = format_timestamp(0), format_timestamp(HOUR)

        assert params == [MACHINE, start, MACHINE, start, end, MACHINE, end]
        assert "before_window" in query and "after_window" in query

    def test_status_query_without_bookends(self):
        query, params = self.builder.build_status_query(MACHINE, 0, HOUR, include_bookends=False)

        assert params == [MACHINE, format_timestamp(0), format_timestamp(HOUR)]
        assert "UNION" not in query

    def test_operator_status_query_uses_containment(self):
        query, params = self.builder.build_operator_status_query(7, 0, HOUR)

        assert "operators @> %s::jsonb" in query
        assert json.loads(params[0]) == [{"id": 7}]

    def test_count_query_filters(self):
        query, params = self.builder.build_count_query(0, HOUR, machine_serial=MACHINE, operator_id=7)

        assert "machine_serial = %s" in query and "operator_id = %s" in query
        assert params[2:] == [MACHINE, 7]

    @pytest.mark.parametrize("entity_id", [-1, True, "67408", None])
    def test_invalid_entity_id(self, entity_id):
        with pytest.raises(ValueError):
            self.builder.build_status_query(entity_id, 0, HOUR)

    def test_invalid_window(self):
        with pytest.raises(ValueError):
            self.builder.build_count_query(HOUR, 0)

    def test_active_machines_query(self):
        query, params = self.builder.build_active_machines_query(0, HOUR)

        assert "SELECT DISTINCT machine_serial" in query
        assert params == [format_timestamp(0), format_timestamp(HOUR)]

    def test_active_operators_query_excludes_unassigned(self):
        query, params = self.builder.build_active_operators_query(0, HOUR)

        assert "jsonb_array_elements" in query
        assert params == [format_timestamp(0), format_timestamp(HOUR), -1]

    @pytest.mark.parametrize("build", ["build_active_machines_query", "build_active_operators_query"])
    def test_active_queries_reject_invalid_window(self, build):
        with pytest.raises(ValueError):
            getattr(self.builder, build)(HOUR, 0)


# =====================================================================
# Row conversion
# =====================================================================

class TestRowConversion:

    def test_status_rows(self):
        df = pd.DataFrame([
            (T0, MACHINE, 1, "Running", json.dumps([{"id": 7, "name": "Alice", "station": 1}])),
            (T0, MACHINE, None, None, None),
            (T0, MACHINE, 5, None, [{"id": -1}]),
        ], columns=STATUS_COLUMNS)

        events = status_events_from_dataframe(df)

        assert len(events) == 2
        assert events[0].timestamp == T0_MS
        assert events[0].operators[0].name == "Alice"
        assert events[1].status_code == 5
        assert events[1].operators[0].id == -1

    def test_count_rows(self):
        df = pd.DataFrame([
            (T0, MACHINE, 7, "Alice", 1, "Towel", 720.0, False),
            (T0, MACHINE, None, None, 2, None, None, True),
        ], columns=COUNT_COLUMNS)

        events = count_events_from_dataframe(df)

        assert events[0].operator_id == 7
        assert events[0].item.standard == 720.0
        assert events[1].operator is None
        assert events[1].item.name == "Unknown"
        assert events[1].misfeed is True

    def test_missing_text_values_are_none(self):
        status_df = pd.DataFrame(
            [(T0, MACHINE, 5, np.nan, None)], columns=STATUS_COLUMNS
        ).astype({"status_name": "string"})
        count_df = pd.DataFrame(
            [(T0, MACHINE, 7, np.nan, 1, np.nan, 720.0, np.nan)], columns=COUNT_COLUMNS
        )

        status_event = status_events_from_dataframe(status_df)[0]
        count_event = count_events_from_dataframe(count_df)[0]

        assert status_event.status_name is None
        assert count_event.operator.name is None
        assert count_event.item.name == "Unknown"
        assert count_event.misfeed is False


# =====================================================================
# PostgresEventStore
# =====================================================================

class TestPostgresEventStore:

    def test_get_status_events(self):
        db_pool, cursor = _mock_pool(rows=[(T0, MACHINE, 1, "Running", "[]")])
        store = PostgresEventStore(db_pool=db_pool)

        events = store.get_status_events(MACHINE, T0_MS, T0_MS + HOUR)

        assert [e.status_code for e in events] == [1]
        query, params = cursor.execute.call_args[0]
        assert params[0] == MACHINE

    def test_get_count_events(self):
        db_pool, cursor = _mock_pool(rows=[(T0, MACHINE, 7, "Alice", 1, "Towel", 720, False)])
        store = PostgresEventStore(db_pool=db_pool)

        events = store.get_count_events(T0_MS, T0_MS + HOUR, operator_id=7)

        assert events[0].item.name == "Towel"
        assert cursor.execute.call_args[0][1][-1] == 7

    def test_get_operator_status_events(self):
        db_pool, _ = _mock_pool()
        store = PostgresEventStore(db_pool=db_pool)

        assert store.get_operator_status_events(7, T0_MS, T0_MS + HOUR) == []

    def test_get_active_machine_serials(self):
        db_pool, cursor = _mock_pool(rows=[(67408,), (None,), (67409,)])
        store = PostgresEventStore(db_pool=db_pool)

        assert store.get_active_machine_serials(T0_MS, T0_MS + HOUR) == [67408, 67409]
        assert cursor.execute.call_args[0][1] == [format_timestamp(T0_MS), format_timestamp(T0_MS + HOUR)]

    def test_get_active_operator_ids(self):
        db_pool, cursor = _mock_pool(rows=[(3,), (7,)])
        store = PostgresEventStore(db_pool=db_pool)

        assert store.get_active_operator_ids(T0_MS, T0_MS + HOUR) == [3, 7]
        assert cursor.execute.call_args[0][1][-1] == -1

    def test_database_errors_propagate(self):
        db_pool, _ = _mock_pool(error=psycopg2.OperationalError("connection lost"))
        store = PostgresEventStore(db_pool=db_pool)

        with pytest.raises(psycopg2.Error):
            store.get_status_events(MACHINE, T0_MS, T0_MS + HOUR)

    def test_invalid_serial_rejected_before_query(self):
        db_pool, cursor = _mock_pool()
        store = PostgresEventStore(db_pool=db_pool)

        with pytest.raises(ValueError):
            store.get_status_events(-5, T0_MS, T0_MS + HOUR)
        cursor.execute.assert_not_called()


# =====================================================================
# DatabasePool
# =====================================================================

class TestDatabasePool:

    @patch("core.db.pool.psycopg2.connect")
    def test_direct_connection_without_pool(self, mock_connect):
        db = DatabasePool(DB_CONFIG)

        with db.get_connection() as conn:
            assert conn is mock_connect.return_value

        mock_connect.assert_called_once_with(**DB_CONFIG)
        conn.close.assert_called_once()
        assert db.get_stats()["fallback_connections"] == 1

    @patch("core.db.pool.psycopg2.connect")
    def test_pool_exhausted_falls_back(self, mock_connect):
        db = DatabasePool(DB_CONFIG)
        db.pool = MagicMock()
        db.pool.getconn.side_effect = pg_pool.PoolError("exhausted")

        with db.get_connection() as conn:
            assert conn is mock_connect.return_value

        db.pool.putconn.assert_not_called()
        assert db.get_stats()["pool_exhausted"] == 1

    def test_pooled_connection_returned(self):
        db = DatabasePool(DB_CONFIG)
        db.pool = MagicMock()

        with db.get_connection() as conn:
            assert conn is db.pool.getconn.return_value

        db.pool.putconn.assert_called_once_with(conn)
        assert db.get_stats()["connections_returned"] == 1

    @patch("core.db.pool.psycopg2.connect", side_effect=psycopg2.OperationalError("refused"))
    def test_health_check_fails(self, mock_connect):
        db = DatabasePool(DB_CONFIG)

        assert db.health_check() is False
        assert db.get_stats()["errors"] == 1

    @patch("psycopg2.pool.ThreadedConnectionPool")
    def test_initialize_pool(self, mock_pool_cls):
        db = DatabasePool(DB_CONFIG)

        assert db.initialize_pool(1, 5) is True
        mock_pool_cls.assert_called_once_with(1, 5, **DB_CONFIG)
        assert db.get_stats()["pool_initialized"] is True

        db.close_pool()
        mock_pool_cls.return_value.closeall.assert_called_once()

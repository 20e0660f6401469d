"""
Event Store Connection Pool

Thread-safe psycopg2 pooling for the PostgreSQL event store. Report batches
fetch from several worker threads at once, so connections are shared through
a ThreadedConnectionPool with a direct-connection fallback when it runs dry.
"""

import threading
import time
import logging
from contextlib import contextmanager
from typing import Optional, Dict, Any

import psycopg2
from psycopg2 import pool

from utils.config import get_app_config, get_database_config


logger = logging.getLogger(__name__)


class DatabasePool:
    """Event store connections shared across report worker threads."""

    def __init__(self, db_config: Optional[Dict[str, Any]] = None):
        """
        Args:
            db_config: Keyword arguments for psycopg2.connect. Taken from the
                EVENTSTORE_* environment variables when None.

        Raises:
            ValueError: If a required EVENTSTORE_* variable is missing
        """
        self.db_config = db_config if db_config is not None else get_database_config()
        self.pool: Optional[pool.AbstractConnectionPool] = None
        self.pool_lock = threading.Lock()
        self.stats = {
            "connections_used": 0,
            "connections_returned": 0,
            "pool_exhausted": 0,
            "fallback_connections": 0,
            "errors": 0
        }

    def initialize_pool(self, min_connections: int = 2, max_connections: int = 10) -> bool:
        """
        Open the pool if it is not open yet.

        Returns:
            bool: False when the event store refused the connections
        """
        try:
            with self.pool_lock:
                if self.pool is not None:
                    return True
                self.pool = psycopg2.pool.ThreadedConnectionPool(
                    min_connections,
                    max_connections,
                    **self.db_config
                )
        except psycopg2.Error as e:
            self.stats["errors"] += 1
            logger.error(f"Could not open event store pool on {self.db_config.get('host')}: {e}")
            return False

        logger.info(
            f"Opened event store pool ({min_connections}-{max_connections} connections) "
            f"on {self.db_config.get('host')}"
        )
        return True

    @contextmanager
    def get_connection(self):
        """
        Borrow a connection for the duration of a with-block.

        Pooled connections go back to the pool; fallback connections, opened
        when there is no pool or it is exhausted, are closed.

        Example:
            >>> with DatabasePool().get_connection() as conn:
            ...     cursor = conn.cursor()
            ...     cursor.execute("SELECT count(*) FROM count_events")
        """
        connection = None
        from_pool = False
        started = time.time()

        try:
            if self.pool is not None:
                try:
                    connection = self.pool.getconn()
                    from_pool = True
                    self.stats["connections_used"] += 1
                except pool.PoolError:
                    self.stats["pool_exhausted"] += 1
                    logger.warning("Event store pool exhausted, opening a direct connection")

            if connection is None:
                self.stats["fallback_connections"] += 1
                connection = psycopg2.connect(**self.db_config)

            yield connection

        except psycopg2.Error as e:
            self.stats["errors"] += 1
            logger.error(f"Event store error after {time.time() - started:.2f}s: {e}")
            raise

        finally:
            if connection is not None:
                try:
                    if from_pool and self.pool is not None:
                        self.pool.putconn(connection)
                        self.stats["connections_returned"] += 1
                    else:
                        connection.close()
                except psycopg2.Error as e:
                    self.stats["errors"] += 1
                    logger.warning(f"Could not release event store connection: {e}")

    def close_pool(self):
        with self.pool_lock:
            if self.pool is None:
                return
            self.pool.closeall()
            self.pool = None
        logger.info("Closed event store pool")

    def get_stats(self) -> Dict[str, Any]:
        """Connection counters plus whether the pool is open."""
        return {**self.stats, "pool_initialized": self.pool is not None}

    def health_check(self) -> bool:
        """Run SELECT 1 against the event store."""
        try:
            with self.get_connection() as conn:
                with conn.cursor() as cursor:
                    cursor.execute("SELECT 1")
                    return cursor.fetchone() is not None
        except psycopg2.Error as e:
            logger.error(f"Event store health check failed: {e}")
            return False


# Shared by every PostgresEventStore created without an explicit pool
_event_store_pool: Optional[DatabasePool] = None
_pool_lock = threading.Lock()


def get_pool() -> DatabasePool:
    """
    Return the shared event store pool, opening it on first use.

    Pool size follows EVENTSTORE_POOL_MIN and EVENTSTORE_POOL_MAX.

    Raises:
        ValueError: If database configuration is missing
    """
    global _event_store_pool

    with _pool_lock:
        if _event_store_pool is None:
            app_config = get_app_config()
            _event_store_pool = DatabasePool()
            _event_store_pool.initialize_pool(
                app_config["pool_min_connections"],
                app_config["pool_max_connections"],
            )
        return _event_store_pool


def close_all_pools():
    global _event_store_pool

    with _pool_lock:
        if _event_store_pool is not None:
            _event_store_pool.close_pool()
            _event_store_pool = None

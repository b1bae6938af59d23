"""
PostgreSQL Connection Helper

Provides connection pooling and context management for database operations.
The pool is an explicit handle owned by the caller and passed to every stage
that needs the store.
"""

import psycopg2
from psycopg2 import pool, OperationalError
from contextlib import contextmanager
from typing import Optional
import logging

logger = logging.getLogger(__name__)


class DatabaseConnection:
    """
    Manages PostgreSQL connections with connection pooling.
    """

    def __init__(
        self,
        host: str,
        port: int,
        database: str,
        user: str,
        password: str,
        min_connections: int = 1,
        max_connections: int = 5,
        connect_timeout: int = 10,
    ) -> None:
        """
        Initialize the connection pool.

        Args:
            host: PostgreSQL server host
            port: PostgreSQL server port
            database: Database name
            user: Database user
            password: Database password
            min_connections: Minimum pool connections
            max_connections: Maximum pool connections
            connect_timeout: Seconds to wait for a new connection

        Raises:
            OperationalError: If connection fails
        """
        self.database = database
        self._pool: Optional[pool.SimpleConnectionPool] = None
        try:
            self._pool = pool.SimpleConnectionPool(
                min_connections,
                max_connections,
                host=host,
                port=port,
                database=database,
                user=user,
                password=password,
                connect_timeout=connect_timeout,
            )
            logger.info(f"Database pool initialized with {min_connections}-{max_connections} connections")
        except OperationalError as e:
            logger.error(f"Failed to initialize database pool: {e}")
            raise

    @classmethod
    def from_settings(cls, settings) -> "DatabaseConnection":
        """Build a pool from a Settings object."""
        return cls(
            host=settings.DB_HOST,
            port=settings.DB_PORT,
            database=settings.DB_NAME,
            user=settings.DB_USER,
            password=settings.DB_PASSWORD,
            min_connections=settings.DB_POOL_MIN,
            max_connections=settings.DB_POOL_MAX,
            connect_timeout=settings.DB_CONNECT_TIMEOUT,
        )

    def close_all(self) -> None:
        """Close all connections in the pool."""
        if self._pool:
            self._pool.closeall()
            self._pool = None
            logger.info("Database pool closed")

    @contextmanager
    def get_connection(self):
        """
        Context manager to get a connection from the pool.

        Commits on success, rolls back on any error and always returns the
        connection to the pool.

        Yields:
            psycopg2 connection object

        Raises:
            OperationalError: If pool is not initialized or connection fails
        """
        if self._pool is None:
            raise OperationalError("Database pool not initialized or already closed.")

        conn = None
        try:
            conn = self._pool.getconn()
            yield conn
            conn.commit()
            logger.debug("Transaction committed successfully")
        except Exception as e:
            if conn:
                conn.rollback()
            logger.error(f"Database error: {e}")
            raise
        finally:
            if conn:
                self._pool.putconn(conn)

    @contextmanager
    def get_cursor(self, commit: bool = True):
        """
        Context manager to get a cursor for direct SQL execution.

        Args:
            commit: Whether to auto-commit on success

        Yields:
            psycopg2 cursor object

        Example:
            with db.get_cursor() as cursor:
                cursor.execute("SELECT table_name FROM migration_configuration")
                results = cursor.fetchall()
        """
        with self.get_connection() as conn:
            cursor = conn.cursor()
            try:
                yield cursor
                if commit:
                    conn.commit()
            except Exception:
                conn.rollback()
                raise
            finally:
                cursor.close()

    def execute_query(self, query, params: Optional[tuple] = None) -> list:
        """
        Execute a SELECT query and return results.

        Args:
            query: SQL query string or psycopg2.sql composable
            params: Query parameters (optional)

        Returns:
            List of result rows
        """
        with self.get_cursor(commit=False) as cursor:
            cursor.execute(query, params or ())
            return cursor.fetchall()

    def execute_update(self, query, params: Optional[tuple] = None) -> int:
        """
        Execute a DDL/INSERT/UPDATE/DELETE statement.

        Args:
            query: SQL query string or psycopg2.sql composable
            params: Query parameters (optional)

        Returns:
            Number of rows affected
        """
        with self.get_cursor(commit=True) as cursor:
            cursor.execute(query, params or ())
            return cursor.rowcount

    def health_check(self) -> bool:
        """Run a trivial query; False on any database error."""
        try:
            rows = self.execute_query("SELECT 1;")
            healthy = bool(rows) and rows[0][0] == 1
            logger.debug(f"Database health check: healthy={healthy}")
            return healthy
        except psycopg2.Error as e:
            logger.error(f"Database health check failed: {e}")
            return False

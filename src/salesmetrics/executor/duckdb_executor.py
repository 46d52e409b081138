"""DuckDB query executor for salesmetrics.

duckdb is a good fit here - embedded, fast at aggregations, and speaks sql.
the in-memory mode is great for tests and one-off analysis.

one connection is opened lazily and every execute() runs on its own cursor,
which is what lets the batch runners share an executor across threads.
"""

import logging
import threading
import time
from pathlib import Path
from typing import Any

import duckdb

from salesmetrics.errors import DataSourceError
from salesmetrics.executor.schema import create_statements
from salesmetrics.models.request import QueryResult

logger = logging.getLogger(__name__)


class DuckDBExecutor:
    """Execute queries against DuckDB.

    thin wrapper that handles connection management and result shaping.
    keeps the duckdb-specific bits isolated from the engines.
    """

    def __init__(self, database_path: str | Path | None = None) -> None:
        """Initialize the executor.

        Args:
            database_path: Path to DuckDB file, or None for in-memory.
        """
        self.database_path = str(database_path) if database_path else None
        self._conn: duckdb.DuckDBPyConnection | None = None  # lazy init
        self._lock = threading.Lock()
        self._active: set[duckdb.DuckDBPyConnection] = set()

    @property
    def conn(self) -> duckdb.DuckDBPyConnection:
        """Get or create the DuckDB connection.

        ":memory:" is the duckdb convention for an in-memory database.
        """
        if self._conn is None:
            with self._lock:
                if self._conn is None:
                    self._conn = duckdb.connect(self.database_path or ":memory:")
        return self._conn

    def execute(self, sql: str, params: list[Any] | None = None) -> QueryResult:
        """Execute SQL with bound params and return structured results.

        duckdb errors are wrapped in DataSourceError with the driver message
        as detail. the engines add metric/account context on top.
        """
        params = list(params or [])
        start = time.perf_counter()

        cursor = self._open_cursor()
        try:
            result = cursor.execute(sql, params)
            # description gives us (name, type_code, ...) tuples
            columns = [desc[0] for desc in result.description or []]
            rows = result.fetchall()
        except duckdb.Error as e:
            raise DataSourceError("Query failed", detail=str(e)) from e
        finally:
            self._close_cursor(cursor)

        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.debug("query returned %d rows in %.2fms", len(rows), elapsed_ms)

        data = [dict(zip(columns, row)) for row in rows]

        return QueryResult(
            sql=sql,
            params=params,
            columns=columns,
            data=data,
            row_count=len(data),
            execution_time_ms=round(elapsed_ms, 2),
        )

    def interrupt(self) -> None:
        """Interrupt every query currently running on this executor.

        interrupted queries fail with a DataSourceError in their own thread.
        """
        with self._lock:
            running = list(self._active)
        if running:
            logger.info("interrupting %d running queries", len(running))
        for cursor in running:
            cursor.interrupt()

    def _open_cursor(self) -> duckdb.DuckDBPyConnection:
        cursor = self.conn.cursor()
        with self._lock:
            self._active.add(cursor)
        return cursor

    def _close_cursor(self, cursor: duckdb.DuckDBPyConnection) -> None:
        with self._lock:
            self._active.discard(cursor)
        cursor.close()

    def execute_raw(self, sql: str, params: list[Any] | None = None) -> list[tuple[Any, ...]]:
        """Execute SQL and return raw tuples."""
        cursor = self._open_cursor()
        try:
            return cursor.execute(sql, list(params or [])).fetchall()
        except duckdb.Error as e:
            raise DataSourceError("Query failed", detail=str(e)) from e
        finally:
            self._close_cursor(cursor)

    def create_schema(self) -> None:
        """Create the activity tables if they don't exist yet."""
        for statement in create_statements():
            self.conn.execute(statement)

    def insert_rows(self, table_name: str, rows: list[dict[str, Any]]) -> int:
        """Insert dict rows into an existing table.

        column list comes from the first row; every row must have the same
        keys. returns the number of rows inserted.
        """
        if not rows:
            return 0

        columns = list(rows[0])
        placeholders = ", ".join(["?"] * len(columns))
        self.conn.executemany(
            f"INSERT INTO {table_name} ({', '.join(columns)}) VALUES ({placeholders})",
            [[row[col] for col in columns] for row in rows],
        )
        return len(rows)

    def load_parquet(self, table_name: str, path: str | Path) -> None:
        """Load a Parquet file as a table.

        CREATE OR REPLACE so reloading is idempotent.
        """
        self._load(table_name, "read_parquet", path)

    def load_csv(self, table_name: str, path: str | Path) -> None:
        """Load a CSV file as a table.

        read_csv_auto figures out delimiters and types; works well in practice
        for crm exports.
        """
        self._load(table_name, "read_csv_auto", path)

    def _load(self, table_name: str, reader: str, path: str | Path) -> None:
        try:
            self.conn.execute(f"""
                CREATE OR REPLACE TABLE {table_name} AS
                SELECT * FROM {reader}('{Path(path)}')
            """)
        except duckdb.Error as e:
            raise DataSourceError(f"Could not load {path}", detail=str(e)) from e
        logger.info("loaded %s into %s", path, table_name)

    def table_exists(self, table_name: str) -> bool:
        """Check if a table exists."""
        result = self.conn.execute(
            "SELECT COUNT(*) FROM information_schema.tables WHERE table_name = ?",
            [table_name],
        )
        return result.fetchone()[0] > 0

    def get_table_schema(self, table_name: str) -> list[tuple[str, str]]:
        """Get column names and types for a table."""
        result = self.conn.execute(f"DESCRIBE {table_name}")
        return [(row[0], row[1]) for row in result.fetchall()]

    def close(self) -> None:
        """Close the database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> "DuckDBExecutor":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

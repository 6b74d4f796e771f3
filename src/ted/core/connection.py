"""Database connection management for ted.

One DatabaseConnection wraps a DB-API connection for any supported backend.
Statements are written with the dialect's placeholders (``?`` or ``$N``) and
translated here for drivers that expect ``%s``.
"""

import importlib
import itertools
import logging
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import replace
from typing import Any, Callable, List, Optional, Sequence, Tuple

from ted.config import ConnectionSettings
from ted.core.dialect import DbType, Dialect, get_dialect

logger = logging.getLogger(__name__)

DRIVER_MODULES = {
    DbType.SQLITE: "sqlite3",
    DbType.POSTGRES: "psycopg2",
    DbType.MYSQL: "pymysql",
    DbType.DUCKDB: "duckdb",
}

DRIVER_EXTRAS = {
    DbType.POSTGRES: "postgres",
    DbType.MYSQL: "mysql",
    DbType.DUCKDB: "duckdb",
}

_cursor_names = itertools.count(1)


class DatabaseError(Exception):
    """A driver or network error, tagged with the operation that failed."""

    def __init__(self, operation: str, original: BaseException):
        self.operation = operation
        self.original = original
        super().__init__(f"{operation} failed: {original}")


def translate_placeholders(sql: str, params: Optional[Sequence[Any]]) -> Tuple[str, Optional[tuple]]:
    """Rewrite ``?`` and ``$N`` placeholders to ``%s`` for format-style drivers.

    Placeholders inside quoted strings and identifiers are left alone. Literal
    percent signs are doubled when parameters are bound. ``$N`` placeholders
    may appear in any order; the parameters are reordered to match.

    Args:
        sql: Statement using ``?`` or ``$N`` placeholders
        params: Parameters in placeholder order (``?``) or by number (``$N``)

    Returns:
        Tuple of (translated sql, parameters in the order of the %s markers)
    """
    if params is None:
        return sql, None

    out: List[str] = []
    ordered: List[Any] = []
    next_param = 0
    quote: Optional[str] = None
    i = 0
    while i < len(sql):
        ch = sql[i]
        if ch == "%":
            out.append("%%")
        elif quote:
            out.append(ch)
            if ch == quote:
                quote = None
        elif ch in ("'", '"', "`"):
            quote = ch
            out.append(ch)
        elif ch == "?":
            out.append("%s")
            ordered.append(params[next_param])
            next_param += 1
        elif ch == "$" and i + 1 < len(sql) and sql[i + 1].isdigit():
            j = i + 1
            while j < len(sql) and sql[j].isdigit():
                j += 1
            ordered.append(params[int(sql[i + 1 : j]) - 1])
            out.append("%s")
            i = j
            continue
        else:
            out.append(ch)
        i += 1
    return "".join(out), tuple(ordered)


class RowCursor:
    """A forward-only stream of rows from one SELECT.

    fetch() and close() may be called from different threads; close() is
    idempotent.
    """

    def __init__(self, fetch: Callable[[int], List[tuple]], release: Callable[[], None], columns: List[str]):
        self._fetch = fetch
        self._release = release
        self.columns = columns
        self.exhausted = False
        self._closed = False
        self._lock = threading.Lock()
        self.on_close: List[Callable[["RowCursor"], None]] = []

    @property
    def closed(self) -> bool:
        return self._closed

    def fetch(self, count: int) -> List[tuple]:
        """Read up to ``count`` rows. Returns an empty list once exhausted or closed."""
        with self._lock:
            if self._closed or self.exhausted or count <= 0:
                return []
            rows = [tuple(row) for row in self._fetch(count)]
            if len(rows) < count:
                self.exhausted = True
            return rows

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            try:
                self._release()
            finally:
                for callback in self.on_close:
                    callback(self)
        logger.debug("Closed streaming cursor")


class DatabaseConnection:
    """Manages one connection to a SQLite, PostgreSQL, MySQL or DuckDB database."""

    def __init__(self, settings: ConnectionSettings):
        """Initialize database connection.

        Args:
            settings: Resolved connection settings
        """
        self.settings = settings
        self.db_type = DbType(settings.db_type)
        self.dialect: Dialect = get_dialect(self.db_type)
        self.driver: Any = None
        self._conn: Any = None
        self._streams: List[RowCursor] = []
        self._connect()

    def _load_driver(self) -> Any:
        module_name = DRIVER_MODULES[self.db_type]
        try:
            return importlib.import_module(module_name)
        except ImportError as e:
            extra = DRIVER_EXTRAS.get(self.db_type, "all")
            raise RuntimeError(
                f"{module_name} is required for {self.db_type.value} databases. "
                f"Install it with: pip install 'ted[{extra}]'"
            ) from e

    def _connect(self) -> None:
        """Open the driver connection in autocommit mode."""
        self.driver = self._load_driver()
        kwargs = self.settings.connect_kwargs()

        try:
            if self.db_type == DbType.SQLITE:
                self._conn = sqlite3.connect(
                    kwargs["database"], isolation_level=None, check_same_thread=False
                )
                self._conn.execute("PRAGMA foreign_keys = ON")
                if sqlite3.sqlite_version_info < (3, 35, 0):
                    self.dialect = replace(self.dialect, supports_returning=False)
                if sqlite3.sqlite_version_info < (3, 15, 0):
                    self.dialect = replace(self.dialect, supports_row_value_comparison=False)
            elif self.db_type == DbType.POSTGRES:
                self._conn = self.driver.connect(**kwargs)
                self._conn.autocommit = True
            elif self.db_type == DbType.MYSQL:
                # rowcount reports matched rows, not changed rows
                self._conn = self.driver.connect(
                    autocommit=True, client_flag=self.driver.constants.CLIENT.FOUND_ROWS, **kwargs
                )
            else:
                self._conn = self.driver.connect(kwargs["database"])
        except self.driver.Error as e:
            raise DatabaseError("connect", e) from e

        logger.info(f"Connected to {self.db_type.value} database {self.settings.display_name()}")

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    def _require_open(self) -> Any:
        if not self._conn:
            raise RuntimeError("Connection is closed")
        return self._conn

    def _prepare(self, sql: str, params: Optional[Sequence[Any]]) -> Tuple[str, Optional[tuple]]:
        if self.driver.paramstyle in ("format", "pyformat"):
            return translate_placeholders(sql, params)
        return sql, tuple(params) if params is not None else None

    def _cursor_execute(self, cursor: Any, sql: str, params: Optional[Sequence[Any]]) -> Any:
        sql, bound = self._prepare(sql, params)
        logger.debug(f"SQL: {sql} {list(bound) if bound else ''}")
        if bound is None:
            cursor.execute(sql)
        else:
            cursor.execute(sql, bound)
        return cursor

    def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> Any:
        """Execute a SQL statement.

        Args:
            sql: SQL statement to execute
            params: Optional parameters for parameterized queries

        Returns:
            DB-API cursor with results
        """
        conn = self._require_open()
        if self.dialect.exclusive_streams:
            # A MySQL unbuffered result blocks the connection, and a failed
            # statement aborts the transaction a PostgreSQL stream runs in
            self.close_streams()

        if self.db_type == DbType.DUCKDB:
            return self._cursor_execute(conn, sql, params)
        return self._cursor_execute(conn.cursor(), sql, params)

    def query(self, sql: str, params: Optional[Sequence[Any]] = None) -> List[tuple]:
        """Execute a statement and fetch every row."""
        cursor = self.execute(sql, params)
        try:
            return [tuple(row) for row in cursor.fetchall()]
        finally:
            self._close_cursor(cursor)

    def query_one(self, sql: str, params: Optional[Sequence[Any]] = None) -> Optional[tuple]:
        """Execute a statement and fetch its first row, or None."""
        rows = self.query(sql, params)
        return rows[0] if rows else None

    def describe(self, sql: str, params: Optional[Sequence[Any]] = None) -> List[Tuple[str, Any]]:
        """Column names and driver type codes of a statement's result."""
        cursor = self.execute(sql, params)
        try:
            description = cursor.description or []
            cursor.fetchall()
            return [(column[0], column[1]) for column in description]
        finally:
            self._close_cursor(cursor)

    def execute_update(self, sql: str, params: Optional[Sequence[Any]] = None) -> Tuple[int, Optional[int]]:
        """Execute a write statement.

        Returns:
            Tuple of (rows affected, last inserted row id if the driver reports one)
        """
        cursor = self.execute(sql, params)
        try:
            return cursor.rowcount, getattr(cursor, "lastrowid", None)
        finally:
            self._close_cursor(cursor)

    def _close_cursor(self, cursor: Any) -> None:
        if cursor is not self._conn:
            cursor.close()

    def stream(self, sql: str, params: Optional[Sequence[Any]] = None) -> RowCursor:
        """Open a streaming cursor over a SELECT.

        PostgreSQL uses a server-side cursor inside a read transaction and
        MySQL an unbuffered result. Any other open stream is closed first.
        """
        conn = self._require_open()
        self.close_streams()

        if self.db_type == DbType.POSTGRES:
            name = f"ted_cursor_{next(_cursor_names)}"
            cursor = conn.cursor()
            cursor.execute("BEGIN")
            try:
                self._cursor_execute(cursor, f"DECLARE {name} NO SCROLL CURSOR FOR {sql}", params)
            except self.driver.Error:
                cursor.execute("ROLLBACK")
                cursor.close()
                raise

            description: List[str] = []

            def fetch(count: int) -> List[tuple]:
                cursor.execute(f"FETCH FORWARD {int(count)} FROM {name}")
                if not description and cursor.description:
                    description.extend(column[0] for column in cursor.description)
                return cursor.fetchall()

            def release() -> None:
                try:
                    cursor.execute(f"CLOSE {name}")
                    cursor.execute("COMMIT")
                finally:
                    cursor.close()

            row_cursor = RowCursor(fetch, release, description)
        else:
            if self.db_type == DbType.MYSQL:
                cursor = conn.cursor(self.driver.cursors.SSCursor)
            else:
                cursor = conn.cursor()
            self._cursor_execute(cursor, sql, params)
            columns = [column[0] for column in (cursor.description or [])]
            row_cursor = RowCursor(cursor.fetchmany, cursor.close, columns)

        row_cursor.on_close.append(self._forget_stream)
        self._streams.append(row_cursor)
        logger.debug("Opened streaming cursor")
        return row_cursor

    def _forget_stream(self, cursor: RowCursor) -> None:
        if cursor in self._streams:
            self._streams.remove(cursor)

    def close_streams(self) -> None:
        """Close every open streaming cursor."""
        for cursor in list(self._streams):
            cursor.close()

    @contextmanager
    def operation(self, name: str):
        """Tag driver errors raised inside the block with an operation name."""
        try:
            yield self
        except self.driver.Error as e:
            raise DatabaseError(name, e) from e

    @contextmanager
    def transaction(self):
        """Context manager for database transactions.

        Automatically commits on success or rolls back on exception.
        """
        conn = self._require_open()
        self.close_streams()

        cursor = conn if self.db_type == DbType.DUCKDB else conn.cursor()
        cursor.execute("BEGIN")
        try:
            yield self
            cursor.execute("COMMIT")
        except Exception:
            cursor.execute("ROLLBACK")
            raise
        finally:
            self._close_cursor(cursor)

    def close(self) -> None:
        """Close the database connection."""
        if self._conn:
            self.close_streams()
            self._conn.close()
            self._conn = None

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        _ = (exc_type, exc_val, exc_tb)  # Unused but required by protocol
        self.close()
        return False

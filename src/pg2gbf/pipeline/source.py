"""
PostgresSource - Source database access

Executes statements against the PostGIS source and either returns the result
in memory or writes a single scalar result to a file. Also hosts the row
counter and the property-column lookup used by the chunk exporter.
"""

import logging
import time
from collections.abc import Sequence
from pathlib import Path
from typing import Any, Optional

import psycopg
from psycopg import sql

from ..config.settings import PostgresCredentials
from ..domain.models import TableDescriptor
from ..types import QueryExecutionError, RowCountError
from .queries import columns_statement, count_statement, table_identifier

logger = logging.getLogger(__name__)

Statement = str | sql.Composable


class PostgresSource:
    """
    Read-only access to the source database.

    The connection is opened lazily on the first statement and kept for the
    whole run; statements execute one at a time in autocommit mode.
    """

    def __init__(self, credentials: PostgresCredentials, connection: Optional[psycopg.Connection] = None):
        self.credentials = credentials
        self._conn = connection

    def __enter__(self) -> "PostgresSource":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def connection(self) -> psycopg.Connection:
        if self._conn is None:
            target = f"{self.credentials.host}:{self.credentials.port}/{self.credentials.dbname}"
            logger.debug(f"Connecting to {target} as {self.credentials.user}")
            try:
                self._conn = psycopg.connect(autocommit=True, **self.credentials.connect_kwargs())
            except psycopg.Error as e:
                logger.error(f"Could not connect to {target}: {e}")
                raise QueryExecutionError(f"CONNECT {target}", str(e)) from e
        return self._conn

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def render(self, statement: Statement) -> str:
        """Statement text for logs and error messages."""
        if isinstance(statement, sql.Composable):
            return statement.as_string(None)
        return statement

    def execute(self, statement: Statement, params: Optional[Sequence[Any]] = None) -> list[tuple]:
        """
        Execute a statement and return all result rows.

        Raises:
            QueryExecutionError: If the statement fails for any reason
        """
        conn = self.connection
        text = self.render(statement)
        start = time.perf_counter()
        try:
            with conn.cursor() as cur:
                cur.execute(statement, params)
                rows = cur.fetchall() if cur.description else []
        except psycopg.Error as e:
            logger.error(f"Query failed after {time.perf_counter() - start:.2f}s: {text}")
            logger.error(f"Error: {e}")
            raise QueryExecutionError(text, str(e)) from e

        logger.debug(f"Executed query in {time.perf_counter() - start:.2f}s: {text}")
        return rows

    def fetch_scalar(self, statement: Statement, params: Optional[Sequence[Any]] = None) -> Any:
        """Execute a statement returning a single value (None for no rows)."""
        rows = self.execute(statement, params)
        return rows[0][0] if rows else None

    def export_to_file(
        self,
        statement: Statement,
        path: Path,
        params: Optional[Sequence[Any]] = None,
        decode_hex: bool = False,
    ) -> Path:
        """
        Execute a statement and write its scalar result to ``path``.

        Text results are written as UTF-8. With ``decode_hex`` the result is
        treated as a hex-encoded binary payload and written as raw bytes; a
        NULL result produces an empty file.

        Args:
            statement: Statement returning one row with one column
            path: Destination file
            params: Optional statement parameters
            decode_hex: Decode a hex text result into bytes before writing

        Returns:
            The written path
        """
        value = self.fetch_scalar(statement, params)
        path.parent.mkdir(parents=True, exist_ok=True)

        if decode_hex:
            path.write_bytes(_to_bytes(value))
        elif isinstance(value, (bytes, bytearray, memoryview)):
            path.write_bytes(bytes(value))
        else:
            path.write_text("" if value is None else str(value), encoding="utf-8")

        logger.debug(f"Exported query result to {path} ({path.stat().st_size:,} bytes)")
        return path

    def count_rows(self, table: TableDescriptor) -> int:
        """
        Total number of rows in ``table``.

        Raises:
            RowCountError: If the count query fails or returns no value
        """
        try:
            count = self.fetch_scalar(count_statement(table))
        except QueryExecutionError as e:
            raise RowCountError(f"could not count rows of {table.name}: {e.detail}") from e
        if count is None:
            raise RowCountError(f"count query for {table.name} returned no rows")
        logger.info(f"Table {table.name} has {count:,} rows")
        return int(count)

    def property_columns(self, table: TableDescriptor) -> list[str]:
        """Every column of ``table`` except the identifier and geometry, in ordinal order."""
        relation = table_identifier(table).as_string(None)
        rows = self.execute(columns_statement(), (relation,))
        columns = [row[0] for row in rows]
        if not columns:
            raise QueryExecutionError(self.render(columns_statement()), f"no columns found for {table.name}")

        missing = [c for c in (table.id_column, table.geom_column) if c not in columns]
        if missing:
            raise QueryExecutionError(
                self.render(columns_statement()),
                f"column(s) {', '.join(missing)} not found in {table.name}"
            )
        return [c for c in columns if c not in (table.id_column, table.geom_column)]


def _to_bytes(value: Any) -> bytes:
    if value is None:
        return b""
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    return bytes.fromhex(str(value).strip())

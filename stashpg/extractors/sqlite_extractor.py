"""Read-only SQLite source extractor."""

import logging
import sqlite3
from pathlib import Path
from typing import Any, Dict, List, Optional
from dateutil import parser as date_parser

from .base import BaseExtractor
from ..errors import OperationTimeout, SourceConnectionError, SourceQueryError
from ..models.record import Batch, Row
from ..utils import quote_identifier

logger = logging.getLogger(__name__)

SELECT_PAGE = "SELECT * FROM {table} LIMIT ? OFFSET ?"
TABLE_EXISTS = "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?"


class SQLiteExtractor(BaseExtractor):
    """
    Extractor for a SQLite database file.

    The file is opened through a ``mode=ro`` URI with ``query_only`` set,
    so the migration can never write to it. Write-ahead logging is
    requested so external readers and writers do not block the scan.

    Column values are converted the way the declared column types imply:
    ``BOOLEAN`` integers become ``bool`` and ISO text in ``DATETIME`` or
    ``TIMESTAMP`` columns becomes ``datetime``.
    """

    def __init__(
        self,
        path: str,
        busy_timeout_ms: int = 5000,
        journal_mode: str = "WAL"
    ):
        """
        Initialize the SQLite extractor.

        Args:
            path: Path to the database file
            busy_timeout_ms: How long to wait on a locked database
            journal_mode: Journal mode to request at open
        """
        super().__init__(source=path)
        self.path = path
        self.busy_timeout_ms = busy_timeout_ms
        self.journal_mode = journal_mode
        self.connection: Optional[sqlite3.Connection] = None
        self._column_types: Dict[str, Dict[str, str]] = {}

    def open(self) -> None:
        """Open the database read-only and apply session pragmas."""
        path = Path(self.path)
        if not path.is_file():
            raise SourceConnectionError(f"SQLite database not found: {self.path}")

        uri = f"{path.resolve().as_uri()}?mode=ro"
        try:
            self.connection = sqlite3.connect(
                uri,
                uri=True,
                timeout=self.busy_timeout_ms / 1000,
            )
            self.connection.execute(f"PRAGMA busy_timeout = {int(self.busy_timeout_ms)}")
            self.connection.execute("PRAGMA query_only = ON")
            # Fails with "file is not a database" here rather than mid-run
            self.connection.execute("SELECT count(*) FROM sqlite_master").fetchone()
        except sqlite3.Error as e:
            self.close()
            raise SourceConnectionError(f"Cannot open SQLite database {self.path}: {e}") from e

        self._request_journal_mode()
        logger.info(f"Opened SQLite database {self.path} (read-only)")

    def _request_journal_mode(self) -> None:
        try:
            row = self.connection.execute(f"PRAGMA journal_mode = {self.journal_mode}").fetchone()
        except sqlite3.OperationalError as e:
            # A read-only handle cannot switch modes on a file that is not already WAL
            logger.warning(f"Could not set journal_mode={self.journal_mode} on {self.path}: {e}")
            return

        mode = row[0] if row else None
        if mode is None or mode.lower() != self.journal_mode.lower():
            logger.warning(
                f"SQLite database {self.path} is in journal_mode={mode}, "
                f"not {self.journal_mode}; avoid writing to it during the migration"
            )
        else:
            logger.debug(f"SQLite journal_mode={mode}")

    def close(self) -> None:
        """Close the database."""
        if self.connection is not None:
            self.connection.close()
            self.connection = None
            logger.debug("SQLite connection closed")

    def _require_connection(self) -> sqlite3.Connection:
        if self.connection is None:
            raise SourceConnectionError("SQLite extractor is not open")
        return self.connection

    def _query(self, statement: str, params: tuple = ()) -> sqlite3.Cursor:
        """Run a source query and translate driver errors."""
        connection = self._require_connection()
        try:
            return connection.execute(statement, params)
        except sqlite3.OperationalError as e:
            message = str(e).lower()
            if "locked" in message or "busy" in message:
                raise OperationTimeout(
                    f"SQLite database stayed locked for {self.busy_timeout_ms}ms: {e}",
                    statement=statement,
                    params=params,
                ) from e
            raise SourceQueryError(f"Source query failed: {e}", statement=statement, params=params) from e
        except sqlite3.Error as e:
            raise SourceQueryError(f"Source query failed: {e}", statement=statement, params=params) from e

    def table_exists(self, table: str) -> bool:
        return self._query(TABLE_EXISTS, (table,)).fetchone() is not None

    def column_types(self, table: str) -> Dict[str, str]:
        """Declared type of each column, upper-cased."""
        if table not in self._column_types:
            cursor = self._query(f"PRAGMA table_info({quote_identifier(table)})")
            self._column_types[table] = {
                row[1]: (row[2] or "").upper() for row in cursor.fetchall()
            }
        return self._column_types[table]

    def extract_batch(self, table: str, offset: int = 0, limit: int = 1000) -> Batch:
        """Fetch one page of a table in natural row order."""
        statement = SELECT_PAGE.format(table=quote_identifier(table))
        cursor = self._query(statement, (limit, offset))
        columns = [d[0] for d in cursor.description]

        try:
            records = cursor.fetchall()
        except sqlite3.Error as e:
            raise SourceQueryError(
                f"Source query failed: {e}", statement=statement, params=(limit, offset)
            ) from e

        types = self.column_types(table)
        rows: List[Row] = [
            {column: self._convert(types.get(column, ""), value) for column, value in zip(columns, record)}
            for record in records
        ]
        return Batch(table=table, offset=offset, rows=rows)

    def _convert(self, declared: str, value: Any) -> Any:
        if value is None:
            return None

        if "BOOL" in declared and isinstance(value, int):
            return bool(value)

        if ("DATETIME" in declared or "TIMESTAMP" in declared) and isinstance(value, str):
            try:
                return date_parser.isoparse(value)
            except (ValueError, OverflowError):
                # Left as text; the table's repair rule or PostgreSQL decides
                return value

        return value

"""PostgreSQL destination loader."""

import logging
from contextlib import contextmanager
from typing import Any, Iterator, List, Optional, Sequence, Tuple

import psycopg2
import psycopg2.errors
from psycopg2.extras import execute_values

from .base import BaseLoader
from ..errors import (
    DestinationConnectionError,
    LoadExecutionError,
    OperationTimeout,
    StatementBuildError,
)
from ..utils import quote_identifier

logger = logging.getLogger(__name__)

DISABLE_FOREIGN_KEYS = "SET session_replication_role = replica"
SET_STATEMENT_TIMEOUT = "SET statement_timeout = %s"

RESTART_SEQUENCE = """
SELECT setval(pg_get_serial_sequence(%s, 'id')
            , COALESCE(MAX(id) + 1, 1)
            , false)
FROM {table}
"""

NEXT_SEQUENCE_VALUE = "SELECT COALESCE(MAX(id) + 1, 1) FROM {table}"


class PostgresLoader(BaseLoader):
    """
    Loader for a PostgreSQL destination via psycopg2.

    The session is opened read-write. At session start foreign-key
    triggers are disabled (``session_replication_role = replica``) so rows
    may arrive before the rows they reference, and an optional
    ``statement_timeout`` bounds every statement.
    """

    def __init__(
        self,
        dsn: str,
        dry_run: bool = False,
        disable_foreign_keys: bool = True,
        statement_timeout_ms: int = 0
    ):
        """
        Initialize the PostgreSQL loader.

        Args:
            dsn: libpq connection string or URI
            dry_run: If True, read and repair but never write
            disable_foreign_keys: Disable FK enforcement for the session
            statement_timeout_ms: Per-statement timeout, 0 for server default
        """
        super().__init__(target="postgresql", dry_run=dry_run)
        self.dsn = dsn
        self.disable_foreign_keys = disable_foreign_keys
        self.statement_timeout_ms = statement_timeout_ms
        self.connection = None

    def open(self) -> None:
        """Connect and apply session settings."""
        try:
            self.connection = psycopg2.connect(self.dsn)
        except psycopg2.Error as e:
            raise DestinationConnectionError(f"Cannot connect to PostgreSQL: {e}") from e

        try:
            with self.connection.cursor() as cursor:
                if self.disable_foreign_keys:
                    cursor.execute(DISABLE_FOREIGN_KEYS)
                if self.statement_timeout_ms:
                    cursor.execute(SET_STATEMENT_TIMEOUT, (self.statement_timeout_ms,))
            # SET is transactional; commit so the settings outlive the first rollback
            self.connection.commit()
            params = self.connection.get_dsn_parameters()
        except psycopg2.Error as e:
            self.close()
            raise DestinationConnectionError(f"PostgreSQL session setup failed: {e}") from e

        logger.info(
            f"Connected to PostgreSQL {params.get('host', 'localhost')}:{params.get('port', '5432')}"
            f"/{params.get('dbname', '')}"
            + (" (dry run)" if self.dry_run else "")
        )

    def close(self) -> None:
        """Close the connection."""
        if self.connection is not None:
            self.connection.close()
            self.connection = None
            logger.debug("PostgreSQL connection closed")

    def _require_connection(self):
        if self.connection is None:
            raise DestinationConnectionError("PostgreSQL loader is not open")
        return self.connection

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Commit on normal exit, roll back if the block raises."""
        connection = self._require_connection()
        try:
            yield
        except BaseException:
            connection.rollback()
            raise

        try:
            connection.commit()
        except psycopg2.errors.QueryCanceled as e:
            raise OperationTimeout(f"COMMIT timed out: {e}", statement="COMMIT") from e
        except psycopg2.Error as e:
            raise LoadExecutionError(f"COMMIT failed: {e}", statement="COMMIT") from e

    def _execute(
        self,
        cursor,
        statement: str,
        params: Optional[Sequence[Any]] = None,
        values: Optional[List[Tuple[Any, ...]]] = None
    ) -> None:
        """Run a statement and translate driver errors."""
        try:
            if values is not None:
                execute_values(cursor, statement, values, page_size=len(values))
            else:
                cursor.execute(statement, params)
        except psycopg2.errors.QueryCanceled as e:
            raise OperationTimeout(
                f"Statement timed out: {e}",
                statement=statement,
                params=values if values is not None else params,
            ) from e
        except psycopg2.ProgrammingError as e:
            raise StatementBuildError(
                f"Malformed statement: {e}",
                statement=statement,
                params=values if values is not None else params,
            ) from e
        except psycopg2.Error as e:
            raise LoadExecutionError(
                f"Statement failed: {e}",
                statement=statement,
                params=values if values is not None else params,
            ) from e

    def insert_rows(
        self,
        table: str,
        columns: Sequence[str],
        rows: List[Tuple[Any, ...]]
    ) -> int:
        """Insert rows with one multi-row INSERT."""
        if not rows:
            return 0

        statement = (
            f"INSERT INTO {quote_identifier(table)} "
            f"({', '.join(quote_identifier(c) for c in columns)}) VALUES %s"
        )

        connection = self._require_connection()
        with connection.cursor() as cursor:
            self._execute(cursor, statement, values=rows)

        logger.debug(f"Inserted {len(rows)} rows into {table}")
        return len(rows)

    def reset_sequence(self, table: str) -> int:
        """Set the table's id sequence to max(id) + 1, or 1 when empty."""
        quoted = quote_identifier(table)
        connection = self._require_connection()

        if self.dry_run:
            statement = NEXT_SEQUENCE_VALUE.format(table=quoted)
            params: Tuple[Any, ...] = ()
        else:
            statement = RESTART_SEQUENCE.format(table=quoted)
            params = (quoted,)

        with connection.cursor() as cursor:
            self._execute(cursor, statement, params)
            row = cursor.fetchone()

        if row is None or row[0] is None:
            raise LoadExecutionError(
                f"Table {table} has no serial id sequence",
                statement=statement,
                params=params,
            )

        if self.dry_run:
            logger.debug(f"[dry run] Would restart {table} sequence at {row[0]}")
        return int(row[0])

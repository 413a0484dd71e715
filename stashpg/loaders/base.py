"""Base loader interface for the destination store."""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple
from datetime import datetime
import logging

from ..errors import StatementBuildError
from ..models.record import Batch, Row

logger = logging.getLogger(__name__)


@dataclass
class LoadResult:
    """Result of writing one batch."""
    table: str
    offset: int = 0
    total_attempted: int = 0
    total_written: int = 0
    total_skipped: int = 0
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "table": self.table,
            "offset": self.offset,
            "total_attempted": self.total_attempted,
            "total_written": self.total_written,
            "total_skipped": self.total_skipped,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
        }


def row_values(table: str, columns: Sequence[str], rows: List[Row]) -> List[Tuple[Any, ...]]:
    """
    Flatten rows to value tuples in column order.

    All rows of a batch must carry the same columns; the multi-row insert
    has a single column list.
    """
    expected = set(columns)
    values = []
    for idx, row in enumerate(rows):
        if row.keys() != expected:
            missing = sorted(expected - row.keys())
            extra = sorted(row.keys() - expected)
            raise StatementBuildError(
                f"Row {idx} of {table} does not match the batch columns "
                f"(missing: {missing}, unexpected: {extra})",
                statement=f"INSERT INTO {table} ({', '.join(columns)})",
                params=list(row.values()),
            )
        values.append(tuple(row[c] for c in columns))
    return values


class BaseLoader(ABC):
    """
    Base class for destination loaders.

    Loaders own the destination session. Every batch is written with one
    multi-row insert; ``load_batch`` wraps it in its own transaction unless
    the caller already holds one.
    """

    def __init__(self, target: str, dry_run: bool = False):
        """
        Initialize the loader.

        Args:
            target: Human-readable name of the destination
            dry_run: If True, read and repair but never write
        """
        self.target = target
        self.dry_run = dry_run
        self._written: Dict[str, int] = {}  # table -> rows written

    @abstractmethod
    def open(self) -> None:
        """Open the destination session and apply session settings."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Close the destination session."""
        pass

    @abstractmethod
    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Commit on normal exit, roll back if the block raises."""
        yield

    @abstractmethod
    def insert_rows(
        self,
        table: str,
        columns: Sequence[str],
        rows: List[Tuple[Any, ...]]
    ) -> int:
        """
        Insert rows with a single multi-row statement.

        Returns:
            Number of rows inserted
        """
        pass

    @abstractmethod
    def reset_sequence(self, table: str) -> int:
        """
        Point the table's ``id`` sequence past its largest id.

        Returns:
            The next id the sequence will generate
        """
        pass

    def load_batch(self, batch: Batch, in_transaction: bool = False) -> LoadResult:
        """
        Write a repaired batch.

        Args:
            batch: Batch to write; an empty batch is a no-op
            in_transaction: True when the caller already opened the
                transaction the insert should join

        Returns:
            LoadResult with batch statistics
        """
        result = LoadResult(table=batch.table, offset=batch.offset)
        result.started_at = datetime.utcnow()
        result.total_attempted = len(batch.rows)

        if batch.is_empty:
            result.completed_at = datetime.utcnow()
            return result

        columns = batch.columns
        values = row_values(batch.table, columns, batch.rows)

        if self.dry_run:
            logger.debug(f"[dry run] Would insert {len(values)} rows into {batch.table}")
            result.total_skipped = len(values)
        elif in_transaction:
            result.total_written = self.insert_rows(batch.table, columns, values)
        else:
            with self.transaction():
                result.total_written = self.insert_rows(batch.table, columns, values)

        self._written[batch.table] = self._written.get(batch.table, 0) + result.total_written
        result.completed_at = datetime.utcnow()
        return result

    def rows_written(self, table: Optional[str] = None) -> int:
        """Rows written so far, for one table or in total."""
        if table is not None:
            return self._written.get(table, 0)
        return sum(self._written.values())

    def __enter__(self) -> "BaseLoader":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

"""Shared fixtures: SQLite source files and an in-memory destination."""

import sqlite3
from contextlib import contextmanager
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import pytest

from stashpg.errors import LoadExecutionError
from stashpg.extractors.sqlite_extractor import SQLiteExtractor
from stashpg.loaders.base import BaseLoader
from stashpg.models.record import Batch


class MemoryLoader(BaseLoader):
    """
    Destination double that keeps tables in memory.

    Inserts are staged inside a transaction and only become visible on
    commit, so tests can observe rollbacks.
    """

    def __init__(self, dry_run: bool = False, fail_on: Optional[Tuple[str, int]] = None):
        super().__init__(target="memory", dry_run=dry_run)
        self.tables: Dict[str, List[Dict[str, Any]]] = {}
        self.sequences: Dict[str, int] = {}
        self.inserts: List[Tuple[str, int]] = []  # (table, row count) per statement
        self.commits = 0
        self.rollbacks = 0
        self.opened = False
        self.closed = False
        self.fail_on = fail_on  # (table, nth insert into it) that raises
        self._pending: Optional[List[Tuple[str, List[Dict[str, Any]]]]] = None
        self._insert_counts: Dict[str, int] = {}

    def open(self) -> None:
        self.opened = True

    def close(self) -> None:
        self.closed = True

    @contextmanager
    def transaction(self):
        assert self._pending is None, "nested transaction"
        self._pending = []
        try:
            yield
        except BaseException:
            self._pending = None
            self.rollbacks += 1
            raise
        for table, rows in self._pending:
            self.tables.setdefault(table, []).extend(rows)
        self._pending = None
        self.commits += 1

    def insert_rows(self, table: str, columns: Sequence[str], rows: List[Tuple[Any, ...]]) -> int:
        assert self._pending is not None, "insert outside a transaction"
        count = self._insert_counts.get(table, 0) + 1
        self._insert_counts[table] = count
        if self.fail_on == (table, count):
            raise LoadExecutionError(f"simulated failure inserting into {table}")

        self.inserts.append((table, len(rows)))
        self._pending.append((table, [dict(zip(columns, values)) for values in rows]))
        return len(rows)

    def reset_sequence(self, table: str) -> int:
        assert self._pending is not None, "sequence reset outside a transaction"
        committed = self.tables.get(table, [])
        staged = [r for t, rows in self._pending if t == table for r in rows]
        ids = [r["id"] for r in committed + staged]
        next_id = max(ids) + 1 if ids else 1
        self.sequences[table] = next_id
        return next_id

    def row_count(self, table: str) -> int:
        return len(self.tables.get(table, []))


class RecordingExtractor(SQLiteExtractor):
    """SQLite extractor that records the size of every fetch."""

    def __init__(self, path: str, **kwargs):
        super().__init__(path, **kwargs)
        self.fetches: List[Tuple[str, int, int]] = []  # (table, offset, rows returned)

    def extract_batch(self, table: str, offset: int = 0, limit: int = 1000) -> Batch:
        batch = super().extract_batch(table, offset=offset, limit=limit)
        self.fetches.append((table, offset, len(batch)))
        return batch

    def batch_sizes(self, table: str) -> List[int]:
        return [n for t, _, n in self.fetches if t == table]


def create_sqlite(path, schema: Iterable[str], data: Optional[Dict[str, List[tuple]]] = None) -> str:
    """Create a SQLite file with the given DDL and rows."""
    connection = sqlite3.connect(str(path))
    try:
        for ddl in schema:
            connection.execute(ddl)
        for table, rows in (data or {}).items():
            if not rows:
                continue
            placeholders = ", ".join("?" * len(rows[0]))
            connection.executemany(f'INSERT INTO "{table}" VALUES ({placeholders})', rows)
        connection.commit()
    finally:
        connection.close()
    return str(path)


@pytest.fixture
def memory_loader():
    return MemoryLoader()


@pytest.fixture
def parent_child_db(tmp_path):
    """Two related tables with 2500 rows each."""
    return create_sqlite(
        tmp_path / "parent_child.sqlite",
        schema=[
            "CREATE TABLE parent (id INTEGER PRIMARY KEY, name TEXT)",
            "CREATE TABLE child (id INTEGER PRIMARY KEY, parent_id INTEGER REFERENCES parent(id))",
        ],
        data={
            "parent": [(i, f"parent {i}") for i in range(1, 2501)],
            "child": [(i, i) for i in range(1, 2501)],
        },
    )

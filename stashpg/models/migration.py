"""Migration execution models."""

import json
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple
from enum import Enum
from datetime import datetime
import uuid

from ..errors import ConfigurationError

if TYPE_CHECKING:
    from ..services.repair import RepairRule


DEFAULT_PAGE_SIZE = 1000


class MigrationStatus(str, Enum):
    """Status of a migration run or of one table within it."""
    PENDING = "pending"
    LOADING = "loading"
    RESYNCING = "resyncing"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"


class TransactionScope(str, Enum):
    """How destination writes are grouped into transactions."""
    BATCH = "batch"  # Commit after every batch
    RUN = "run"  # One transaction for the whole migration


@dataclass(frozen=True)
class TableDescriptor:
    """A table to migrate and how to treat it."""
    name: str
    resync_sequence: bool = False
    repair: Optional["RepairRule"] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "name": self.name,
            "resync_sequence": self.resync_sequence,
            "repair": type(self.repair).__name__ if self.repair else None,
        }


def _default_tables() -> Tuple[TableDescriptor, ...]:
    from ..tables import STASH_TABLES
    return STASH_TABLES


@dataclass
class MigrationStep:
    """Progress of one table within a migration run."""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    table: str = ""
    status: MigrationStatus = MigrationStatus.PENDING
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    rows_read: int = 0
    rows_written: int = 0
    rows_dropped: int = 0
    rows_skipped: int = 0  # Read but not written because of a dry run
    batches_read: int = 0
    batches_written: int = 0
    issues: List[Dict[str, Any]] = field(default_factory=list)
    errors: List[Dict[str, Any]] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "table": self.table,
            "status": self.status.value,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "rows_read": self.rows_read,
            "rows_written": self.rows_written,
            "rows_dropped": self.rows_dropped,
            "rows_skipped": self.rows_skipped,
            "batches_read": self.batches_read,
            "batches_written": self.batches_written,
            "issues": self.issues,
            "errors": self.errors,
            "warnings": self.warnings,
        }

    @property
    def duration_seconds(self) -> Optional[float]:
        """Get duration in seconds."""
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    @property
    def is_balanced(self) -> bool:
        """Every row read was written, dropped by a repair rule, or skipped by a dry run."""
        return self.rows_read == self.rows_written + self.rows_dropped + self.rows_skipped


@dataclass
class MigrationRun:
    """A complete migration run."""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: MigrationStatus = MigrationStatus.PENDING
    dry_run: bool = False
    transaction_scope: TransactionScope = TransactionScope.BATCH

    # Timing
    created_at: datetime = field(default_factory=datetime.utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    # Progress
    steps: List[MigrationStep] = field(default_factory=list)
    current_step: Optional[str] = None
    sequences: Dict[str, int] = field(default_factory=dict)  # Table -> next id

    # Statistics
    total_rows_read: int = 0
    total_rows_written: int = 0
    total_rows_dropped: int = 0
    total_rows_skipped: int = 0

    errors: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "status": self.status.value,
            "dry_run": self.dry_run,
            "transaction_scope": self.transaction_scope.value,
            "created_at": self.created_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "steps": [s.to_dict() for s in self.steps],
            "current_step": self.current_step,
            "sequences": self.sequences,
            "total_rows_read": self.total_rows_read,
            "total_rows_written": self.total_rows_written,
            "total_rows_dropped": self.total_rows_dropped,
            "total_rows_skipped": self.total_rows_skipped,
            "errors": self.errors,
        }

    @property
    def duration_seconds(self) -> Optional[float]:
        """Get duration in seconds."""
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def add_step(self, table: str) -> MigrationStep:
        """Add a new table step to the migration."""
        step = MigrationStep(table=table)
        self.steps.append(step)
        return step

    def get_step(self, table: str) -> Optional[MigrationStep]:
        """Get the step for a table."""
        for step in self.steps:
            if step.table == table:
                return step
        return None

    def update_totals(self) -> None:
        """Update total statistics from steps."""
        self.total_rows_read = sum(s.rows_read for s in self.steps)
        self.total_rows_written = sum(s.rows_written for s in self.steps)
        self.total_rows_dropped = sum(s.rows_dropped for s in self.steps)
        self.total_rows_skipped = sum(s.rows_skipped for s in self.steps)


@dataclass(frozen=True)
class MigrationConfig:
    """
    Configuration for a migration run.

    Immutable once built. Holds the table order, page size and session
    settings the driver runs with.
    """
    destination_dsn: str
    source_path: str

    tables: Tuple[TableDescriptor, ...] = field(default_factory=_default_tables)
    page_size: int = DEFAULT_PAGE_SIZE
    transaction_scope: TransactionScope = TransactionScope.BATCH
    skip_missing_tables: bool = False
    dry_run: bool = False

    # Session settings
    disable_foreign_keys: bool = True
    source_busy_timeout_ms: int = 5000
    statement_timeout_ms: int = 0  # 0 keeps the server default

    def __post_init__(self):
        object.__setattr__(self, "tables", tuple(self.tables))
        if not isinstance(self.page_size, int) or self.page_size <= 0:
            raise ConfigurationError(f"page_size must be a positive integer, got {self.page_size!r}")
        if self.source_busy_timeout_ms < 0:
            raise ConfigurationError("source_busy_timeout_ms must not be negative")
        if self.statement_timeout_ms < 0:
            raise ConfigurationError("statement_timeout_ms must not be negative")
        if not isinstance(self.transaction_scope, TransactionScope):
            # frozen: go through object.__setattr__ to normalise strings
            try:
                object.__setattr__(self, "transaction_scope", TransactionScope(self.transaction_scope))
            except ValueError:
                raise ConfigurationError(
                    f"transaction_scope must be 'batch' or 'run', got {self.transaction_scope!r}"
                ) from None

        names = [t.name for t in self.tables]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ConfigurationError(f"Duplicate tables in migration order: {', '.join(duplicates)}")

    @property
    def sequence_tables(self) -> List[str]:
        """Tables whose id sequence is reset after the load."""
        return [t.name for t in self.tables if t.resync_sequence]

    def with_overrides(self, **changes: Any) -> "MigrationConfig":
        """Return a copy with some fields replaced."""
        data = {
            "destination_dsn": self.destination_dsn,
            "source_path": self.source_path,
            "tables": self.tables,
            "page_size": self.page_size,
            "transaction_scope": self.transaction_scope,
            "skip_missing_tables": self.skip_missing_tables,
            "dry_run": self.dry_run,
            "disable_foreign_keys": self.disable_foreign_keys,
            "source_busy_timeout_ms": self.source_busy_timeout_ms,
            "statement_timeout_ms": self.statement_timeout_ms,
        }
        data.update(changes)
        return MigrationConfig(**data)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation (the DSN is not included)."""
        return {
            "source_path": self.source_path,
            "tables": [t.name for t in self.tables],
            "sequence_tables": self.sequence_tables,
            "page_size": self.page_size,
            "transaction_scope": self.transaction_scope.value,
            "skip_missing_tables": self.skip_missing_tables,
            "dry_run": self.dry_run,
            "disable_foreign_keys": self.disable_foreign_keys,
            "source_busy_timeout_ms": self.source_busy_timeout_ms,
            "statement_timeout_ms": self.statement_timeout_ms,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MigrationConfig":
        """Create from dictionary representation."""
        from ..tables import build_tables

        tables = _default_tables()
        if data.get("tables") is not None or data.get("sequence_tables") is not None:
            tables = build_tables(
                names=data.get("tables"),
                sequence_tables=data.get("sequence_tables"),
            )

        return cls(
            destination_dsn=data.get("destination_dsn", ""),
            source_path=data.get("source_path", ""),
            tables=tables,
            page_size=data.get("page_size", DEFAULT_PAGE_SIZE),
            transaction_scope=data.get("transaction_scope", TransactionScope.BATCH.value),
            skip_missing_tables=data.get("skip_missing_tables", False),
            dry_run=data.get("dry_run", False),
            disable_foreign_keys=data.get("disable_foreign_keys", True),
            source_busy_timeout_ms=data.get("source_busy_timeout_ms", 5000),
            statement_timeout_ms=data.get("statement_timeout_ms", 0),
        )

    @classmethod
    def from_json_file(cls, filepath: str) -> "MigrationConfig":
        """Load configuration from a JSON file."""
        try:
            with open(filepath) as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Cannot read config file {filepath}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file {filepath} must contain a JSON object")
        return cls.from_dict(data)

"""Data models for the migration."""

from .migration import (
    MigrationConfig,
    MigrationRun,
    MigrationStep,
    MigrationStatus,
    TableDescriptor,
    TransactionScope,
)
from .record import (
    Row,
    Batch,
    RepairAction,
    RepairIssue,
    ValueKind,
)

__all__ = [
    "MigrationConfig",
    "MigrationRun",
    "MigrationStep",
    "MigrationStatus",
    "TableDescriptor",
    "TransactionScope",
    "Row",
    "Batch",
    "RepairAction",
    "RepairIssue",
    "ValueKind",
]

"""Service layer for the migration."""

from .repair import (
    RepairRule,
    IdentityRule,
    ClampIntegerRule,
    TypeTagRule,
    JsonValidityRule,
    TimestampRule,
    RowRepairer,
)
from .sequences import SequenceResynchronizer

__all__ = [
    "RepairRule",
    "IdentityRule",
    "ClampIntegerRule",
    "TypeTagRule",
    "JsonValidityRule",
    "TimestampRule",
    "RowRepairer",
    "SequenceResynchronizer",
]

"""Row and batch models for migration data."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
from enum import Enum
from datetime import date, datetime

# A row maps column name to a scalar, in the source's column order
Row = Dict[str, Any]


class ValueKind(str, Enum):
    """Runtime kind of a column value read from the source."""
    INTEGER = "integer"
    FLOAT = "float"
    TEXT = "text"
    BOOLEAN = "boolean"
    TIMESTAMP = "timestamp"
    BINARY = "binary"
    NULL = "null"

    @classmethod
    def of(cls, value: Any) -> "ValueKind":
        """Classify a scalar value."""
        if value is None:
            return cls.NULL
        # bool is a subclass of int
        if isinstance(value, bool):
            return cls.BOOLEAN
        if isinstance(value, int):
            return cls.INTEGER
        if isinstance(value, float):
            return cls.FLOAT
        if isinstance(value, str):
            return cls.TEXT
        if isinstance(value, (datetime, date)):
            return cls.TIMESTAMP
        if isinstance(value, (bytes, bytearray, memoryview)):
            return cls.BINARY
        raise TypeError(f"Unsupported column value type: {type(value).__name__}")


class RepairAction(str, Enum):
    """What a repair rule did to a value or row."""
    DROPPED = "dropped"
    SUBSTITUTED = "substituted"
    CLAMPED = "clamped"


@dataclass
class RepairIssue:
    """A data anomaly found and handled by a repair rule."""
    table: str
    column: str
    message: str
    action: RepairAction
    value: Optional[Any] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "table": self.table,
            "column": self.column,
            "message": self.message,
            "action": self.action.value,
            "value": self.value,
        }


@dataclass
class Batch:
    """
    One page of rows fetched from a source table.

    Created by a fetch, mutated in place by the table's repair rule and
    consumed by the write step. Rows keep the order they were read in.
    """
    table: str
    offset: int
    rows: List[Row] = field(default_factory=list)
    issues: List[RepairIssue] = field(default_factory=list)
    dropped: int = 0

    def __len__(self) -> int:
        return len(self.rows)

    @property
    def is_empty(self) -> bool:
        return not self.rows

    @property
    def columns(self) -> Tuple[str, ...]:
        """Column names of the batch, taken from its first row."""
        if not self.rows:
            return ()
        return tuple(self.rows[0].keys())

    def add_issue(
        self,
        column: str,
        message: str,
        action: RepairAction,
        value: Any = None
    ) -> RepairIssue:
        """Record a repair anomaly against this batch."""
        issue = RepairIssue(
            table=self.table,
            column=column,
            message=message,
            action=action,
            value=value,
        )
        self.issues.append(issue)
        return issue

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "table": self.table,
            "offset": self.offset,
            "row_count": len(self.rows),
            "dropped": self.dropped,
            "issues": [i.to_dict() for i in self.issues],
        }

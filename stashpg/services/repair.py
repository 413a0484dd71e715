"""Row repair rules applied to each batch before it is written."""

import json
import logging
from abc import ABC, abstractmethod
from typing import Callable, Dict, Iterable, Optional, Sequence
from datetime import datetime, timezone
from dateutil import parser as date_parser

from ..errors import RepairError
from ..models.record import Batch, RepairAction, Row, ValueKind
from ..utils import preview_value

logger = logging.getLogger(__name__)

INT32_MIN = -(2 ** 31)
INT32_MAX = 2 ** 31 - 1

# Earliest year a timestamp column may hold after repair
MIN_TIMESTAMP_YEAR = 1


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _reject_constant(name: str):
    raise ValueError(f"invalid JSON constant {name}")


class RepairRule(ABC):
    """
    A table-specific correction applied to one batch.

    Rules mutate the batch in place and return it. Only rules that filter
    rows may change the row count, and they must count what they drop.
    """

    @abstractmethod
    def repair(self, batch: Batch) -> Batch:
        """Repair a batch and return it."""
        pass

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class IdentityRule(RepairRule):
    """Pass rows through unmodified."""

    def repair(self, batch: Batch) -> Batch:
        return batch


IDENTITY = IdentityRule()


class ClampIntegerRule(RepairRule):
    """
    Clamp integer columns into a narrower integer range.

    The source stores 64-bit integers; columns declared as ``integer`` in
    PostgreSQL only hold 32 bits. Out-of-range values are saturated to the
    nearest bound instead of failing the insert.
    """

    def __init__(
        self,
        columns: Sequence[str],
        minimum: int = INT32_MIN,
        maximum: int = INT32_MAX
    ):
        if minimum > maximum:
            raise ValueError(f"Empty clamp range [{minimum}, {maximum}]")
        self.columns = tuple(columns)
        self.minimum = minimum
        self.maximum = maximum

    def clamp(self, value: int) -> int:
        if value > self.maximum:
            return self.maximum
        if value < self.minimum:
            return self.minimum
        return value

    def repair(self, batch: Batch) -> Batch:
        for row in batch.rows:
            for column in self.columns:
                value = row.get(column)
                if ValueKind.of(value) is not ValueKind.INTEGER:
                    continue

                clamped = self.clamp(value)
                if clamped != value:
                    row[column] = clamped
                    batch.add_issue(
                        column=column,
                        message=f"value out of range [{self.minimum}, {self.maximum}], clamped to {clamped}",
                        action=RepairAction.CLAMPED,
                        value=value,
                    )
                    logger.warning(f"Clamped {batch.table}.{column} from {value} to {clamped}")
        return batch

    def __repr__(self) -> str:
        return f"ClampIntegerRule({list(self.columns)}, {self.minimum}, {self.maximum})"


class TypeTagRule(RepairRule):
    """Store the kind of a polymorphic value column in a discriminator column."""

    def __init__(self, value_column: str = "value", tag_column: str = "type"):
        self.value_column = value_column
        self.tag_column = tag_column

    def repair(self, batch: Batch) -> Batch:
        for row in batch.rows:
            row[self.tag_column] = ValueKind.of(row.get(self.value_column)).value
        return batch


class JsonValidityRule(RepairRule):
    """
    Drop rows whose serialized-JSON columns do not parse.

    Text and binary values are parsed as strict JSON: ``NaN``, ``Infinity``
    and ``-Infinity`` are rejected. NULL and non-text values are accepted
    as they are. A row is dropped at the first failing column.
    """

    def __init__(self, columns: Sequence[str]):
        self.columns = tuple(columns)

    def _check(self, value) -> Optional[str]:
        """Return the parse error for a value, or None if it is valid."""
        kind = ValueKind.of(value)
        if kind not in (ValueKind.TEXT, ValueKind.BINARY):
            return None

        try:
            text = value if kind is ValueKind.TEXT else bytes(value).decode("utf-8")
            json.loads(text, parse_constant=_reject_constant)
        except ValueError as e:
            # JSONDecodeError and UnicodeDecodeError are both ValueErrors
            return str(e)
        return None

    def _is_valid(self, batch: Batch, row: Row) -> bool:
        for column in self.columns:
            if column not in row:
                continue
            error = self._check(row[column])
            if error is None:
                continue

            batch.add_issue(
                column=column,
                message=f"invalid JSON: {error}",
                action=RepairAction.DROPPED,
                value=row[column],
            )
            logger.warning(
                f"Skipping {batch.table} row due to invalid JSON in {column}: {error}\n"
                f"Data: {preview_value(row[column])}"
            )
            return False
        return True

    def repair(self, batch: Batch) -> Batch:
        valid_rows = [row for row in batch.rows if self._is_valid(batch, row)]
        batch.dropped += len(batch.rows) - len(valid_rows)
        batch.rows = valid_rows
        return batch

    def __repr__(self) -> str:
        return f"JsonValidityRule({list(self.columns)})"


class TimestampRule(RepairRule):
    """
    Normalize timestamp columns to values PostgreSQL accepts.

    Accepts parsed datetimes or ISO 8601 text. Unparseable text, values
    dated before year 1, and values of any other kind are replaced by the
    current UTC time.
    """

    def __init__(
        self,
        columns: Sequence[str],
        min_year: int = MIN_TIMESTAMP_YEAR,
        clock: Callable[[], datetime] = utc_now
    ):
        self.columns = tuple(columns)
        self.min_year = min_year
        self.clock = clock

    def _substitute(self, batch: Batch, row: Row, column: str, reason: str) -> None:
        replacement = self.clock()
        batch.add_issue(
            column=column,
            message=f"{reason}, using current time",
            action=RepairAction.SUBSTITUTED,
            value=row[column],
        )
        logger.warning(
            f"{reason} for {batch.table}.{column}: {preview_value(row[column])}, "
            f"using {replacement.isoformat()}"
        )
        row[column] = replacement

    def repair(self, batch: Batch) -> Batch:
        for row in batch.rows:
            for column in self.columns:
                if column not in row:
                    continue

                value = row[column]
                kind = ValueKind.of(value)

                if kind is ValueKind.TIMESTAMP:
                    if value.year < self.min_year:
                        self._substitute(batch, row, column, "Out-of-range time")
                elif kind is ValueKind.TEXT:
                    try:
                        parsed = date_parser.isoparse(value)
                    except (ValueError, OverflowError):
                        self._substitute(batch, row, column, "Invalid time")
                        continue

                    if parsed.year < self.min_year:
                        self._substitute(batch, row, column, "Out-of-range time")
                    else:
                        row[column] = parsed
                else:
                    self._substitute(batch, row, column, "Unrecognized time format")
        return batch

    def __repr__(self) -> str:
        return f"TimestampRule({list(self.columns)})"


class RowRepairer:
    """
    Dispatches batches to the repair rule registered for their table.

    Tables without a registered rule pass through unchanged.
    """

    def __init__(self, rules: Optional[Dict[str, RepairRule]] = None):
        self._rules: Dict[str, RepairRule] = dict(rules or {})

    @classmethod
    def from_tables(cls, tables: Iterable) -> "RowRepairer":
        """Build a repairer from table descriptors carrying rules."""
        return cls({t.name: t.repair for t in tables if t.repair is not None})

    def register_rule(self, table: str, rule: RepairRule) -> None:
        """Register or replace the rule for a table."""
        self._rules[table] = rule

    def rule_for(self, table: str) -> RepairRule:
        return self._rules.get(table, IDENTITY)

    def repair(self, table: str, batch: Batch) -> Batch:
        """Apply the table's rule to a batch."""
        before = len(batch.rows)
        rule = self.rule_for(table)
        try:
            batch = rule.repair(batch)
        except TypeError as e:
            # ValueKind.of on an unsupported value type
            raise RepairError(f"{rule!r} failed on {table} at offset {batch.offset}: {e}") from e

        if before - len(batch.rows) != batch.dropped:
            raise RepairError(
                f"Repair rule for {table} changed the row count without recording the drops"
            )
        return batch

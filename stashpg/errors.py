"""Exception types raised by the migration pipeline."""

from typing import Any, Optional, Sequence

from .utils import preview_params


class MigrationError(Exception):
    """Base class for every unrecoverable migration failure."""


class ConfigurationError(MigrationError):
    """Invalid migration configuration."""


class ConnectionFailure(MigrationError):
    """A store could not be opened or its session could not be set up."""


class SourceConnectionError(ConnectionFailure):
    """The SQLite source could not be opened."""


class DestinationConnectionError(ConnectionFailure):
    """The PostgreSQL destination could not be opened."""


class StatementError(MigrationError):
    """
    A statement failed to build or to execute.

    Carries the statement text and its arguments so the fatal log line
    identifies exactly what was sent to the store.
    """

    def __init__(
        self,
        message: str,
        statement: Optional[str] = None,
        params: Optional[Sequence[Any]] = None
    ):
        self.statement = statement
        self.params = params
        details = message
        if statement:
            details += f"\n  statement: {statement}"
        if params is not None:
            details += f"\n  params: {preview_params(params)}"
        super().__init__(details)


class SourceQueryError(StatementError):
    """A SELECT against the source failed."""


class StatementBuildError(StatementError):
    """A destination statement could not be built from a batch."""


class LoadExecutionError(StatementError):
    """A destination statement failed while executing."""


class OperationTimeout(StatementError):
    """A source or destination operation exceeded its configured timeout."""


class RepairError(MigrationError):
    """A repair rule could not process a batch."""

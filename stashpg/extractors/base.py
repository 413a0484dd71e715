"""Base extractor interface."""

from abc import ABC, abstractmethod
from typing import Iterator
import logging

from ..models.record import Batch

logger = logging.getLogger(__name__)


class BaseExtractor(ABC):
    """
    Base class for source extractors.

    Extractors read a table in fixed-size pages. Paging is by offset over
    the store's natural row order, so batches come out in the order the
    rows are stored and every call re-scans the skipped rows.
    """

    def __init__(self, source: str):
        """
        Initialize the extractor.

        Args:
            source: Human-readable name of the source
        """
        self.source = source

    @abstractmethod
    def open(self) -> None:
        """Open the source session."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Close the source session."""
        pass

    @abstractmethod
    def table_exists(self, table: str) -> bool:
        """Check whether the source has a table."""
        pass

    @abstractmethod
    def extract_batch(self, table: str, offset: int = 0, limit: int = 1000) -> Batch:
        """
        Extract one page of a table.

        Args:
            table: Table to read
            offset: Number of rows to skip
            limit: Maximum rows to return

        Returns:
            Batch of rows; empty once the table is exhausted
        """
        pass

    def stream(self, table: str, page_size: int) -> Iterator[Batch]:
        """
        Stream a table in pages until a fetch comes back empty.

        A short page does not end the loop; only an empty one does.

        Yields:
            Non-empty batches in read order
        """
        if page_size <= 0:
            raise ValueError(f"page_size must be positive, got {page_size}")

        offset = 0
        while True:
            batch = self.extract_batch(table, offset=offset, limit=page_size)
            if batch.is_empty:
                break

            yield batch
            offset += page_size

    def __enter__(self) -> "BaseExtractor":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

"""Sequence resynchronization after the bulk load."""

import logging
from contextlib import nullcontext
from typing import Dict, Iterable

from ..loaders.base import BaseLoader

logger = logging.getLogger(__name__)


class SequenceResynchronizer:
    """
    Resets surrogate-key sequences so new inserts do not collide with
    migrated ids.

    Each table's ``id`` sequence is set so that the next generated value is
    ``max(id) + 1``, or ``1`` for an empty table. Statement order does not
    matter; all resets share one trailing transaction unless the caller
    already holds one.
    """

    def __init__(self, loader: BaseLoader):
        self.loader = loader

    def resync(self, tables: Iterable[str], in_transaction: bool = False) -> Dict[str, int]:
        """
        Reset the sequences of the given tables.

        Args:
            tables: Tables with a serial ``id`` column
            in_transaction: True when the caller already opened the
                transaction the resets should join

        Returns:
            Dictionary of table -> next id that will be generated
        """
        tables = list(tables)
        if not tables:
            return {}

        logger.info("Setting sequences...")
        next_ids: Dict[str, int] = {}

        scope = nullcontext() if in_transaction else self.loader.transaction()
        with scope:
            for table in tables:
                next_id = self.loader.reset_sequence(table)
                next_ids[table] = next_id
                logger.debug(f"Sequence for {table} now starts at {next_id}")

        logger.info(f"Reset {len(next_ids)} sequences")
        return next_ids

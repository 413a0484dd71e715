"""Migration orchestrator - drives the table-by-table batch migration."""

import logging
from contextlib import nullcontext
from datetime import datetime
from typing import List, Optional, Set

from .models.migration import (
    MigrationConfig,
    MigrationRun,
    MigrationStatus,
    MigrationStep,
    TableDescriptor,
    TransactionScope,
)
from .services.repair import RowRepairer
from .services.sequences import SequenceResynchronizer
from .extractors.base import BaseExtractor
from .extractors.sqlite_extractor import SQLiteExtractor
from .loaders.base import BaseLoader
from .loaders.postgres_loader import PostgresLoader

logger = logging.getLogger(__name__)


class MigrationOrchestrator:
    """
    Orchestrates the complete migration.

    For every table, in configured order:
    - page through the source with LIMIT/OFFSET until a fetch is empty
    - repair each batch with the table's rule
    - write each batch with one multi-row insert

    Then the id sequences are resynchronized and both stores are closed.
    Any fetch or write error aborts the run; nothing is retried.
    """

    def __init__(
        self,
        config: MigrationConfig,
        extractor: Optional[BaseExtractor] = None,
        loader: Optional[BaseLoader] = None,
        repairer: Optional[RowRepairer] = None
    ):
        """
        Initialize the orchestrator.

        Args:
            config: Migration configuration
            extractor: Source extractor (defaults to SQLite at config.source_path)
            loader: Destination loader (defaults to PostgreSQL at config.destination_dsn)
            repairer: Repair rule registry (defaults to the rules on config.tables)
        """
        self.config = config
        self.extractor = extractor or self._create_extractor()
        self.loader = loader or self._create_loader()
        self.repairer = repairer or RowRepairer.from_tables(config.tables)

        # Runtime state
        self.run: Optional[MigrationRun] = None
        self._skipped: Set[str] = set()

    def _create_extractor(self) -> BaseExtractor:
        return SQLiteExtractor(
            path=self.config.source_path,
            busy_timeout_ms=self.config.source_busy_timeout_ms,
        )

    def _create_loader(self) -> BaseLoader:
        return PostgresLoader(
            dsn=self.config.destination_dsn,
            dry_run=self.config.dry_run,
            disable_foreign_keys=self.config.disable_foreign_keys,
            statement_timeout_ms=self.config.statement_timeout_ms,
        )

    @property
    def _run_scoped(self) -> bool:
        return self.config.transaction_scope is TransactionScope.RUN

    def run_migration(self) -> MigrationRun:
        """
        Run the complete migration.

        Returns:
            MigrationRun with per-table statistics

        Raises:
            MigrationError: on any connection, statement or execution failure
        """
        self.run = MigrationRun(
            dry_run=self.config.dry_run,
            transaction_scope=self.config.transaction_scope,
        )
        self.run.started_at = datetime.utcnow()
        self._skipped = set()

        try:
            self.extractor.open()
            self.loader.open()

            # In run scope the loads and the resync share one transaction
            scope = self.loader.transaction() if self._run_scoped else nullcontext()
            with scope:
                self.run.status = MigrationStatus.LOADING
                for table in self.config.tables:
                    self._migrate_table(table)

                self.run.status = MigrationStatus.RESYNCING
                self._resync_sequences()

            self.run.status = MigrationStatus.COMPLETED
            self.run.update_totals()
            logger.info(
                f"Migrated {self.run.total_rows_written} rows from {len(self.config.tables)} tables"
                + (" (dry run, nothing written)" if self.config.dry_run else "")
            )

        except Exception as e:
            logger.error(f"Migration failed: {e}")
            self.run.errors.append({
                "phase": self.run.status.value,
                "error": str(e),
                "timestamp": datetime.utcnow().isoformat(),
            })
            self.run.status = MigrationStatus.FAILED
            raise

        finally:
            self.run.completed_at = datetime.utcnow()
            self.run.update_totals()
            self._close_stores()

        return self.run

    def _migrate_table(self, table: TableDescriptor) -> MigrationStep:
        """Page one table from source to destination."""
        step = self.run.add_step(table.name)
        step.started_at = datetime.utcnow()
        self.run.current_step = step.id

        try:
            if not self.extractor.table_exists(table.name):
                if self.config.skip_missing_tables:
                    message = f"Table {table.name} not found in source, skipping"
                    logger.warning(message)
                    step.warnings.append(message)
                    step.status = MigrationStatus.SKIPPED
                    self._skipped.add(table.name)
                    return step
                # Not skipping: let the first fetch report the missing table

            logger.info(f"Fetching {table.name}")
            step.status = MigrationStatus.LOADING

            for batch in self.extractor.stream(table.name, self.config.page_size):
                step.rows_read += len(batch)
                step.batches_read += 1

                batch = self.repairer.repair(table.name, batch)
                step.rows_dropped += batch.dropped
                step.issues.extend(issue.to_dict() for issue in batch.issues)

                result = self.loader.load_batch(batch, in_transaction=self._run_scoped)
                step.rows_written += result.total_written
                step.rows_skipped += result.total_skipped
                if result.total_written:
                    step.batches_written += 1

                logger.debug(
                    f"{table.name}: offset {batch.offset}, {result.total_written} written, "
                    f"{batch.dropped} dropped"
                )

            step.status = MigrationStatus.COMPLETED
            logger.info(
                f"Loaded {step.rows_written}/{step.rows_read} {table.name} rows"
                + (f" ({step.rows_dropped} dropped)" if step.rows_dropped else "")
            )

        except Exception as e:
            step.status = MigrationStatus.FAILED
            step.errors.append({"error": str(e), "rows_read": step.rows_read})
            raise

        finally:
            step.completed_at = datetime.utcnow()

        return step

    def _resync_sequences(self) -> None:
        tables: List[str] = [
            name for name in self.config.sequence_tables if name not in self._skipped
        ]
        resync = SequenceResynchronizer(self.loader)
        self.run.sequences = resync.resync(tables, in_transaction=self._run_scoped)

    def _close_stores(self) -> None:
        self.extractor.close()
        self.loader.close()

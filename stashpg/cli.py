"""Command-line entry point for the SQLite to PostgreSQL migration."""

import argparse
import logging
import os
import sys
from typing import Optional, TextIO

from .errors import ConfigurationError, MigrationError
from .models.migration import MigrationConfig, MigrationRun, MigrationStatus, TransactionScope
from .orchestrator import MigrationOrchestrator

logger = logging.getLogger(__name__)

DSN_ENV = "STASHPG_DSN"
SOURCE_ENV = "STASHPG_SOURCE"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="stashpg",
        description="Migrate a stash SQLite database into an existing PostgreSQL schema",
    )
    parser.add_argument("--config", help="Path to a JSON migration config file")
    parser.add_argument("--dsn", help=f"PostgreSQL connection string (or ${DSN_ENV})")
    parser.add_argument("--source", help=f"Path to the SQLite database (or ${SOURCE_ENV})")
    parser.add_argument("--page-size", type=int, help="Rows fetched and inserted per batch")
    parser.add_argument(
        "--transaction-scope",
        choices=[s.value for s in TransactionScope],
        help="Commit after every batch (default) or once for the whole run",
    )
    parser.add_argument(
        "--statement-timeout",
        type=int,
        metavar="MS",
        help="PostgreSQL statement_timeout in milliseconds",
    )
    parser.add_argument(
        "--skip-missing-tables",
        action="store_true",
        help="Skip tables the source does not have instead of aborting",
    )
    parser.add_argument("--dry-run", action="store_true", help="Read and repair without writing")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")
    return parser


def prompt(label: str, stdin: TextIO, stdout: TextIO) -> str:
    """Read one line from stdin after printing a label."""
    print(label, file=stdout, flush=True)
    line = stdin.readline()
    if not line:
        raise ConfigurationError(f"No input for {label.rstrip(':')}")
    return line.strip()


def resolve_config(
    args: argparse.Namespace,
    stdin: Optional[TextIO] = None,
    stdout: Optional[TextIO] = None
) -> MigrationConfig:
    """
    Combine config file, flags, environment and prompts into one config.

    Flags win over the config file, which wins over the environment. A
    DSN or source path still missing is read from stdin, DSN first.
    """
    stdin = stdin or sys.stdin
    stdout = stdout or sys.stdout

    if args.config:
        config = MigrationConfig.from_json_file(args.config)
    else:
        config = MigrationConfig(destination_dsn="", source_path="")

    overrides = {}
    if args.page_size is not None:
        overrides["page_size"] = args.page_size
    if args.transaction_scope:
        overrides["transaction_scope"] = args.transaction_scope
    if args.statement_timeout is not None:
        overrides["statement_timeout_ms"] = args.statement_timeout
    if args.dry_run:
        overrides["dry_run"] = True
    if args.skip_missing_tables:
        overrides["skip_missing_tables"] = True

    dsn = args.dsn or config.destination_dsn or os.environ.get(DSN_ENV)
    source = args.source or config.source_path or os.environ.get(SOURCE_ENV)

    if not dsn:
        dsn = prompt("postgres connector:", stdin, stdout)
    if not source:
        source = prompt("sqlite db path:", stdin, stdout)

    if not dsn:
        raise ConfigurationError("A PostgreSQL connection string is required")
    if not source:
        raise ConfigurationError("A SQLite database path is required")

    overrides["destination_dsn"] = dsn
    overrides["source_path"] = source
    return config.with_overrides(**overrides)


def print_summary(run: MigrationRun, stdout: Optional[TextIO] = None) -> None:
    """Print per-table results."""
    stdout = stdout or sys.stdout
    print("\n" + "=" * 60, file=stdout)
    print("MIGRATION COMPLETE" + (" (DRY RUN)" if run.dry_run else ""), file=stdout)
    print("=" * 60, file=stdout)

    for step in run.steps:
        if step.status == MigrationStatus.SKIPPED:
            print(f"  {step.table:<28} skipped (not in source)", file=stdout)
            continue
        line = f"  {step.table:<28} {step.rows_written:>9} written"
        if step.rows_dropped:
            line += f", {step.rows_dropped} dropped"
        if step.rows_skipped:
            line += f", {step.rows_skipped} not written"
        print(line, file=stdout)

    print(f"\nRows Read: {run.total_rows_read}", file=stdout)
    print(f"Rows Written: {run.total_rows_written}", file=stdout)
    print(f"Rows Dropped: {run.total_rows_dropped}", file=stdout)
    print(f"Sequences Reset: {len(run.sequences)}", file=stdout)
    if run.duration_seconds:
        print(f"Duration: {run.duration_seconds:.2f} seconds", file=stdout)


def main(argv: Optional[list] = None) -> int:
    """Main entry point for the CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    # Set up logging
    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    try:
        config = resolve_config(args)
        run = MigrationOrchestrator(config).run_migration()
    except MigrationError as e:
        logger.critical(f"Migration aborted: {e}")
        return 1

    print_summary(run)
    print("Migration successful!")
    return 0


if __name__ == "__main__":
    sys.exit(main())

"""
Rule Migration Orchestrator

Coordinates the complete migration workflow:
- Open the database pool and load table sources from configuration
- For each table: validate access, download, parse, transform, load
- Collect every failure in one error aggregator
- Produce a summary and a grouped error report
"""

import argparse
import logging
import os
import sys
import time
from typing import Any, Callable, Dict, List, Optional

import psycopg2

from config.settings import Settings
from db.config_store import TableSourceRepository
from db.connection import DatabaseConnection
from db.schema import DEFAULT_TABLE_SOURCES, MAX_IDENTIFIER_LENGTH, is_valid_table_name
from rulesync.error_aggregator import ErrorAggregator
from rulesync.errors import (
    ConfigurationMissing,
    MigrationError,
    NetworkFailure,
    StoreUnavailable,
)
from rulesync.extract import SheetFetcher
from rulesync.load import RuleLoader
from rulesync.metrics import MigrationSummary, TableMigrationResult
from rulesync.models import RunOptions, TableSource
from rulesync.parser import TabularParser
from rulesync.transform import count_rows, select_strategy

logger = logging.getLogger(__name__)

ORCHESTRATOR_SOURCE = "MigrationOrchestrator"


class MigrationOrchestrator:
    """
    Orchestrates a migration run.

    Workflow:
    1. Open the connection pool and check it (fatal on failure)
    2. Ensure and seed the configuration table, then read table sources
    3. Migrate each table in configuration order; a failing table is
       recorded and the run moves on
    4. Build the summary and emit the error report
    """

    def __init__(
        self,
        settings: Settings,
        options: Optional[RunOptions] = None,
        errors: Optional[ErrorAggregator] = None,
        db_factory: Optional[Callable[[Settings], DatabaseConnection]] = None,
        fetcher: Optional[SheetFetcher] = None,
        parser: Optional[TabularParser] = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            settings: Configuration object with database and API settings
            options: Run options (defaults derived from settings)
            errors: Error aggregator shared by every stage
            db_factory: Builds the connection pool from settings
            fetcher: Spreadsheet downloader
            parser: Workbook parser
        """
        self.settings = settings
        self.options = options or RunOptions(
            batch_size=settings.BATCH_SIZE,
            streaming_batch_size=settings.STREAMING_BATCH_SIZE,
        )
        self.errors = errors or ErrorAggregator()
        self.db_factory = db_factory or DatabaseConnection.from_settings
        self.fetcher = fetcher or SheetFetcher(
            settings.GOOGLE_CREDENTIALS_PATH, timeout=settings.DOWNLOAD_TIMEOUT
        )
        self.parser = parser or TabularParser(self.errors)
        self.db: Optional[DatabaseConnection] = None

    def run(self) -> MigrationSummary:
        """
        Execute the migration.

        Returns:
            MigrationSummary (success is False if anything failed)
        """
        started = time.monotonic()
        logger.info("=" * 60)
        logger.info("Starting Rule Migration" + (" (DRY RUN)" if self.options.dry_run else ""))
        logger.info("=" * 60)

        try:
            try:
                sources = self._setup()
            except MigrationError as e:
                self.errors.add_exception(e)
                summary = MigrationSummary.failed_setup(self.errors.count(), time.monotonic() - started)
                return self._finish(summary)

            if self.options.config_only:
                logger.info("Configuration ready; skipping table migration")
                summary = MigrationSummary.from_results([], self.errors.count(), time.monotonic() - started)
                return self._finish(summary)

            results: List[TableMigrationResult] = []
            for index, source in enumerate(sources, 1):
                logger.info(f"[{index}/{len(sources)}] Migrating {source.table_name}")
                results.append(self._migrate_table(source))

            summary = MigrationSummary.from_results(results, self.errors.count(), time.monotonic() - started)
            return self._finish(summary)

        finally:
            self._close()

    def status(self) -> List[Dict[str, Any]]:
        """
        Report the record count of every configured table. Writes nothing.

        Returns:
            One {"table_name", "record_count"} entry per source; empty when
            the store or configuration is unavailable
        """
        try:
            try:
                sources = self._setup(read_only=True)
            except MigrationError as e:
                self.errors.add_exception(e)
                self.errors.log_final_report()
                return []

            loader = RuleLoader(self.db, self.errors)
            report = []
            for source in sources:
                report.append({"table_name": source.table_name, "record_count": loader.count_rows(source.table_name)})

            logger.info("Database status:")
            for entry in report:
                logger.info(f"  {entry['table_name']}: {entry['record_count']} records")
            logger.info(f"Total records: {sum(entry['record_count'] for entry in report)}")
            return report
        finally:
            self._close()

    def validate_sources(self) -> List[Dict[str, Any]]:
        """
        Check every configured source without loading anything.

        Each source must have a valid table name, be reachable, and download
        as a workbook whose structure passes the parser checks.

        Returns:
            One entry per source with table_name, is_valid, errors, warnings
            and, when the API answers, title and sheet_count
        """
        try:
            try:
                sources = self._setup(read_only=True)
            except MigrationError as e:
                self.errors.add_exception(e)
                self.errors.log_final_report()
                return []

            results = [self._validate_source(source) for source in sources]
            valid = [entry["table_name"] for entry in results if entry["is_valid"]]
            invalid = [entry["table_name"] for entry in results if not entry["is_valid"]]
            logger.info(f"Valid sources: {len(valid)}/{len(results)}")
            if invalid:
                logger.warning(f"Invalid sources: {', '.join(invalid)}")
            self.errors.log_final_report()
            return results
        finally:
            self._close()

    def _validate_source(self, source: TableSource) -> Dict[str, Any]:
        entry: Dict[str, Any] = {
            "table_name": source.table_name,
            "is_valid": False,
            "errors": [],
            "warnings": [],
        }
        context = {"table": source.table_name, "url": source.source_url}

        if not is_valid_table_name(source.table_name):
            entry["errors"].append(f"Invalid table name: {source.table_name!r}")

        try:
            if not self.fetcher.validate_access(source.source_url):
                raise NetworkFailure("Spreadsheet URL is not accessible", dict(context))

            try:
                entry.update(self.fetcher.get_sheet_info(source.source_url))
                logger.info(f"{source.table_name}: '{entry['title']}' with {entry['sheet_count']} sheet(s)")
            except Exception as e:
                entry["warnings"].append(f"Sheet information unavailable: {e}")

            structure = self.parser.validate_structure(self.fetcher.download(source.source_url))
            entry["errors"].extend(structure["errors"])
            entry["warnings"].extend(structure["warnings"])
        except MigrationError as e:
            entry["errors"].append(str(e))

        entry["is_valid"] = not entry["errors"]
        if not entry["is_valid"]:
            self.errors.add(
                ORCHESTRATOR_SOURCE,
                f"Source for {source.table_name} failed validation",
                dict(context, errors="; ".join(entry["errors"])),
            )
        for warning in entry["warnings"]:
            self.errors.add_warning(ORCHESTRATOR_SOURCE, warning, dict(context))
        return entry

    def _close(self) -> None:
        if self.db is not None:
            self.db.close_all()
            self.db = None
        self.fetcher.close()

    def _finish(self, summary: MigrationSummary) -> MigrationSummary:
        logger.info("=" * 60)
        logger.info("Rule Migration " + ("Completed Successfully" if summary.success else "Completed With Errors"))
        logger.info("=" * 60)
        summary.log()
        self.errors.log_final_report()
        return summary

    def _setup(self, read_only: Optional[bool] = None) -> List[TableSource]:
        """
        Connect to the store and resolve the tables to migrate.

        Args:
            read_only: Skip creating and seeding the configuration table
                (defaults to the dry-run option)

        Raises:
            StoreUnavailable: If the database cannot be reached or queried
            ConfigurationMissing: If no source matches the run
        """
        logger.info("Initializing database connection...")
        try:
            self.db = self.db_factory(self.settings)
        except Exception as e:
            raise StoreUnavailable(
                f"Could not connect to database: {e}",
                {"host": self.settings.DB_HOST, "database": self.settings.DB_NAME},
            ) from e

        if not self.db.health_check():
            raise StoreUnavailable(
                "Database health check failed",
                {"host": self.settings.DB_HOST, "database": self.settings.DB_NAME},
            )
        logger.info("Database connection established")

        repository = TableSourceRepository(self.db)
        try:
            if read_only is None:
                read_only = self.options.dry_run
            if read_only:
                sources = self._read_sources(repository)
            else:
                repository.ensure_table()
                repository.seed()
                sources = repository.list_sources()
        except psycopg2.Error as e:
            raise StoreUnavailable(f"Could not prepare configuration table: {e}") from e

        target = self.options.target_table
        if target:
            sources = [source for source in sources if source.table_name == target]
            if not sources:
                raise ConfigurationMissing(
                    f"No configuration found for table: {target}", {"table": target}
                )

        if not sources:
            raise ConfigurationMissing("No table sources configured")

        logger.info(f"Tables to migrate: {', '.join(source.table_name for source in sources)}")
        return sources

    def _read_sources(self, repository: TableSourceRepository) -> List[TableSource]:
        """Read sources without writing; fall back to the built-in list."""
        try:
            sources = repository.list_sources()
        except psycopg2.Error as e:
            logger.warning(f"Configuration table unavailable ({e}); using built-in sources")
            return list(DEFAULT_TABLE_SOURCES)
        return sources or list(DEFAULT_TABLE_SOURCES)

    def _migrate_table(self, source: TableSource) -> TableMigrationResult:
        """
        Migrate one table. Never raises; failures land in the result and
        the aggregator.
        """
        result = TableMigrationResult(table_name=source.table_name, source_url=source.source_url)
        started = time.monotonic()
        context = {"table": source.table_name, "url": source.source_url}

        try:
            if not is_valid_table_name(source.table_name):
                raise ConfigurationMissing(
                    f"Invalid table name: {source.table_name!r} (lowercase letters, digits and "
                    f"underscores, starting with a letter, at most {MAX_IDENTIFIER_LENGTH} characters)",
                    dict(context),
                )

            if not self.fetcher.validate_access(source.source_url):
                raise NetworkFailure("Spreadsheet URL is not accessible", dict(context))

            data = self.fetcher.download(source.source_url)
            sheets = self.parser.parse(data, source.table_name)

            total_rows = count_rows(sheets)
            strategy = select_strategy(
                total_rows,
                self.errors,
                threshold=self.settings.LARGE_DATASET_THRESHOLD,
                streaming_batch_size=self.options.streaming_batch_size,
            )
            result.strategy = strategy.name

            output = strategy.transform(sheets, source.table_name)
            load_result = RuleLoader(self.db, self.errors).load(source.table_name, output, self.options)

            # Streaming stats are final only once the loader has drained the cursor.
            failed_rows = output.stats.failed_rows
            result.records_inserted = load_result.inserted
            result.records_skipped = load_result.skipped + failed_rows
            result.errors.extend(load_result.errors)
            if failed_rows:
                result.errors.append(f"{failed_rows} row(s) failed to transform")

        except MigrationError as e:
            self.errors.add_exception(e, context)
            result.errors.append(str(e))
        except Exception as e:
            self.errors.add(
                ORCHESTRATOR_SOURCE,
                f"Unexpected error migrating {source.table_name}: {e}",
                dict(context, error_type=type(e).__name__),
            )
            logger.debug("Unexpected table failure", exc_info=True)
            result.errors.append(str(e))
        finally:
            result.duration_seconds = time.monotonic() - started

        status = "failed" if result.failed else "completed"
        logger.info(
            f"Table {source.table_name} {status}: {result.records_inserted} inserted, "
            f"{result.records_skipped} skipped in {result.duration_seconds:.2f}s"
        )
        return result


def setup_logging(log_file: str = "logs/migration.log", console_level: int = logging.INFO) -> None:
    """
    Configure logging for the migration.

    Args:
        log_file: Path to log file
        console_level: Console handler level
    """
    log_dir = os.path.dirname(log_file)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)

    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # File handler
    file_handler = logging.FileHandler(log_file)
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(formatter)

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(console_level)
    console_handler.setFormatter(formatter)

    # Root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.addHandler(file_handler)
    root_logger.addHandler(console_handler)


def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid integer: {value}")
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be a positive integer: {value}")
    return number


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rulesync",
        description="Migrate marketplace rule spreadsheets from Google Sheets into PostgreSQL.",
    )
    parser.add_argument("-t", "--table", help="Migrate only this table")
    parser.add_argument("-d", "--dry-run", action="store_true", help="Run without writing to the database")
    parser.add_argument("--truncate", action="store_true", help="Empty each table before loading")
    parser.add_argument("--skip-existing", action="store_true", help="Ignore rows that conflict with existing ones")
    parser.add_argument("--batch-size", type=_positive_int, help="Records per insert batch")
    parser.add_argument("--config-only", action="store_true", help="Only prepare the configuration table")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--status", action="store_true", help="Report record counts per table and exit")
    mode.add_argument("--validate", action="store_true", help="Check every source without loading")
    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument("-v", "--verbose", action="store_true", help="Debug output on the console")
    verbosity.add_argument("-q", "--quiet", action="store_true", help="Only warnings and errors on the console")
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point for the rule migration."""
    args = build_arg_parser().parse_args(argv)

    if args.verbose:
        console_level = logging.DEBUG
    elif args.quiet:
        console_level = logging.WARNING
    else:
        console_level = None

    try:
        settings = Settings()
    except ValueError as e:
        setup_logging(console_level=console_level or logging.INFO)
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    setup_logging(
        settings.LOG_FILE,
        console_level or getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    )

    options = RunOptions(
        dry_run=args.dry_run,
        batch_size=args.batch_size or settings.BATCH_SIZE,
        streaming_batch_size=settings.STREAMING_BATCH_SIZE,
        target_table=args.table,
        truncate=args.truncate,
        skip_existing=args.skip_existing,
        config_only=args.config_only,
    )

    try:
        orchestrator = MigrationOrchestrator(settings, options)
        if args.status:
            orchestrator.status()
            success = not orchestrator.errors.has_errors()
        elif args.validate:
            results = orchestrator.validate_sources()
            success = bool(results) and all(entry["is_valid"] for entry in results)
        else:
            success = orchestrator.run().success
        sys.exit(0 if success else 1)
    except KeyboardInterrupt:
        logger.warning("Migration interrupted by user")
        sys.exit(130)
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()

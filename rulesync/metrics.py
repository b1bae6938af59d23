"""
Migration Results & Summary

Per-table results and the aggregate summary returned at the end of a run.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class TableMigrationResult:
    """Outcome of migrating one configured table."""
    table_name: str
    source_url: str
    records_inserted: int = 0
    records_skipped: int = 0
    errors: List[str] = field(default_factory=list)
    duration_seconds: float = 0.0
    strategy: Optional[str] = None

    @property
    def failed(self) -> bool:
        return bool(self.errors)

    @property
    def total_records(self) -> int:
        return self.records_inserted + self.records_skipped

    @property
    def skip_rate(self) -> float:
        """Calculate skip rate as percentage of processed records."""
        if self.total_records == 0:
            return 0.0
        return (self.records_skipped / self.total_records) * 100

    @property
    def throughput(self) -> float:
        """Calculate records per second."""
        if self.duration_seconds == 0:
            return 0.0
        return self.total_records / self.duration_seconds

    def to_dict(self) -> Dict[str, Any]:
        return {
            "table_name": self.table_name,
            "source_url": self.source_url,
            "records_inserted": self.records_inserted,
            "records_skipped": self.records_skipped,
            "errors": list(self.errors),
            "duration_seconds": round(self.duration_seconds, 3),
            "strategy": self.strategy,
        }


@dataclass
class MigrationSummary:
    """Aggregate result of a run."""
    success: bool
    total_tables: int = 0
    tables_processed: int = 0
    total_records: int = 0
    records_inserted: int = 0
    records_skipped: int = 0
    total_errors: int = 0
    duration_seconds: float = 0.0
    table_results: List[TableMigrationResult] = field(default_factory=list)

    @classmethod
    def from_results(
        cls,
        table_results: List[TableMigrationResult],
        error_count: int,
        duration_seconds: float,
    ) -> "MigrationSummary":
        """
        Build the summary from table results.

        The run succeeds only when no table reported errors and the
        aggregator holds no error entries.
        """
        summary = cls(
            success=True,
            total_tables=len(table_results),
            tables_processed=len(table_results),
            total_errors=error_count,
            duration_seconds=duration_seconds,
            table_results=list(table_results),
        )

        for result in table_results:
            summary.total_records += result.total_records
            summary.records_inserted += result.records_inserted
            summary.records_skipped += result.records_skipped
            if result.failed:
                summary.success = False

        if error_count > 0:
            summary.success = False

        return summary

    @classmethod
    def failed_setup(cls, error_count: int, duration_seconds: float) -> "MigrationSummary":
        """Summary for a run that never reached table processing."""
        return cls(success=False, total_errors=error_count, duration_seconds=duration_seconds)

    @property
    def failed_tables(self) -> List[str]:
        return [result.table_name for result in self.table_results if result.failed]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "total_tables": self.total_tables,
            "tables_processed": self.tables_processed,
            "total_records": self.total_records,
            "records_inserted": self.records_inserted,
            "records_skipped": self.records_skipped,
            "total_errors": self.total_errors,
            "duration_seconds": round(self.duration_seconds, 3),
            "table_results": [result.to_dict() for result in self.table_results],
        }

    def log(self) -> None:
        """Log the summary with per-table lines."""
        logger.info(f"Duration: {self.duration_seconds:.2f} seconds")
        logger.info(f"Tables processed: {self.tables_processed}/{self.total_tables}")
        logger.info(f"Total records: {self.total_records}")
        logger.info(f"Inserted records: {self.records_inserted}")
        logger.info(f"Skipped records: {self.records_skipped}")
        logger.info(f"Errors: {self.total_errors}")
        for result in self.table_results:
            status = "FAILED" if result.failed else "OK"
            logger.info(
                f"  [{status}] {result.table_name}: {result.records_inserted} inserted, "
                f"{result.records_skipped} skipped ({result.skip_rate:.1f}%), "
                f"strategy={result.strategy or 'n/a'}, {result.duration_seconds:.2f}s, "
                f"{result.throughput:.0f} records/s"
            )

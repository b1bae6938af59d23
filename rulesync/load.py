"""
Rule Loading into PostgreSQL

Creates rule tables and inserts records in batches, one multi-row INSERT per
batch. A failed batch is skipped as a whole and the load continues.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Union

import psycopg2
from psycopg2.extras import execute_values

from db.connection import DatabaseConnection
from db.schema import (
    count_rules_sql,
    create_rule_table_sql,
    insert_rules_sql,
    truncate_rule_table_sql,
)
from rulesync.error_aggregator import ErrorAggregator
from rulesync.errors import BatchInsertFailure
from rulesync.models import RULE_FIELDS, Batch, RuleRecord, RunOptions
from rulesync.transform import RecordCursor, TransformResult

logger = logging.getLogger(__name__)

RecordSource = Union[List[RuleRecord], TransformResult, RecordCursor]


@dataclass
class LoadResult:
    """Counters for one table load."""
    inserted: int = 0
    skipped: int = 0
    batches: int = 0
    errors: List[str] = field(default_factory=list)


def iter_batches(source: RecordSource, batch_size: int) -> Iterator[Batch]:
    """
    Yield batches from a record list or a record cursor.

    Lists are chunked by batch_size; cursors keep their own batch size.
    """
    if isinstance(source, RecordCursor):
        yield from source
        return

    records = source.records if isinstance(source, TransformResult) else source
    for start in range(0, len(records), batch_size):
        yield records[start : start + batch_size]


class RuleLoader:
    """
    Loads rule records into per-table PostgreSQL tables.
    """

    def __init__(self, db: Optional[DatabaseConnection], errors: ErrorAggregator):
        """
        Args:
            db: Connection pool (may be None for dry runs)
            errors: Run error aggregator
        """
        self.db = db
        self.errors = errors

    def ensure_table(self, table_name: str) -> None:
        """Create the rule table and its indexes if missing. Safe to repeat."""
        self.db.execute_update(create_rule_table_sql(table_name))
        logger.info(f"Table {table_name} ready")

    def truncate_table(self, table_name: str) -> None:
        """Remove every row and reset the id sequence."""
        self.db.execute_update(truncate_rule_table_sql(table_name))
        logger.info(f"Table {table_name} truncated")

    def count_rows(self, table_name: str) -> int:
        """Current row count, or 0 when the table cannot be read."""
        try:
            rows = self.db.execute_query(count_rules_sql(table_name))
            return int(rows[0][0]) if rows else 0
        except psycopg2.Error as e:
            logger.warning(f"Could not count rows in {table_name}: {e}")
            return 0

    def load(
        self,
        table_name: str,
        source: RecordSource,
        options: Optional[RunOptions] = None,
    ) -> LoadResult:
        """
        Insert records into a table batch by batch.

        Args:
            table_name: Target table
            source: Record list, direct transform result, or streaming cursor
            options: Run options (batch size, dry run, truncate, skip existing)

        Returns:
            LoadResult with inserted/skipped/batch counts and batch error messages
        """
        options = options or RunOptions()
        result = LoadResult()

        if options.dry_run:
            logger.info(f"[DRY RUN] Nothing will be written to {table_name}")
        else:
            self.ensure_table(table_name)
            if options.truncate:
                self.truncate_table(table_name)

        statement = insert_rules_sql(table_name, skip_existing=options.skip_existing)

        for batch in iter_batches(source, options.batch_size):
            result.batches += 1

            if options.dry_run:
                result.inserted += len(batch)
                logger.debug(f"[DRY RUN] Batch {result.batches}: would insert {len(batch)} records")
                continue

            try:
                inserted = self._insert_batch(statement, batch)
            except Exception as e:
                message = f"Failed to insert batch {result.batches} into {table_name}: {e}"
                result.skipped += len(batch)
                result.errors.append(message)
                self.errors.add(
                    BatchInsertFailure.source,
                    message,
                    {
                        "table": table_name,
                        "batch_number": result.batches,
                        "batch_size": len(batch),
                        "error_type": type(e).__name__,
                    },
                )
                continue

            result.inserted += inserted
            result.skipped += len(batch) - inserted
            logger.debug(f"Batch {result.batches}: inserted {inserted}/{len(batch)} into {table_name}")

        logger.info(
            f"Load complete for {table_name}: {result.inserted} inserted, "
            f"{result.skipped} skipped in {result.batches} batch(es)"
        )
        return result

    def _insert_batch(self, statement, batch: Batch) -> int:
        values = [tuple(record.get(name, "") for name in RULE_FIELDS) for record in batch]
        with self.db.get_cursor() as cursor:
            execute_values(cursor, statement, values, page_size=len(values))
            rowcount = cursor.rowcount
        return rowcount if rowcount is not None and rowcount >= 0 else len(batch)

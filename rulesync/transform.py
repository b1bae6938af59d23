"""
Data Transformation Pipeline

Turns parsed sheet rows into rule records.

Two strategies share one row builder:
- DirectStrategy materializes every record and normalizes the full set.
- StreamingStrategy hands out records through a pull-based cursor in small
  batches so large sheets never exist as a full record list.

The migration is literal: no row is merged or dropped because its code
collides with another row's code.
"""

import gc
import itertools
import logging
import math
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence

from rulesync.error_aggregator import ErrorAggregator
from rulesync.errors import RowTransformFailure
from rulesync.models import FIELD_LIMITS, RULE_FIELDS, Batch, RuleRecord
from rulesync.normalizer import RuleRecordNormalizer
from rulesync.parser import ColumnMapping, Sheet, is_blank_row

logger = logging.getLogger(__name__)

LARGE_DATASET_THRESHOLD = 100_000
STREAMING_BATCH_SIZE = 10
GC_INTERVAL = 1_000
PROGRESS_INTERVAL = 5_000

AUTO_CODE_PREFIX = "auto_row_"

_WHITESPACE = re.compile(r"\s+")


def to_text(value: Any) -> str:
    """
    Coerce a cell value to text without ever raising.

    Integral floats lose their ".0", booleans become "true"/"false",
    dates use ISO format.
    """
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            return ""
        return str(int(value)) if value.is_integer() else repr(value)
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    try:
        return str(value)
    except Exception:
        return ""


def clean_text(value: str, limit: int) -> str:
    """Collapse whitespace (line breaks and tabs included), trim, and cap length."""
    return _WHITESPACE.sub(" ", value).strip()[:limit]


def extract_field(row: Sequence[Any], mapping: ColumnMapping, field_name: str) -> Optional[str]:
    """
    Read one canonical field from a source row.

    Args:
        row: Raw cell values
        mapping: Canonical field -> column index for the row's sheet
        field_name: Canonical field name

    Returns:
        The cell as text, or None when the field is unmapped or the row is
        shorter than the mapped column
    """
    index = mapping.get(field_name)
    if index is None or row is None or index >= len(row):
        return None
    cell = row[index]
    if cell is None:
        return None
    return to_text(cell)


class RecordBuilder:
    """
    Builds one rule record from one source row.

    Every field is extracted defensively, cleaned and truncated to its cap.
    A blank code is replaced with a deterministic placeholder.
    """

    def __init__(self, limits: Optional[Dict[str, int]] = None):
        self.limits = dict(FIELD_LIMITS)
        if limits:
            self.limits.update(limits)

    def build(self, row: Sequence[Any], mapping: ColumnMapping, row_number: int) -> RuleRecord:
        """
        Args:
            row: Raw cell values
            mapping: Column mapping for the row's sheet
            row_number: 1-based position among the table's data rows

        Returns:
            Rule record with all canonical fields
        """
        record: RuleRecord = {}
        for field_name in RULE_FIELDS:
            raw = extract_field(row, mapping, field_name) or ""
            record[field_name] = clean_text(raw, self.limits[field_name])

        if not record["code"]:
            record["code"] = f"{AUTO_CODE_PREFIX}{row_number}"[: self.limits["code"]]
            logger.debug(f"Row {row_number} has no code, using {record['code']}")

        return record


@dataclass
class TransformStats:
    """Row accounting for one table's transformation."""
    total_rows: int = 0
    blank_rows: int = 0
    failed_rows: int = 0
    records: int = 0

    @property
    def processed_rows(self) -> int:
        return self.blank_rows + self.failed_rows + self.records


@dataclass
class TransformResult:
    """Materialized output of the direct strategy."""
    records: List[RuleRecord] = field(default_factory=list)
    stats: TransformStats = field(default_factory=TransformStats)


def count_rows(sheets: Sequence[Sheet]) -> int:
    """Total data rows across sheets (headers excluded, blank rows included)."""
    return sum(sheet.row_count for sheet in sheets)


def iter_records(
    sheets: Sequence[Sheet],
    builder: RecordBuilder,
    errors: ErrorAggregator,
    stats: TransformStats,
    source_name: str,
    on_row: Optional[Callable[[int], None]] = None,
) -> Iterator[RuleRecord]:
    """
    Yield one record per non-blank row.

    Blank rows are skipped silently. A row whose build fails is recorded in
    the aggregator as a RowTransformFailure and produces no record.
    """
    position = 0
    for sheet in sheets:
        for index, row in enumerate(sheet.rows):
            position += 1
            if on_row is not None:
                on_row(position)

            if is_blank_row(row):
                stats.blank_rows += 1
                continue

            try:
                record = builder.build(row, sheet.column_mapping, position)
            except Exception as e:
                stats.failed_rows += 1
                errors.add(
                    RowTransformFailure.source,
                    f"Failed to transform row {index + 2} in sheet '{sheet.name}'",
                    {
                        "table": source_name,
                        "sheet": sheet.name,
                        "row_number": index + 2,
                        "error": str(e),
                    },
                )
                continue

            stats.records += 1
            yield record


class RecordCursor:
    """
    Pull-based, finite, non-restartable source of record batches.

    Example:
        batch = cursor.next_batch()
        while batch is not None:
            ...
            batch = cursor.next_batch()
    """

    def __init__(self, records: Iterator[RuleRecord], batch_size: int, stats: TransformStats):
        if batch_size < 1:
            raise ValueError("batch_size must be positive")
        self._records = records
        self.batch_size = batch_size
        self.stats = stats
        self.batches_emitted = 0
        self._exhausted = False

    @property
    def exhausted(self) -> bool:
        return self._exhausted

    def next_batch(self) -> Optional[Batch]:
        """Return the next batch, or None once the source is drained."""
        if self._exhausted:
            return None

        batch = list(itertools.islice(self._records, self.batch_size))
        if not batch:
            self._exhausted = True
            self._records = iter(())
            return None

        self.batches_emitted += 1
        return batch

    def __iter__(self) -> Iterator[Batch]:
        while True:
            batch = self.next_batch()
            if batch is None:
                return
            yield batch


class TransformStrategy(ABC):
    """
    Contract for transformation strategies.

    A strategy is chosen once per table, before any row is processed.
    """

    name = "abstract"

    def __init__(self, errors: ErrorAggregator, builder: Optional[RecordBuilder] = None):
        self.errors = errors
        self.builder = builder or RecordBuilder()

    @abstractmethod
    def transform(self, sheets: Sequence[Sheet], source_name: str):
        """Transform parsed sheets into records (list result or cursor)."""
        pass


class DirectStrategy(TransformStrategy):
    """
    In-memory strategy for regular-sized tables.

    Materializes all records, then runs one normalization pass.
    """

    name = "direct"

    def __init__(
        self,
        errors: ErrorAggregator,
        builder: Optional[RecordBuilder] = None,
        normalizer: Optional[RuleRecordNormalizer] = None,
    ):
        super().__init__(errors, builder)
        self.normalizer = normalizer or RuleRecordNormalizer()

    def transform(self, sheets: Sequence[Sheet], source_name: str) -> TransformResult:
        stats = TransformStats(total_rows=count_rows(sheets))
        logger.info(f"Starting direct transformation of {stats.total_rows} rows for {source_name}")

        records = list(iter_records(sheets, self.builder, self.errors, stats, source_name))
        self.normalizer.normalize_batch(records)

        logger.info(
            f"Transformation complete for {source_name}: {stats.records} records, "
            f"{stats.blank_rows} blank rows skipped, {stats.failed_rows} failed rows"
        )
        return TransformResult(records=records, stats=stats)


class StreamingStrategy(TransformStrategy):
    """
    Bounded-memory strategy for large tables.

    Records are built lazily and handed out in micro-batches. Normalization
    is skipped to keep throughput up.
    """

    name = "streaming"

    def __init__(
        self,
        errors: ErrorAggregator,
        builder: Optional[RecordBuilder] = None,
        batch_size: int = STREAMING_BATCH_SIZE,
        gc_interval: int = GC_INTERVAL,
        progress_interval: int = PROGRESS_INTERVAL,
    ):
        super().__init__(errors, builder)
        self.batch_size = batch_size
        self.gc_interval = gc_interval
        self.progress_interval = progress_interval

    def transform(self, sheets: Sequence[Sheet], source_name: str) -> RecordCursor:
        stats = TransformStats(total_rows=count_rows(sheets))
        logger.info(
            f"Starting streaming transformation of {stats.total_rows} rows for {source_name} "
            f"(batches of {self.batch_size})"
        )

        def on_row(position: int) -> None:
            if position % self.gc_interval == 0:
                gc.collect()
            if position % self.progress_interval == 0:
                logger.info(
                    f"Streaming progress for {source_name}: {position}/{stats.total_rows} rows "
                    f"({position * 100 // max(stats.total_rows, 1)}%)"
                )

        records = iter_records(sheets, self.builder, self.errors, stats, source_name, on_row=on_row)
        return RecordCursor(records, self.batch_size, stats)


def select_strategy(
    total_rows: int,
    errors: ErrorAggregator,
    threshold: int = LARGE_DATASET_THRESHOLD,
    streaming_batch_size: int = STREAMING_BATCH_SIZE,
    builder: Optional[RecordBuilder] = None,
) -> TransformStrategy:
    """
    Pick the transformation strategy for a table.

    Args:
        total_rows: Precomputed data row count across the table's sheets
        errors: Run error aggregator
        threshold: Row count above which streaming is used

    Returns:
        StreamingStrategy when total_rows > threshold, else DirectStrategy
    """
    if total_rows > threshold:
        logger.info(f"{total_rows} rows exceeds {threshold}: using streaming strategy")
        return StreamingStrategy(errors, builder=builder, batch_size=streaming_batch_size)

    logger.info(f"{total_rows} rows within {threshold}: using direct strategy")
    return DirectStrategy(errors, builder=builder)

"""
Run-wide error collection.

Every stage records failures here instead of aborting; the orchestrator reads
the aggregate at the end of the run to decide success and render the report.
"""

import json
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

ERROR = "error"
WARNING = "warning"


@dataclass(frozen=True)
class ErrorEntry:
    """A single recorded problem."""
    source: str
    message: str
    context: Optional[Dict[str, Any]] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    severity: str = ERROR

    @property
    def is_error(self) -> bool:
        return self.severity == ERROR


class ErrorAggregator:
    """
    Append-only collection of error and warning entries for one run.

    Entries are logged as soon as they are added and are never removed.
    Warnings are kept for the report but do not count as errors.
    """

    def __init__(self) -> None:
        self._entries: List[ErrorEntry] = []

    def add(self, source: str, message: str, context: Optional[Dict[str, Any]] = None) -> ErrorEntry:
        """
        Record an error and surface it to the log immediately.

        Args:
            source: Subsystem that produced the error
            message: Human-readable description
            context: Optional structured details (table, row, batch ...)

        Returns:
            The recorded entry
        """
        entry = ErrorEntry(source=source, message=message, context=context, severity=ERROR)
        self._entries.append(entry)
        if context:
            logger.error(f"[{source}] {message} | {context}")
        else:
            logger.error(f"[{source}] {message}")
        return entry

    def add_warning(self, source: str, message: str, context: Optional[Dict[str, Any]] = None) -> ErrorEntry:
        """Record a non-fatal warning (e.g. an unmapped column)."""
        entry = ErrorEntry(source=source, message=message, context=context, severity=WARNING)
        self._entries.append(entry)
        logger.warning(f"[{source}] {message}")
        return entry

    def add_exception(self, error: Exception, context: Optional[Dict[str, Any]] = None) -> ErrorEntry:
        """Record an exception under its own source when it declares one."""
        source = getattr(error, "source", None) or type(error).__name__
        merged = dict(getattr(error, "context", None) or {})
        merged.update(context or {})
        merged.setdefault("error_type", type(error).__name__)
        return self.add(source, str(error), merged)

    @property
    def entries(self) -> List[ErrorEntry]:
        return list(self._entries)

    @property
    def errors(self) -> List[ErrorEntry]:
        return [entry for entry in self._entries if entry.is_error]

    @property
    def warnings(self) -> List[ErrorEntry]:
        return [entry for entry in self._entries if not entry.is_error]

    def has_errors(self) -> bool:
        return any(entry.is_error for entry in self._entries)

    def count(self) -> int:
        return sum(1 for entry in self._entries if entry.is_error)

    def errors_by_source(self, source: str) -> List[ErrorEntry]:
        return [entry for entry in self._entries if entry.is_error and entry.source == source]

    def report(self) -> str:
        """
        Render all entries grouped by source.

        Groups appear in the order their first entry was recorded; entries keep
        chronological order inside each group.
        """
        if not self._entries:
            return "No errors occurred during migration."

        lines = [
            f"Migration completed with {self.count()} error(s) and {len(self.warnings)} warning(s):",
            "",
        ]

        grouped: "OrderedDict[str, List[ErrorEntry]]" = OrderedDict()
        for entry in self._entries:
            grouped.setdefault(entry.source, []).append(entry)

        for source, entries in grouped.items():
            errors = sum(1 for entry in entries if entry.is_error)
            lines.append(f"{source} ({errors} errors, {len(entries) - errors} warnings):")
            for index, entry in enumerate(entries, 1):
                lines.append(f"  {index}. [{entry.severity.upper()}] {entry.message}")
                if entry.context:
                    lines.append(f"     Details: {json.dumps(entry.context, default=str, ensure_ascii=False)}")
                lines.append(f"     Time: {entry.timestamp.isoformat()}")
            lines.append("")

        return "\n".join(lines)

    def log_final_report(self) -> None:
        """Emit the grouped report through logging, whatever the outcome."""
        report = self.report()
        if self.has_errors():
            logger.error("=" * 60)
            logger.error("MIGRATION ERROR REPORT")
            logger.error("=" * 60)
            for line in report.splitlines():
                logger.error(line)
        else:
            logger.info("=" * 60)
            logger.info("MIGRATION SUCCESS")
            logger.info("=" * 60)
            for line in report.splitlines():
                logger.info(line)

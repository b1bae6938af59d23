"""
Exceptions raised by the rule migration pipeline.

Each class names the subsystem it is reported under, so a caller can record it
in the ErrorAggregator without knowing where it came from.
"""

from typing import Any, Dict, Optional


class MigrationError(Exception):
    """Base class for every controlled migration failure."""

    source = "Migration"

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}


class InvalidUrlFormat(MigrationError):
    """The URL carries no recognizable spreadsheet id."""

    source = "SheetFetcher"


class AuthenticationFailure(MigrationError):
    """Service-account token exchange failed."""

    source = "SheetFetcher"


class NetworkFailure(MigrationError):
    """Transport error or non-success status while downloading."""

    source = "SheetFetcher"


class DownloadTimeout(NetworkFailure):
    """The download exceeded its wall-clock limit."""


class ParseFailure(MigrationError):
    """Downloaded bytes could not be read as a workbook."""

    source = "TabularParser"


class MappingIncomplete(MigrationError):
    """A canonical field matched no header. Recorded as a warning only."""

    source = "TabularParser"


class RowTransformFailure(MigrationError):
    """A single row could not be turned into a rule record."""

    source = "RecordBuilder"


class BatchInsertFailure(MigrationError):
    """A batch insert statement failed; the whole batch is skipped."""

    source = "RuleLoader"


class StoreUnavailable(MigrationError):
    """The database could not be reached during setup. Fatal to the run."""

    source = "DatabaseSetup"


class ConfigurationMissing(MigrationError):
    """No source configuration exists for the requested table(s)."""

    source = "Configuration"

"""
Workbook Parsing

Reads downloaded XLSX bytes into ordered sheets of raw rows and resolves each
sheet's header cells to the canonical rule fields.
"""

import io
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import pandas as pd

from rulesync.error_aggregator import ErrorAggregator
from rulesync.errors import MappingIncomplete, ParseFailure
from rulesync.models import FIELD_ALIASES, RULE_FIELDS

logger = logging.getLogger(__name__)

# Aliases shorter than this only match a header exactly ("id" must not match "validations").
MIN_SUBSTRING_ALIAS = 4

ColumnMapping = Dict[str, int]


@dataclass
class Sheet:
    """One worksheet: header cells, data rows and the resolved column mapping."""
    name: str
    header: List[str]
    rows: List[List[Any]]
    column_mapping: ColumnMapping = field(default_factory=dict)

    @property
    def row_count(self) -> int:
        return len(self.rows)

    @property
    def unmapped_fields(self) -> List[str]:
        return [name for name in RULE_FIELDS if name not in self.column_mapping]


def _is_missing(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    return value is pd.NaT


def is_blank_row(row: Optional[Sequence[Any]]) -> bool:
    """True when every cell is empty after trimming."""
    if not row:
        return True
    return all(_is_missing(cell) or str(cell).strip() == "" for cell in row)


def _normalize_header(value: Any) -> str:
    if _is_missing(value):
        return ""
    return str(value).strip().lower()


def build_column_mapping(headers: Sequence[Any]) -> ColumnMapping:
    """
    Map canonical fields to header column indexes.

    Exact (case-insensitive) alias matches are resolved first for every field,
    then substring matches for fields still unresolved, longest alias first.
    A column claimed by one field is never reused by another.

    Args:
        headers: Raw header cells

    Returns:
        Dictionary of canonical field -> column index (unmatched fields absent)
    """
    normalized = [_normalize_header(h) for h in headers]
    mapping: ColumnMapping = {}
    claimed = set()

    for canonical in RULE_FIELDS:
        aliases = [alias.lower() for alias in FIELD_ALIASES[canonical]]
        for index, header in enumerate(normalized):
            if index not in claimed and header in aliases:
                mapping[canonical] = index
                claimed.add(index)
                break

    candidates = sorted(
        (
            (alias.lower(), canonical)
            for canonical in RULE_FIELDS
            if canonical not in mapping
            for alias in FIELD_ALIASES[canonical]
            if len(alias) >= MIN_SUBSTRING_ALIAS
        ),
        key=lambda pair: len(pair[0]),
        reverse=True,
    )
    for alias, canonical in candidates:
        if canonical in mapping:
            continue
        for index, header in enumerate(normalized):
            if index not in claimed and header and alias in header:
                mapping[canonical] = index
                claimed.add(index)
                break

    return mapping


def _clean_cell(value: Any) -> Any:
    return None if _is_missing(value) else value


class TabularParser:
    """
    Parses workbook bytes into Sheet objects.

    Mapping gaps and empty sheets are recorded as warnings; only unreadable
    input fails the parse.
    """

    def __init__(self, errors: ErrorAggregator):
        self.errors = errors

    def _read_workbook(self, data: bytes, source_name: str) -> Dict[str, pd.DataFrame]:
        if not data:
            raise ParseFailure(f"Empty workbook for {source_name}", {"source": source_name})
        try:
            return pd.read_excel(
                io.BytesIO(data),
                sheet_name=None,
                header=None,
                dtype=object,
                engine="openpyxl",
            )
        except Exception as e:
            raise ParseFailure(
                f"Failed to parse workbook for {source_name}: {e}",
                {"source": source_name, "size": len(data)},
            ) from e

    def parse(self, data: bytes, source_name: str = "workbook") -> List[Sheet]:
        """
        Parse workbook bytes into ordered sheets.

        Args:
            data: XLSX bytes
            source_name: Name used in logs and error context (table name)

        Returns:
            List of Sheet objects in workbook order

        Raises:
            ParseFailure: If the bytes are not a readable workbook
        """
        logger.info(f"Parsing workbook for {source_name} ({len(data or b'')} bytes)")
        frames = self._read_workbook(data, source_name)

        sheets = [self._build_sheet(name, frame, source_name) for name, frame in frames.items()]

        logger.info(
            f"Parsed {len(sheets)} sheet(s) for {source_name} with "
            f"{sum(sheet.row_count for sheet in sheets)} data rows"
        )
        return sheets

    def _build_sheet(self, name: str, frame: pd.DataFrame, source_name: str) -> Sheet:
        raw_rows = [[_clean_cell(cell) for cell in row] for row in frame.itertuples(index=False, name=None)]

        if not raw_rows:
            self.errors.add_warning(
                "TabularParser",
                f"Sheet '{name}' is empty",
                {"sheet": name, "source": source_name},
            )
            return Sheet(name=name, header=[], rows=[])

        header = ["" if cell is None else str(cell).strip() for cell in raw_rows[0]]
        rows = raw_rows[1:]
        mapping = build_column_mapping(header)
        sheet = Sheet(name=name, header=header, rows=rows, column_mapping=mapping)

        for missing in sheet.unmapped_fields:
            self.errors.add_warning(
                MappingIncomplete.source,
                f"Could not map column '{missing}' to any header in sheet '{name}'",
                {
                    "warning_type": MappingIncomplete.__name__,
                    "sheet": name,
                    "source": source_name,
                    "field": missing,
                    "headers": header,
                },
            )

        if not rows:
            self.errors.add_warning(
                "TabularParser",
                f"Sheet '{name}' has no data rows",
                {"sheet": name, "source": source_name},
            )

        logger.debug(
            f"Sheet '{name}': {len(rows)} data rows, mapped "
            f"{len(mapping)}/{len(RULE_FIELDS)} columns"
        )
        return sheet

    def validate_structure(self, data: bytes) -> Dict[str, Any]:
        """
        Inspect a workbook without recording anything.

        Returns:
            Dictionary with is_valid, errors and warnings lists
        """
        errors: List[str] = []
        warnings: List[str] = []

        try:
            frames = self._read_workbook(data, "validation")
            if not frames:
                errors.append("No sheets found in workbook")
            for name, frame in frames.items():
                if len(frame.index) < 2:
                    warnings.append(f"Sheet '{name}' appears to have no data rows")
        except ParseFailure as e:
            errors.append(f"Failed to validate workbook structure: {e}")

        return {"is_valid": not errors, "errors": errors, "warnings": warnings}

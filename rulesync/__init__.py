"""
Rule Migration Package

Copies marketplace rule spreadsheets from Google Sheets into per-table
PostgreSQL tables.

Modules:
- extract: Spreadsheet download (service account first, public export fallback)
- parser: Workbook parsing and header-to-field mapping
- transform: Row-to-record building, direct and streaming strategies
- normalizer: Requirement level and type canonicalization
- load: Batched inserts into rule tables
- error_aggregator: Run-wide error and warning collection
- run_etl: Orchestration and command line entry point
"""

__version__ = "1.0.0"
